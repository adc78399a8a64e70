"""
superneat/evolution/errors.py

Error kinds raised by the evolutionary engine.

Two families:
- Non-fatal per-genome failures (transcription, simulation). The genome
  receives the fitness floor and the generation carries on.
- Fatal consistency failures. These point at a bug upstream (usually the
  reproduction stage) and abort the generation.
"""

from __future__ import annotations
from typing import Optional


class EvolutionError(Exception):
    """Base class for engine errors."""


class GenomeFailure(EvolutionError):
    """
    A failure attributable to a single genome.

    Carries the genome id so the per-generation error log can name it.
    """

    kind = "genome_error"

    def __init__(self, message: str, genome_id: Optional[int] = None):
        super().__init__(message)
        self.genome_id = genome_id


class TranscriptionError(GenomeFailure):
    """Genome cannot be turned into a valid controller."""

    kind = "transcription_error"


class SimulationError(GenomeFailure):
    """The simulation reported an internal failure or a malformed outcome."""

    kind = "simulation_error"


class ConsistencyError(EvolutionError):
    """
    Broken engine invariant.

    Raised for species double-assignment, duplicate innovation ids in a
    material, missing material at genome construction, and fitness written
    twice in one generation.
    """

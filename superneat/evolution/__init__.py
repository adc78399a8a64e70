"""
superneat/evolution/

The evolutionary engine.

Key insight: Evolution is embarrassingly parallel at the evaluation step.
- Evaluate genomes (slow, independent, parallel)
- Speciate and share fitness (fast, sequential, order-dependent)
- Reproduce (external, centralized)

Components, leaves first:
- Allele / GeneticMaterial: innovation-ordered genes and their distance
- Genome: identity plus one material, raw fitness, species
- Species: compatibility clusters and explicit fitness sharing
- FitnessEvaluator: transcribe, simulate, score
- EvolutionLoop: the generational state machine
"""

from .allele import Allele, ConnectionAllele, NeuronAllele, allele_from_dict
from .config import EvolutionConfig, load_config
from .errors import (
    ConsistencyError,
    EvolutionError,
    SimulationError,
    TranscriptionError,
)
from .fitness import (
    EvaluationRecord,
    FitnessEvaluator,
    FitnessWeights,
    GenomeError,
    SimulationOutcome,
)
from .genome import DEFAULT_ID, UNEVALUATED, Genome, GenomeRegistry
from .loop import EvolutionLoop, GenerationContext, LoopState
from .material import GeneticMaterial, SpeciationParams
from .reproduction import ProportionalReproducer, Reproducer, initial_population
from .species import Species, speciate
from .transcription import Controller, NetworkTranscriber, Transcriber

__all__ = [
    "Allele",
    "ConnectionAllele",
    "NeuronAllele",
    "allele_from_dict",
    "EvolutionConfig",
    "load_config",
    "ConsistencyError",
    "EvolutionError",
    "SimulationError",
    "TranscriptionError",
    "EvaluationRecord",
    "FitnessEvaluator",
    "FitnessWeights",
    "GenomeError",
    "SimulationOutcome",
    "DEFAULT_ID",
    "UNEVALUATED",
    "Genome",
    "GenomeRegistry",
    "EvolutionLoop",
    "GenerationContext",
    "LoopState",
    "GeneticMaterial",
    "SpeciationParams",
    "ProportionalReproducer",
    "Reproducer",
    "initial_population",
    "Species",
    "speciate",
    "Controller",
    "NetworkTranscriber",
    "Transcriber",
]

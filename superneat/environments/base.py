"""
environments/base.py

The simulation contract.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from superneat.evolution.seeding import derive_seed

if TYPE_CHECKING:
    from superneat.evolution.fitness import SimulationOutcome
    from superneat.evolution.transcription import Controller

__all__ = ["Simulation", "derive_seed"]


class Simulation(ABC):
    """
    One environment instance.

    run() must terminate by itself (win, loss or an internal step budget)
    and must be deterministic in (controller, seed, genome_index,
    generation). Instances hold mutable run state and are not shared
    between concurrent runs.
    """

    @abstractmethod
    def run(
        self,
        controller: "Controller",
        seed: int,
        genome_index: int,
        generation: int,
    ) -> "SimulationOutcome":
        pass

"""
superneat/evolution/loop.py

The generational state machine.

    INIT -> EVALUATING -> SPECIATING -> SHARING_FITNESS -> REPRODUCING
              ^                                               |
              +-----------------------------------------------+

Evaluation is independent per genome and is delegated to an evaluation
backend (sequential FitnessEvaluator, the thread pool, or the distributed
controller). Speciation and sharing are sequential, order-dependent passes
that only start after every evaluation has finished.

Each generation produces a GenerationContext: the fitness, species and error
log of that generation, built and discarded per generation.
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

import numpy as np

from .config import EvolutionConfig

from .errors import ConsistencyError
from .fitness import EvaluationRecord, GenomeError
from .genome import Genome, GenomeRegistry
from .reproduction import Reproducer, initial_population
from .seeding import derive_seed
from .species import Species, speciate

logger = logging.getLogger(__name__)


class LoopState(Enum):
    INIT = "init"
    EVALUATING = "evaluating"
    SPECIATING = "speciating"
    SHARING_FITNESS = "sharing_fitness"
    REPRODUCING = "reproducing"


class EvaluationBackend(Protocol):
    """Anything that scores a whole population and writes its fitness."""

    def evaluate(
        self,
        population: Sequence[Genome],
        seed: int,
        generation: int,
    ) -> List[EvaluationRecord]:
        ...


@dataclass
class GenerationContext:
    """Everything one generation decided about its population."""

    generation: int
    seed: int
    records: List[EvaluationRecord] = field(default_factory=list)
    species_list: List[Species] = field(default_factory=list)
    fitness: Dict[int, int] = field(default_factory=dict)
    shared_fitness: Dict[int, int] = field(default_factory=dict)
    species: Dict[int, int] = field(default_factory=dict)   # genome id -> species id
    errors: List[GenomeError] = field(default_factory=list)
    duration: float = 0.0

    def champion_id(self) -> Optional[int]:
        if not self.fitness:
            return None
        return min(self.fitness, key=lambda gid: (-self.fitness[gid], gid))

    def statistics(self) -> Dict[str, Any]:
        values = np.array(list(self.fitness.values()), dtype=np.float64)
        champion = self.champion_id()
        return {
            "generation": self.generation,
            "population": len(self.fitness),
            "max_fitness": int(values.max()) if len(values) else 0,
            "mean_fitness": float(values.mean()) if len(values) else 0.0,
            "min_fitness": int(values.min()) if len(values) else 0,
            "species_count": len(self.species_list),
            "error_count": len(self.errors),
            "champion_id": champion,
            "generation_time": self.duration,
        }


class EvolutionLoop:
    """
    Drives generations over a population.

    The caller owns the stop policy; run() offers the common generation
    limit / target fitness one.
    """

    def __init__(
        self,
        evaluator: EvaluationBackend,
        reproducer: Reproducer,
        config: Optional[EvolutionConfig] = None,
        registry: Optional[GenomeRegistry] = None,
        population: Optional[List[Genome]] = None,
    ):
        self.config = config or EvolutionConfig()
        self.evaluator = evaluator
        self.reproducer = reproducer
        self.registry = registry or GenomeRegistry()
        self.rng = np.random.default_rng(self.config.seed)

        self.state = LoopState.INIT
        self.generation = 0
        self.history: List[Dict[str, Any]] = []
        self.last_context: Optional[GenerationContext] = None
        self.representatives: List[Genome] = []

        if population is None:
            population = initial_population(
                self.registry,
                self.rng,
                self.config.population_size,
                self.config.num_inputs,
                self.config.num_outputs,
                self.config.initial_weight_scale,
            )
        else:
            for genome in population:
                self.registry.register(genome)
        self.population: List[Genome] = list(population)

    def generation_seed(self, generation: Optional[int] = None) -> int:
        """Seed handed to every simulation run of a generation."""
        gen = self.generation if generation is None else generation
        return derive_seed(self.config.seed, gen)

    def run_generation(self, population: Optional[List[Genome]] = None) -> GenerationContext:
        """
        Evaluate, speciate and share fitness for one population.

        Leaves every genome with raw fitness, species and shared fitness
        populated. ConsistencyError propagates and aborts the generation.
        """
        if population is not None:
            self.population = list(population)
        population = self.population
        gen_start = time.time()

        for genome in population:
            genome.reset()

        context = GenerationContext(
            generation=self.generation,
            seed=self.generation_seed(),
        )

        self.state = LoopState.EVALUATING
        context.records = self.evaluator.evaluate(population, context.seed, self.generation)
        context.errors = [e for e in (r.to_error() for r in context.records) if e is not None]

        self.state = LoopState.SPECIATING
        context.species_list = speciate(
            population, self.config.speciation, self.representatives
        )

        self.state = LoopState.SHARING_FITNESS
        for genome in population:
            context.fitness[genome.id] = genome.effective_fitness
            context.shared_fitness[genome.id] = genome.shared_fitness
            context.species[genome.id] = genome.species.species_id

        self.representatives = [s.representative for s in context.species_list]
        context.duration = time.time() - gen_start
        self.last_context = context

        stats = context.statistics()
        logger.info(
            f"Generation {self.generation}: "
            f"max fitness {stats['max_fitness']}, "
            f"mean {stats['mean_fitness']:.1f}, "
            f"{stats['species_count']} species, "
            f"{stats['error_count']} errors"
        )
        return context

    def reproduce(self, context: GenerationContext) -> List[Genome]:
        """Hand the evaluated population to the reproducer."""
        self.state = LoopState.REPRODUCING
        missing = [g.id for g in self.population if g.id not in context.species]
        if missing:
            raise ConsistencyError(f"genomes {missing} were not speciated before reproduction")
        offspring = self.reproducer.reproduce(
            self.population,
            self.registry,
            self.rng,
            self.config.population_size,
        )
        self.registry.retain(offspring)
        return offspring

    def step(self) -> List[Genome]:
        """One full generation. Returns the next population."""
        context = self.run_generation()
        self.history.append(context.statistics())
        self.population = self.reproduce(context)
        self.generation += 1
        self.state = LoopState.EVALUATING
        return self.population

    def run(
        self,
        generations: Optional[int] = None,
        target_fitness: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Step until the generation limit or a champion hits target_fitness."""
        if generations is None:
            generations = self.config.generations
        target = target_fitness if target_fitness is not None else self.config.target_fitness

        logger.info(f"Starting evolution for {generations} generations")
        for _ in range(generations):
            self.step()
            best = self.history[-1]["max_fitness"]
            if target is not None and best >= target:
                logger.info(f"Target fitness {target} reached (best {best})")
                break

        return self.history

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "generation": self.generation,
            "population": len(self.population),
            "best_fitness": max((h["max_fitness"] for h in self.history), default=None),
        }

"""
superneat/evolution/reproduction.py

The reproduction/selection contract, plus a minimal reference reproducer.

Structural mutation and crossover are outside this package. The reference
reproducer only selects parents in proportion to shared fitness, keeps
species champions, and jitters connection weights of the clones.
"""

from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

import numpy as np

from .allele import Allele, ConnectionAllele, NeuronAllele
from .genome import Genome, GenomeRegistry
from .material import GeneticMaterial

logger = logging.getLogger(__name__)


class Reproducer(ABC):
    """
    Evaluated population -> next population.

    Receives genomes whose raw fitness, shared fitness and species are all
    populated. Must return genomes with fresh ids from the registry.
    """

    @abstractmethod
    def reproduce(
        self,
        population: Sequence[Genome],
        registry: GenomeRegistry,
        rng: np.random.Generator,
        size: int,
    ) -> List[Genome]:
        pass


@dataclass
class ReproductionConfig:
    """Settings for ProportionalReproducer."""
    elite_min_species_size: int = 5   # Species champions kept only above this size
    mutation_rate: float = 0.8        # Per-connection probability of jitter
    weight_sigma: float = 0.5
    weight_limit: float = 8.0


class ProportionalReproducer(Reproducer):
    """
    Roulette selection on shared fitness with species elitism.

    Shared fitness already discounts crowded species, so a plain roulette
    over the whole population protects small species.
    """

    def __init__(self, config: Optional[ReproductionConfig] = None):
        self.config = config or ReproductionConfig()

    def reproduce(
        self,
        population: Sequence[Genome],
        registry: GenomeRegistry,
        rng: np.random.Generator,
        size: int,
    ) -> List[Genome]:
        if not population:
            return []

        offspring: List[Genome] = []

        for champion in self._champions(population):
            if len(offspring) >= size:
                break
            champion.is_selected = True
            offspring.append(registry.create(champion.clone_material()))

        shares = np.array([g.shared_fitness for g in population], dtype=np.float64)
        shares = np.maximum(shares, 1.0)
        probabilities = shares / shares.sum()

        remaining = size - len(offspring)
        if remaining > 0:
            picks = rng.choice(len(population), size=remaining, p=probabilities)
            for idx in picks:
                parent = population[int(idx)]
                parent.is_selected = True
                offspring.append(registry.create(self._mutate(parent, rng)))

        logger.debug(
            f"Reproduced {len(offspring)} genomes from "
            f"{sum(1 for g in population if g.is_selected)} parents"
        )
        return offspring

    def _champions(self, population: Sequence[Genome]) -> List[Genome]:
        seen = []
        champions = []
        for genome in population:
            species = genome.species
            if species is None or any(s is species for s in seen):
                continue
            seen.append(species)
            if len(species) >= self.config.elite_min_species_size:
                champions.append(species.best())
        return champions

    def _mutate(self, parent: Genome, rng: np.random.Generator) -> GeneticMaterial:
        cfg = self.config
        alleles: List[Allele] = []
        for allele in parent.alleles:
            if isinstance(allele, ConnectionAllele) and rng.random() < cfg.mutation_rate:
                weight = allele.weight + rng.normal(0.0, cfg.weight_sigma)
                weight = float(np.clip(weight, -cfg.weight_limit, cfg.weight_limit))
                alleles.append(replace(allele, weight=weight, genome_id=None))
            else:
                alleles.append(allele.copy())
        return GeneticMaterial(alleles, primary_parent_id=parent.id)


def minimal_material(
    num_inputs: int,
    num_outputs: int,
    rng: np.random.Generator,
    weight_scale: float = 1.0,
) -> GeneticMaterial:
    """
    Fully connected input -> output material.

    Innovation ids are positional, so every minimal genome aligns with every
    other one: inputs first, then outputs, then connections row by row.
    """
    alleles: List[Allele] = []
    for i in range(num_inputs):
        alleles.append(NeuronAllele(innovation_id=i, kind="input"))
    for o in range(num_outputs):
        alleles.append(NeuronAllele(innovation_id=num_inputs + o, kind="output"))

    innovation = num_inputs + num_outputs
    for i in range(num_inputs):
        for o in range(num_outputs):
            alleles.append(ConnectionAllele(
                innovation_id=innovation,
                source_id=i,
                target_id=num_inputs + o,
                weight=float(rng.normal(0.0, weight_scale)),
            ))
            innovation += 1

    return GeneticMaterial(alleles)


def initial_population(
    registry: GenomeRegistry,
    rng: np.random.Generator,
    size: int,
    num_inputs: int,
    num_outputs: int,
    weight_scale: float = 1.0,
) -> List[Genome]:
    """Population of minimal genomes with random weights."""
    return [
        registry.create(minimal_material(num_inputs, num_outputs, rng, weight_scale))
        for _ in range(size)
    ]

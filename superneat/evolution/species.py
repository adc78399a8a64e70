"""
superneat/evolution/species.py

Species: compatibility clusters used for explicit fitness sharing.

Species are rebuilt from scratch every generation. A representative id
from the previous generation may be reused to keep species labels stable,
but membership never carries over.
"""

from __future__ import annotations
import logging
from typing import Iterable, List, Optional, Sequence

from .errors import ConsistencyError
from .genome import Genome
from .material import SpeciationParams

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


class Species:
    """
    A group of genomes within the compatibility threshold of a representative.

    Members are referenced, not owned: the population owns the genomes.
    """

    def __init__(self, representative: Genome, species_id: Optional[int] = None):
        self.representative = representative
        self.species_id = representative.id if species_id is None else species_id
        self.members: List[Genome] = []

    @property
    def representative_id(self) -> int:
        return self.representative.id

    def __repr__(self) -> str:
        return f"Species {self.species_id} ({len(self.members)} members)"

    def __len__(self) -> int:
        return len(self.members)

    def __contains__(self, genome: Genome) -> bool:
        return any(m is genome for m in self.members)

    def distance_to(self, genome: Genome, params: SpeciationParams) -> float:
        return self.representative.distance(genome, params)

    def is_compatible(self, genome: Genome, params: SpeciationParams) -> bool:
        return self.distance_to(genome, params) <= params.compatibility_threshold

    def add(self, genome: Genome, params: SpeciationParams) -> None:
        """Admit a genome. It must be within threshold of the representative."""
        distance = self.distance_to(genome, params)
        if distance > params.compatibility_threshold:
            raise ConsistencyError(
                f"{genome!r} is {distance:.3f} from representative of {self!r}, "
                f"threshold {params.compatibility_threshold}"
            )
        genome.set_species(self)
        self.members.append(genome)

    def shared_fitness(self, genome: Genome) -> int:
        """
        Explicit fitness sharing: raw fitness divided by species size.

        Rounded to nearest and floored at 1 so callers can always divide.
        """
        if genome not in self:
            raise ConsistencyError(f"{genome!r} is not a member of {self!r}")
        shared = _round_half_up(genome.effective_fitness / len(self.members))
        return shared if shared > 0 else 1

    def total_shared_fitness(self) -> int:
        return sum(self.shared_fitness(m) for m in self.members)

    def average_fitness(self) -> float:
        if not self.members:
            return 0.0
        return sum(m.effective_fitness for m in self.members) / len(self.members)

    def best(self) -> Optional[Genome]:
        """Champion: highest raw fitness, lowest id on ties."""
        if not self.members:
            return None
        return min(self.members, key=lambda g: (-g.effective_fitness, g.id))


def speciate(
    population: Sequence[Genome],
    params: SpeciationParams,
    representatives: Optional[Iterable[Genome]] = None,
) -> List[Species]:
    """
    Place every genome in the first compatible species, in population order.

    Genomes that fit no existing species found a new one. Previous
    representatives, when given, seed the species list so labels persist;
    seeded species that attract no member are dropped.
    """
    species_list: List[Species] = []

    for rep in representatives or ():
        species_list.append(Species(rep))

    for genome in population:
        home = None
        for species in species_list:
            if species.is_compatible(genome, params):
                home = species
                break
        if home is None:
            home = Species(genome)
            species_list.append(home)
        home.add(genome, params)

    result = [s for s in species_list if s.members]
    dropped = len(species_list) - len(result)
    if dropped:
        logger.debug(f"Dropped {dropped} extinct species")
    return result

"""
superneat/evolution/genome.py

Genomes (chromosomes) and the registry that owns their identities.

A genome wraps exactly one GeneticMaterial and carries the per-generation
evaluation metadata: raw fitness, the selected-for-next-generation flag, and
the species it was placed in.

Ordering and equality are by id only. Two genomes with different material
but the same id compare equal. Sorted containers downstream depend on id
uniqueness, so content equality must never be assumed here.
"""

from __future__ import annotations
import functools
import threading
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple

from .allele import Allele
from .errors import ConsistencyError
from .material import GeneticMaterial, SpeciationParams

if TYPE_CHECKING:
    from .species import Species

DEFAULT_ID = -1     # Unpersisted / default genome
UNEVALUATED = -1    # Fitness before the evaluator has run


@functools.total_ordering
class Genome:
    """
    One candidate solution.

    Created by the reproduction stage with a fresh id, evaluated once per
    generation, dropped when not selected into the next generation.
    """

    def __init__(self, material: Optional[GeneticMaterial], genome_id: int = DEFAULT_ID):
        if material is None:
            raise ConsistencyError("Genome material can't be None")
        material.bind_owner(genome_id)

        self._id = genome_id
        self._material = material
        for allele in material.alleles:
            allele.associate(genome_id)

        self._fitness = UNEVALUATED
        self._fitness_written = False
        self._species: Optional["Species"] = None
        self.is_selected = False

    # -- identity -------------------------------------------------------

    @property
    def id(self) -> int:
        return self._id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Genome):
            return NotImplemented
        return self._id == other._id

    def __lt__(self, other: "Genome") -> bool:
        if not isinstance(other, Genome):
            return NotImplemented
        return self._id < other._id

    def __hash__(self) -> int:
        return hash(self._id)

    def __repr__(self) -> str:
        return f"Genome {self._id}"

    # -- material -------------------------------------------------------

    @property
    def material(self) -> GeneticMaterial:
        return self._material

    @property
    def alleles(self) -> Tuple[Allele, ...]:
        """Immutable allele view ordered by innovation id."""
        return self._material.alleles

    def __len__(self) -> int:
        return len(self._material)

    @property
    def primary_parent_id(self) -> Optional[int]:
        return self._material.primary_parent_id

    @property
    def secondary_parent_id(self) -> Optional[int]:
        return self._material.secondary_parent_id

    def clone_material(self) -> GeneticMaterial:
        """Copy of this genome's material with this genome as sole parent."""
        return self._material.clone(self._id)

    def find_matching_allele(self, allele: Allele) -> Optional[Allele]:
        for candidate in self._material.alleles:
            if candidate.matches(allele):
                return candidate
        return None

    def distance(self, other: "Genome", params: SpeciationParams) -> float:
        return self._material.distance(other._material, params)

    # -- fitness --------------------------------------------------------

    @property
    def fitness(self) -> int:
        """Raw fitness, or UNEVALUATED."""
        return self._fitness

    @property
    def is_evaluated(self) -> bool:
        return self._fitness != UNEVALUATED

    @property
    def effective_fitness(self) -> int:
        """Raw fitness with the unevaluated sentinel read as the floor."""
        return self._fitness if self._fitness > 0 else 1

    def set_fitness(self, value: float) -> None:
        """Store value, or 1 if value is not positive."""
        value = int(value)
        self._fitness = value if value > 0 else 1

    def record_fitness(self, value: float) -> None:
        """Evaluator write: allowed once per generation."""
        if self._fitness_written:
            raise ConsistencyError(f"fitness of {self!r} already written this generation")
        self.set_fitness(value)
        self._fitness_written = True

    @property
    def shared_fitness(self) -> int:
        """Fitness after species sharing. Equals effective fitness without a species."""
        if self._species is None:
            return self.effective_fitness
        return self._species.shared_fitness(self)

    # -- species --------------------------------------------------------

    @property
    def species(self) -> Optional["Species"]:
        return self._species

    def set_species(self, species: "Species") -> None:
        if self._species is not None:
            raise ConsistencyError(
                f"{self!r} can't be added to {species!r}, already a member of {self._species!r}"
            )
        self._species = species

    def clear_species(self) -> None:
        self._species = None

    def reset(self) -> None:
        """Drop previous-generation evaluation state."""
        self._fitness = UNEVALUATED
        self._fitness_written = False
        self._species = None
        self.is_selected = False

    # -- serialization --------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        data = self._material.to_dict()
        data["id"] = self._id
        data["fitness"] = self._fitness
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Genome":
        genome = cls(GeneticMaterial.from_dict(data), genome_id=int(data["id"]))
        fitness = data.get("fitness", UNEVALUATED)
        if fitness != UNEVALUATED:
            genome.set_fitness(fitness)
        return genome


class GenomeRegistry:
    """
    Arena of live genomes keyed by id.

    Hands out monotonically increasing ids and resolves allele
    back-references without allele -> genome pointers.
    """

    def __init__(self, start_id: int = 0):
        self._next_id = start_id
        self._genomes: Dict[int, Genome] = {}
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            genome_id = self._next_id
            self._next_id += 1
            return genome_id

    def create(self, material: GeneticMaterial) -> Genome:
        """Build a genome with a fresh id and register it."""
        genome = Genome(material, self.next_id())
        self.register(genome)
        return genome

    def register(self, genome: Genome) -> None:
        with self._lock:
            existing = self._genomes.get(genome.id)
            if existing is not None and existing is not genome:
                raise ConsistencyError(f"genome id {genome.id} already registered")
            self._genomes[genome.id] = genome
            if genome.id >= self._next_id:
                self._next_id = genome.id + 1

    def get(self, genome_id: int) -> Optional[Genome]:
        return self._genomes.get(genome_id)

    def resolve(self, allele: Allele) -> Optional[Genome]:
        """Owning genome of an allele, if it is still live."""
        if allele.genome_id is None:
            return None
        return self._genomes.get(allele.genome_id)

    def retain(self, genomes: Iterable[Genome]) -> None:
        """Forget every genome not in the given set."""
        keep = {g.id for g in genomes}
        with self._lock:
            self._genomes = {i: g for i, g in self._genomes.items() if i in keep}

    def __len__(self) -> int:
        return len(self._genomes)

    def __contains__(self, genome_id: int) -> bool:
        return genome_id in self._genomes

    @property
    def peek_next_id(self) -> int:
        return self._next_id

    def genomes(self) -> List[Genome]:
        return sorted(self._genomes.values())

"""
superneat/evolution/material.py

Genetic material: the ordered allele set behind a genome.

Material is built once by the reproduction stage and never edited
afterwards. The allele view is a tuple sorted by innovation id, which is the
order both distance computation and crossover walk in.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from .allele import Allele, ConnectionAllele, NeuronAllele, allele_from_dict
from .errors import ConsistencyError


@dataclass
class SpeciationParams:
    """
    Coefficients of the compatibility distance.

    Sizes at or below normalization_threshold are treated as "small" and
    the excess/disjoint counts are not divided by genome size.
    """

    excess_coefficient: float = 1.0
    disjoint_coefficient: float = 1.0
    weight_coefficient: float = 0.4
    compatibility_threshold: float = 3.0
    normalization_threshold: int = 20

    def __post_init__(self):
        for name in (
            "excess_coefficient",
            "disjoint_coefficient",
            "weight_coefficient",
            "compatibility_threshold",
            "normalization_threshold",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "excess_coefficient": self.excess_coefficient,
            "disjoint_coefficient": self.disjoint_coefficient,
            "weight_coefficient": self.weight_coefficient,
            "compatibility_threshold": self.compatibility_threshold,
            "normalization_threshold": self.normalization_threshold,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpeciationParams":
        return cls(
            excess_coefficient=data.get("excess_coefficient", 1.0),
            disjoint_coefficient=data.get("disjoint_coefficient", 1.0),
            weight_coefficient=data.get("weight_coefficient", 0.4),
            compatibility_threshold=data.get("compatibility_threshold", 3.0),
            normalization_threshold=data.get("normalization_threshold", 20),
        )


class GeneticMaterial:
    """
    Ordered, duplicate-free allele set plus parentage.

    primary_parent_id is the dominant parent, secondary_parent_id the
    recessive one. Both are None for material that was not bred.
    """

    def __init__(
        self,
        alleles: Iterable[Allele] = (),
        primary_parent_id: Optional[int] = None,
        secondary_parent_id: Optional[int] = None,
    ):
        ordered = sorted(alleles, key=lambda a: a.innovation_id)
        for prev, curr in zip(ordered, ordered[1:]):
            if prev.innovation_id == curr.innovation_id:
                raise ConsistencyError(
                    f"duplicate innovation id {curr.innovation_id} in genetic material"
                )
        self._alleles: Tuple[Allele, ...] = tuple(ordered)
        self.primary_parent_id = primary_parent_id
        self.secondary_parent_id = secondary_parent_id
        self._owner_id: Optional[int] = None

    @property
    def owner_id(self) -> Optional[int]:
        return self._owner_id

    def bind_owner(self, genome_id: int) -> None:
        """Mark this material as owned. A material has at most one genome."""
        if self._owner_id is not None:
            raise ConsistencyError(
                f"genetic material already owned by genome {self._owner_id}"
            )
        self._owner_id = genome_id

    @property
    def alleles(self) -> Tuple[Allele, ...]:
        return self._alleles

    def __len__(self) -> int:
        return len(self._alleles)

    def __iter__(self):
        return iter(self._alleles)

    def neurons(self) -> Tuple[NeuronAllele, ...]:
        return tuple(a for a in self._alleles if isinstance(a, NeuronAllele))

    def connections(self) -> Tuple[ConnectionAllele, ...]:
        return tuple(a for a in self._alleles if isinstance(a, ConnectionAllele))

    def max_innovation_id(self) -> int:
        return self._alleles[-1].innovation_id if self._alleles else -1

    def clone(
        self,
        primary_parent_id: Optional[int],
        secondary_parent_id: Optional[int] = None,
    ) -> "GeneticMaterial":
        """New material with copied alleles and fresh parentage."""
        return GeneticMaterial(
            (a.copy() for a in self._alleles),
            primary_parent_id=primary_parent_id,
            secondary_parent_id=secondary_parent_id,
        )

    def distance(self, other: "GeneticMaterial", params: SpeciationParams) -> float:
        """
        Compatibility distance between two materials.

        Walks both innovation-ordered allele sequences in lock-step.
        Unmatched genes past the other side's highest innovation id count
        as excess, the rest as disjoint. Matched genes contribute the mean
        of their parameter differences.
        """
        ours, theirs = self._alleles, other._alleles
        our_max = self.max_innovation_id()
        their_max = other.max_innovation_id()

        excess = 0
        disjoint = 0
        matched = 0
        difference = 0.0

        i = j = 0
        while i < len(ours) or j < len(theirs):
            if j >= len(theirs) or (i < len(ours) and ours[i].innovation_id < theirs[j].innovation_id):
                if ours[i].innovation_id > their_max:
                    excess += 1
                else:
                    disjoint += 1
                i += 1
            elif i >= len(ours) or theirs[j].innovation_id < ours[i].innovation_id:
                if theirs[j].innovation_id > our_max:
                    excess += 1
                else:
                    disjoint += 1
                j += 1
            else:
                difference += ours[i].distance(theirs[j])
                matched += 1
                i += 1
                j += 1

        size = max(len(ours), len(theirs))
        normalizer = size if size > params.normalization_threshold else 1

        result = (
            params.excess_coefficient * excess / normalizer
            + params.disjoint_coefficient * disjoint / normalizer
        )
        if matched:
            result += params.weight_coefficient * (difference / matched)
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_parent_id": self.primary_parent_id,
            "secondary_parent_id": self.secondary_parent_id,
            "alleles": [a.to_dict() for a in self._alleles],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeneticMaterial":
        return cls(
            (allele_from_dict(a) for a in data.get("alleles", [])),
            primary_parent_id=data.get("primary_parent_id"),
            secondary_parent_id=data.get("secondary_parent_id"),
        )

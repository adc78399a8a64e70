"""
superneat/evolution/allele.py

Alleles: the atomic units of genetic material.

An allele is identified by its innovation id. Structurally equivalent genes
in different genomes share the id, which is what lets two genomes be
aligned for distance computation and crossover.

The owning genome is stored as an id, not a reference. Resolve it through
GenomeRegistry when the genome itself is needed.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from .errors import ConsistencyError

NEURON_KINDS = ("input", "hidden", "output")


@dataclass(eq=False)
class Allele:
    """
    Base allele.

    Equality and hashing are by innovation id only, so two alleles
    "match" whenever they describe the same gene structure.
    """

    innovation_id: int
    genome_id: Optional[int] = field(default=None, compare=False)

    type_name = "Allele"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Allele):
            return NotImplemented
        return self.innovation_id == other.innovation_id

    def __hash__(self) -> int:
        return hash(self.innovation_id)

    def matches(self, other: "Allele") -> bool:
        """True if both alleles carry the same innovation id."""
        return self.innovation_id == other.innovation_id

    def associate(self, genome_id: int) -> None:
        """Bind this allele to its owning genome. Allowed once."""
        if self.genome_id is not None and self.genome_id != genome_id:
            raise ConsistencyError(
                f"allele {self.innovation_id} already belongs to genome "
                f"{self.genome_id}, cannot move it to {genome_id}"
            )
        self.genome_id = genome_id

    def distance(self, other: "Allele") -> float:
        """Absolute parameter difference against an aligned allele."""
        self._check_aligned(other)
        return 0.0

    def copy(self) -> "Allele":
        """Value copy with no genome association."""
        return replace(self, genome_id=None)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type_name, "innovation_id": self.innovation_id}

    def _check_aligned(self, other: "Allele") -> None:
        if type(self) is not type(other):
            raise ValueError(
                f"Cannot compare {type(self).__name__} with {type(other).__name__}"
            )
        if not self.matches(other):
            raise ValueError(
                f"Alleles not aligned: {self.innovation_id} != {other.innovation_id}"
            )


@dataclass(eq=False)
class NeuronAllele(Allele):
    """A node of the controller network."""

    kind: str = "hidden"
    bias: float = 0.0

    type_name = "NeuronAllele"

    def __post_init__(self):
        if self.kind not in NEURON_KINDS:
            raise ValueError(f"Unknown neuron kind: {self.kind}")

    def distance(self, other: "Allele") -> float:
        self._check_aligned(other)
        return abs(self.bias - other.bias)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"kind": self.kind, "bias": self.bias})
        return data


@dataclass(eq=False)
class ConnectionAllele(Allele):
    """A weighted edge between two neurons, referenced by innovation id."""

    source_id: int = 0
    target_id: int = 0
    weight: float = 0.0

    type_name = "ConnectionAllele"

    def distance(self, other: "Allele") -> float:
        self._check_aligned(other)
        return abs(self.weight - other.weight)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "source_id": self.source_id,
            "target_id": self.target_id,
            "weight": self.weight,
        })
        return data


def allele_from_dict(data: Dict[str, Any]) -> Allele:
    """Rebuild an allele from its to_dict() form."""
    type_name = data.get("type")
    if type_name == NeuronAllele.type_name:
        return NeuronAllele(
            innovation_id=int(data["innovation_id"]),
            kind=data.get("kind", "hidden"),
            bias=float(data.get("bias", 0.0)),
        )
    if type_name == ConnectionAllele.type_name:
        return ConnectionAllele(
            innovation_id=int(data["innovation_id"]),
            source_id=int(data["source_id"]),
            target_id=int(data["target_id"]),
            weight=float(data.get("weight", 0.0)),
        )
    raise ValueError(f"Unknown allele type: {type_name}")

"""
superneat/evolution/transcription.py

Transcription: turning a genome into an executable controller.

The engine only depends on the Transcriber contract. NetworkTranscriber is
a small feed-forward reference implementation so that the engine can run
end to end; it is not meant to be a complete neural runtime.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Dict, List, Tuple

import numpy as np

from .errors import TranscriptionError
from .genome import Genome


class Controller(ABC):
    """Decision function produced from a genome."""

    @abstractmethod
    def activate(self, stimuli: np.ndarray) -> np.ndarray:
        """Map a sensor vector to a response vector."""
        pass

    @property
    @abstractmethod
    def num_inputs(self) -> int:
        pass

    @property
    @abstractmethod
    def num_outputs(self) -> int:
        pass


class Transcriber(ABC):
    """
    Genome -> Controller.

    Must be a pure function of the genetic material. Raises
    TranscriptionError when no valid controller can be built.
    """

    @abstractmethod
    def transcribe(self, genome: Genome) -> Controller:
        pass


class NetworkController(Controller):
    """Feed-forward network evaluated in topological order."""

    def __init__(
        self,
        input_ids: List[int],
        output_ids: List[int],
        order: List[int],
        biases: Dict[int, float],
        incoming: Dict[int, List[Tuple[int, float]]],
    ):
        self.input_ids = input_ids
        self.output_ids = output_ids
        self.order = order
        self.biases = biases
        self.incoming = incoming

    @property
    def num_inputs(self) -> int:
        return len(self.input_ids)

    @property
    def num_outputs(self) -> int:
        return len(self.output_ids)

    def activate(self, stimuli: np.ndarray) -> np.ndarray:
        stimuli = np.asarray(stimuli, dtype=np.float64)
        if stimuli.shape != (self.num_inputs,):
            raise ValueError(
                f"Expected {self.num_inputs} stimuli, got shape {stimuli.shape}"
            )

        values: Dict[int, float] = dict(zip(self.input_ids, stimuli.tolist()))
        for node in self.order:
            total = self.biases[node]
            for source, weight in self.incoming.get(node, ()):
                total += weight * values.get(source, 0.0)
            values[node] = float(np.tanh(total))

        return np.array([values.get(o, 0.0) for o in self.output_ids])


class NetworkTranscriber(Transcriber):
    """
    Builds a NetworkController from neuron and connection alleles.

    Rejects material without inputs or outputs, connections to unknown
    neurons, connections into input neurons, and recurrent loops.
    """

    def transcribe(self, genome: Genome) -> Controller:
        material = genome.material
        neurons = {n.innovation_id: n for n in material.neurons()}
        input_ids = sorted(i for i, n in neurons.items() if n.kind == "input")
        output_ids = sorted(i for i, n in neurons.items() if n.kind == "output")

        if not input_ids or not output_ids:
            raise TranscriptionError(
                f"{genome!r} needs at least one input and one output neuron",
                genome_id=genome.id,
            )

        incoming: Dict[int, List[Tuple[int, float]]] = {}
        for conn in material.connections():
            if conn.source_id not in neurons or conn.target_id not in neurons:
                raise TranscriptionError(
                    f"connection {conn.innovation_id} references unknown neuron",
                    genome_id=genome.id,
                )
            if neurons[conn.target_id].kind == "input":
                raise TranscriptionError(
                    f"connection {conn.innovation_id} feeds an input neuron",
                    genome_id=genome.id,
                )
            incoming.setdefault(conn.target_id, []).append((conn.source_id, conn.weight))

        order = self._topological_order(genome, neurons, input_ids, incoming)
        biases = {i: n.bias for i, n in neurons.items()}
        return NetworkController(input_ids, output_ids, order, biases, incoming)

    def _topological_order(
        self,
        genome: Genome,
        neurons: Dict,
        input_ids: List[int],
        incoming: Dict[int, List[Tuple[int, float]]],
    ) -> List[int]:
        done = set(input_ids)
        pending = sorted(i for i in neurons if i not in done)
        order: List[int] = []

        while pending:
            ready = [
                n for n in pending
                if all(src in done for src, _ in incoming.get(n, ()))
            ]
            if not ready:
                raise TranscriptionError(
                    f"{genome!r} contains a recurrent loop",
                    genome_id=genome.id,
                )
            for n in ready:
                done.add(n)
                order.append(n)
            pending = [n for n in pending if n not in done]

        return order

"""
superneat/evolution/fitness.py

Fitness evaluation: transcribe, simulate, score.

For each genome:
1. Transcribe into a controller (failure -> fitness floor, keep going)
2. Run the simulation with (seed, genome index, generation)
3. Score the outcome with injectable weights
4. Write the fitness onto the genome once

Scoring never touches genetic material.
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from .errors import GenomeFailure, SimulationError, TranscriptionError
from .genome import Genome
from .transcription import Transcriber

if TYPE_CHECKING:
    from superneat.environments.base import Simulation

logger = logging.getLogger(__name__)

FLOOR_FITNESS = 1

STATUS_OK = "ok"
STATUS_TRANSCRIPTION_ERROR = TranscriptionError.kind
STATUS_SIMULATION_ERROR = SimulationError.kind
STATUS_TIMEOUT = "timeout"
STATUS_UNFINISHED = "unfinished"


@dataclass
class SimulationOutcome:
    """
    What a simulation run reports back.

    progress: distance covered (>= 0)
    reached_goal: whether the run ended in a win
    remaining: time/resource left at the end (>= 0)
    steps_used: simulation steps consumed
    started / completed: runs that never started or did not finish are not
    scored
    """

    progress: float
    reached_goal: bool
    remaining: float
    steps_used: int = 0
    started: bool = True
    completed: bool = True

    def validate(self) -> None:
        if self.progress < 0:
            raise SimulationError(f"negative progress {self.progress}")
        if self.remaining < 0:
            raise SimulationError(f"negative remaining {self.remaining}")
        if self.steps_used < 0:
            raise SimulationError(f"negative steps_used {self.steps_used}")

    @property
    def scorable(self) -> bool:
        return self.started and self.completed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "progress": self.progress,
            "reached_goal": self.reached_goal,
            "remaining": self.remaining,
            "steps_used": self.steps_used,
            "started": self.started,
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulationOutcome":
        return cls(
            progress=float(data["progress"]),
            reached_goal=bool(data["reached_goal"]),
            remaining=float(data["remaining"]),
            steps_used=int(data.get("steps_used", 0)),
            started=bool(data.get("started", True)),
            completed=bool(data.get("completed", True)),
        )


@dataclass
class FitnessWeights:
    """
    Raw fitness = progress * progress_weight
                  + reached_goal * remaining * goal_weight
                  - size_penalty * genome size

    The result is truncated to int; the genome applies the floor rule.
    """

    progress_weight: float = 1.5
    goal_weight: float = 1.0
    size_penalty: float = 0.0

    def score(self, outcome: SimulationOutcome, genome_size: int = 0) -> int:
        value = (
            outcome.progress * self.progress_weight
            + (outcome.remaining * self.goal_weight if outcome.reached_goal else 0.0)
            - self.size_penalty * genome_size
        )
        return int(value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "progress_weight": self.progress_weight,
            "goal_weight": self.goal_weight,
            "size_penalty": self.size_penalty,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FitnessWeights":
        return cls(
            progress_weight=data.get("progress_weight", 1.5),
            goal_weight=data.get("goal_weight", 1.0),
            size_penalty=data.get("size_penalty", 0.0),
        )


@dataclass
class GenomeError:
    """One entry of the per-generation error log."""

    genome_id: int
    kind: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"genome_id": self.genome_id, "kind": self.kind, "message": self.message}


@dataclass
class EvaluationRecord:
    """Result of evaluating one genome."""

    genome_id: int
    index: int
    status: str
    fitness: Optional[int] = None  # None leaves the genome unevaluated
    outcome: Optional[SimulationOutcome] = None
    error: Optional[str] = None
    eval_time: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status not in (STATUS_OK, STATUS_UNFINISHED)

    def to_error(self) -> Optional[GenomeError]:
        if self.error is None:
            return None
        return GenomeError(self.genome_id, self.status, self.error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "genome_id": self.genome_id,
            "index": self.index,
            "status": self.status,
            "fitness": self.fitness,
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "error": self.error,
            "eval_time": self.eval_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationRecord":
        outcome = data.get("outcome")
        return cls(
            genome_id=int(data["genome_id"]),
            index=int(data["index"]),
            status=data["status"],
            fitness=data.get("fitness"),
            outcome=SimulationOutcome.from_dict(outcome) if outcome else None,
            error=data.get("error"),
            eval_time=data.get("eval_time", 0.0),
        )


def failure_record(genome: Genome, index: int, status: str, message: str) -> EvaluationRecord:
    """Record for a genome that gets the fitness floor."""
    return EvaluationRecord(
        genome_id=genome.id,
        index=index,
        status=status,
        fitness=FLOOR_FITNESS,
        error=message,
    )


class FitnessEvaluator:
    """
    Scores genomes by simulation.

    simulation_factory builds a fresh Simulation. Simulations mutate
    internal state while running, so concurrent callers must each hold
    their own instance.
    """

    def __init__(
        self,
        transcriber: Transcriber,
        simulation_factory: Callable[[], "Simulation"],
        weights: Optional[FitnessWeights] = None,
    ):
        self.transcriber = transcriber
        self.simulation_factory = simulation_factory
        self.weights = weights or FitnessWeights()

    def new_simulation(self) -> "Simulation":
        return self.simulation_factory()

    def score_genome(
        self,
        genome: Genome,
        seed: int,
        generation: int,
        index: int,
        simulation: Optional["Simulation"] = None,
    ) -> EvaluationRecord:
        """Evaluate without touching the genome."""
        start_time = time.time()

        try:
            controller = self.transcriber.transcribe(genome)
        except TranscriptionError as e:
            logger.warning(f"Transcriber error for {genome!r}: {e}")
            return failure_record(genome, index, STATUS_TRANSCRIPTION_ERROR, str(e))

        simulation = simulation or self.new_simulation()
        try:
            outcome = simulation.run(controller, seed, index, generation)
            outcome.validate()
        except GenomeFailure as e:
            logger.warning(f"Simulation failed for {genome!r}: {e}")
            return failure_record(genome, index, STATUS_SIMULATION_ERROR, str(e))
        except Exception as e:
            logger.warning(f"Simulation raised for {genome!r}: {e}")
            return failure_record(genome, index, STATUS_SIMULATION_ERROR, f"{type(e).__name__}: {e}")

        eval_time = time.time() - start_time

        if not outcome.scorable:
            logger.debug(f"{genome!r} run did not finish, leaving unevaluated")
            return EvaluationRecord(
                genome_id=genome.id,
                index=index,
                status=STATUS_UNFINISHED,
                outcome=outcome,
                eval_time=eval_time,
            )

        return EvaluationRecord(
            genome_id=genome.id,
            index=index,
            status=STATUS_OK,
            fitness=self.weights.score(outcome, len(genome)),
            outcome=outcome,
            eval_time=eval_time,
        )

    def apply(self, genome: Genome, record: EvaluationRecord) -> None:
        """Write a record's fitness onto its genome."""
        if record.genome_id != genome.id:
            raise ValueError(f"Record for genome {record.genome_id} applied to {genome!r}")
        if record.fitness is not None:
            genome.record_fitness(record.fitness)

    def evaluate_genome(
        self,
        genome: Genome,
        seed: int,
        generation: int,
        index: int,
        simulation: Optional["Simulation"] = None,
    ) -> EvaluationRecord:
        record = self.score_genome(genome, seed, generation, index, simulation)
        self.apply(genome, record)
        return record

    def evaluate(
        self,
        population: Sequence[Genome],
        seed: int,
        generation: int,
    ) -> List[EvaluationRecord]:
        """Sequential evaluation of a whole population with one simulation."""
        simulation = self.new_simulation()
        return [
            self.evaluate_genome(genome, seed, generation, index, simulation)
            for index, genome in enumerate(population)
        ]

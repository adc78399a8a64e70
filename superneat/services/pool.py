"""
superneat/services/pool.py

Bounded local worker pool for population evaluation.

Each worker thread owns its own simulation instance; simulations carry
mutable run state and are never shared between concurrent runs. Workers
only compute evaluation records. Fitness is written back in population order
once every run has finished or been timed out, which is the barrier before
speciation.

A thread running a timed-out simulation cannot be stopped, so its executor is
abandoned and the runs still queued on it move to a fresh executor. The
abandoned thread exits whenever its run returns.
"""

from __future__ import annotations
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from superneat.evolution.fitness import (
    STATUS_TIMEOUT,
    EvaluationRecord,
    FitnessEvaluator,
    failure_record,
)
from superneat.evolution.genome import Genome

logger = logging.getLogger(__name__)


@dataclass
class PoolConfig:
    """Configuration for the local evaluation pool."""
    max_workers: int = 4
    run_timeout: Optional[float] = None   # Watchdog per run, None disables
    poll_interval: float = 0.05           # Seconds between watchdog checks

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError("max_workers must be positive")


class EvaluationPool:
    """
    Thread pool evaluation backend.

    Same evaluate() contract as FitnessEvaluator, so the loop can use either.
    """

    def __init__(self, evaluator: FitnessEvaluator, config: Optional[PoolConfig] = None):
        self.evaluator = evaluator
        self.config = config or PoolConfig()
        self._local = threading.local()
        self.timeouts = 0

    def _simulation(self):
        simulation = getattr(self._local, "simulation", None)
        if simulation is None:
            simulation = self.evaluator.new_simulation()
            self._local.simulation = simulation
        return simulation

    def _run(
        self,
        genome: Genome,
        seed: int,
        generation: int,
        index: int,
        started: Dict[int, float],
    ) -> EvaluationRecord:
        started[index] = time.monotonic()
        return self.evaluator.score_genome(
            genome, seed, generation, index, simulation=self._simulation()
        )

    def evaluate(
        self,
        population: Sequence[Genome],
        seed: int,
        generation: int,
    ) -> List[EvaluationRecord]:
        """Score every genome, then write fitness in population order."""
        records: List[Optional[EvaluationRecord]] = [None] * len(population)
        started: Dict[int, float] = {}
        abandoned: List[ThreadPoolExecutor] = []

        executor = self._new_executor(generation)
        try:
            pending: Dict[Future, int] = {
                executor.submit(self._run, genome, seed, generation, index, started): index
                for index, genome in enumerate(population)
            }

            while pending:
                done, _ = wait(
                    pending,
                    timeout=self._wait_timeout(),
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    index = pending.pop(future)
                    records[index] = future.result()

                if self.config.run_timeout is None:
                    continue

                expired = self._expired(pending, started)
                if not expired:
                    continue

                for future in expired:
                    index = pending.pop(future)
                    genome = population[index]
                    logger.warning(
                        f"{genome!r} exceeded run timeout of "
                        f"{self.config.run_timeout}s, abandoning run"
                    )
                    records[index] = failure_record(
                        genome, index, STATUS_TIMEOUT,
                        f"run exceeded {self.config.run_timeout}s",
                    )
                    self.timeouts += 1

                # The hung thread keeps its slot; queued runs move to fresh threads.
                abandoned.append(executor)
                executor = self._new_executor(generation)
                for future, index in list(pending.items()):
                    if future.cancel():
                        del pending[future]
                        replacement = executor.submit(
                            self._run, population[index], seed, generation, index, started
                        )
                        pending[replacement] = index
        finally:
            for old in abandoned:
                old.shutdown(wait=False, cancel_futures=True)
            executor.shutdown(wait=True, cancel_futures=True)

        for genome, record in zip(population, records):
            self.evaluator.apply(genome, record)

        logger.debug(
            f"Generation {generation}: evaluated {len(population)} genomes "
            f"on {self.config.max_workers} workers"
        )
        return records

    def _new_executor(self, generation: int) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix=f"eval-gen{generation}",
        )

    def _expired(self, pending: Dict[Future, int], started: Dict[int, float]) -> List[Future]:
        now = time.monotonic()
        return [
            future for future, index in pending.items()
            if index in started and now - started[index] > self.config.run_timeout
        ]

    def _wait_timeout(self) -> Optional[float]:
        if self.config.run_timeout is None:
            return None
        return self.config.poll_interval

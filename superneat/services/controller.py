"""
superneat/services/controller.py

Evolution controller service.

The controller owns the population and runs the generational loop:
1. Hands every genome of the generation to the evaluation backend
   (local worker pool, or task queue + workers)
2. Waits for all results (barrier)
3. Speciates, shares fitness, reproduces
4. Tracks history and writes checkpoints

Missing or failed results never stall a generation: the genome gets the
fitness floor and an entry in the generation's error log.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from superneat.evolution.config import EvolutionConfig, load_config
from superneat.environments.runner import RunnerConfig, RunnerSimulation
from superneat.evolution.errors import ConsistencyError
from superneat.evolution.fitness import (
    STATUS_TIMEOUT,
    EvaluationRecord,
    FitnessEvaluator,
    SimulationOutcome,
    failure_record,
)
from superneat.evolution.genome import Genome, GenomeRegistry
from superneat.evolution.loop import EvolutionLoop
from superneat.evolution.reproduction import ProportionalReproducer
from superneat.evolution.transcription import NetworkTranscriber

from .pool import EvaluationPool, PoolConfig
from .queue import EvaluationResultMessage, EvaluationTask, create_task_queue
from .worker import STATUS_INVALID_TASK, EvaluationWorker, WorkerConfig

logger = logging.getLogger(__name__)


@dataclass
class ControllerConfig:
    """Configuration for the evolution controller."""
    evolution: EvolutionConfig = field(default_factory=EvolutionConfig)

    # Evaluation backend: "pool" (local threads) or "queue" (task queue + workers)
    evaluation: str = "pool"

    # Queue configuration
    queue_backend: str = "memory"   # "memory" or "redis"
    redis_url: str = "redis://localhost:6379"
    local_workers: int = 0          # In-process workers for the memory queue

    # Task distribution
    result_timeout: float = 60.0    # Seconds to wait for a generation's results
    task_timeout: float = 300.0     # Status TTL hint per task


class EvolutionController:
    """
    Runs evolution over a configurable evaluation backend.

    When evaluation="queue" the controller itself is the loop's evaluation
    backend: it pushes one task per genome and collects the results.
    """

    def __init__(self, config: ControllerConfig):
        self.config = config
        self.evolution_config = config.evolution

        if config.evaluation not in ("pool", "queue"):
            raise ValueError(f"Unknown evaluation backend: {config.evaluation}")

        self.queue = create_task_queue(
            backend=config.queue_backend,
            redis_url=config.redis_url,
        )

        self.pending_tasks: Dict[str, EvaluationTask] = {}
        self.total_evaluations = 0
        self.running = False
        self.start_time: Optional[float] = None

        self.loop = EvolutionLoop(
            self._create_backend(),
            ProportionalReproducer(self.evolution_config.reproduction),
            self.evolution_config,
        )

        self._local_workers: List[EvaluationWorker] = []
        self._worker_threads: List[threading.Thread] = []

        logger.info(
            f"Controller initialized with {config.evaluation} evaluation, "
            f"population {self.evolution_config.population_size}"
        )

    def _create_backend(self):
        if self.config.evaluation == "queue":
            return self
        evaluator = FitnessEvaluator(
            NetworkTranscriber(),
            lambda: RunnerSimulation(RunnerConfig()),
            self.evolution_config.fitness_weights,
        )
        return EvaluationPool(
            evaluator,
            PoolConfig(
                max_workers=self.evolution_config.max_workers,
                run_timeout=self.evolution_config.run_timeout,
            ),
        )

    @property
    def generation(self) -> int:
        return self.loop.generation

    @property
    def population(self) -> List[Genome]:
        return self.loop.population

    @property
    def history(self) -> List[Dict[str, Any]]:
        return self.loop.history

    # -- queue backend ---------------------------------------------------

    def generate_tasks(self, population: Sequence[Genome], seed: int, generation: int) -> int:
        """Push one task per genome. Returns number of tasks created."""
        self.pending_tasks = {}
        tasks_created = 0

        for index, genome in enumerate(population):
            task = EvaluationTask(
                task_id=str(uuid.uuid4()),
                genome_data=genome.to_dict(),
                seed=seed,
                generation=generation,
                genome_index=index,
                timeout_seconds=self.config.task_timeout,
            )
            if self.queue.push_task(task):
                self.pending_tasks[task.task_id] = task
                tasks_created += 1
            else:
                logger.warning(f"Could not queue {genome!r}")

        logger.info(f"Generation {generation}: Created {tasks_created} tasks")
        return tasks_created

    def collect_results(self, timeout: Optional[float] = None) -> Dict[int, EvaluationResultMessage]:
        """
        Collect results for the pending tasks.

        Returns results keyed by genome index. Results of other generations
        are discarded.
        """
        if timeout is None:
            timeout = self.config.result_timeout
        start_time = time.time()
        results: Dict[int, EvaluationResultMessage] = {}

        while self.pending_tasks:
            if time.time() - start_time > timeout:
                logger.warning(
                    f"Timeout waiting for results: {len(self.pending_tasks)} missing"
                )
                break

            message = self.queue.pop_result(timeout=1.0)
            if message is None:
                continue

            task = self.pending_tasks.pop(message.task_id, None)
            if task is None:
                logger.debug(f"Discarding stale result {message.task_id}")
                continue

            if message.status == STATUS_INVALID_TASK:
                raise ConsistencyError(
                    f"worker {message.worker_id} rejected genome "
                    f"{message.genome_id}: {message.error}"
                )

            results[task.genome_index] = message
            self.total_evaluations += 1

        return results

    def evaluate(
        self,
        population: Sequence[Genome],
        seed: int,
        generation: int,
    ) -> List[EvaluationRecord]:
        """Queue-based evaluation backend for the loop."""
        self.generate_tasks(population, seed, generation)
        results = self.collect_results()

        records = []
        for index, genome in enumerate(population):
            message = results.get(index)
            if message is None:
                record = failure_record(genome, index, STATUS_TIMEOUT, "no result from workers")
            else:
                if message.genome_id != genome.id:
                    raise ConsistencyError(
                        f"result for genome {message.genome_id} returned at index {index} ({genome!r})"
                    )
                record = EvaluationRecord(
                    genome_id=genome.id,
                    index=index,
                    status=message.status,
                    fitness=message.fitness,
                    outcome=SimulationOutcome.from_dict(message.outcome) if message.outcome else None,
                    error=message.error,
                )
            if record.fitness is not None:
                genome.record_fitness(record.fitness)
            records.append(record)

        self.pending_tasks = {}
        return records

    # -- local workers -----------------------------------------------------

    def start_local_workers(self) -> None:
        """Spin up in-process workers sharing this controller's queue."""
        for _ in range(self.config.local_workers):
            worker = EvaluationWorker(WorkerConfig(
                queue_backend="memory",
                fitness_weights=self.evolution_config.fitness_weights,
                poll_interval=0.05,
            ))
            worker.queue = self.queue
            thread = threading.Thread(target=worker.run, daemon=True, name=f"worker-{worker.worker_id}")
            self._local_workers.append(worker)
            self._worker_threads.append(thread)
            thread.start()

    def stop_local_workers(self) -> None:
        for worker in self._local_workers:
            worker.stop()
        for thread in self._worker_threads:
            thread.join(timeout=5.0)
        self._local_workers = []
        self._worker_threads = []

    # -- evolution ---------------------------------------------------------

    def step(self) -> Dict[str, Any]:
        """Execute one generation. Returns generation statistics."""
        self.loop.step()
        stats = self.loop.history[-1]
        stats["total_evaluations"] = self.total_evaluations
        return stats

    def run(self, generations: Optional[int] = None) -> Dict[str, Any]:
        """Run evolution. Returns final statistics."""
        cfg = self.evolution_config
        if generations is None:
            generations = cfg.generations
        self.running = True
        self.start_time = time.time()

        if self.config.evaluation == "queue" and self.config.queue_backend == "memory":
            self.start_local_workers()

        logger.info(f"Starting evolution for {generations} generations")

        try:
            for _ in range(generations):
                if not self.running:
                    break

                stats = self.step()

                if cfg.checkpoint_path and self.generation % cfg.checkpoint_interval == 0:
                    self.save_checkpoint()

                if cfg.target_fitness is not None and stats["max_fitness"] >= cfg.target_fitness:
                    logger.info(f"Target fitness {cfg.target_fitness} reached")
                    break

        except KeyboardInterrupt:
            logger.info("Evolution interrupted by user")

        finally:
            self.running = False
            self.stop_local_workers()

        best = max((h["max_fitness"] for h in self.history), default=0)
        final_stats = {
            "total_generations": self.generation,
            "total_evaluations": self.total_evaluations,
            "total_time": time.time() - self.start_time,
            "best_fitness": best,
        }
        logger.info(
            f"Evolution complete: {self.generation} generations, best fitness: {best}"
        )
        return final_stats

    def stop(self) -> None:
        """Stop evolution after the current generation."""
        self.running = False
        logger.info("Stopping evolution...")

    # -- checkpoints -------------------------------------------------------

    def save_checkpoint(self, path: Optional[str] = None) -> None:
        """Write generation, history, RNG state and population as JSON."""
        path = path or self.evolution_config.checkpoint_path
        if path is None:
            return

        checkpoint = {
            "generation": self.generation,
            "total_evaluations": self.total_evaluations,
            "next_genome_id": self.loop.registry.peek_next_id,
            "rng_state": self.loop.rng.bit_generator.state,
            "config": self.evolution_config.to_dict(),
            "history": self.history,
            "population": [g.to_dict() for g in self.population],
            "representatives": [g.to_dict() for g in self.loop.representatives],
        }

        with open(path, "w") as f:
            json.dump(checkpoint, f, indent=2)

        logger.info(f"Checkpoint saved to {path}")

    def load_checkpoint(self, path: str) -> None:
        """Restore population and loop state from a checkpoint file."""
        with open(path) as f:
            checkpoint = json.load(f)

        registry = GenomeRegistry(start_id=checkpoint.get("next_genome_id", 0))
        population = [Genome.from_dict(d) for d in checkpoint["population"]]
        for genome in population:
            registry.register(genome)

        self.loop.registry = registry
        self.loop.population = population
        self.loop.representatives = [
            Genome.from_dict(d) for d in checkpoint.get("representatives", [])
        ]
        self.loop.generation = checkpoint.get("generation", 0)
        self.loop.history = checkpoint.get("history", [])
        if "rng_state" in checkpoint:
            self.loop.rng.bit_generator.state = checkpoint["rng_state"]
        self.total_evaluations = checkpoint.get("total_evaluations", 0)

        logger.info(f"Checkpoint loaded from {path}: generation {self.generation}")

    def get_status(self) -> Dict[str, Any]:
        elapsed = 0.0
        if self.start_time:
            elapsed = time.time() - self.start_time

        return {
            "running": self.running,
            "generation": self.generation,
            "total_evaluations": self.total_evaluations,
            "pending_tasks": len(self.pending_tasks),
            "queue_length": self.queue.get_queue_length(),
            "evaluation": self.config.evaluation,
            "elapsed_time": elapsed,
            **self.loop.get_status(),
        }


def run_controller(config: Optional[ControllerConfig] = None) -> None:
    """
    Run the controller as a standalone service.

    Entry point for the controller process.
    """
    import argparse
    import signal
    import sys

    parser = argparse.ArgumentParser(description="SuperNEAT evolution controller")
    parser.add_argument("--config", default=None, help="YAML evolution config")
    parser.add_argument("--evaluation", default="pool", choices=["pool", "queue"])
    parser.add_argument("--queue-backend", default="memory", choices=["memory", "redis"])
    parser.add_argument("--redis-url", default="redis://localhost:6379")
    parser.add_argument("--local-workers", type=int, default=2)
    parser.add_argument("--population-size", type=int, default=None)
    parser.add_argument("--generations", type=int, default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--checkpoint-path", default=None)
    parser.add_argument("--resume", default=None, help="Checkpoint to resume from")

    args = parser.parse_args()

    if config is None:
        evolution = load_config(args.config) if args.config else EvolutionConfig.from_env()
        if args.population_size is not None:
            evolution.population_size = args.population_size
        if args.generations is not None:
            evolution.generations = args.generations
        if args.seed is not None:
            evolution.seed = args.seed
        if args.checkpoint_path is not None:
            evolution.checkpoint_path = args.checkpoint_path

        config = ControllerConfig(
            evolution=evolution,
            evaluation=args.evaluation,
            queue_backend=args.queue_backend,
            redis_url=args.redis_url,
            local_workers=args.local_workers,
        )

    controller = EvolutionController(config)
    if args.resume:
        controller.load_checkpoint(args.resume)

    def signal_handler(sig, frame):
        logger.info("Received shutdown signal")
        controller.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    controller.run()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_controller()

"""
superneat/services/worker.py

Evaluation worker service.

Workers do the expensive part of a generation:
1. Pull evaluation tasks from the queue
2. Rebuild the genome and transcribe it into a controller
3. Run the worker's own simulation with the task's seed and index
4. Push the scored result back

Each worker owns exactly one simulation instance. Add workers to scale out.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from superneat.environments.base import Simulation
from superneat.environments.runner import RunnerConfig, RunnerSimulation
from superneat.evolution.errors import ConsistencyError
from superneat.evolution.fitness import EvaluationRecord, FitnessEvaluator, FitnessWeights
from superneat.evolution.genome import Genome
from superneat.evolution.transcription import NetworkTranscriber, Transcriber

from .queue import EvaluationResultMessage, EvaluationTask, create_task_queue

logger = logging.getLogger(__name__)

STATUS_INVALID_TASK = "consistency_error"


@dataclass
class WorkerConfig:
    """Configuration for evaluation workers."""
    # Worker identity
    worker_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    # Queue configuration
    queue_backend: str = "memory"
    redis_url: str = "redis://localhost:6379"

    # Scoring
    fitness_weights: FitnessWeights = field(default_factory=FitnessWeights)

    # Worker behavior
    poll_interval: float = 0.1          # Seconds between task polls
    max_consecutive_errors: int = 5     # Invalid tasks before worker stops
    heartbeat_interval: float = 30.0    # Seconds between heartbeat logs


class EvaluationWorker:
    """
    Worker that evaluates genomes from the task queue.

    Runs continuously, pulling tasks and pushing results.
    """

    def __init__(
        self,
        config: WorkerConfig,
        transcriber: Optional[Transcriber] = None,
        simulation_factory: Optional[Callable[[], Simulation]] = None,
    ):
        self.config = config
        self.worker_id = config.worker_id

        self.queue = create_task_queue(
            backend=config.queue_backend,
            redis_url=config.redis_url,
        )

        self.evaluator = FitnessEvaluator(
            transcriber or NetworkTranscriber(),
            simulation_factory or (lambda: RunnerSimulation(RunnerConfig())),
            config.fitness_weights,
        )
        self.simulation = self.evaluator.new_simulation()

        # Status
        self.running = False
        self.tasks_completed = 0
        self.tasks_failed = 0
        self.consecutive_errors = 0
        self.last_heartbeat = time.time()

        logger.info(f"Worker {self.worker_id} initialized")

    def evaluate_task(self, task: EvaluationTask) -> EvaluationResultMessage:
        """Evaluate a single task into a result message."""
        try:
            genome = Genome.from_dict(task.genome_data)
        except (ConsistencyError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Task {task.task_id} carries an invalid genome: {e}")
            return EvaluationResultMessage(
                task_id=task.task_id,
                genome_id=task.genome_data.get("id", -1) if isinstance(task.genome_data, dict) else -1,
                genome_index=task.genome_index,
                status=STATUS_INVALID_TASK,
                worker_id=self.worker_id,
                error=f"{type(e).__name__}: {e}",
            )

        record = self.evaluator.score_genome(
            genome,
            task.seed,
            task.generation,
            task.genome_index,
            simulation=self.simulation,
        )
        return self._to_message(task, record)

    def _to_message(self, task: EvaluationTask, record: EvaluationRecord) -> EvaluationResultMessage:
        return EvaluationResultMessage(
            task_id=task.task_id,
            genome_id=record.genome_id,
            genome_index=record.index,
            status=record.status,
            fitness=record.fitness,
            outcome=record.outcome.to_dict() if record.outcome else None,
            worker_id=self.worker_id,
            error=record.error,
        )

    def process_one(self) -> bool:
        """
        Process a single task if available.

        Returns True if a task was processed, False if queue was empty.
        """
        task = self.queue.pop_task(timeout=self.config.poll_interval)
        if task is None:
            return False

        logger.debug(f"Processing task {task.task_id} (genome index {task.genome_index})")

        result = self.evaluate_task(task)

        if result.status == STATUS_INVALID_TASK:
            self.tasks_failed += 1
            self.consecutive_errors += 1
        else:
            self.tasks_completed += 1
            self.consecutive_errors = 0

        self.queue.push_result(result)
        return True

    def run(self) -> None:
        """Run worker continuously until stopped."""
        self.running = True
        logger.info(f"Worker {self.worker_id} starting")

        try:
            while self.running:
                if self.consecutive_errors >= self.config.max_consecutive_errors:
                    logger.error(
                        f"Too many consecutive errors ({self.consecutive_errors}), stopping"
                    )
                    break

                processed = self.process_one()

                now = time.time()
                if now - self.last_heartbeat >= self.config.heartbeat_interval:
                    logger.info(
                        f"Worker {self.worker_id} heartbeat: "
                        f"{self.tasks_completed} completed, {self.tasks_failed} failed"
                    )
                    self.last_heartbeat = now

                if not processed:
                    time.sleep(self.config.poll_interval)

        except KeyboardInterrupt:
            logger.info("Worker interrupted by user")

        finally:
            self.running = False
            logger.info(
                f"Worker {self.worker_id} stopped: "
                f"{self.tasks_completed} completed, {self.tasks_failed} failed"
            )

    def stop(self) -> None:
        """Stop worker gracefully."""
        self.running = False

    def get_status(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "running": self.running,
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "consecutive_errors": self.consecutive_errors,
        }


def run_worker(config: Optional[WorkerConfig] = None) -> None:
    """
    Run the worker as a standalone service.

    Entry point for worker processes.
    """
    import argparse
    import signal
    import sys

    parser = argparse.ArgumentParser(description="SuperNEAT evaluation worker")
    parser.add_argument("--worker-id", default=None)
    parser.add_argument("--redis-url", default="redis://localhost:6379")
    parser.add_argument("--progress-weight", type=float, default=1.5)
    parser.add_argument("--goal-weight", type=float, default=1.0)

    args = parser.parse_args()

    if config is None:
        config = WorkerConfig(
            worker_id=args.worker_id or str(uuid.uuid4())[:8],
            queue_backend="redis",
            redis_url=args.redis_url,
            fitness_weights=FitnessWeights(
                progress_weight=args.progress_weight,
                goal_weight=args.goal_weight,
            ),
        )

    worker = EvaluationWorker(config)

    def signal_handler(sig, frame):
        logger.info("Received shutdown signal")
        worker.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    worker.run()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_worker()

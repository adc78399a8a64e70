"""
superneat/services/

Evaluation backends and the controller service.

Architecture:
- Pool: bounded local thread pool, one simulation per worker thread
- Queue: in-memory or Redis task distribution
- Worker: pulls genome tasks, runs its own simulation, pushes results
- Controller: owns the population and drives the generational loop

Evaluation is embarrassingly parallel; the controller waits for every
result before speciating.
"""

from .controller import ControllerConfig, EvolutionController
from .pool import EvaluationPool, PoolConfig
from .queue import EvaluationResultMessage, EvaluationTask, TaskQueue, TaskStatus
from .worker import EvaluationWorker, WorkerConfig

__all__ = [
    "ControllerConfig",
    "EvolutionController",
    "EvaluationPool",
    "PoolConfig",
    "EvaluationResultMessage",
    "EvaluationTask",
    "TaskQueue",
    "TaskStatus",
    "EvaluationWorker",
    "WorkerConfig",
]

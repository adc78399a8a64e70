"""
superneat/services/queue.py

Task queue for distributed genome evaluation.

One task per genome per generation. A task carries everything a worker
needs to reproduce the run on its own: the serialized genome, the
generation seed, the generation number, and the genome's index in the
population.

Backends:
- InMemoryTaskQueue: thread-safe, single process (tests, local runs)
- RedisTaskQueue: Redis lists shared between controller and workers
"""

from __future__ import annotations
import json
import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class TaskStatus(Enum):
    """Status of an evaluation task."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass
class EvaluationTask:
    """A single genome evaluation for a worker."""
    task_id: str
    genome_data: Dict[str, Any]
    seed: int
    generation: int = 0
    genome_index: int = 0
    created_at: float = field(default_factory=time.time)
    timeout_seconds: float = 300.0

    def to_json(self) -> str:
        return json.dumps({
            "task_id": self.task_id,
            "genome_data": self.genome_data,
            # Seeds are full 64-bit values; keep them exact through JSON
            "seed": str(self.seed),
            "generation": self.generation,
            "genome_index": self.genome_index,
            "created_at": self.created_at,
            "timeout_seconds": self.timeout_seconds,
        })

    @classmethod
    def from_json(cls, data: str) -> "EvaluationTask":
        d = json.loads(data)
        return cls(
            task_id=d["task_id"],
            genome_data=d["genome_data"],
            seed=int(d["seed"]),
            generation=d.get("generation", 0),
            genome_index=d.get("genome_index", 0),
            created_at=d.get("created_at", time.time()),
            timeout_seconds=d.get("timeout_seconds", 300.0),
        )


@dataclass
class EvaluationResultMessage:
    """
    Outcome of one task, sent from worker back to controller.

    fitness is None when the run did not finish and the genome stays
    unevaluated.
    """
    task_id: str
    genome_id: int
    genome_index: int
    status: str
    fitness: Optional[int] = None
    outcome: Optional[Dict[str, Any]] = None
    worker_id: str = ""
    completed_at: float = field(default_factory=time.time)
    error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps({
            "task_id": self.task_id,
            "genome_id": self.genome_id,
            "genome_index": self.genome_index,
            "status": self.status,
            "fitness": self.fitness,
            "outcome": self.outcome,
            "worker_id": self.worker_id,
            "completed_at": self.completed_at,
            "error": self.error,
        })

    @classmethod
    def from_json(cls, data: str) -> "EvaluationResultMessage":
        d = json.loads(data)
        return cls(
            task_id=d["task_id"],
            genome_id=d["genome_id"],
            genome_index=d["genome_index"],
            status=d["status"],
            fitness=d.get("fitness"),
            outcome=d.get("outcome"),
            worker_id=d.get("worker_id", ""),
            completed_at=d.get("completed_at", time.time()),
            error=d.get("error"),
        )


class TaskQueue(ABC):
    """Interface shared by queue backends."""

    @abstractmethod
    def push_task(self, task: EvaluationTask) -> bool:
        """Push a task to the queue. Returns True if successful."""
        pass

    @abstractmethod
    def pop_task(self, timeout: float = 1.0) -> Optional[EvaluationTask]:
        """Pop a task from the queue. Returns None if queue is empty."""
        pass

    @abstractmethod
    def push_result(self, result: EvaluationResultMessage) -> bool:
        """Push a result to the result queue. Returns True if successful."""
        pass

    @abstractmethod
    def pop_result(self, timeout: float = 1.0) -> Optional[EvaluationResultMessage]:
        """Pop a result from the result queue. Returns None if empty."""
        pass

    @abstractmethod
    def get_queue_length(self) -> int:
        pass

    @abstractmethod
    def get_result_count(self) -> int:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def get_task_status(self, task_id: str) -> TaskStatus:
        pass


class RedisTaskQueue(TaskQueue):
    """
    Redis-backed queue.

    FIFO via Redis lists with blocking pops; task status kept in
    expiring keys.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        task_queue_key: str = "superneat:tasks",
        result_queue_key: str = "superneat:results",
        status_key_prefix: str = "superneat:status:",
    ):
        self.redis_url = redis_url
        self.task_queue_key = task_queue_key
        self.result_queue_key = result_queue_key
        self.status_key_prefix = status_key_prefix
        self._redis = None

    def _get_redis(self):
        """Lazy connection to Redis."""
        if self._redis is None:
            import redis

            self._redis = redis.from_url(self.redis_url)
            self._redis.ping()
            logger.info(f"Connected to Redis at {self.redis_url}")
        return self._redis

    def _set_status(self, task_id: str, status: TaskStatus, ttl: int) -> None:
        self._get_redis().set(f"{self.status_key_prefix}{task_id}", status.value, ex=ttl)

    def push_task(self, task: EvaluationTask) -> bool:
        try:
            r = self._get_redis()
            r.rpush(self.task_queue_key, task.to_json())
            self._set_status(task.task_id, TaskStatus.PENDING, int(task.timeout_seconds * 2))
            return True
        except Exception as e:
            logger.error(f"Failed to push task {task.task_id}: {e}")
            return False

    def pop_task(self, timeout: float = 1.0) -> Optional[EvaluationTask]:
        try:
            r = self._get_redis()
            result = r.blpop(self.task_queue_key, timeout=timeout)
            if result is None:
                return None
            _, data = result
            task = EvaluationTask.from_json(data.decode("utf-8"))
            self._set_status(task.task_id, TaskStatus.IN_PROGRESS, int(task.timeout_seconds * 2))
            return task
        except Exception as e:
            logger.error(f"Failed to pop task: {e}")
            return None

    def push_result(self, result: EvaluationResultMessage) -> bool:
        try:
            r = self._get_redis()
            r.rpush(self.result_queue_key, result.to_json())
            status = TaskStatus.COMPLETED if result.error is None else TaskStatus.FAILED
            self._set_status(result.task_id, status, 3600)
            return True
        except Exception as e:
            logger.error(f"Failed to push result {result.task_id}: {e}")
            return False

    def pop_result(self, timeout: float = 1.0) -> Optional[EvaluationResultMessage]:
        try:
            r = self._get_redis()
            result = r.blpop(self.result_queue_key, timeout=timeout)
            if result is None:
                return None
            _, data = result
            return EvaluationResultMessage.from_json(data.decode("utf-8"))
        except Exception as e:
            logger.error(f"Failed to pop result: {e}")
            return None

    def get_queue_length(self) -> int:
        return self._get_redis().llen(self.task_queue_key)

    def get_result_count(self) -> int:
        return self._get_redis().llen(self.result_queue_key)

    def clear(self) -> None:
        r = self._get_redis()
        r.delete(self.task_queue_key)
        r.delete(self.result_queue_key)
        cursor = 0
        while True:
            cursor, keys = r.scan(cursor, match=f"{self.status_key_prefix}*")
            if keys:
                r.delete(*keys)
            if cursor == 0:
                break
        logger.info("Cleared all queues")

    def get_task_status(self, task_id: str) -> TaskStatus:
        status = self._get_redis().get(f"{self.status_key_prefix}{task_id}")
        if status is None:
            return TaskStatus.PENDING
        return TaskStatus(status.decode("utf-8"))


class InMemoryTaskQueue(TaskQueue):
    """Thread-safe single-process queue."""

    def __init__(self):
        self._task_queue: queue.Queue = queue.Queue()
        self._result_queue: queue.Queue = queue.Queue()
        self._status: Dict[str, TaskStatus] = {}
        self._lock = threading.Lock()

    def push_task(self, task: EvaluationTask) -> bool:
        self._task_queue.put(task)
        with self._lock:
            self._status[task.task_id] = TaskStatus.PENDING
        return True

    def pop_task(self, timeout: float = 1.0) -> Optional[EvaluationTask]:
        try:
            task = self._task_queue.get(timeout=timeout)
        except queue.Empty:
            return None
        with self._lock:
            self._status[task.task_id] = TaskStatus.IN_PROGRESS
        return task

    def push_result(self, result: EvaluationResultMessage) -> bool:
        self._result_queue.put(result)
        with self._lock:
            status = TaskStatus.COMPLETED if result.error is None else TaskStatus.FAILED
            self._status[result.task_id] = status
        return True

    def pop_result(self, timeout: float = 1.0) -> Optional[EvaluationResultMessage]:
        try:
            return self._result_queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def get_queue_length(self) -> int:
        return self._task_queue.qsize()

    def get_result_count(self) -> int:
        return self._result_queue.qsize()

    def clear(self) -> None:
        for q in (self._task_queue, self._result_queue):
            while True:
                try:
                    q.get_nowait()
                except queue.Empty:
                    break
        with self._lock:
            self._status.clear()

    def get_task_status(self, task_id: str) -> TaskStatus:
        with self._lock:
            return self._status.get(task_id, TaskStatus.PENDING)


def create_task_queue(
    backend: str = "memory",
    redis_url: str = "redis://localhost:6379",
    **kwargs,
) -> TaskQueue:
    """
    Factory function to create a task queue.

    Args:
        backend: "memory" or "redis"
        redis_url: Redis connection URL (for redis backend)
        **kwargs: Additional backend-specific options
    """
    if backend == "memory":
        return InMemoryTaskQueue()
    elif backend == "redis":
        return RedisTaskQueue(redis_url=redis_url, **kwargs)
    else:
        raise ValueError(f"Unknown backend: {backend}")

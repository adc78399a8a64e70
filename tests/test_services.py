"""
Tests for superneat/services/

Tests queue, pool, worker and controller components.
"""

import json
import threading
import time

import pytest
import numpy as np

from superneat.environments.base import Simulation
from superneat.environments.runner import NUM_ACTIONS, NUM_SENSORS, RunnerConfig, RunnerSimulation
from superneat.evolution.config import EvolutionConfig
from superneat.evolution.errors import ConsistencyError
from superneat.evolution.fitness import FitnessEvaluator, SimulationOutcome
from superneat.evolution.genome import Genome, GenomeRegistry
from superneat.evolution.reproduction import initial_population, minimal_material
from superneat.evolution.seeding import derive_seed
from superneat.evolution.transcription import NetworkTranscriber
from superneat.services.controller import ControllerConfig, EvolutionController
from superneat.services.pool import EvaluationPool, PoolConfig
from superneat.services.queue import (
    EvaluationResultMessage,
    EvaluationTask,
    InMemoryTaskQueue,
    RedisTaskQueue,
    TaskStatus,
    create_task_queue,
)
from superneat.services.worker import STATUS_INVALID_TASK, EvaluationWorker, WorkerConfig


SMALL_COURSE = RunnerConfig(length=40, max_steps=80)


def small_runner():
    return RunnerSimulation(SMALL_COURSE)


def make_population(size=6, seed=0):
    registry = GenomeRegistry()
    return initial_population(
        registry, np.random.default_rng(seed), size, NUM_SENSORS, NUM_ACTIONS
    )


class SleepySimulation(Simulation):
    """Hangs on one genome index, otherwise scores by index."""

    def __init__(self, slow_index, delay):
        self.slow_index = slow_index
        self.delay = delay

    def run(self, controller, seed, genome_index, generation):
        if genome_index == self.slow_index:
            time.sleep(self.delay)
        return SimulationOutcome(progress=10.0 * (genome_index + 1), reached_goal=False, remaining=0.0)


class BlockingSimulation(Simulation):
    """Blocks the given genome indexes until released."""

    def __init__(self, blocked, release):
        self.blocked = set(blocked)
        self.release = release

    def run(self, controller, seed, genome_index, generation):
        if genome_index in self.blocked:
            self.release.wait(timeout=10.0)
        return SimulationOutcome(progress=10.0, reached_goal=False, remaining=0.0)


def small_controller(**overrides):
    evolution = EvolutionConfig(population_size=6, generations=2, seed=3, max_workers=2)
    values = dict(evolution=evolution, queue_backend="memory", result_timeout=20.0)
    values.update(overrides)
    return EvolutionController(ControllerConfig(**values))


# ==================== Queue Tests ====================

class TestEvaluationTask:
    """Tests for EvaluationTask."""

    def test_serialization(self):
        """Task serializes and deserializes correctly."""
        task = EvaluationTask(
            task_id="test-123",
            genome_data={"id": 4, "alleles": []},
            seed=derive_seed(1, 2),
            generation=5,
            genome_index=3,
        )

        restored = EvaluationTask.from_json(task.to_json())

        assert restored.task_id == task.task_id
        assert restored.genome_data == task.genome_data
        assert restored.generation == 5
        assert restored.genome_index == 3

    def test_full_width_seed_survives(self):
        """64-bit seeds round-trip exactly through JSON."""
        seed = (1 << 64) - 3
        task = EvaluationTask(task_id="t", genome_data={}, seed=seed)

        assert json.loads(task.to_json())["seed"] == str(seed)
        assert EvaluationTask.from_json(task.to_json()).seed == seed

    def test_default_timeout(self):
        """Task has default timeout."""
        task = EvaluationTask(task_id="test", genome_data={}, seed=1)
        assert task.timeout_seconds == 300.0


class TestEvaluationResultMessage:
    """Tests for EvaluationResultMessage."""

    def test_serialization(self):
        """Result serializes and deserializes correctly."""
        result = EvaluationResultMessage(
            task_id="test-123",
            genome_id=7,
            genome_index=2,
            status="ok",
            fitness=150,
            outcome=SimulationOutcome(100.0, False, 0.0).to_dict(),
            worker_id="worker-1",
        )

        restored = EvaluationResultMessage.from_json(result.to_json())

        assert restored.task_id == result.task_id
        assert restored.genome_id == 7
        assert restored.fitness == 150
        assert restored.outcome == result.outcome
        assert restored.worker_id == "worker-1"

    def test_unevaluated_result(self):
        """A missing fitness stays missing."""
        result = EvaluationResultMessage("t", 1, 0, "unfinished")
        assert EvaluationResultMessage.from_json(result.to_json()).fitness is None

    def test_error_field(self):
        """Error field is preserved."""
        result = EvaluationResultMessage(
            "test", 1, 0, "simulation_error", fitness=1, error="Simulation failed",
        )
        restored = EvaluationResultMessage.from_json(result.to_json())
        assert restored.error == "Simulation failed"


class TestInMemoryTaskQueue:
    """Tests for InMemoryTaskQueue."""

    def test_push_and_pop_task(self):
        """Tasks can be pushed and popped."""
        queue = InMemoryTaskQueue()
        task = EvaluationTask(task_id="test-1", genome_data={"id": 1}, seed=9)

        queue.push_task(task)
        assert queue.get_queue_length() == 1

        popped = queue.pop_task(timeout=0.1)
        assert popped is not None
        assert popped.task_id == task.task_id
        assert queue.get_queue_length() == 0

    def test_push_and_pop_result(self):
        """Results can be pushed and popped."""
        queue = InMemoryTaskQueue()
        result = EvaluationResultMessage("test-1", 1, 0, "ok", fitness=5)

        queue.push_result(result)
        assert queue.get_result_count() == 1

        popped = queue.pop_result(timeout=0.1)
        assert popped is not None
        assert popped.task_id == result.task_id

    def test_pop_empty_queue_returns_none(self):
        """Popping empty queue returns None."""
        queue = InMemoryTaskQueue()

        assert queue.pop_task(timeout=0.01) is None
        assert queue.pop_result(timeout=0.01) is None

    def test_fifo_ordering(self):
        """Tasks are processed in FIFO order."""
        queue = InMemoryTaskQueue()

        for i in range(3):
            queue.push_task(EvaluationTask(task_id=f"task-{i}", genome_data={}, seed=i))

        for i in range(3):
            assert queue.pop_task(timeout=0.1).task_id == f"task-{i}"

    def test_clear(self):
        """Clear empties all queues."""
        queue = InMemoryTaskQueue()

        queue.push_task(EvaluationTask("t1", {}, 1))
        queue.push_result(EvaluationResultMessage("r1", 1, 0, "ok", fitness=3))

        queue.clear()

        assert queue.get_queue_length() == 0
        assert queue.get_result_count() == 0

    def test_task_status_tracking(self):
        """Task status is tracked correctly."""
        queue = InMemoryTaskQueue()

        queue.push_task(EvaluationTask("test-1", {}, 1))
        assert queue.get_task_status("test-1") == TaskStatus.PENDING

        queue.pop_task(timeout=0.1)
        assert queue.get_task_status("test-1") == TaskStatus.IN_PROGRESS

        queue.push_result(EvaluationResultMessage("test-1", 1, 0, "ok", fitness=3))
        assert queue.get_task_status("test-1") == TaskStatus.COMPLETED

        queue.push_result(EvaluationResultMessage("test-2", 2, 1, "simulation_error", 1, error="x"))
        assert queue.get_task_status("test-2") == TaskStatus.FAILED


class TestCreateTaskQueue:
    """Tests for queue factory function."""

    def test_create_memory_queue(self):
        """Factory creates memory queue."""
        assert isinstance(create_task_queue(backend="memory"), InMemoryTaskQueue)

    def test_create_redis_queue_is_lazy(self):
        """Redis queue does not connect until first use."""
        queue = create_task_queue(backend="redis", redis_url="redis://example:6379")
        assert isinstance(queue, RedisTaskQueue)
        assert queue._redis is None

    def test_create_unknown_backend_raises(self):
        """Unknown backend raises ValueError."""
        with pytest.raises(ValueError):
            create_task_queue(backend="unknown")


# ==================== Pool Tests ====================

class TestEvaluationPool:
    """Tests for EvaluationPool."""

    def test_matches_sequential_evaluation(self):
        """Thread count and completion order don't change fitness."""
        sequential = make_population()
        pooled = make_population()
        evaluator = FitnessEvaluator(NetworkTranscriber(), small_runner)

        evaluator.evaluate(sequential, seed=11, generation=2)
        EvaluationPool(evaluator, PoolConfig(max_workers=3)).evaluate(pooled, seed=11, generation=2)

        assert [g.fitness for g in pooled] == [g.fitness for g in sequential]

    def test_records_in_population_order(self):
        population = make_population()
        evaluator = FitnessEvaluator(NetworkTranscriber(), small_runner)

        records = EvaluationPool(evaluator, PoolConfig(max_workers=4)).evaluate(population, 1, 0)

        assert [r.index for r in records] == list(range(6))
        assert [r.genome_id for r in records] == [g.id for g in population]

    def test_each_thread_has_its_own_simulation(self):
        created = []
        lock = threading.Lock()

        def factory():
            simulation = small_runner()
            with lock:
                created.append(simulation)
            return simulation

        evaluator = FitnessEvaluator(NetworkTranscriber(), factory)
        pool = EvaluationPool(evaluator, PoolConfig(max_workers=2))
        pool.evaluate(make_population(8), 1, 0)

        assert 1 <= len(created) <= 2
        assert len({id(s) for s in created}) == len(created)

    def test_run_timeout_gets_floor(self):
        """A hung run is abandoned and its genome gets fitness 1."""
        population = make_population(4)
        evaluator = FitnessEvaluator(
            NetworkTranscriber(), lambda: SleepySimulation(slow_index=1, delay=2.0)
        )
        pool = EvaluationPool(
            evaluator, PoolConfig(max_workers=4, run_timeout=0.2, poll_interval=0.02)
        )

        records = pool.evaluate(population, 1, 0)

        assert records[1].status == "timeout"
        assert population[1].fitness == 1
        assert [g.fitness for i, g in enumerate(population) if i != 1] == [15, 45, 60]
        assert pool.timeouts == 1

    def test_hung_run_does_not_hold_the_barrier(self):
        """Runs queued behind a hung run still finish once it times out."""
        release = threading.Event()
        evaluator = FitnessEvaluator(
            NetworkTranscriber(), lambda: BlockingSimulation(blocked={0}, release=release)
        )
        pool = EvaluationPool(
            evaluator, PoolConfig(max_workers=1, run_timeout=0.2, poll_interval=0.02)
        )
        population = make_population(3)

        try:
            start = time.monotonic()
            records = pool.evaluate(population, 1, 0)
            elapsed = time.monotonic() - start
        finally:
            release.set()

        assert [r.status for r in records] == ["timeout", "ok", "ok"]
        assert [g.fitness for g in population] == [1, 15, 15]
        assert elapsed < 5.0

    def test_every_hung_run_times_out(self):
        """More hung runs than workers still cannot stall the generation."""
        release = threading.Event()
        evaluator = FitnessEvaluator(
            NetworkTranscriber(), lambda: BlockingSimulation(blocked={0, 2}, release=release)
        )
        pool = EvaluationPool(
            evaluator, PoolConfig(max_workers=1, run_timeout=0.2, poll_interval=0.02)
        )
        population = make_population(4)

        try:
            start = time.monotonic()
            records = pool.evaluate(population, 1, 0)
            elapsed = time.monotonic() - start
        finally:
            release.set()

        assert [r.status for r in records] == ["timeout", "ok", "timeout", "ok"]
        assert pool.timeouts == 2
        assert elapsed < 5.0

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            PoolConfig(max_workers=0)


# ==================== Worker Tests ====================

class TestEvaluationWorker:
    """Tests for EvaluationWorker."""

    def _worker(self):
        return EvaluationWorker(WorkerConfig(worker_id="w1"), simulation_factory=small_runner)

    def _task(self, genome, index=0, task_id="task-1"):
        return EvaluationTask(
            task_id=task_id, genome_data=genome.to_dict(), seed=5, generation=1, genome_index=index,
        )

    def test_evaluate_task_returns_result(self):
        """Worker scores a serialized genome."""
        genome = make_population(1)[0]

        result = self._worker().evaluate_task(self._task(genome, index=3))

        assert result.task_id == "task-1"
        assert result.genome_id == genome.id
        assert result.genome_index == 3
        assert result.status == "ok"
        assert result.fitness >= 0
        assert result.worker_id == "w1"

    def test_matches_local_evaluation(self):
        """Remote scoring uses the same seed and index as a local run."""
        genome = make_population(1)[0]
        evaluator = FitnessEvaluator(NetworkTranscriber(), small_runner)

        local = evaluator.score_genome(genome, 5, 1, 3)
        remote = self._worker().evaluate_task(self._task(genome, index=3))

        assert remote.fitness == local.fitness

    def test_untranscribable_genome_gets_floor(self):
        genome = Genome(minimal_material(0, 2, np.random.default_rng(0)), 4)

        result = self._worker().evaluate_task(self._task(genome))

        assert result.status == "transcription_error"
        assert result.fitness == 1

    def test_invalid_genome_data(self):
        """Malformed genome data is reported, not scored."""
        task = EvaluationTask(
            task_id="bad",
            genome_data={"id": 3, "alleles": [{"type": "Mystery", "innovation_id": 0}]},
            seed=1,
        )

        result = self._worker().evaluate_task(task)

        assert result.status == STATUS_INVALID_TASK
        assert result.fitness is None
        assert result.error is not None

    def test_process_one_with_queue(self):
        """Worker processes a task from its queue."""
        worker = self._worker()
        worker.queue.push_task(self._task(make_population(1)[0]))

        assert worker.process_one()
        assert worker.tasks_completed == 1

        result = worker.queue.pop_result(timeout=0.1)
        assert result is not None
        assert result.task_id == "task-1"

    def test_process_one_empty_queue(self):
        worker = self._worker()
        assert not worker.process_one()

    def test_get_status(self):
        """Worker reports its status."""
        status = self._worker().get_status()

        assert status["worker_id"] == "w1"
        assert status["running"] is False
        assert status["tasks_completed"] == 0


# ==================== Controller Tests ====================

class TestEvolutionController:
    """Tests for EvolutionController."""

    def test_unknown_backend_raises(self):
        with pytest.raises(ValueError):
            small_controller(evaluation="carrier-pigeon")

    def test_pool_step(self):
        controller = small_controller()

        stats = controller.step()

        assert controller.generation == 1
        assert stats["population"] == 6
        assert stats["max_fitness"] >= 1
        assert len(controller.population) == 6

    def test_generate_tasks(self):
        controller = small_controller(evaluation="queue")
        population = controller.population

        created = controller.generate_tasks(population, seed=77, generation=0)

        assert created == 6
        assert controller.queue.get_queue_length() == 6
        tasks = [controller.queue.pop_task(timeout=0.1) for _ in range(6)]
        assert [t.genome_index for t in tasks] == list(range(6))
        assert all(t.seed == 77 for t in tasks)

    def test_queue_step_with_local_workers(self):
        controller = small_controller(evaluation="queue", local_workers=2)
        controller.start_local_workers()
        try:
            stats = controller.step()
        finally:
            controller.stop_local_workers()

        assert stats["population"] == 6
        assert stats["total_evaluations"] == 6
        assert controller.generation == 1

    def test_missing_results_get_floor(self):
        """Genomes whose results never arrive get fitness 1."""
        controller = small_controller(evaluation="queue", result_timeout=0.1)
        population = controller.population

        records = controller.evaluate(population, seed=1, generation=0)

        assert all(r.status == "timeout" for r in records)
        assert all(g.fitness == 1 for g in population)

    def test_stale_results_discarded(self):
        controller = small_controller(evaluation="queue")
        worker = EvaluationWorker(WorkerConfig(), simulation_factory=small_runner)
        worker.queue = controller.queue

        controller.queue.push_result(EvaluationResultMessage("old-task", 999, 0, "ok", fitness=50))
        controller.generate_tasks(controller.population, seed=1, generation=0)
        while controller.queue.get_queue_length() > 0:
            worker.process_one()

        results = controller.collect_results(timeout=5.0)

        assert sorted(results) == list(range(6))
        assert all(r.genome_id != 999 for r in results.values())

    def test_invalid_task_aborts(self):
        controller = small_controller(evaluation="queue")
        worker = EvaluationWorker(WorkerConfig(), simulation_factory=small_runner)
        worker.queue = controller.queue

        controller.generate_tasks(controller.population[:1], seed=1, generation=0)
        task = controller.queue.pop_task(timeout=0.1)
        # duplicate innovation ids
        task.genome_data["alleles"] = task.genome_data["alleles"] * 2
        controller.queue.push_result(worker.evaluate_task(task))

        with pytest.raises(ConsistencyError):
            controller.collect_results(timeout=5.0)

    def test_checkpoint_round_trip(self, tmp_path):
        """A resumed run continues exactly like the original."""
        path = str(tmp_path / "checkpoint.json")
        original = small_controller()
        original.step()
        original.save_checkpoint(path)

        resumed = small_controller()
        resumed.load_checkpoint(path)

        assert resumed.generation == 1
        assert [g.id for g in resumed.population] == [g.id for g in original.population]
        assert resumed.loop.registry.peek_next_id == original.loop.registry.peek_next_id

        a = original.step()
        b = resumed.step()
        for key in ("max_fitness", "mean_fitness", "min_fitness", "species_count", "champion_id"):
            assert a[key] == b[key]

    def test_save_without_path_is_noop(self, tmp_path):
        controller = small_controller()
        controller.save_checkpoint()
        assert list(tmp_path.iterdir()) == []

    def test_run_stops_at_target(self):
        controller = small_controller()
        controller.evolution_config.target_fitness = 1

        final = controller.run(generations=5)

        assert final["total_generations"] == 1
        assert final["best_fitness"] >= 1

    def test_run_zero_generations(self):
        controller = small_controller()

        final = controller.run(generations=0)

        assert final["total_generations"] == 0
        assert controller.history == []

    def test_get_status(self):
        status = small_controller().get_status()

        assert status["generation"] == 0
        assert status["evaluation"] == "pool"
        assert status["state"] == "init"

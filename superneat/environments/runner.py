"""
environments/runner.py

A one-dimensional side-scrolling course.

The runner starts at x=0 and must reach the end of the course before the
tick budget runs out. The course has gaps (falling in ends the run) and
walls (block horizontal movement while on the ground). Jumping clears both.

The layout depends only on the generation seed, so every genome of a
generation faces the same course. Per-run noise (speed jitter) depends on
(seed, generation, genome index).
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

import numpy as np

from superneat.evolution.errors import SimulationError
from superneat.evolution.fitness import SimulationOutcome
from superneat.evolution.transcription import Controller

from .base import Simulation, derive_seed

EMPTY = 0
GAP = 1
WALL = 2

NUM_SENSORS = 4   # gap ahead, wall ahead, airborne, bias
NUM_ACTIONS = 2   # run, jump


@dataclass
class RunnerConfig:
    """Course and physics settings."""
    length: int = 200
    max_steps: int = 600
    obstacle_density: float = 0.08
    safe_zone: int = 10             # Obstacle-free cells at start
    sensor_range: float = 8.0
    run_speed: float = 1.0
    speed_jitter: float = 0.05
    jump_duration: int = 3


class RunnerSimulation(Simulation):
    """Deterministic course runner."""

    def __init__(self, config: Optional[RunnerConfig] = None):
        self.config = config or RunnerConfig()
        self.course: np.ndarray = np.zeros(self.config.length, dtype=np.int8)
        self.position = 0.0
        self.airborne = 0
        self.steps = 0

    def build_course(self, seed: int) -> np.ndarray:
        cfg = self.config
        rng = np.random.default_rng(derive_seed(seed))
        course = np.zeros(cfg.length, dtype=np.int8)
        draws = rng.random(cfg.length)
        kinds = rng.integers(GAP, WALL + 1, size=cfg.length)
        mask = draws < cfg.obstacle_density
        mask[: cfg.safe_zone] = False
        mask[-1] = False
        course[mask] = kinds[mask]
        return course

    def _distance_ahead(self, kind: int) -> float:
        cfg = self.config
        start = int(self.position) + 1
        stop = min(cfg.length, start + int(cfg.sensor_range))
        ahead = np.nonzero(self.course[start:stop] == kind)[0]
        if len(ahead) == 0:
            return 1.0
        return float(ahead[0]) / cfg.sensor_range

    def sense(self) -> np.ndarray:
        return np.array([
            self._distance_ahead(GAP),
            self._distance_ahead(WALL),
            1.0 if self.airborne else 0.0,
            1.0,
        ])

    def run(
        self,
        controller: Controller,
        seed: int,
        genome_index: int,
        generation: int,
    ) -> SimulationOutcome:
        cfg = self.config
        if controller.num_inputs != NUM_SENSORS or controller.num_outputs != NUM_ACTIONS:
            raise SimulationError(
                f"controller shape {controller.num_inputs}x{controller.num_outputs}, "
                f"expected {NUM_SENSORS}x{NUM_ACTIONS}"
            )

        self.course = self.build_course(seed)
        noise = np.random.default_rng(derive_seed(seed, generation, genome_index))
        self.position = 0.0
        self.airborne = 0
        self.steps = 0
        reached_goal = False

        while self.steps < cfg.max_steps:
            self.steps += 1
            response = controller.activate(self.sense())
            if not np.all(np.isfinite(response)):
                raise SimulationError("controller produced non-finite response")
            running, jumping = response[0] > 0.0, response[1] > 0.0

            if jumping and not self.airborne:
                self.airborne = cfg.jump_duration

            if running:
                speed = cfg.run_speed * (1.0 + noise.normal(0.0, cfg.speed_jitter))
                target = self.position + max(speed, 0.0)
                if not self.airborne:
                    next_cell = min(int(target), cfg.length - 1)
                    if self.course[next_cell] == WALL:
                        target = self.position
                self.position = min(target, float(cfg.length))

            if self.airborne:
                self.airborne -= 1

            if self.position >= cfg.length - 1:
                self.position = float(cfg.length)
                reached_goal = True
                break

            if not self.airborne and self.course[int(self.position)] == GAP:
                break

        return SimulationOutcome(
            progress=self.position,
            reached_goal=reached_goal,
            remaining=float(cfg.max_steps - self.steps),
            steps_used=self.steps,
        )

"""
superneat/evolution/config.py

Run configuration.

Configs are plain dataclasses. They can be built in code, from a dict, from
SUPERNEAT_* environment variables, or from a YAML file.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .fitness import FitnessWeights
from .material import SpeciationParams
from .reproduction import ReproductionConfig

ENV_PREFIX = "SUPERNEAT_"


@dataclass
class EvolutionConfig:
    """Configuration for an evolution run."""
    # Population
    population_size: int = 50
    generations: int = 100
    target_fitness: Optional[int] = None   # Stop once a champion reaches this

    # Controller shape of the initial genomes
    num_inputs: int = 4
    num_outputs: int = 2
    initial_weight_scale: float = 1.0

    # Reproducibility
    seed: int = 42

    # Evaluation
    max_workers: int = 4
    run_timeout: Optional[float] = None    # Per-run watchdog, seconds

    # Checkpointing
    checkpoint_path: Optional[str] = None
    checkpoint_interval: int = 10

    speciation: SpeciationParams = field(default_factory=SpeciationParams)
    fitness_weights: FitnessWeights = field(default_factory=FitnessWeights)
    reproduction: ReproductionConfig = field(default_factory=ReproductionConfig)

    def __post_init__(self):
        if self.population_size < 1:
            raise ValueError("population_size must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be positive")
        if self.run_timeout is not None and self.run_timeout <= 0:
            raise ValueError("run_timeout must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "population_size": self.population_size,
            "generations": self.generations,
            "target_fitness": self.target_fitness,
            "num_inputs": self.num_inputs,
            "num_outputs": self.num_outputs,
            "initial_weight_scale": self.initial_weight_scale,
            "seed": self.seed,
            "max_workers": self.max_workers,
            "run_timeout": self.run_timeout,
            "checkpoint_path": self.checkpoint_path,
            "checkpoint_interval": self.checkpoint_interval,
            "speciation": self.speciation.to_dict(),
            "fitness_weights": self.fitness_weights.to_dict(),
            "reproduction": {
                "elite_min_species_size": self.reproduction.elite_min_species_size,
                "mutation_rate": self.reproduction.mutation_rate,
                "weight_sigma": self.reproduction.weight_sigma,
                "weight_limit": self.reproduction.weight_limit,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvolutionConfig":
        data = dict(data)
        speciation = SpeciationParams.from_dict(data.pop("speciation", None) or {})
        weights = FitnessWeights.from_dict(data.pop("fitness_weights", None) or {})
        reproduction = ReproductionConfig(**(data.pop("reproduction", None) or {}))

        known = {f for f in cls.__dataclass_fields__} - {
            "speciation", "fitness_weights", "reproduction",
        }
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")

        return cls(
            speciation=speciation,
            fitness_weights=weights,
            reproduction=reproduction,
            **data,
        )

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EvolutionConfig":
        """Create config from SUPERNEAT_* environment variables."""
        env = os.environ if environ is None else environ

        def get(name: str, default: Any, cast=str) -> Any:
            raw = env.get(f"{ENV_PREFIX}{name}")
            return default if raw is None or raw == "" else cast(raw)

        return cls(
            population_size=get("POPULATION_SIZE", 50, int),
            generations=get("GENERATIONS", 100, int),
            target_fitness=get("TARGET_FITNESS", None, int),
            seed=get("SEED", 42, int),
            max_workers=get("MAX_WORKERS", 4, int),
            run_timeout=get("RUN_TIMEOUT", None, float),
            checkpoint_path=get("CHECKPOINT_PATH", None),
            speciation=SpeciationParams(
                compatibility_threshold=get("COMPATIBILITY_THRESHOLD", 3.0, float),
            ),
            fitness_weights=FitnessWeights(
                progress_weight=get("PROGRESS_WEIGHT", 1.5, float),
                goal_weight=get("GOAL_WEIGHT", 1.0, float),
            ),
        )


def load_config(path: Union[str, Path]) -> EvolutionConfig:
    """Load an EvolutionConfig from a YAML file."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return EvolutionConfig.from_dict(data)

"""
superneat/environments/

Simulations that controllers are scored against.

The engine only relies on the Simulation contract in base.py.
RunnerSimulation is a small deterministic side-scrolling course used by the
command line entry points and the tests.
"""

from .base import Simulation, derive_seed
from .runner import RunnerConfig, RunnerSimulation

__all__ = ["Simulation", "derive_seed", "RunnerConfig", "RunnerSimulation"]

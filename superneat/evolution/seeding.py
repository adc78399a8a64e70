"""
superneat/evolution/seeding.py

Seed derivation for reproducible runs.

Every random stream in a run is derived from the run seed plus a small tuple
of integers (generation, genome index, ...), so any single simulation can be
replayed in isolation.
"""

from __future__ import annotations

import numpy as np

UINT64_MASK = (1 << 64) - 1


def derive_seed(*entropy: int) -> int:
    """Deterministic 64-bit seed from a tuple of integers."""
    seq = np.random.SeedSequence([int(e) & UINT64_MASK for e in entropy])
    return int(seq.generate_state(1, dtype=np.uint64)[0])

"""Deterministic random utilities."""

from __future__ import annotations

import hashlib
import random
from datetime import datetime
from typing import Optional


def unit_seed(
    engine_seed: int,
    domain: str,
    unit_id: str,
    eligible_at: Optional[datetime] = None,
) -> int:
    """Derive a stable 32-bit seed for one resolution of one unit."""

    marker = eligible_at.isoformat() if eligible_at is not None else ""
    digest = hashlib.sha256(
        f"{engine_seed}:{domain}:{unit_id}:{marker}".encode("utf-8")
    ).digest()
    return int.from_bytes(digest[:4], "big")


class DeterministicRNG:
    """Wraps :mod:`random` with deterministic replay support."""

    def __init__(self, seed: int) -> None:
        self._seed = seed & 0xFFFFFFFF
        # nosec B311 - deterministic pseudo-RNG acceptable for game mechanics
        self._random = random.Random(self._seed)

    @classmethod
    def for_unit(
        cls,
        engine_seed: int,
        domain: str,
        unit_id: str,
        eligible_at: Optional[datetime] = None,
    ) -> "DeterministicRNG":
        return cls(unit_seed(engine_seed, domain, unit_id, eligible_at))

    @property
    def seed(self) -> int:
        return self._seed

    def random(self) -> float:
        return self._random.random()

    def randint(self, a: int, b: int) -> int:
        return self._random.randint(a, b)

    def sample(self, population, k: int):
        return self._random.sample(population, k)


__all__ = ["DeterministicRNG", "unit_seed"]

"""Injectable random source for selection and parameter rolls."""

from __future__ import annotations

import random
import secrets
from typing import Sequence, TypeVar

T = TypeVar("T")


class DeterministicRNG:
    """Wraps :mod:`random` so fairness and diversity picks can be replayed."""

    def __init__(self, seed: int) -> None:
        self._seed = seed & 0xFFFFFFFF
        # nosec B311 - pseudo-RNG acceptable for event selection
        self._random = random.Random(self._seed)

    @classmethod
    def from_entropy(cls) -> "DeterministicRNG":
        return cls(secrets.randbits(32))

    @property
    def seed(self) -> int:
        return self._seed

    def choice(self, seq: Sequence[T]) -> T:
        return self._random.choice(seq)

    def randint(self, a: int, b: int) -> int:
        return self._random.randint(a, b)

    def randrange(self, start: int, stop: int | None = None, step: int = 1) -> int:
        return self._random.randrange(start, stop, step)

    def random(self) -> float:
        return self._random.random()

    def uniform(self, a: float, b: float) -> float:
        return self._random.uniform(a, b)

    def chance(self, probability: float) -> bool:
        """Return True with the given probability (clamped to [0, 1])."""

        probability = max(0.0, min(1.0, probability))
        return self._random.random() < probability

    def shuffle(self, seq) -> None:
        self._random.shuffle(seq)


__all__ = ["DeterministicRNG"]

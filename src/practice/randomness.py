"""Injectable random source for question selection."""

from __future__ import annotations

import random
from collections.abc import Sequence
from typing import Protocol


class RandomSource(Protocol):
    """The subset of random.Random the selector draws from."""

    def randrange(self, stop: int) -> int: ...

    def choice(self, seq: Sequence): ...


def make_random(seed: int | None = None) -> random.Random:
    """
    Create a dedicated generator.

    A seed gives a replayable sequence; None seeds from system entropy.
    """
    return random.Random(seed)


def weighted_index(weights: Sequence[int], rng: RandomSource) -> int:
    """
    Weighted bucket selection.

    Draws r in [0, sum(weights)) and returns the first index whose cumulative
    weight exceeds r. All-zero weights fall back to a uniform draw.
    """
    if not weights:
        raise ValueError("Cannot select from an empty weight list")
    total = sum(weights)
    if total <= 0:
        return rng.randrange(len(weights))

    r = rng.randrange(total)
    cumulative = 0
    for index, weight in enumerate(weights):
        cumulative += weight
        if r < cumulative:
            return index

    raise RuntimeError("Weighted selection failed")

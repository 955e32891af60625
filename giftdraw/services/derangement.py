from __future__ import annotations

import random
from typing import Sequence, TypeVar

T = TypeVar("T")

MAX_SHUFFLE_ATTEMPTS = 10

_system_random = random.SystemRandom()


def rotate(items: Sequence[T]) -> list[T]:
    """items[(i + 1) % n]: fixed-point free for any n >= 2 distinct items."""
    n = len(items)
    return [items[(i + 1) % n] for i in range(n)]


def has_fixed_point(items: Sequence[T], permuted: Sequence[T]) -> bool:
    return any(a == b for a, b in zip(items, permuted))


def derange(
    items: Sequence[T],
    rng: random.Random | None = None,
    attempts: int = MAX_SHUFFLE_ATTEMPTS,
) -> list[T]:
    """
    Returns a permutation of `items` where no position keeps its own item.

    Shuffles up to `attempts` times and keeps the first result without a fixed
    point; otherwise falls back to a one-step rotation. Pass a seeded
    random.Random for reproducible results.
    """
    if len(items) < 2:
        raise ValueError("A derangement needs at least two items.")

    rng = rng or _system_random
    candidate = list(items)
    for _ in range(attempts):
        rng.shuffle(candidate)
        if not has_fixed_point(items, candidate):
            return candidate
    return rotate(items)

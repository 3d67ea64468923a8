"""Introduction point allocation across replica descriptors.

The pool is shuffled first; every later step is a deterministic function of
the shuffled order. Two policies follow:

- *broadcast*: a pool that fits in one descriptor is given whole to every
  replica, maximizing availability per replica.
- *distinct*: otherwise (or on request) the shuffled pool is truncated to what
  all replicas can carry and dealt round-robin, so replicas never share a
  point.
"""

from __future__ import annotations

import random
from typing import Protocol, Sequence, TypeVar

T = TypeVar("T")


class ShuffleRNG(Protocol):
    def shuffle(self, x: list) -> None: ...


def allocate(
    pool: Sequence[T],
    replica_count: int,
    max_per_descriptor: int,
    *,
    distinct: bool = False,
    rng: ShuffleRNG | None = None,
) -> tuple[tuple[T, ...], ...]:
    """Assign introduction points to ``replica_count`` replicas.

    Args:
        pool: All collected introduction points. Not modified.
        replica_count: Number of replica slots R.
        max_per_descriptor: Capacity M of a single descriptor.
        distinct: Force disjoint slots even when the pool fits in one descriptor.
        rng: Source of the permutation. Defaults to the OS CSPRNG.

    Returns:
        Exactly R slots. In broadcast mode every slot is the same tuple.
    """

    if replica_count < 1:
        raise ValueError("replica_count must be positive")
    if max_per_descriptor < 1:
        raise ValueError("max_per_descriptor must be positive")

    rng = rng if rng is not None else random.SystemRandom()
    shuffled = list(pool)
    rng.shuffle(shuffled)

    if len(shuffled) <= max_per_descriptor and not distinct:
        everything = tuple(shuffled)
        return (everything,) * replica_count

    # Truncating after the shuffle drops a uniformly random subset.
    shuffled = shuffled[: replica_count * max_per_descriptor]
    return tuple(tuple(shuffled[r::replica_count]) for r in range(replica_count))


def distribution(assignment: Sequence[Sequence[object]]) -> list[int]:
    """Number of points per slot, for logging."""

    return [len(slot) for slot in assignment]

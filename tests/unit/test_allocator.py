"""Unit tests for hsbalance.allocator module."""

import random
from collections import Counter

import pytest

from hsbalance.allocator import allocate, distribution


class TestAllocateShape:
    """Slot count and argument validation."""

    @pytest.mark.parametrize("pool_size", [0, 1, 5, 10, 11, 25, 100])
    @pytest.mark.parametrize("replicas", [1, 2, 6])
    @pytest.mark.parametrize("distinct", [False, True])
    def test_always_returns_exactly_r_slots(self, pool_size, replicas, distinct):
        result = allocate(list(range(pool_size)), replicas, 10, distinct=distinct, rng=random.Random(1))
        assert len(result) == replicas

    def test_empty_pool_gives_empty_slots(self):
        assert allocate([], 2, 10, rng=random.Random(0)) == ((), ())
        assert allocate([], 3, 10, distinct=True, rng=random.Random(0)) == ((), (), ())

    def test_zero_replicas_rejected(self):
        with pytest.raises(ValueError, match="replica_count"):
            allocate([1, 2], 0, 10)

    def test_zero_capacity_rejected(self):
        with pytest.raises(ValueError, match="max_per_descriptor"):
            allocate([1, 2], 2, 0)

    def test_pool_is_not_mutated(self):
        pool = list(range(30))
        allocate(pool, 2, 10, rng=random.Random(3))
        assert pool == list(range(30))

    def test_default_rng_is_usable(self):
        result = allocate(list(range(7)), 2, 10)
        assert sorted(result[0]) == list(range(7))


class TestBroadcastMode:
    """Small pools are given whole to every replica."""

    def test_every_slot_is_the_full_pool(self):
        pool = list(range(5))
        result = allocate(pool, 2, 10, rng=random.Random(42))
        assert Counter(result[0]) == Counter(pool)
        assert result[0] == result[1]

    def test_slots_share_one_sequence(self):
        result = allocate(list(range(4)), 3, 10, rng=random.Random(7))
        assert result[0] is result[1] is result[2]

    def test_boundary_is_inclusive(self):
        pool = list(range(10))
        result = allocate(pool, 2, 10, rng=random.Random(5))
        assert all(Counter(slot) == Counter(pool) for slot in result)

    def test_one_over_capacity_switches_to_distinct(self):
        result = allocate(list(range(11)), 2, 10, rng=random.Random(5))
        assert not set(result[0]) & set(result[1])
        assert sorted(distribution(result)) == [5, 6]


class TestDistinctMode:
    """Disjoint round-robin slots."""

    @pytest.mark.parametrize(
        "pool_size,replicas,cap",
        [(0, 2, 10), (1, 2, 10), (5, 2, 10), (25, 6, 10), (60, 6, 10), (100, 6, 10), (7, 3, 1)],
    )
    def test_slots_are_disjoint_and_balanced(self, pool_size, replicas, cap):
        pool = list(range(pool_size))
        result = allocate(pool, replicas, cap, distinct=True, rng=random.Random(pool_size))

        members = [p for slot in result for p in slot]
        assert len(members) == len(set(members))
        assert len(members) == min(pool_size, replicas * cap)
        sizes = distribution(result)
        assert max(sizes) - min(sizes) <= 1

    def test_forced_distinct_with_small_pool(self):
        result = allocate(list(range(5)), 2, 10, distinct=True, rng=random.Random(9))
        assert sorted(distribution(result)) == [2, 3]
        assert not set(result[0]) & set(result[1])

    def test_no_truncation_when_pool_fits(self):
        pool = list(range(25))
        result = allocate(pool, 6, 10, distinct=True, rng=random.Random(11))
        assert sorted(distribution(result)) == [4, 4, 4, 4, 4, 5]
        assert sorted(p for slot in result for p in slot) == pool

    def test_truncation_to_capacity(self):
        pool = list(range(100))
        result = allocate(pool, 6, 10, rng=random.Random(13))
        assert distribution(result) == [10] * 6
        kept = {p for slot in result for p in slot}
        assert len(kept) == 60
        assert len(set(pool) - kept) == 40

    def test_round_robin_order_follows_shuffle(self):
        pool = list(range(12))
        shuffled = list(pool)
        random.Random(21).shuffle(shuffled)

        result = allocate(pool, 3, 10, distinct=True, rng=random.Random(21))
        for i, point in enumerate(shuffled):
            assert point in result[i % 3]
        assert result[0] == tuple(shuffled[0::3])


class TestRandomness:
    """Permutation source handling."""

    def test_same_seed_is_deterministic(self):
        pool = list(range(40))
        first = allocate(pool, 2, 10, rng=random.Random(1234))
        second = allocate(pool, 2, 10, rng=random.Random(1234))
        assert first == second

    def test_different_shuffles_vary_membership(self):
        pool = list(range(40))
        results = {
            tuple(frozenset(slot) for slot in allocate(pool, 2, 10, rng=random.Random(seed)))
            for seed in range(10)
        }
        assert len(results) > 1

    def test_dropped_points_are_not_biased_to_fetch_order(self):
        pool = list(range(30))
        tail_kept = 0
        for seed in range(50):
            result = allocate(pool, 2, 10, rng=random.Random(seed))
            tail_kept += sum(1 for slot in result for p in slot if p >= 20)
        assert tail_kept > 0

"""
Tests for the reward accrual engine (accrual.py).

Covers:
  - No reward before the lock matures
  - Exact three-step truncation order
  - Marker movement on matured / immature positions
  - ClockError on time running backwards
  - accrue_all summing independent positions
"""

import pytest

from tierstake_core.accrual import (
    accrue,
    accrue_all,
    compute_reward_increment,
    elapsed_since,
)
from tierstake_core.errors import ClockError, InvalidInputError
from tierstake_core.state import Position
from tierstake_core.tiers import TIER_CONFIG, StakeTier

DAY = 86_400
CADENCE = 2_592_000
T0 = 1_700_000_000


def _position(principal=1_000_000, tier=StakeTier.DAYS_30, at=T0, reward=0):
    return Position(
        owner="alice",
        principal=principal,
        tier=TIER_CONFIG[tier],
        last_settled_at=at,
        accrued_reward=reward,
    )


class TestComputeRewardIncrement:
    def test_reference_example(self):
        # 1M @ 10% for 30 days, cadence 30 days:
        # 100_000 -> 8_219 -> 8_219
        inc = compute_reward_increment(1_000_000, 30 * DAY, 1000, T0, T0 + 30 * DAY, CADENCE)
        assert inc == 8_219

    def test_zero_before_maturity(self):
        for elapsed in (0, 1, DAY, 30 * DAY - 1):
            inc = compute_reward_increment(
                1_000_000, 30 * DAY, 1000, T0, T0 + elapsed, CADENCE,
            )
            assert inc == 0

    def test_scales_with_elapsed_after_maturity(self):
        inc = compute_reward_increment(1_000_000, 30 * DAY, 1000, T0, T0 + 60 * DAY, CADENCE)
        assert inc == 8_219 * 2

    def test_truncation_order_is_preserved(self):
        # With a one-second cadence the per-period reward truncates to
        # zero, even though the merged formula would pay ~8 219.
        inc = compute_reward_increment(1_000_000, 30 * DAY, 1000, T0, T0 + 30 * DAY, 1)
        assert inc == 0

    def test_tier_step_truncates(self):
        # 12_345 * 1000 / 10_000 = 1_234.5 -> 1_234
        # 1_234 * 2_592_000 / 31_536_000 = 101.4 -> 101
        inc = compute_reward_increment(12_345, 30 * DAY, 1000, T0, T0 + 30 * DAY, CADENCE)
        assert inc == 101

    def test_longest_tier(self):
        cfg = TIER_CONFIG[StakeTier.DAYS_720]
        inc = compute_reward_increment(
            1_000_000, cfg.lock_seconds, cfg.annual_rate_bps,
            T0, T0 + cfg.lock_seconds, CADENCE,
        )
        # 1_800_000 -> 147_945 -> 147_945 * 24
        assert inc == 3_550_680

    def test_large_principal_exact(self):
        principal = 10 ** 30
        inc = compute_reward_increment(principal, 30 * DAY, 1000, T0, T0 + 30 * DAY, CADENCE)
        tier_reward = principal * 1000 // 10_000
        assert inc == tier_reward * CADENCE // 31_536_000

    def test_clock_error(self):
        with pytest.raises(ClockError):
            compute_reward_increment(1_000, 30 * DAY, 1000, T0, T0 - 1, CADENCE)

    def test_zero_cadence_rejected(self):
        with pytest.raises(InvalidInputError):
            compute_reward_increment(1_000, 30 * DAY, 1000, T0, T0 + 30 * DAY, 0)


class TestElapsedSince:
    def test_zero(self):
        assert elapsed_since(T0, T0) == 0

    def test_positive(self):
        assert elapsed_since(T0, T0 + 5) == 5

    def test_negative_raises(self):
        with pytest.raises(ClockError):
            elapsed_since(T0, T0 - 5)


class TestAccrue:
    def test_immature_leaves_marker(self):
        pos = _position()
        updated, inc = accrue(pos, T0 + 29 * DAY, CADENCE)
        assert inc == 0
        assert updated.last_settled_at == T0
        assert updated.accrued_reward == 0

    def test_matured_advances_marker(self):
        pos = _position()
        updated, inc = accrue(pos, T0 + 30 * DAY, CADENCE)
        assert inc == 8_219
        assert updated.accrued_reward == 8_219
        assert updated.last_settled_at == T0 + 30 * DAY

    def test_accrued_reward_accumulates(self):
        pos = _position(reward=100)
        updated, inc = accrue(pos, T0 + 30 * DAY, CADENCE)
        assert inc == 8_219
        assert updated.accrued_reward == 8_319

    def test_input_not_mutated(self):
        pos = _position()
        accrue(pos, T0 + 30 * DAY, CADENCE)
        assert pos.last_settled_at == T0
        assert pos.accrued_reward == 0

    def test_principal_and_tier_untouched(self):
        pos = _position()
        updated, _ = accrue(pos, T0 + 40 * DAY, CADENCE)
        assert updated.principal == pos.principal
        assert updated.tier == pos.tier
        assert updated.owner == pos.owner

    def test_immediate_second_accrual_is_zero(self):
        pos = _position()
        first, _ = accrue(pos, T0 + 30 * DAY, CADENCE)
        second, inc = accrue(first, T0 + 30 * DAY, CADENCE)
        assert inc == 0
        assert second.accrued_reward == first.accrued_reward


class TestAccrueAll:
    def test_sums_independent_positions(self):
        positions = [
            _position(1_000_000, StakeTier.DAYS_30),
            _position(1_000_000, StakeTier.DAYS_60),
            _position(2_000_000, StakeTier.DAYS_30),
        ]
        settled, total = accrue_all(positions, T0 + 30 * DAY, CADENCE)
        # The 60-day position is still locked
        assert total == 8_219 + 16_438
        assert settled[1].last_settled_at == T0
        assert settled[0].last_settled_at == T0 + 30 * DAY

    def test_empty(self):
        settled, total = accrue_all([], T0, CADENCE)
        assert settled == []
        assert total == 0

    def test_preserves_order(self):
        positions = [_position(p) for p in (3, 1, 2)]
        settled, _ = accrue_all(positions, T0 + 31 * DAY, CADENCE)
        assert [p.principal for p in settled] == [3, 1, 2]

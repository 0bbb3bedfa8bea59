"""
Reward accrual for TierStake positions.

Reward Algorithm
────────────────
A position earns nothing until its tier's lock duration has elapsed
since its settlement marker.  No pro-rated credit is given before that.

Once matured, the reward is computed in three truncating integer steps:

    tier_reward   = principal × annual_rate_bps ÷ 10 000
    period_reward = tier_reward × payout_cadence ÷ ONE_YEAR_SECONDS
    increment     = period_reward × elapsed ÷ payout_cadence

Each ``÷`` rounds toward zero, in favour of the pool.  The steps must
not be merged: the truncation order changes the final integer.

Example: 1 000 000 units in the 30-day tier (1 000 bps), cadence
2 592 000 s, settled exactly 30 days later:

    100 000  →  8 219  →  8 219

Accrual moves the marker to ``now`` for matured positions and leaves it
alone otherwise.
"""

from __future__ import annotations

import dataclasses

from tierstake_core.errors import ClockError, InvalidInputError
from tierstake_core.state import Position
from tierstake_core.tiers import BPS_DENOMINATOR, ONE_YEAR_SECONDS


def elapsed_since(last_settled_at: int, now: int) -> int:
    """Seconds since the marker; block time never runs backwards."""
    elapsed = now - last_settled_at
    if elapsed < 0:
        raise ClockError(
            f"now ({now}) is earlier than settlement marker ({last_settled_at})"
        )
    return elapsed


def compute_reward_increment(
    principal: int,
    lock_seconds: int,
    annual_rate_bps: int,
    last_settled_at: int,
    now: int,
    payout_cadence_seconds: int,
) -> int:
    """Reward earned since ``last_settled_at`` (0 before the lock matures)."""
    if payout_cadence_seconds <= 0:
        raise InvalidInputError("payout cadence must be positive")

    elapsed = elapsed_since(last_settled_at, now)
    if elapsed < lock_seconds:
        return 0

    tier_reward = principal * annual_rate_bps // BPS_DENOMINATOR
    period_reward = tier_reward * payout_cadence_seconds // ONE_YEAR_SECONDS
    return period_reward * elapsed // payout_cadence_seconds


def accrue(
    position: Position, now: int, payout_cadence_seconds: int,
) -> tuple[Position, int]:
    """
    Settle one position at ``now``.

    Returns ``(updated_position, increment)``.  The input position is
    not modified; the caller decides whether to keep the result.
    """
    if elapsed_since(position.last_settled_at, now) < position.tier.lock_seconds:
        return dataclasses.replace(position), 0

    increment = compute_reward_increment(
        position.principal,
        position.tier.lock_seconds,
        position.tier.annual_rate_bps,
        position.last_settled_at,
        now,
        payout_cadence_seconds,
    )
    updated = dataclasses.replace(
        position,
        accrued_reward=position.accrued_reward + increment,
        last_settled_at=now,
    )
    return updated, increment


def accrue_all(
    positions: list[Position], now: int, payout_cadence_seconds: int,
) -> tuple[list[Position], int]:
    """Settle every position independently; return the new list and the summed increment."""
    settled: list[Position] = []
    total = 0
    for position in positions:
        updated, increment = accrue(position, now, payout_cadence_seconds)
        settled.append(updated)
        total += increment
    return settled, total

"""
Lock-duration tiers for TierStake.

Each tier pairs a lock duration with a nominal annual rate expressed in
basis points.  A position earns nothing until its tier's lock duration
has elapsed since the position was opened (or last settled).

    index  lock   annual rate
    ─────  ─────  ───────────
      0     30 d     10.00 %
      1     60 d     20.00 %
      2     90 d     35.00 %
      3    120 d     50.00 %
      4    180 d     65.00 %
      5    240 d     90.00 %
      6    360 d    148.00 %
      7    720 d    180.00 %

Any tier index outside 0–7 selects the 720-day tier.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


SECONDS_PER_DAY: int = 86_400
ONE_YEAR_SECONDS: int = 365 * SECONDS_PER_DAY      # 31 536 000
BPS_DENOMINATOR: int = 10_000


class StakeTier(IntEnum):
    DAYS_30  = 0
    DAYS_60  = 1
    DAYS_90  = 2
    DAYS_120 = 3
    DAYS_180 = 4
    DAYS_240 = 5
    DAYS_360 = 6
    DAYS_720 = 7


@dataclass(frozen=True)
class Tier:
    """A (lock duration, annual rate) pair."""
    lock_seconds: int
    annual_rate_bps: int

    @property
    def lock_days(self) -> int:
        return self.lock_seconds // SECONDS_PER_DAY

    def to_dict(self) -> dict:
        return {
            "lock_seconds": self.lock_seconds,
            "annual_rate_bps": self.annual_rate_bps,
        }


TIER_CONFIG: dict[StakeTier, Tier] = {
    StakeTier.DAYS_30:  Tier(30  * SECONDS_PER_DAY,  1_000),
    StakeTier.DAYS_60:  Tier(60  * SECONDS_PER_DAY,  2_000),
    StakeTier.DAYS_90:  Tier(90  * SECONDS_PER_DAY,  3_500),
    StakeTier.DAYS_120: Tier(120 * SECONDS_PER_DAY,  5_000),
    StakeTier.DAYS_180: Tier(180 * SECONDS_PER_DAY,  6_500),
    StakeTier.DAYS_240: Tier(240 * SECONDS_PER_DAY,  9_000),
    StakeTier.DAYS_360: Tier(360 * SECONDS_PER_DAY, 14_800),
    StakeTier.DAYS_720: Tier(720 * SECONDS_PER_DAY, 18_000),
}

TIER_NAMES: dict[StakeTier, str] = {
    tier: f"{cfg.lock_days} Days" for tier, cfg in TIER_CONFIG.items()
}

LONGEST_TIER: StakeTier = StakeTier.DAYS_720


def tier_for_index(index: int) -> Tier:
    """
    Resolve a caller-supplied tier index.

    Indices that name no tier fall through to the longest (720-day)
    tier instead of being rejected.
    """
    try:
        return TIER_CONFIG[StakeTier(index)]
    except ValueError:
        return TIER_CONFIG[LONGEST_TIER]


def tier_for_lock(lock_seconds: int) -> StakeTier:
    """Reverse lookup from a lock duration; unknown durations map to the longest tier."""
    for tier, cfg in TIER_CONFIG.items():
        if cfg.lock_seconds == lock_seconds:
            return tier
    return LONGEST_TIER


def get_tier_info() -> list[dict]:
    return [
        {
            "tier": int(tier),
            "name": TIER_NAMES[tier],
            "lock_days": cfg.lock_days,
            "lock_seconds": cfg.lock_seconds,
            "annual_rate_bps": cfg.annual_rate_bps,
            "annual_rate_pct": f"{cfg.annual_rate_bps / 100:.2f}%",
        }
        for tier, cfg in TIER_CONFIG.items()
    ]

"""
Ledger state for TierStake: positions, the staker ledger and the pool
configuration singleton.

State is an explicit object (``LedgerState``) handed to every operation.
Operations work on a ``copy()``: a private config plus a copy-on-write
layer over the stakers, so a request costs time in the positions it
touches, not in the size of the ledger.  The copy is folded into the
live state (``flatten()``) only when the whole operation succeeds.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Iterator, Optional

from tierstake_core.tiers import TIER_NAMES, Tier, tier_for_lock


# ── Position ────────────────────────────────────────────────────────────

@dataclass
class Position:
    """
    One deposit by one owner, with its own accrual clock.

    ``last_settled_at`` is the settlement marker: the timestamp from which
    the next accrual period and the unlock check are measured.
    """
    owner: str
    principal: int
    tier: Tier
    last_settled_at: int
    accrued_reward: int = 0

    def unlocks_at(self) -> int:
        return self.last_settled_at + self.tier.lock_seconds

    def is_unlocked(self, now: int) -> bool:
        return now - self.last_settled_at >= self.tier.lock_seconds

    def to_dict(self, now: Optional[int] = None) -> dict:
        d = {
            "owner": self.owner,
            "principal": self.principal,
            "accrued_reward": self.accrued_reward,
            "last_settled_at": self.last_settled_at,
            "lock_seconds": self.tier.lock_seconds,
            "annual_rate_bps": self.tier.annual_rate_bps,
            "tier_name": TIER_NAMES[tier_for_lock(self.tier.lock_seconds)],
            "unlocks_at": self.unlocks_at(),
        }
        if now is not None:
            d["can_unlock"] = self.is_unlocked(now)
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Position:
        return cls(
            owner=d["owner"],
            principal=int(d["principal"]),
            tier=Tier(int(d["lock_seconds"]), int(d["annual_rate_bps"])),
            last_settled_at=int(d["last_settled_at"]),
            accrued_reward=int(d.get("accrued_reward", 0)),
        )


# ── Pool configuration ──────────────────────────────────────────────────

@dataclass
class PoolConfig:
    """Administrative parameters and pooled totals (one per ledger)."""
    admin: str
    accepted_asset: str
    payout_cadence_seconds: int
    total_pooled_stake: int = 0
    total_reward_reserve: int = 0
    enabled: bool = True

    def to_dict(self) -> dict:
        return {
            "admin": self.admin,
            "accepted_asset": self.accepted_asset,
            "payout_cadence_seconds": self.payout_cadence_seconds,
            "total_pooled_stake": self.total_pooled_stake,
            "total_reward_reserve": self.total_reward_reserve,
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, d: dict) -> PoolConfig:
        return cls(
            admin=d["admin"],
            accepted_asset=d["accepted_asset"],
            payout_cadence_seconds=int(d["payout_cadence_seconds"]),
            total_pooled_stake=int(d.get("total_pooled_stake", 0)),
            total_reward_reserve=int(d.get("total_reward_reserve", 0)),
            enabled=bool(d.get("enabled", True)),
        )


# ── Staker ledger ───────────────────────────────────────────────────────

class StakerLedger:
    """
    Owner → ordered list of open positions.

    Positions are addressed by their index within the owner's list.
    Removing a position shifts every later position down by one, so an
    index is only meaningful until the owner's next unstake.  Owners
    without positions have no entry at all.

    ``fork()`` returns a copy-on-write layer over this ledger.  The layer
    records only the owners written through it and hands out private
    copies of base positions, so the base is never modified.
    ``flatten()`` folds a layer's writes back into its base.
    """

    def __init__(self, base: Optional[StakerLedger] = None) -> None:
        self._positions: dict[str, list[Position]] = {}
        # In a layer, an empty list marks an owner removed from the base
        self._base = base

    def _lookup(self, owner: str) -> list[Position]:
        if owner in self._positions:
            return self._positions[owner]
        if self._base is not None:
            return self._base._lookup(owner)
        return []

    def get(self, owner: str) -> list[Position]:
        """The owner's positions (a new list; empty when the owner is unknown)."""
        if self._base is not None and owner not in self._positions:
            return [replace(p) for p in self._base._lookup(owner)]
        return list(self._positions.get(owner, []))

    def set(self, owner: str, positions: list[Position]) -> None:
        if positions:
            self._positions[owner] = list(positions)
        elif self._base is not None:
            self._positions[owner] = []
        else:
            self._positions.pop(owner, None)

    def append(self, position: Position) -> int:
        """Add a new position for its owner and return its index."""
        positions = self.get(position.owner)
        positions.append(position)
        self.set(position.owner, positions)
        return len(positions) - 1

    def owners(self) -> list[str]:
        if self._base is None:
            return sorted(self._positions)
        candidates = set(self._base.owners()) | set(self._positions)
        return sorted(o for o in candidates if self._lookup(o))

    def page(
        self,
        start_after: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[tuple[str, list[Position]]]:
        """
        Owners' positions in ascending owner order.

        ``start_after`` is an exclusive cursor; ``limit`` caps the number
        of owners returned (``None`` = no cap).
        """
        owners = [
            o for o in self.owners()
            if start_after is None or o > start_after
        ]
        if limit is not None:
            owners = owners[:max(0, limit)]
        return [(o, self.get(o)) for o in owners]

    def principal_of(self, owner: str) -> int:
        return sum(p.principal for p in self._lookup(owner))

    def total_principal(self) -> int:
        """Open principal across every owner (a full scan)."""
        return sum(self.principal_of(o) for o in self.owners())

    def items(self) -> Iterator[tuple[str, list[Position]]]:
        for owner in self.owners():
            yield owner, self._lookup(owner)

    def changed_owners(self) -> set[str]:
        """Owners written through this layer (empty for a base ledger)."""
        if self._base is None:
            return set()
        return set(self._positions)

    def fork(self) -> StakerLedger:
        return StakerLedger(base=self)

    def flatten(self) -> StakerLedger:
        """Apply this layer's writes to its base and return the base."""
        if self._base is None:
            return self
        base = self._base.flatten()
        for owner, positions in self._positions.items():
            base.set(owner, positions)
        return base

    def __contains__(self, owner: object) -> bool:
        return isinstance(owner, str) and bool(self._lookup(owner))

    def __len__(self) -> int:
        return len(self.owners())


@dataclass
class LedgerState:
    """Everything a ledger operation reads or writes."""
    config: PoolConfig
    stakers: StakerLedger = field(default_factory=StakerLedger)

    def copy(self) -> LedgerState:
        """Working copy: its own config, stakers forked copy-on-write."""
        return LedgerState(
            config=copy.copy(self.config),
            stakers=self.stakers.fork(),
        )

    def flatten(self) -> LedgerState:
        """Fold a working copy's staker writes into the ledger it was forked from."""
        return LedgerState(config=self.config, stakers=self.stakers.flatten())

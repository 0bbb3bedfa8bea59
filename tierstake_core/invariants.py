"""
Post-transition invariant checks for TierStake.

Run after every ledger operation, against the working copy of the
state, before that copy is committed:

  - Pooled stake moves in lockstep with open principal (the only
    exception is the administrator's direct stake withdrawal, which
    lowers the pooled total and leaves positions alone)
  - Pooled stake and reward reserve are non-negative
  - Every open position has positive principal
  - No accrued reward is negative
  - No owner is recorded with an empty position list
  - An operation writes no positions outside the owners it was
    scoped to

Checks are scoped: ``capture(state, owners=[...])`` and
``verify(state, owners=[...])`` look only at the listed owners, so a
request is verified in time proportional to the positions it can
touch.  Without ``owners`` every position is scanned.

If any invariant fails, the operation is rejected and nothing is
committed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass
class StateSnapshot:
    """Totals captured before an operation."""
    total_pooled_stake: int = 0
    total_reward_reserve: int = 0
    total_principal: int = 0


class InvariantChecker:
    """
    Captures a pre-operation snapshot of the ledger state and validates
    invariants after the operation is applied.
    """

    def __init__(self):
        self._snapshot: StateSnapshot | None = None
        self._owners: Optional[list[str]] = None

    def capture(self, state, owners: Optional[Iterable[str]] = None) -> None:
        """Snapshot totals; principal is summed over ``owners`` (or everyone)."""
        self._owners = None if owners is None else list(owners)
        self._snapshot = StateSnapshot(
            total_pooled_stake=state.config.total_pooled_stake,
            total_reward_reserve=state.config.total_reward_reserve,
            total_principal=self._principal(state),
        )

    def verify(self, state, stake_withdrawn: int = 0) -> tuple[bool, str]:
        """
        Verify all invariants against ``state``.

        ``stake_withdrawn`` is the amount the administrator took directly
        out of pooled stake during this operation.
        Returns ``(passed, error_message)``.
        """
        errors: list[str] = []

        for check in (
            self._check_non_negative_totals,
            self._check_scope,
            self._check_positions,
        ):
            ok, msg = check(state)
            if not ok:
                errors.append(msg)

        if self._snapshot is not None:
            ok, msg = self._check_stake_tracks_principal(state, stake_withdrawn)
            if not ok:
                errors.append(msg)

        if errors:
            return False, "; ".join(errors)
        return True, ""

    def _principal(self, state) -> int:
        if self._owners is None:
            return state.stakers.total_principal()
        return sum(state.stakers.principal_of(o) for o in self._owners)

    def _check_non_negative_totals(self, state) -> tuple[bool, str]:
        cfg = state.config
        if cfg.total_pooled_stake < 0:
            return False, f"Pooled stake negative: {cfg.total_pooled_stake}"
        if cfg.total_reward_reserve < 0:
            return False, f"Reward reserve negative: {cfg.total_reward_reserve}"
        return True, ""

    def _check_scope(self, state) -> tuple[bool, str]:
        if self._owners is None:
            return True, ""
        stray = state.stakers.changed_owners() - set(self._owners)
        if stray:
            return False, f"Positions written outside scope: {sorted(stray)}"
        return True, ""

    def _check_positions(self, state) -> tuple[bool, str]:
        if self._owners is None:
            entries = state.stakers.items()
        else:
            entries = ((o, state.stakers.get(o)) for o in self._owners if o in state.stakers)
        for owner, positions in entries:
            if not positions:
                return False, f"Empty position list recorded for {owner}"
            for i, p in enumerate(positions):
                if p.owner != owner:
                    return False, f"Position {owner}[{i}] owned by {p.owner}"
                if p.principal <= 0:
                    return False, f"Position {owner}[{i}] has principal {p.principal}"
                if p.accrued_reward < 0:
                    return False, f"Position {owner}[{i}] has negative reward"
        return True, ""

    def _check_stake_tracks_principal(
        self, state, stake_withdrawn: int,
    ) -> tuple[bool, str]:
        snap = self._snapshot
        stake_delta = state.config.total_pooled_stake - snap.total_pooled_stake
        principal_delta = self._principal(state) - snap.total_principal
        if stake_delta != principal_delta - stake_withdrawn:
            return False, (
                f"Pooled stake moved by {stake_delta} but open principal "
                f"moved by {principal_delta} (admin withdrawal {stake_withdrawn})"
            )
        return True, ""

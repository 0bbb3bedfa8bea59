"""
Staking ledger operations for TierStake.

Every request goes through one ingress, ``StakingLedger.execute()``,
which dispatches on the request variant to a handler.  Handlers run
against a working copy of the state; the copy is folded into the live
state only after the handler returns, the invariant checks pass and the
store (if any) has written the change set.  The working copy shares
every untouched owner's positions with the live state, and the checks
cover only the caller's positions, so a request does not scale with the
number of stakers.  A request either commits fully,
with its transfer instructions, or raises a ``StakingError`` and commits
nothing.

Balance-moving requests (Deposit, Claim, Unstake) require the pool to be
enabled.  Reward funding and every administrative request bypass that
gate.  Administrative requests require the caller to be the configured
administrator.

Position indices
────────────────
Unstake addresses positions by index within the caller's list.  Fully
withdrawing a position removes it and shifts every later position down
by one, so indices cached across unstakes can point at a different
position.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from tierstake_core.accrual import accrue_all, elapsed_since
from tierstake_core.errors import (
    DisabledError,
    InsufficientReserveError,
    InsufficientStakeError,
    InvalidInputError,
    InvariantViolation,
    NoPositionError,
    NoRewardError,
    StakingError,
    StillLockedError,
    UnacceptableAssetError,
    UnauthorizedError,
)
from tierstake_core.invariants import InvariantChecker
from tierstake_core.messages import (
    Claim,
    Deposit,
    DepositReward,
    ExecutionResult,
    Request,
    TransferInstruction,
    Unstake,
    UpdateConfig,
    UpdateEnabled,
    UpdateOwner,
    WithdrawReward,
    WithdrawStake,
    request_type_name,
)
from tierstake_core.state import LedgerState, PoolConfig, Position
from tierstake_core.tiers import tier_for_index

logger = logging.getLogger("tierstake_ledger")


# ── guards ──────────────────────────────────────────────────────────────

def _require_enabled(state: LedgerState) -> None:
    if not state.config.enabled:
        raise DisabledError("staking pool is disabled")


def _require_admin(state: LedgerState, caller: str) -> None:
    if caller != state.config.admin:
        raise UnauthorizedError(f"{caller} is not the pool administrator")


def _require_positive(amount: int, what: str = "amount") -> None:
    if amount <= 0:
        raise InvalidInputError(f"{what} must be positive")


def _require_accepted_asset(state: LedgerState, asset: str) -> None:
    if asset != state.config.accepted_asset:
        raise UnacceptableAssetError(
            f"asset {asset} is not accepted (expected {state.config.accepted_asset})"
        )


def _payout(state: LedgerState, recipient: str, amount: int) -> TransferInstruction:
    return TransferInstruction(
        recipient=recipient, amount=amount, asset=state.config.accepted_asset,
    )


# ── handlers (mutate the working copy) ──────────────────────────────────

def _deposit(state: LedgerState, caller: str, req: Deposit, now: int) -> ExecutionResult:
    _require_enabled(state)
    _require_positive(req.amount)
    _require_accepted_asset(state, req.asset)

    tier = tier_for_index(req.tier)
    index = state.stakers.append(Position(
        owner=caller,
        principal=req.amount,
        tier=tier,
        last_settled_at=now,
    ))
    state.config.total_pooled_stake += req.amount

    return ExecutionResult(
        action="stake",
        attributes={
            "address": caller,
            "amount": req.amount,
            "index": index,
            "lock_seconds": tier.lock_seconds,
            "annual_rate_bps": tier.annual_rate_bps,
        },
    )


def _deposit_reward(
    state: LedgerState, caller: str, req: DepositReward, now: int,
) -> ExecutionResult:
    _require_positive(req.amount)
    _require_accepted_asset(state, req.asset)

    state.config.total_reward_reserve += req.amount
    return ExecutionResult(
        action="deposit_reward",
        attributes={"address": caller, "amount": req.amount},
    )


def _claim(state: LedgerState, caller: str, req: Claim, now: int) -> ExecutionResult:
    _require_enabled(state)
    positions = state.stakers.get(caller)
    if not positions:
        raise NoPositionError(f"{caller} has no staking positions")

    settled, reward = accrue_all(positions, now, state.config.payout_cadence_seconds)
    if reward == 0:
        raise NoRewardError(f"{caller} has no claimable reward")
    if state.config.total_reward_reserve < reward:
        raise InsufficientReserveError(
            f"reserve {state.config.total_reward_reserve} cannot cover {reward}"
        )

    state.config.total_reward_reserve -= reward
    # The marker stays wherever accrual left it.
    for p in settled:
        p.accrued_reward = 0
    state.stakers.set(caller, settled)

    return ExecutionResult(
        action="claim_reward",
        attributes={"address": caller, "reward_amount": reward},
        transfers=[_payout(state, caller, reward)],
    )


def _unstake(state: LedgerState, caller: str, req: Unstake, now: int) -> ExecutionResult:
    _require_enabled(state)
    positions = state.stakers.get(caller)
    if req.index < 0 or req.index >= len(positions):
        raise NoPositionError(f"{caller} has no position at index {req.index}")
    _require_positive(req.amount)

    position = positions[req.index]
    if position.principal < req.amount:
        raise InsufficientStakeError(
            f"position holds {position.principal}, requested {req.amount}"
        )
    if state.config.total_pooled_stake < req.amount:
        raise InsufficientStakeError(
            f"pool holds {state.config.total_pooled_stake}, requested {req.amount}"
        )
    if elapsed_since(position.last_settled_at, now) < position.tier.lock_seconds:
        raise StillLockedError(
            f"position {req.index} is locked until {position.unlocks_at()}"
        )

    state.config.total_pooled_stake -= req.amount
    position.principal -= req.amount
    removed = position.principal == 0
    if removed:
        del positions[req.index]
    else:
        position.last_settled_at = now
    state.stakers.set(caller, positions)

    return ExecutionResult(
        action="unstake",
        attributes={
            "address": caller,
            "unstake_amount": req.amount,
            "index": req.index,
            "removed": removed,
        },
        transfers=[_payout(state, caller, req.amount)],
    )


def _update_owner(
    state: LedgerState, caller: str, req: UpdateOwner, now: int,
) -> ExecutionResult:
    _require_admin(state, caller)
    state.config.admin = req.owner
    return ExecutionResult(action="update_owner", attributes={"owner": req.owner})


def _update_enabled(
    state: LedgerState, caller: str, req: UpdateEnabled, now: int,
) -> ExecutionResult:
    _require_admin(state, caller)
    state.config.enabled = req.enabled
    return ExecutionResult(action="update_enabled", attributes={"enabled": req.enabled})


def _update_config(
    state: LedgerState, caller: str, req: UpdateConfig, now: int,
) -> ExecutionResult:
    _require_admin(state, caller)
    _require_positive(req.payout_cadence_seconds, "payout cadence")
    state.config.accepted_asset = req.accepted_asset
    state.config.payout_cadence_seconds = req.payout_cadence_seconds
    return ExecutionResult(
        action="update_constants",
        attributes={
            "accepted_asset": req.accepted_asset,
            "payout_cadence_seconds": req.payout_cadence_seconds,
        },
    )


def _withdraw_reward(
    state: LedgerState, caller: str, req: WithdrawReward, now: int,
) -> ExecutionResult:
    _require_admin(state, caller)
    _require_positive(req.amount)
    if state.config.total_reward_reserve < req.amount:
        raise InsufficientReserveError(
            f"reserve {state.config.total_reward_reserve} cannot cover {req.amount}"
        )
    state.config.total_reward_reserve -= req.amount
    return ExecutionResult(
        action="withdraw_reward",
        attributes={"address": caller, "amount": req.amount},
        transfers=[_payout(state, caller, req.amount)],
    )


def _withdraw_stake(
    state: LedgerState, caller: str, req: WithdrawStake, now: int,
) -> ExecutionResult:
    _require_admin(state, caller)
    _require_positive(req.amount)
    if state.config.total_pooled_stake < req.amount:
        raise InsufficientStakeError(
            f"pool holds {state.config.total_pooled_stake}, requested {req.amount}"
        )
    state.config.total_pooled_stake -= req.amount
    return ExecutionResult(
        action="withdraw_stake",
        attributes={"address": caller, "amount": req.amount},
        transfers=[_payout(state, caller, req.amount)],
    )


_HANDLERS: dict[type, Callable[[LedgerState, str, Request, int], ExecutionResult]] = {
    Deposit: _deposit,
    DepositReward: _deposit_reward,
    Claim: _claim,
    Unstake: _unstake,
    UpdateOwner: _update_owner,
    UpdateEnabled: _update_enabled,
    UpdateConfig: _update_config,
    WithdrawReward: _withdraw_reward,
    WithdrawStake: _withdraw_stake,
}


def apply_request(
    state: LedgerState, caller: str, request: Request, now: int,
) -> tuple[LedgerState, ExecutionResult]:
    """
    Apply one request to a copy of ``state``.

    Returns ``(new_state, result)``; ``state`` itself is never modified.
    ``new_state`` is a copy-on-write layer over ``state``: read it
    directly, or ``flatten()`` it to fold the change into ``state``.
    Raises ``StakingError`` on rejection.
    """
    handler = _HANDLERS.get(type(request))
    if handler is None:
        raise InvalidInputError(f"unsupported request: {type(request).__name__}")

    work = state.copy()
    checker = InvariantChecker()
    # Handlers only ever write the caller's positions
    checker.capture(work, owners=[caller])

    result = handler(work, caller, request, now)

    stake_withdrawn = request.amount if isinstance(request, WithdrawStake) else 0
    ok, msg = checker.verify(work, stake_withdrawn=stake_withdrawn)
    if not ok:
        raise InvariantViolation(msg)
    return work, result


# ── StakingLedger ───────────────────────────────────────────────────────

class StakingLedger:
    """
    Owns the live ``LedgerState`` and, optionally, the ``LedgerStore``
    that persists it.

    Entry points:
      ``execute()``        - every state-changing request
      ``get_config()`` / ``get_positions()`` / ``list_stakers()``
                           - read-only queries
      ``pending_reward()`` - claimable reward preview, no mutation
    """

    def __init__(self, state: LedgerState, store=None) -> None:
        self._state = state
        self.store = store

    @classmethod
    def initialize(
        cls,
        admin: str,
        accepted_asset: str,
        payout_cadence_seconds: int,
        *,
        enabled: bool = True,
        store=None,
    ) -> StakingLedger:
        """Create a fresh pool; ``admin`` becomes the administrator."""
        if payout_cadence_seconds <= 0:
            raise InvalidInputError("payout cadence must be positive")
        if not admin or not accepted_asset:
            raise InvalidInputError("admin and accepted asset are required")
        state = LedgerState(config=PoolConfig(
            admin=admin,
            accepted_asset=accepted_asset,
            payout_cadence_seconds=payout_cadence_seconds,
            enabled=enabled,
        ))
        if store is not None:
            store.snapshot_state(state)
        logger.info(
            f"Pool initialized: admin={admin} asset={accepted_asset} "
            f"cadence={payout_cadence_seconds}s"
        )
        return cls(state, store)

    @classmethod
    def from_store(cls, store) -> Optional[StakingLedger]:
        """Restore a ledger from ``store``; ``None`` if it holds no pool."""
        state = store.restore_state()
        if state is None:
            return None
        logger.info(
            f"Pool restored: {len(state.stakers)} stakers, "
            f"stake={state.config.total_pooled_stake} "
            f"reserve={state.config.total_reward_reserve}"
        )
        return cls(state, store)

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def config(self) -> PoolConfig:
        return self._state.config

    # ── ingress ─────────────────────────────────────────────────────

    def execute(
        self, caller: str, request: Request, now: Optional[int] = None,
    ) -> ExecutionResult:
        """Apply ``request`` on behalf of ``caller`` at block time ``now``."""
        if now is None:
            now = int(time.time())
        kind = request_type_name(request)
        try:
            new_state, result = apply_request(self._state, caller, request, now)
        except StakingError as exc:
            logger.warning(
                f"Rejected {kind} from {caller}: {exc.code} ({exc.message})",
                extra={"caller": caller, "request_type": kind, "code": exc.code},
            )
            raise

        if self.store is not None:
            self.store.commit(
                new_state,
                owners=sorted(new_state.stakers.changed_owners()),
                transfers=result.transfers,
                request_type=kind,
                issued_at=now,
            )
        self._state = new_state.flatten()
        logger.info(
            f"Applied {kind} from {caller}: {result.attributes}",
            extra={"caller": caller, "request_type": kind},
        )
        return result

    # ── convenience wrappers ────────────────────────────────────────

    def deposit(
        self, caller: str, amount: int, tier: int,
        asset: Optional[str] = None, now: Optional[int] = None,
    ) -> ExecutionResult:
        if asset is None:
            asset = self.config.accepted_asset
        return self.execute(caller, Deposit(amount=amount, tier=tier, asset=asset), now)

    def deposit_reward(
        self, caller: str, amount: int,
        asset: Optional[str] = None, now: Optional[int] = None,
    ) -> ExecutionResult:
        if asset is None:
            asset = self.config.accepted_asset
        return self.execute(caller, DepositReward(amount=amount, asset=asset), now)

    def claim(self, caller: str, now: Optional[int] = None) -> ExecutionResult:
        return self.execute(caller, Claim(), now)

    def unstake(
        self, caller: str, index: int, amount: int, now: Optional[int] = None,
    ) -> ExecutionResult:
        return self.execute(caller, Unstake(index=index, amount=amount), now)

    def update_owner(self, caller: str, owner: str) -> ExecutionResult:
        return self.execute(caller, UpdateOwner(owner=owner))

    def update_enabled(self, caller: str, enabled: bool) -> ExecutionResult:
        return self.execute(caller, UpdateEnabled(enabled=enabled))

    def update_config(
        self, caller: str, accepted_asset: str, payout_cadence_seconds: int,
    ) -> ExecutionResult:
        return self.execute(caller, UpdateConfig(
            accepted_asset=accepted_asset,
            payout_cadence_seconds=payout_cadence_seconds,
        ))

    def withdraw_reward(self, caller: str, amount: int) -> ExecutionResult:
        return self.execute(caller, WithdrawReward(amount=amount))

    def withdraw_stake(self, caller: str, amount: int) -> ExecutionResult:
        return self.execute(caller, WithdrawStake(amount=amount))

    # ── queries ─────────────────────────────────────────────────────

    def get_config(self) -> dict:
        return self._state.config.to_dict()

    def get_positions(self, owner: str) -> list[Position]:
        """The owner's positions (copies); empty for unknown owners."""
        return [
            Position(p.owner, p.principal, p.tier, p.last_settled_at, p.accrued_reward)
            for p in self._state.stakers.get(owner)
        ]

    def list_stakers(
        self, start_after: Optional[str] = None, limit: Optional[int] = None,
    ) -> list[tuple[str, list[Position]]]:
        return [
            (owner, self.get_positions(owner))
            for owner, _ in self._state.stakers.page(start_after, limit)
        ]

    def pending_reward(self, owner: str, now: Optional[int] = None) -> int:
        """What ``claim`` would pay ``owner`` at ``now``, without settling anything."""
        if now is None:
            now = int(time.time())
        _, total = accrue_all(
            self._state.stakers.get(owner), now, self.config.payout_cadence_seconds,
        )
        return total

    def get_pool_summary(self) -> dict:
        stakers = self._state.stakers
        return {
            **self.get_config(),
            "stakers": len(stakers),
            "open_positions": sum(len(lst) for _, lst in stakers.items()),
            "open_principal": stakers.total_principal(),
        }

"""
Error taxonomy for TierStake ledger operations.

Every error is raised synchronously to the caller and the operation that
raised it commits nothing.  ``code`` is a stable identifier suitable for
API responses and logs.
"""

from __future__ import annotations


class StakingError(Exception):
    """Base class for every rejected ledger operation."""
    code: str = "staking_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class UnauthorizedError(StakingError):
    """Caller is not the pool administrator."""
    code = "unauthorized"


class DisabledError(StakingError):
    """The pool is paused."""
    code = "disabled"


class InvalidInputError(StakingError):
    code = "invalid_input"


class UnacceptableAssetError(StakingError):
    """Funds arrived in an asset other than the accepted one."""
    code = "unacceptable_asset"


class NoRewardError(StakingError):
    code = "no_reward"


class InsufficientReserveError(StakingError):
    code = "insufficient_reserve"


class NoPositionError(StakingError):
    """Caller has no positions, or the index addresses none."""
    code = "no_position"


class InsufficientStakeError(StakingError):
    code = "insufficient_stake"


class StillLockedError(StakingError):
    """The position's lock duration has not elapsed yet."""
    code = "still_locked"


class ClockError(StakingError):
    """Current time is earlier than a settlement marker."""
    code = "clock_error"


class InvariantViolation(StakingError):
    """A post-transition ledger invariant failed; the transition is discarded."""
    code = "invariant_violation"

"""
TierStake - a tiered, time-locked staking ledger.

Key features:
- Eight lock-duration tiers with fixed annual rates
- Per-position reward accrual, paid only after the lock matures
- Claim, partial / full unstake and administrative withdrawals
- All-or-nothing request application with post-transition invariant checks
- SQLite persistence and an aiohttp HTTP adapter
"""

__version__ = "0.1.0"
__all__ = [
    "tiers",
    "state",
    "accrual",
    "messages",
    "errors",
    "invariants",
    "ledger",
    "storage",
    "config",
    "logging_config",
    "api",
]

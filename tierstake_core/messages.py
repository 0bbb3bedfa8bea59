"""
Request variants, transfer instructions and execution results.

The ledger accepts a closed set of requests:

    Deposit         stake funds into a new position
    DepositReward   fund the reward reserve
    Claim           collect accrued reward across all positions
    Unstake         withdraw principal from one position
    UpdateOwner     hand the administrator role to another identity
    UpdateEnabled   pause / resume balance-moving operations
    UpdateConfig    change accepted asset and payout cadence
    WithdrawReward  admin withdrawal from the reward reserve
    WithdrawStake   admin withdrawal from pooled stake

``request_from_dict`` / ``to_dict`` give a plain-dict shape
(``{"type": "unstake", "index": 0, "amount": 5}``) for adapters.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Union

from tierstake_core.errors import InvalidInputError


# ── Requests ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Deposit:
    """Funds already received by the pool, to be staked for the caller."""
    amount: int
    tier: int
    asset: str


@dataclass(frozen=True)
class DepositReward:
    amount: int
    asset: str


@dataclass(frozen=True)
class Claim:
    pass


@dataclass(frozen=True)
class Unstake:
    """
    Withdraw ``amount`` from the caller's position at ``index``.

    Indices shift down after a position is fully withdrawn; re-read the
    caller's positions before issuing another unstake.
    """
    index: int
    amount: int


@dataclass(frozen=True)
class UpdateOwner:
    owner: str


@dataclass(frozen=True)
class UpdateEnabled:
    enabled: bool


@dataclass(frozen=True)
class UpdateConfig:
    accepted_asset: str
    payout_cadence_seconds: int


@dataclass(frozen=True)
class WithdrawReward:
    amount: int


@dataclass(frozen=True)
class WithdrawStake:
    amount: int


Request = Union[
    Deposit,
    DepositReward,
    Claim,
    Unstake,
    UpdateOwner,
    UpdateEnabled,
    UpdateConfig,
    WithdrawReward,
    WithdrawStake,
]

REQUEST_TYPES: dict[str, type] = {
    "deposit": Deposit,
    "deposit_reward": DepositReward,
    "claim": Claim,
    "unstake": Unstake,
    "update_owner": UpdateOwner,
    "update_enabled": UpdateEnabled,
    "update_config": UpdateConfig,
    "withdraw_reward": WithdrawReward,
    "withdraw_stake": WithdrawStake,
}

_TYPE_NAMES: dict[type, str] = {cls: name for name, cls in REQUEST_TYPES.items()}

# Fields that carry token amounts or indices and must be non-negative ints
_UINT_FIELDS = {"amount", "index", "payout_cadence_seconds"}
# Any integer; out-of-range tier indices fall back to the longest tier
_INT_FIELDS = {"tier"}
_STR_FIELDS = {"asset", "owner", "accepted_asset"}


def request_type_name(request: Request) -> str:
    return _TYPE_NAMES[type(request)]


def _parse_int(name: str, value: Any, signed: bool) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise InvalidInputError(f"{name} must be an integer")
    if isinstance(value, str):
        # Plain ASCII decimal only: no "_", whitespace or other digit sets
        digits = value[1:] if signed and value.startswith("-") else value
        if not (digits.isascii() and digits.isdigit()):
            raise InvalidInputError(f"{name} must be an integer")
        return int(value)
    return value


def _coerce(name: str, value: Any) -> Any:
    if name in _UINT_FIELDS:
        n = _parse_int(name, value, signed=False)
        if n < 0:
            raise InvalidInputError(f"{name} must be non-negative")
        return n
    if name in _INT_FIELDS:
        return _parse_int(name, value, signed=True)
    if name in _STR_FIELDS:
        if not isinstance(value, str) or not value:
            raise InvalidInputError(f"{name} must be a non-empty string")
        return value
    if name == "enabled":
        if not isinstance(value, bool):
            raise InvalidInputError("enabled must be a boolean")
        return value
    return value


def request_from_dict(data: dict) -> Request:
    """Build a request variant from ``{"type": ..., **fields}``."""
    if not isinstance(data, dict):
        raise InvalidInputError("request must be an object")
    kind = data.get("type")
    cls = REQUEST_TYPES.get(kind) if isinstance(kind, str) else None
    if cls is None:
        raise InvalidInputError(f"unknown request type: {kind!r}")
    kwargs = {}
    for f in fields(cls):
        if f.name not in data:
            raise InvalidInputError(f"{kind}: missing field {f.name!r}")
        kwargs[f.name] = _coerce(f.name, data[f.name])
    return cls(**kwargs)


def request_to_dict(request: Request) -> dict:
    d: dict[str, Any] = {"type": request_type_name(request)}
    for f in fields(request):
        d[f.name] = getattr(request, f.name)
    return d


# ── Results ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TransferInstruction:
    """
    Instruction for the custody collaborator to move ``amount`` of
    ``asset`` to ``recipient``.  Issued, not executed: the ledger's
    totals already reflect it.
    """
    recipient: str
    amount: int
    asset: str
    action: str = "transfer"

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "recipient": self.recipient,
            "amount": self.amount,
            "asset": self.asset,
        }


@dataclass
class ExecutionResult:
    """Outcome of a successful request."""
    action: str
    attributes: dict[str, Any] = field(default_factory=dict)
    transfers: list[TransferInstruction] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "attributes": dict(self.attributes),
            "transfers": [t.to_dict() for t in self.transfers],
        }

"""
Shared pytest fixtures for the TierStake test suite.
"""

import pytest

from tierstake_core.ledger import StakingLedger
from tierstake_core.storage import LedgerStore

ADMIN = "admin"
ASSET = "token1"
CADENCE = 2_592_000          # 30 days
T0 = 1_700_000_000


@pytest.fixture
def ledger():
    """Fresh, enabled pool with an empty reserve."""
    return StakingLedger.initialize(ADMIN, ASSET, CADENCE)


@pytest.fixture
def funded_ledger(ledger):
    """Pool with 10M units in the reward reserve."""
    ledger.deposit_reward(ADMIN, 10_000_000, now=T0)
    return ledger


@pytest.fixture
def store(tmp_path):
    """Fresh LedgerStore in a temp directory."""
    s = LedgerStore(str(tmp_path / "test.db"))
    yield s
    s.close()

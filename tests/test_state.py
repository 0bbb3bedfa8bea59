"""
Tests for the staker ledger and its copy-on-write working copies (state.py).
"""

from tierstake_core.state import LedgerState, PoolConfig, Position, StakerLedger
from tierstake_core.tiers import TIER_CONFIG, StakeTier

TIER = TIER_CONFIG[StakeTier.DAYS_30]


def _ledger(**principals):
    stakers = StakerLedger()
    for owner, principal in principals.items():
        stakers.append(Position(owner, principal, TIER, 0))
    return stakers


class TestStakerLedger:
    def test_owners_sorted_and_empty_lists_dropped(self):
        stakers = _ledger(carol=3, alice=1, bob=2)
        stakers.set("bob", [])
        assert stakers.owners() == ["alice", "carol"]
        assert "bob" not in stakers
        assert len(stakers) == 2

    def test_page_cursor_is_exclusive(self):
        stakers = _ledger(alice=1, bob=2, carol=3)
        assert [o for o, _ in stakers.page(start_after="alice", limit=1)] == ["bob"]

    def test_total_principal(self):
        assert _ledger(alice=1, bob=2).total_principal() == 3


class TestFork:
    def test_layer_hands_out_copies(self):
        base = _ledger(alice=100)
        layer = base.fork()
        positions = layer.get("alice")
        positions[0].principal = 1
        layer.set("alice", positions)
        assert base.get("alice")[0].principal == 100
        assert layer.principal_of("alice") == 1

    def test_untouched_owners_not_copied(self):
        base = _ledger(alice=100, bob=200)
        bob = base.get("bob")[0]
        layer = base.fork()
        layer.append(Position("alice", 5, TIER, 0))
        assert layer.changed_owners() == {"alice"}
        assert layer.flatten().get("bob")[0] is bob

    def test_removal_through_layer(self):
        base = _ledger(alice=100, bob=200)
        layer = base.fork()
        layer.set("alice", [])
        assert "alice" in base
        assert "alice" not in layer
        assert layer.owners() == ["bob"]
        assert layer.changed_owners() == {"alice"}
        flat = layer.flatten()
        assert flat is base
        assert base.owners() == ["bob"]

    def test_new_owner_through_layer(self):
        base = _ledger(bob=200)
        layer = base.fork()
        layer.append(Position("alice", 5, TIER, 0))
        assert layer.owners() == ["alice", "bob"]
        assert base.owners() == ["bob"]
        assert layer.total_principal() == 205

    def test_base_ledger_reports_no_changes(self):
        assert _ledger(alice=1).changed_owners() == set()


class TestLedgerStateCopy:
    def test_copy_has_private_config(self):
        state = LedgerState(config=PoolConfig("admin", "token1", 60))
        work = state.copy()
        work.config.total_pooled_stake = 10
        assert state.config.total_pooled_stake == 0
        assert work.flatten().config.total_pooled_stake == 10

"""
SQLite-based persistence layer for TierStake ledger state.

Stores the pool configuration, every open position and the log of issued
transfer instructions so that a ledger can recover state after restart.

Usage:
    store = LedgerStore("data/tierstake.db")
    store.commit(state, owners={"alice"}, transfers=result.transfers)
    ...
    state = store.restore_state()
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Iterable

from tierstake_core.messages import TransferInstruction
from tierstake_core.state import LedgerState, PoolConfig, Position, StakerLedger
from tierstake_core.tiers import Tier

logger = logging.getLogger("tierstake_storage")


class LedgerStore:
    """Thin SQLite wrapper for persisting ledger state."""

    def __init__(self, db_path: str = "data/tierstake.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        # synchronous=NORMAL is safe with WAL and avoids fsync per commit
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Storage opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    # Amounts are stored as decimal TEXT: token amounts may exceed the
    # 64-bit range of SQLite INTEGER.
    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS pool_config (
                id                     INTEGER PRIMARY KEY CHECK (id = 1),
                admin                  TEXT NOT NULL,
                accepted_asset         TEXT NOT NULL,
                payout_cadence_seconds INTEGER NOT NULL,
                total_pooled_stake     TEXT NOT NULL DEFAULT '0',
                total_reward_reserve   TEXT NOT NULL DEFAULT '0',
                enabled                INTEGER NOT NULL DEFAULT 1
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS positions (
                owner           TEXT NOT NULL,
                position_index  INTEGER NOT NULL,
                principal       TEXT NOT NULL,
                accrued_reward  TEXT NOT NULL DEFAULT '0',
                last_settled_at INTEGER NOT NULL,
                lock_seconds    INTEGER NOT NULL,
                annual_rate_bps INTEGER NOT NULL,
                PRIMARY KEY (owner, position_index)
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS transfers (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                action       TEXT NOT NULL,
                recipient    TEXT NOT NULL,
                amount       TEXT NOT NULL,
                asset        TEXT NOT NULL,
                request_type TEXT NOT NULL DEFAULT '',
                issued_at    INTEGER NOT NULL DEFAULT 0
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    CURRENT_SCHEMA_VERSION = 1

    def _ensure_schema_version(self) -> None:
        """Check / set schema version; refuse databases from newer releases."""
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        elif row["version"] > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema v{row['version']} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade TierStake."
            )

    # ── pool config ──────────────────────────────────────────────

    def _write_config(self, cfg: PoolConfig) -> None:
        self._conn.execute(
            """INSERT OR REPLACE INTO pool_config
               (id, admin, accepted_asset, payout_cadence_seconds,
                total_pooled_stake, total_reward_reserve, enabled)
               VALUES (1, ?, ?, ?, ?, ?, ?)""",
            (cfg.admin, cfg.accepted_asset, cfg.payout_cadence_seconds,
             str(cfg.total_pooled_stake), str(cfg.total_reward_reserve),
             int(cfg.enabled)),
        )

    def save_config(self, cfg: PoolConfig) -> None:
        self._write_config(cfg)
        self._conn.commit()

    def load_config(self) -> PoolConfig | None:
        row = self._conn.execute(
            "SELECT * FROM pool_config WHERE id = 1"
        ).fetchone()
        if row is None:
            return None
        return PoolConfig(
            admin=row["admin"],
            accepted_asset=row["accepted_asset"],
            payout_cadence_seconds=row["payout_cadence_seconds"],
            total_pooled_stake=int(row["total_pooled_stake"]),
            total_reward_reserve=int(row["total_reward_reserve"]),
            enabled=bool(row["enabled"]),
        )

    # ── positions ────────────────────────────────────────────────

    def _write_positions(self, owner: str, positions: list[Position]) -> None:
        self._conn.execute("DELETE FROM positions WHERE owner = ?", (owner,))
        self._conn.executemany(
            """INSERT INTO positions
               (owner, position_index, principal, accrued_reward,
                last_settled_at, lock_seconds, annual_rate_bps)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            [
                (owner, i, str(p.principal), str(p.accrued_reward),
                 p.last_settled_at, p.tier.lock_seconds, p.tier.annual_rate_bps)
                for i, p in enumerate(positions)
            ],
        )

    def save_positions(self, owner: str, positions: list[Position]) -> None:
        """Replace the owner's rows; an empty list removes the owner."""
        self._write_positions(owner, positions)
        self._conn.commit()

    @staticmethod
    def _row_to_position(row: sqlite3.Row) -> Position:
        return Position(
            owner=row["owner"],
            principal=int(row["principal"]),
            tier=Tier(row["lock_seconds"], row["annual_rate_bps"]),
            last_settled_at=row["last_settled_at"],
            accrued_reward=int(row["accrued_reward"]),
        )

    def load_positions(self, owner: str) -> list[Position]:
        rows = self._conn.execute(
            "SELECT * FROM positions WHERE owner = ? ORDER BY position_index",
            (owner,),
        ).fetchall()
        return [self._row_to_position(r) for r in rows]

    def load_stakers(self) -> StakerLedger:
        stakers = StakerLedger()
        rows = self._conn.execute(
            "SELECT * FROM positions ORDER BY owner, position_index"
        ).fetchall()
        for r in rows:
            stakers.append(self._row_to_position(r))
        return stakers

    # ── transfer log ─────────────────────────────────────────────

    def _write_transfers(
        self, transfers: Iterable[TransferInstruction], request_type: str, issued_at: int,
    ) -> None:
        self._conn.executemany(
            """INSERT INTO transfers
               (action, recipient, amount, asset, request_type, issued_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            [
                (t.action, t.recipient, str(t.amount), t.asset, request_type, issued_at)
                for t in transfers
            ],
        )

    def load_transfers(self) -> list[dict[str, Any]]:
        rows = self._conn.execute("SELECT * FROM transfers ORDER BY id").fetchall()
        out = []
        for r in rows:
            d = dict(r)
            d["amount"] = int(d["amount"])
            out.append(d)
        return out

    # ── bulk helpers ─────────────────────────────────────────────

    def commit(
        self,
        state: LedgerState,
        owners: Iterable[str] = (),
        transfers: Iterable[TransferInstruction] = (),
        request_type: str = "",
        issued_at: int = 0,
    ) -> None:
        """
        Persist the config, the listed owners' positions and the issued
        transfers in a single transaction.
        """
        c = self._conn
        try:
            c.execute("BEGIN IMMEDIATE")
            self._write_config(state.config)
            for owner in owners:
                self._write_positions(owner, state.stakers.get(owner))
            self._write_transfers(transfers, request_type, issued_at)
            c.execute("COMMIT")
        except Exception:
            # BEGIN itself may have failed (database locked)
            if c.in_transaction:
                c.execute("ROLLBACK")
            raise

    def snapshot_state(self, state: LedgerState) -> None:
        """Persist the full current state atomically, replacing what is stored."""
        c = self._conn
        try:
            c.execute("BEGIN IMMEDIATE")
            self._write_config(state.config)
            c.execute("DELETE FROM positions")
            for owner, positions in state.stakers.items():
                self._write_positions(owner, positions)
            c.execute("COMMIT")
        except Exception:
            # BEGIN itself may have failed (database locked)
            if c.in_transaction:
                c.execute("ROLLBACK")
            raise

    def restore_state(self) -> LedgerState | None:
        """Rebuild the ledger state, or ``None`` for an uninitialized database."""
        cfg = self.load_config()
        if cfg is None:
            return None
        return LedgerState(config=cfg, stakers=self.load_stakers())

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

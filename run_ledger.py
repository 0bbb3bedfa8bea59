#!/usr/bin/env python3
"""
TierStake Ledger Runner - starts a staking ledger with:
  - SQLite persistence (optional)
  - HTTP API for requests and queries
  - Interactive CLI for inspecting the pool

Usage:
    python run_ledger.py --config tierstake.toml
    python run_ledger.py --admin alice --asset token1 --db data/tierstake.db --port 8080

Environment variables (alternative to flags):
    TIERSTAKE_ADMIN, TIERSTAKE_ASSET, TIERSTAKE_CADENCE, TIERSTAKE_DB_PATH,
    TIERSTAKE_API_PORT, TIERSTAKE_LOG_LEVEL
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging

from tierstake_core.api import APIServer
from tierstake_core.config import TierStakeConfig, load_config
from tierstake_core.ledger import StakingLedger
from tierstake_core.logging_config import setup_logging
from tierstake_core.storage import LedgerStore

logger = logging.getLogger("tierstake_runner")


# ===================================================================
#  Ledger node
# ===================================================================

class LedgerNode:
    """Combines the store, the ledger and the API server."""

    def __init__(self, config: TierStakeConfig):
        self.config = config
        self.store: LedgerStore | None = None
        self.ledger: StakingLedger | None = None
        self._api: APIServer | None = None

    def open(self) -> StakingLedger:
        """Restore the pool from storage, or initialize a new one."""
        if self.config.storage.enabled:
            self.store = LedgerStore(self.config.storage.path)
            self.ledger = StakingLedger.from_store(self.store)
        if self.ledger is None:
            pool = self.config.pool
            self.ledger = StakingLedger.initialize(
                pool.admin,
                pool.accepted_asset,
                pool.payout_cadence_seconds,
                enabled=pool.enabled,
                store=self.store,
            )
        return self.ledger

    async def start(self) -> None:
        self.open()
        if self.config.api.enabled:
            self._api = APIServer(
                self.ledger,
                host=self.config.api.host,
                port=self.config.api.port,
                api_config=self.config.api,
            )
            await self._api.start()

    async def stop(self) -> None:
        if self._api is not None:
            await self._api.stop()
        if self.store is not None:
            self.store.close()
        logger.info("Ledger stopped")


# ===================================================================
#  Interactive CLI
# ===================================================================

async def interactive_cli(node: LedgerNode):
    """Read-only CLI over the running ledger."""
    loop = asyncio.get_event_loop()

    def print_help():
        print("""
╔══════════════════════════════════════════════════════════════╗
║  TierStake Ledger CLI                                        ║
╠══════════════════════════════════════════════════════════════╣
║  config            - Show pool configuration                 ║
║  stakers [after]   - List stakers (optionally after a cursor)║
║  positions <owner> - Show an owner's positions               ║
║  pending <owner>   - Preview an owner's claimable reward     ║
║  help              - Show this help                          ║
║  quit              - Shutdown                                ║
╚══════════════════════════════════════════════════════════════╝
""")

    print_help()
    ledger = node.ledger

    while True:
        try:
            line = await loop.run_in_executor(None, lambda: input("\n[tierstake] > "))
            parts = line.strip().split()
            if not parts:
                continue
            cmd = parts[0].lower()

            if cmd == "help":
                print_help()

            elif cmd == "config":
                print(json.dumps(ledger.get_pool_summary(), indent=2))

            elif cmd == "stakers":
                after = parts[1] if len(parts) > 1 else None
                for owner, positions in ledger.list_stakers(after, 20):
                    total = sum(p.principal for p in positions)
                    print(f"  {owner}: {len(positions)} positions, {total} staked")

            elif cmd == "positions":
                if len(parts) < 2:
                    print("  Usage: positions <owner>")
                    continue
                for i, p in enumerate(ledger.get_positions(parts[1])):
                    print(f"  [{i}] {json.dumps(p.to_dict())}")

            elif cmd == "pending":
                if len(parts) < 2:
                    print("  Usage: pending <owner>")
                    continue
                print(f"  {parts[1]}: {ledger.pending_reward(parts[1])}")

            elif cmd in ("quit", "exit", "q"):
                print("Shutting down...")
                await node.stop()
                break

            else:
                print(f"  Unknown command: {cmd}. Type 'help'.")

        except (EOFError, KeyboardInterrupt):
            print("\nShutting down...")
            await node.stop()
            break
        except Exception as e:
            print(f"  Error: {e}")


# ===================================================================
#  Main entry point
# ===================================================================

def parse_args():
    p = argparse.ArgumentParser(description="TierStake staking ledger")
    p.add_argument("--config", default=None, help="Path to tierstake.toml config file")
    p.add_argument("--admin", default=None, help="Administrator identity for a new pool")
    p.add_argument("--asset", default=None, help="Accepted asset for a new pool")
    p.add_argument("--cadence", type=int, default=None,
                   help="Payout cadence in seconds for a new pool")
    p.add_argument("--db", default=None, help="SQLite database path (enables storage)")
    p.add_argument("--host", default=None, help="API listen host")
    p.add_argument("--port", type=int, default=None, help="API listen port")
    p.add_argument("--no-cli", action="store_true",
                   help="Run without interactive CLI")
    return p.parse_args()


async def main():
    args = parse_args()

    # Load config (TOML + env overrides); CLI flags override both
    cfg = load_config(args.config)
    if args.admin:
        cfg.pool.admin = args.admin
    if args.asset:
        cfg.pool.accepted_asset = args.asset
    if args.cadence:
        cfg.pool.payout_cadence_seconds = args.cadence
    if args.db:
        cfg.storage.path = args.db
        cfg.storage.enabled = True
    if args.host:
        cfg.api.host = args.host
    if args.port:
        cfg.api.port = args.port

    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    node = LedgerNode(cfg)
    await node.start()

    if args.no_cli:
        try:
            while True:
                await asyncio.sleep(1)
        except (KeyboardInterrupt, asyncio.CancelledError):
            await node.stop()
    else:
        await interactive_cli(node)


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()

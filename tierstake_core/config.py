"""
TOML-based configuration for TierStake ledgers.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from tierstake_core.config import load_config
    cfg = load_config("tierstake.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


@dataclass
class PoolSettings:
    """Parameters used when a new pool is initialized.

    Ignored once the store already holds a pool: the persisted config
    (possibly changed by admin requests since) wins.
    """
    admin: str = ""
    accepted_asset: str = ""
    payout_cadence_seconds: int = 2_592_000   # 30 days
    enabled: bool = True


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)
    max_body_bytes: int = 65_536


@dataclass
class StorageConfig:
    """Persistence settings."""
    enabled: bool = False
    path: str = "data/tierstake.db"


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class TierStakeConfig:
    """Top-level configuration container."""
    pool: PoolSettings = field(default_factory=PoolSettings)
    api: APIConfig = field(default_factory=APIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> TierStakeConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        TIERSTAKE_ADMIN         -> pool.admin
        TIERSTAKE_ASSET         -> pool.accepted_asset
        TIERSTAKE_CADENCE       -> pool.payout_cadence_seconds
        TIERSTAKE_API_PORT      -> api.port
        TIERSTAKE_API_KEY       -> api.api_key
        TIERSTAKE_CORS_ORIGINS  -> api.cors_origins   (comma-separated)
        TIERSTAKE_DB_PATH       -> storage.path       (also enables storage)
        TIERSTAKE_LOG_LEVEL     -> logging.level
        TIERSTAKE_LOG_FMT       -> logging.format
    """
    cfg = TierStakeConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("pool", cfg.pool),
                ("api", cfg.api),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("TIERSTAKE_ADMIN"):
        cfg.pool.admin = v
    if v := os.environ.get("TIERSTAKE_ASSET"):
        cfg.pool.accepted_asset = v
    if v := os.environ.get("TIERSTAKE_CADENCE"):
        cfg.pool.payout_cadence_seconds = int(v)
    if v := os.environ.get("TIERSTAKE_API_PORT"):
        cfg.api.port = int(v)
        cfg.api.enabled = True
    if v := os.environ.get("TIERSTAKE_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("TIERSTAKE_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("TIERSTAKE_DB_PATH"):
        cfg.storage.path = v
        cfg.storage.enabled = True
    if v := os.environ.get("TIERSTAKE_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("TIERSTAKE_LOG_FMT"):
        cfg.logging.format = v

    return cfg

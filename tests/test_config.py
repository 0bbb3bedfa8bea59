"""
Tests for tierstake_core.config - TOML configuration and environment overrides.

Covers:
  - Default values for all dataclass sections
  - TOML parsing and section merging
  - Environment variable overrides (precedence over TOML)
  - _merge helper edge cases
  - Missing TOML files
  - Hyphenated key handling
"""

from __future__ import annotations

import os
import tempfile
import textwrap
import unittest
from unittest.mock import patch

from tierstake_core.config import (
    APIConfig,
    LoggingConfig,
    PoolSettings,
    StorageConfig,
    TierStakeConfig,
    _merge,
    load_config,
)


def _load_toml(content: str) -> TierStakeConfig:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".toml", delete=False) as f:
        f.write(textwrap.dedent(content))
        f.flush()
        cfg = load_config(f.name)
    os.unlink(f.name)
    return cfg


# ═══════════════════════════════════════════════════════════════════
#  Defaults
# ═══════════════════════════════════════════════════════════════════

class TestDefaults(unittest.TestCase):

    def test_pool_defaults(self):
        p = PoolSettings()
        self.assertEqual(p.admin, "")
        self.assertEqual(p.accepted_asset, "")
        self.assertEqual(p.payout_cadence_seconds, 2_592_000)
        self.assertTrue(p.enabled)

    def test_api_defaults(self):
        a = APIConfig()
        self.assertTrue(a.enabled)
        self.assertEqual(a.host, "127.0.0.1")
        self.assertEqual(a.port, 8080)
        self.assertEqual(a.api_key, "")
        self.assertEqual(a.rate_limit_rpm, 120)
        self.assertEqual(a.cors_origins, [])
        self.assertEqual(a.max_body_bytes, 65_536)

    def test_storage_defaults(self):
        s = StorageConfig()
        self.assertFalse(s.enabled)
        self.assertEqual(s.path, "data/tierstake.db")

    def test_logging_defaults(self):
        log_cfg = LoggingConfig()
        self.assertEqual(log_cfg.level, "INFO")
        self.assertEqual(log_cfg.format, "human")
        self.assertIsNone(log_cfg.file)

    def test_top_level_defaults(self):
        cfg = TierStakeConfig()
        self.assertIsInstance(cfg.pool, PoolSettings)
        self.assertIsInstance(cfg.api, APIConfig)
        self.assertIsInstance(cfg.storage, StorageConfig)
        self.assertIsInstance(cfg.logging, LoggingConfig)

    def test_cors_lists_not_shared(self):
        a, b = APIConfig(), APIConfig()
        a.cors_origins.append("http://x")
        self.assertEqual(b.cors_origins, [])


# ═══════════════════════════════════════════════════════════════════
#  _merge helper
# ═══════════════════════════════════════════════════════════════════

class TestMerge(unittest.TestCase):

    def test_merge_updates_fields(self):
        p = PoolSettings()
        _merge(p, {"admin": "alice", "payout_cadence_seconds": 86_400})
        self.assertEqual(p.admin, "alice")
        self.assertEqual(p.payout_cadence_seconds, 86_400)

    def test_merge_ignores_unknown_keys(self):
        p = PoolSettings()
        _merge(p, {"unknown_field": 42})
        self.assertFalse(hasattr(p, "unknown_field"))

    def test_merge_hyphenated_keys(self):
        """TOML often uses kebab-case; _merge converts to snake_case."""
        p = PoolSettings()
        _merge(p, {"accepted-asset": "token1"})
        self.assertEqual(p.accepted_asset, "token1")

    def test_merge_empty_dict(self):
        p = PoolSettings()
        _merge(p, {})
        self.assertEqual(p, PoolSettings())


# ═══════════════════════════════════════════════════════════════════
#  TOML loading
# ═══════════════════════════════════════════════════════════════════

class TestLoadConfig(unittest.TestCase):

    def test_load_no_file(self):
        """load_config(None) returns defaults."""
        cfg = load_config(None)
        self.assertEqual(cfg.api.port, 8080)

    def test_load_missing_file(self):
        """Non-existent TOML file returns defaults (no crash)."""
        cfg = load_config("/tmp/__nonexistent_tierstake__.toml")
        self.assertEqual(cfg.pool.payout_cadence_seconds, 2_592_000)

    def test_load_toml_file(self):
        cfg = _load_toml("""\
            [pool]
            admin = "cosmos1admin"
            accepted-asset = "uatom"
            payout_cadence_seconds = 86400
            enabled = false

            [api]
            port = 3000
            api_key = "secret123"
            cors_origins = ["http://localhost:3000"]

            [storage]
            enabled = true
            path = "/var/lib/tierstake/ledger.db"

            [logging]
            level = "DEBUG"
            format = "json"
        """)
        self.assertEqual(cfg.pool.admin, "cosmos1admin")
        self.assertEqual(cfg.pool.accepted_asset, "uatom")
        self.assertEqual(cfg.pool.payout_cadence_seconds, 86_400)
        self.assertFalse(cfg.pool.enabled)
        self.assertEqual(cfg.api.port, 3000)
        self.assertEqual(cfg.api.api_key, "secret123")
        self.assertEqual(cfg.api.cors_origins, ["http://localhost:3000"])
        self.assertTrue(cfg.storage.enabled)
        self.assertEqual(cfg.storage.path, "/var/lib/tierstake/ledger.db")
        self.assertEqual(cfg.logging.level, "DEBUG")
        self.assertEqual(cfg.logging.format, "json")

    def test_unknown_sections_ignored(self):
        cfg = _load_toml("""\
            [consensus]
            interval = 10
        """)
        self.assertEqual(cfg.api.port, 8080)


# ═══════════════════════════════════════════════════════════════════
#  Environment variable overrides
# ═══════════════════════════════════════════════════════════════════

class TestEnvOverrides(unittest.TestCase):

    @patch.dict(os.environ, {"TIERSTAKE_ADMIN": "env-admin"}, clear=False)
    def test_env_admin(self):
        cfg = load_config(None)
        self.assertEqual(cfg.pool.admin, "env-admin")

    @patch.dict(os.environ, {"TIERSTAKE_ASSET": "uosmo"}, clear=False)
    def test_env_asset(self):
        cfg = load_config(None)
        self.assertEqual(cfg.pool.accepted_asset, "uosmo")

    @patch.dict(os.environ, {"TIERSTAKE_CADENCE": "3600"}, clear=False)
    def test_env_cadence(self):
        cfg = load_config(None)
        self.assertEqual(cfg.pool.payout_cadence_seconds, 3600)

    @patch.dict(os.environ, {"TIERSTAKE_API_PORT": "4444"}, clear=False)
    def test_env_api_port(self):
        cfg = load_config(None)
        self.assertEqual(cfg.api.port, 4444)
        self.assertTrue(cfg.api.enabled)

    @patch.dict(os.environ, {"TIERSTAKE_LOG_LEVEL": "debug"}, clear=False)
    def test_env_log_level_uppercased(self):
        cfg = load_config(None)
        self.assertEqual(cfg.logging.level, "DEBUG")

    @patch.dict(os.environ, {"TIERSTAKE_LOG_FMT": "json"}, clear=False)
    def test_env_log_format(self):
        cfg = load_config(None)
        self.assertEqual(cfg.logging.format, "json")

    @patch.dict(os.environ, {"TIERSTAKE_DB_PATH": "/tmp/ts.db"}, clear=False)
    def test_env_db_path(self):
        cfg = load_config(None)
        self.assertEqual(cfg.storage.path, "/tmp/ts.db")
        self.assertTrue(cfg.storage.enabled)  # auto-enabled

    @patch.dict(os.environ, {"TIERSTAKE_API_KEY": "my-key"}, clear=False)
    def test_env_api_key(self):
        cfg = load_config(None)
        self.assertEqual(cfg.api.api_key, "my-key")

    @patch.dict(os.environ, {"TIERSTAKE_CORS_ORIGINS": "http://a.com, http://b.com"}, clear=False)
    def test_env_cors_origins(self):
        cfg = load_config(None)
        self.assertEqual(cfg.api.cors_origins, ["http://a.com", "http://b.com"])

    @patch.dict(os.environ, {"TIERSTAKE_CORS_ORIGINS": ""}, clear=False)
    def test_env_empty_cors(self):
        cfg = load_config(None)
        self.assertEqual(cfg.api.cors_origins, [])


# ═══════════════════════════════════════════════════════════════════
#  Env overrides take precedence over TOML
# ═══════════════════════════════════════════════════════════════════

class TestEnvOverridesToml(unittest.TestCase):

    @patch.dict(os.environ, {"TIERSTAKE_CADENCE": "60"}, clear=False)
    def test_env_wins_over_toml(self):
        """Environment variable should override the TOML file value."""
        cfg = _load_toml("""\
            [pool]
            payout_cadence_seconds = 86400
        """)
        self.assertEqual(cfg.pool.payout_cadence_seconds, 60)

    @patch.dict(os.environ, {"TIERSTAKE_ADMIN": "env-admin"}, clear=False)
    def test_toml_keeps_unrelated_fields(self):
        cfg = _load_toml("""\
            [pool]
            admin = "file-admin"
            accepted_asset = "uatom"
        """)
        self.assertEqual(cfg.pool.admin, "env-admin")
        self.assertEqual(cfg.pool.accepted_asset, "uatom")


if __name__ == "__main__":
    unittest.main()

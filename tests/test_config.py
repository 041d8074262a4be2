"""Tests for configuration management."""

import os
import pytest
from unittest.mock import patch

from lexicon_guard.config import (
    DEFAULT_RETENTION_MS,
    MiB,
    TIER_IDS,
    BackupConfig,
    GuardConfig,
    StoreConfig,
)


class TestStoreConfig:
    """Test main store configuration."""

    def test_defaults(self):
        config = StoreConfig()
        assert config.data_dir == "./lexicon_forge_data"
        assert config.db_name == "lexicon-forge"
        assert config.busy_timeout == 5.0
        assert config.use_introspection is True

    def test_from_env(self):
        with patch.dict(os.environ, {
            "GUARD_DATA_DIR": "/var/lib/lexicon",
            "GUARD_DB_NAME": "novels",
            "GUARD_BUSY_TIMEOUT": "1.5",
            "GUARD_USE_INTROSPECTION": "false",
        }):
            config = StoreConfig.from_env()
            assert config.data_dir == "/var/lib/lexicon"
            assert config.db_name == "novels"
            assert config.busy_timeout == 1.5
            assert config.use_introspection is False

    def test_validation(self):
        with pytest.raises(ValueError, match="db_name must not be empty"):
            StoreConfig(db_name="")
        with pytest.raises(ValueError, match="busy_timeout must be non-negative"):
            StoreConfig(busy_timeout=-1)


class TestBackupConfig:
    """Test backup tier configuration."""

    def test_defaults(self):
        config = BackupConfig()
        assert config.tiers == TIER_IDS
        assert config.backup_db_backend == "sqlite"
        assert config.local_storage_quota_bytes == 5 * MiB
        assert config.local_storage_max_bytes == 4 * MiB
        assert config.retention_ms == DEFAULT_RETENTION_MS == 604_800_000
        assert config.handoff == "console"

    def test_from_env(self):
        with patch.dict(os.environ, {
            "BACKUP_TIERS": "tier-B, tier-C",
            "BACKUP_DB_BACKEND": "redis",
            "REDIS_URL": "redis://cache:6379",
            "REDIS_PASSWORD": "secret",
            "BACKUP_LOCAL_STORAGE_MAX_BYTES": "1024",
            "BACKUP_HANDOFF": "none",
            "BACKUP_RETENTION_MS": "1000",
        }):
            config = BackupConfig.from_env()
            assert config.tiers == ("tier-B", "tier-C")
            assert config.backup_db_backend == "redis"
            assert config.redis_url == "redis://cache:6379"
            assert config.redis_password == "secret"
            assert config.local_storage_max_bytes == 1024
            assert config.handoff == "none"
            assert config.retention_ms == 1000

    def test_empty_tiers_env_uses_default_order(self):
        with patch.dict(os.environ, {"BACKUP_TIERS": " "}):
            assert BackupConfig.from_env().tiers == TIER_IDS

    def test_validation(self):
        with pytest.raises(ValueError, match="Unknown backup tiers"):
            BackupConfig(tiers=("tier-A", "tier-E"))
        with pytest.raises(ValueError, match="must not repeat"):
            BackupConfig(tiers=("tier-A", "tier-A"))
        with pytest.raises(ValueError, match="Unknown backup DB backend"):
            BackupConfig(backup_db_backend="mongo")
        with pytest.raises(ValueError, match="Unknown handoff"):
            BackupConfig(handoff="email")
        with pytest.raises(ValueError, match="must not exceed"):
            BackupConfig(local_storage_max_bytes=6 * MiB)
        with pytest.raises(ValueError, match="retention_ms"):
            BackupConfig(retention_ms=-1)


class TestGuardConfig:
    """Test complete guard configuration."""

    def test_defaults(self):
        config = GuardConfig()
        assert config.expected_version == 12
        assert config.blocked_retry_attempts == 3
        assert isinstance(config.store, StoreConfig)
        assert isinstance(config.backup, BackupConfig)

    def test_from_env(self):
        with patch.dict(os.environ, {
            "GUARD_SCHEMA_VERSION": "13",
            "GUARD_BLOCKED_RETRY_ATTEMPTS": "5",
            "GUARD_DB_NAME": "other",
        }):
            config = GuardConfig.from_env()
            assert config.expected_version == 13
            assert config.blocked_retry_attempts == 5
            assert config.store.db_name == "other"

    def test_validation(self):
        with pytest.raises(ValueError, match="expected_version must be positive"):
            GuardConfig(expected_version=0)
        with pytest.raises(ValueError, match="blocked_retry_attempts must be positive"):
            GuardConfig(blocked_retry_attempts=0)

    def test_to_dict_masks_password(self):
        config = GuardConfig(backup=BackupConfig(redis_password="hunter2"))
        data = config.to_dict()

        assert data["backup"]["redis_password"] == "***"
        assert data["store"]["db_name"] == "lexicon-forge"
        assert config.backup.redis_password == "hunter2"

"""Configuration management for lexicon-guard."""

import os
from dataclasses import dataclass, field, asdict
from typing import Optional, Tuple

from .schema import SCHEMA_VERSIONS

MiB = 1024 * 1024
DEFAULT_RETENTION_MS = 7 * 24 * 60 * 60 * 1000

TIER_IDS = ("tier-A", "tier-B", "tier-C", "tier-D")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StoreConfig:
    """Main persistent store configuration."""
    data_dir: str = "./lexicon_forge_data"
    db_name: str = "lexicon-forge"
    busy_timeout: float = 5.0  # seconds SQLite waits on a lock before reporting blocked
    use_introspection: bool = True  # use databases() before falling back to an open

    @classmethod
    def from_env(cls) -> 'StoreConfig':
        """Create config from environment variables."""
        return cls(
            data_dir=os.getenv("GUARD_DATA_DIR", "./lexicon_forge_data"),
            db_name=os.getenv("GUARD_DB_NAME", "lexicon-forge"),
            busy_timeout=float(os.getenv("GUARD_BUSY_TIMEOUT", "5.0")),
            use_introspection=_env_bool("GUARD_USE_INTROSPECTION", "true"),
        )

    def __post_init__(self):
        """Validate configuration."""
        if not self.db_name:
            raise ValueError("db_name must not be empty")
        if self.busy_timeout < 0:
            raise ValueError(f"busy_timeout must be non-negative, got {self.busy_timeout}")


@dataclass(frozen=True)
class BackupConfig:
    """Pre-migration backup configuration."""
    tiers: Tuple[str, ...] = TIER_IDS  # fallback order

    # Tier A: backups directory under the data dir
    backups_dir_name: str = "migration-backups"

    # Tier B: secondary object store that app migrations never touch
    backup_db_backend: str = "sqlite"  # sqlite, redis
    backup_db_name: str = "lexiconforge-backups"
    redis_url: str = "redis://localhost:6379"
    redis_password: Optional[str] = None
    redis_max_connections: int = 10
    redis_socket_timeout: float = 5.0
    redis_connection_timeout: float = 5.0

    # Tier C: small synchronous string store (also holds the metadata record)
    local_storage_file: str = "local_storage.json"
    local_storage_quota_bytes: int = 5 * MiB
    local_storage_max_bytes: int = 4 * MiB

    # Tier D: user handoff
    handoff: str = "console"  # console, none
    download_dir: str = "./downloads"
    file_prefix: str = "lexiconforge"

    retention_ms: int = DEFAULT_RETENTION_MS

    @classmethod
    def from_env(cls) -> 'BackupConfig':
        """Create config from environment variables."""
        tiers_str = os.getenv("BACKUP_TIERS", "")
        if tiers_str.strip():
            tiers = tuple(t.strip() for t in tiers_str.split(",") if t.strip())
        else:
            tiers = TIER_IDS

        return cls(
            tiers=tiers,
            backups_dir_name=os.getenv("BACKUP_DIR_NAME", "migration-backups"),
            backup_db_backend=os.getenv("BACKUP_DB_BACKEND", "sqlite"),
            backup_db_name=os.getenv("BACKUP_DB_NAME", "lexiconforge-backups"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            redis_password=os.getenv("REDIS_PASSWORD", None),
            redis_max_connections=int(os.getenv("REDIS_MAX_CONNECTIONS", "10")),
            redis_socket_timeout=float(os.getenv("REDIS_SOCKET_TIMEOUT", "5.0")),
            redis_connection_timeout=float(os.getenv("REDIS_CONNECTION_TIMEOUT", "5.0")),
            local_storage_file=os.getenv("BACKUP_LOCAL_STORAGE_FILE", "local_storage.json"),
            local_storage_quota_bytes=int(os.getenv("BACKUP_LOCAL_STORAGE_QUOTA_BYTES", str(5 * MiB))),
            local_storage_max_bytes=int(os.getenv("BACKUP_LOCAL_STORAGE_MAX_BYTES", str(4 * MiB))),
            handoff=os.getenv("BACKUP_HANDOFF", "console"),
            download_dir=os.getenv("BACKUP_DOWNLOAD_DIR", "./downloads"),
            file_prefix=os.getenv("BACKUP_FILE_PREFIX", "lexiconforge"),
            retention_ms=int(os.getenv("BACKUP_RETENTION_MS", str(DEFAULT_RETENTION_MS))),
        )

    def __post_init__(self):
        """Validate configuration."""
        unknown = [t for t in self.tiers if t not in TIER_IDS]
        if unknown:
            raise ValueError(f"Unknown backup tiers: {unknown}. Available: {TIER_IDS}")
        if len(set(self.tiers)) != len(self.tiers):
            raise ValueError(f"Backup tiers must not repeat: {self.tiers}")
        if self.backup_db_backend not in {"sqlite", "redis"}:
            raise ValueError(f"Unknown backup DB backend: {self.backup_db_backend}")
        if self.handoff not in {"console", "none"}:
            raise ValueError(f"Unknown handoff: {self.handoff}")
        if self.local_storage_max_bytes <= 0:
            raise ValueError(f"local_storage_max_bytes must be positive, got {self.local_storage_max_bytes}")
        if self.local_storage_max_bytes > self.local_storage_quota_bytes:
            raise ValueError(
                f"local_storage_max_bytes ({self.local_storage_max_bytes}) must not exceed "
                f"local_storage_quota_bytes ({self.local_storage_quota_bytes})"
            )
        if self.retention_ms < 0:
            raise ValueError(f"retention_ms must be non-negative, got {self.retention_ms}")


@dataclass(frozen=True)
class GuardConfig:
    """Complete migration guard configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    expected_version: int = SCHEMA_VERSIONS["CURRENT"]
    blocked_retry_attempts: int = 3
    blocked_retry_wait: float = 0.5

    @classmethod
    def from_env(cls) -> 'GuardConfig':
        """Create complete config from environment variables."""
        return cls(
            store=StoreConfig.from_env(),
            backup=BackupConfig.from_env(),
            expected_version=int(os.getenv("GUARD_SCHEMA_VERSION", str(SCHEMA_VERSIONS["CURRENT"]))),
            blocked_retry_attempts=int(os.getenv("GUARD_BLOCKED_RETRY_ATTEMPTS", "3")),
            blocked_retry_wait=float(os.getenv("GUARD_BLOCKED_RETRY_WAIT", "0.5")),
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.expected_version <= 0:
            raise ValueError(f"expected_version must be positive, got {self.expected_version}")
        if self.blocked_retry_attempts <= 0:
            raise ValueError(f"blocked_retry_attempts must be positive, got {self.blocked_retry_attempts}")
        if self.blocked_retry_wait < 0:
            raise ValueError(f"blocked_retry_wait must be non-negative, got {self.blocked_retry_wait}")

    def to_dict(self) -> dict:
        """Flatten into a plain dict for logging and diagnostics."""
        data = asdict(self)
        if data["backup"].get("redis_password"):
            data["backup"]["redis_password"] = "***"
        return data

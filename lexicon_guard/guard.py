"""MigrationGuard: one object wiring the store, backup tiers, gate and restore."""

import os
from dataclasses import dataclass, field
from typing import Callable, Optional

from ._storage import LocalKVStorage, StorageFactory, StoreEnvironment
from ._storage.versioned import Connection, UpgradeCallback
from ._utils import logger
from .backup.manager import BackupManager
from .backup.metadata import BackupMetadataStore
from .backup.models import BackupMetadata, RestoreInfo, RestoreResult, VersionCheckResult
from .backup.tiers import UserHandoff, build_tiers
from .backup.version_gate import VersionGate
from .backup.writer import TieredBackupWriter
from .base import BaseBackupRecordStore
from .config import GuardConfig
from .connection import ConnectionManager
from .schema import apply_migrations


@dataclass
class MigrationGuard:
    """Guards the main store across schema upgrades.

    ``apply_upgrade`` is the application's real upgrade procedure; it only
    ever runs inside the store's upgrade callback. ``schema_version`` reports
    the version the application expects.
    """

    config: GuardConfig = field(default_factory=GuardConfig)
    apply_upgrade: UpgradeCallback = apply_migrations
    schema_version: Optional[Callable[[], int]] = None
    handoff: Optional[UserHandoff] = None
    record_store: Optional[BaseBackupRecordStore] = None

    def __post_init__(self):
        store_config = self.config.store
        backup_config = self.config.backup

        if self.schema_version is None:
            self.schema_version = lambda: self.config.expected_version

        self.environment = StoreEnvironment(
            store_config.data_dir,
            busy_timeout=store_config.busy_timeout,
            supports_introspection=store_config.use_introspection,
        )
        self.local_storage = LocalKVStorage(
            os.path.join(store_config.data_dir, backup_config.local_storage_file),
            quota_bytes=backup_config.local_storage_quota_bytes,
        )
        self.metadata_store = BackupMetadataStore(self.local_storage)

        if self.record_store is None:
            self.record_store = StorageFactory.create_backup_db(
                backup_config.backup_db_backend, self.environment, backup_config
            )
        self.tiers = build_tiers(
            backup_config,
            store_config.data_dir,
            self.local_storage,
            self.record_store,
            handoff=self.handoff,
        )
        self.writer = TieredBackupWriter(self.tiers, self.metadata_store)
        self.gate = VersionGate(self.environment, self.metadata_store)
        self.backup_manager = BackupManager(
            self.environment,
            self.metadata_store,
            self.writer,
            apply_upgrade=self.apply_upgrade,
            retention_ms=backup_config.retention_ms,
        )
        self.connection_manager = ConnectionManager(
            self.environment,
            self.gate,
            self.backup_manager,
            self.metadata_store,
            db_name=store_config.db_name,
            expected_version=self.schema_version(),
            apply_upgrade=self.apply_upgrade,
            blocked_retry_attempts=self.config.blocked_retry_attempts,
            blocked_retry_wait=self.config.blocked_retry_wait,
        )

        logger.info(
            f"MigrationGuard ready: db={store_config.db_name} v{self.schema_version()} "
            f"data_dir={store_config.data_dir} tiers={[t.tier_id for t in self.tiers]}"
        )

    @property
    def db_name(self) -> str:
        return self.config.store.db_name

    async def check_database_version(
        self, db_name: Optional[str] = None, expected_version: Optional[int] = None
    ) -> VersionCheckResult:
        return await self.gate.check(
            db_name or self.db_name,
            self.schema_version() if expected_version is None else expected_version,
        )

    async def create_pre_migration_backup(self, db_name: str, from_version: int, to_version: int) -> bool:
        return await self.backup_manager.create_pre_migration_backup(db_name, from_version, to_version)

    async def restore_from_backup(self, db_name: Optional[str] = None) -> RestoreResult:
        self._release(db_name)
        return await self.backup_manager.restore_from_backup(db_name or self.db_name)

    async def emergency_restore(self, raw_text: str, db_name: Optional[str] = None) -> RestoreResult:
        self._release(db_name)
        return await self.backup_manager.emergency_restore(raw_text, db_name or self.db_name)

    def get_backup_metadata(self) -> Optional[BackupMetadata]:
        return self.metadata_store.get()

    def clear_backup_metadata(self) -> None:
        self.metadata_store.clear()

    async def cleanup_old_backups(self, max_age_ms: Optional[int] = None) -> bool:
        return await self.backup_manager.cleanup_old_backups(max_age_ms)

    def can_restore_from_backup(self) -> bool:
        return self.backup_manager.can_restore_from_backup()

    def get_restore_info(self) -> RestoreInfo:
        return self.backup_manager.get_restore_info()

    async def start_fresh(self, db_name: Optional[str] = None) -> bool:
        self._release(db_name)
        return await self.backup_manager.start_fresh(db_name or self.db_name)

    async def prepare_connection(self) -> VersionCheckResult:
        return await self.connection_manager.prepare()

    async def get_connection(self) -> Connection:
        return await self.connection_manager.get_connection()

    @property
    def last_version_check(self) -> Optional[VersionCheckResult]:
        return self.connection_manager.last_version_check

    async def close(self) -> None:
        self.connection_manager.close()
        await self.record_store.close()
        self.environment.close_all()

    def _release(self, db_name: Optional[str]) -> None:
        # our own connection must not block deleting the store
        if db_name is None or db_name == self.db_name:
            self.connection_manager.reset()

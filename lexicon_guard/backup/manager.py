"""Pre-migration backup and post-failure restore orchestration."""

import asyncio
from typing import Dict, List, Optional

from .._storage.versioned import Connection, OpenMode, StoreEnvironment, UpgradeCallback
from .._utils import epoch_ms, format_mb, logger, utc_now
from ..config import DEFAULT_RETENTION_MS
from ..errors import InvalidBackupError, MigrationGuardError, RestoreError
from ..schema import ALL_STORES, apply_migrations
from .metadata import BackupMetadataStore
from .models import (
    BackupMetadata,
    BackupPayload,
    BackupStatus,
    BackupStorageTier,
    RecordsRestored,
    RestoreInfo,
    RestoreResult,
)
from .utils import needs_pre_migration_backup, parse_backup_json, serialize_payload
from .writer import TieredBackupWriter

KEY_STORES = ("chapters", "translations", "settings", "feedback")


class BackupManager:
    """Exports the store before an upgrade and replays it after a failed one."""

    def __init__(
        self,
        environment: StoreEnvironment,
        metadata_store: BackupMetadataStore,
        writer: TieredBackupWriter,
        apply_upgrade: UpgradeCallback = apply_migrations,
        retention_ms: int = DEFAULT_RETENTION_MS,
    ):
        """Initialize backup manager.

        Args:
            environment: Environment hosting the main store
            metadata_store: Repository of the backup metadata record
            writer: Tiered writer that holds backup payloads
            apply_upgrade: Upgrade procedure used to recreate the store at a given version
            retention_ms: Age after which a completed backup is cleaned up
        """
        self.environment = environment
        self.metadata_store = metadata_store
        self.writer = writer
        self.apply_upgrade = apply_upgrade
        self.retention_ms = retention_ms

    async def create_pre_migration_backup(self, db_name: str, from_version: int, to_version: int) -> bool:
        """Back up every collection of ``db_name`` before upgrading it.

        Must run before the store is opened at ``to_version``.

        Returns:
            True if a backup is stored (or none is needed). False means no tier
            accepted the backup and the upgrade must not go ahead.
        """
        if not needs_pre_migration_backup(from_version, to_version):
            logger.info("No backup needed (fresh install or same version)")
            return True

        logger.info(f"Creating backup before v{from_version} → v{to_version}")

        try:
            connection = await self.environment.open(
                db_name, from_version, mode=OpenMode.READ_ONLY_NO_UPGRADE
            )
            try:
                payload = await self._export_all_stores(connection, from_version, to_version)
            finally:
                connection.close()

            payload_json = serialize_payload(payload)
            logger.info(f"Backup size: {format_mb(payload.metadata.size_bytes)}")

            stored = await self.writer.store(payload_json, payload.metadata)
        except Exception as e:
            logger.error(f"Failed to create backup: {e}")
            return False

        if not stored:
            logger.error("Failed to store backup in any storage tier")
            return False

        logger.info(f"Backup created successfully in {payload.metadata.storage.value}")
        return True

    async def restore_from_backup(self, db_name: str) -> RestoreResult:
        """Replace ``db_name`` with the stored backup, at the backup's version.

        The payload is retrieved and parsed before the store is touched. On
        failure the metadata and the payload stay where they are.
        """
        metadata = self.metadata_store.get()
        if metadata is None:
            return RestoreResult(success=False, message="No backup metadata found")

        if metadata.storage == BackupStorageTier.USER_DOWNLOAD:
            return RestoreResult(
                success=False,
                message=(
                    f"Backup was saved as a user download ({metadata.file_name or 'unknown file'}). "
                    "Upload that file to restore it."
                ),
            )

        logger.info(f"Starting restore from {metadata.storage.value} backup (target v{metadata.from_version})")

        try:
            payload = await self._load_payload(metadata)
        except InvalidBackupError as e:
            return RestoreResult(success=False, message=str(e))

        try:
            restored = await self._replace_database(db_name, metadata.from_version, payload)
        except Exception as e:
            logger.error(f"Restore failed: {e}")
            return RestoreResult(success=False, message=f"Restore failed: {e}")

        # restore is complete once metadata is gone; leftover artifacts are only clutter
        self.metadata_store.clear()
        await self.writer.cleanup(metadata)

        return RestoreResult(
            success=True,
            message=f"Successfully restored {restored.chapters} chapters and {restored.translations} translations",
            restored_version=metadata.from_version,
            records_restored=restored,
        )

    async def emergency_restore(self, raw_text: str, db_name: str) -> RestoreResult:
        """Restore from backup text the user supplied, e.g. a downloaded backup file."""
        payload = parse_backup_json(raw_text)
        if payload is None or payload.metadata.from_version < 1:
            return RestoreResult(success=False, message="Invalid backup file format")

        from_version = payload.metadata.from_version
        logger.info(f"Emergency restore requested (target v{from_version})")

        try:
            restored = await self._replace_database(db_name, from_version, payload)
        except Exception as e:
            logger.error(f"Emergency restore failed: {e}")
            return RestoreResult(success=False, message=f"Emergency restore failed: {e}")

        lingering = self.metadata_store.get()
        self.metadata_store.clear()
        if lingering is not None:
            await self.writer.cleanup(lingering)

        return RestoreResult(
            success=True,
            message=f"Successfully restored {restored.chapters} chapters and {restored.translations} translations",
            restored_version=from_version,
            records_restored=restored,
        )

    async def cleanup_old_backups(self, max_age_ms: Optional[int] = None) -> bool:
        """Delete a completed backup older than ``max_age_ms``.

        Pending and failed backups are never removed here.

        Returns:
            True if a backup was removed.
        """
        max_age_ms = self.retention_ms if max_age_ms is None else max_age_ms
        metadata = self.metadata_store.get()
        if metadata is None or metadata.status != BackupStatus.COMPLETED:
            return False

        backup_age = epoch_ms() - epoch_ms(metadata.timestamp)
        if backup_age < max_age_ms:
            return False

        logger.info("Cleaning up old backup...")
        await self.writer.cleanup(metadata)
        self.metadata_store.clear()
        logger.info("Old backup cleaned up")
        return True

    def can_restore_from_backup(self) -> bool:
        metadata = self.metadata_store.get()
        return metadata is not None and metadata.status == BackupStatus.FAILED

    def get_restore_info(self) -> RestoreInfo:
        metadata = self.metadata_store.get()
        if metadata is None:
            return RestoreInfo(available=False, reason="No backup metadata found")
        if metadata.status == BackupStatus.COMPLETED:
            return RestoreInfo(available=False, metadata=metadata, reason="Backup already marked completed")
        if metadata.status == BackupStatus.PENDING:
            return RestoreInfo(
                available=False, metadata=metadata, reason="Migration still in progress (backup pending)"
            )
        return RestoreInfo(available=True, metadata=metadata)

    async def start_fresh(self, db_name: str) -> bool:
        """Drop every backup artifact and the store itself.

        Raises:
            BlockedError: Connections to the store are still open.
        """
        metadata = self.metadata_store.get()
        if metadata is not None:
            await self.writer.cleanup(metadata)
        self.metadata_store.clear()
        deleted = await self.environment.delete_database(db_name)
        logger.info(f"Started fresh: {db_name} {'deleted' if deleted else 'did not exist'}")
        return deleted

    async def _export_all_stores(
        self, connection: Connection, from_version: int, to_version: int
    ) -> BackupPayload:
        present = [name for name in ALL_STORES if name in connection.collection_names]

        # one readonly transaction keeps every collection at the same snapshot
        async with connection.transaction(present) as tx:
            results = await asyncio.gather(*(tx.get_all(name) for name in present))
        rows: Dict[str, List[dict]] = dict(zip(present, results))

        metadata = BackupMetadata(
            from_version=from_version,
            to_version=to_version,
            timestamp=utc_now(),
            chapter_count=len(rows.get("chapters", [])),
            translation_count=len(rows.get("translations", [])),
            size_bytes=0,
            status=BackupStatus.PENDING,
            storage=BackupStorageTier.LOCAL_STORAGE,
        )
        return BackupPayload(
            metadata=metadata,
            **{BackupPayload.STORE_FIELDS[name]: rows.get(name, []) for name in ALL_STORES},
        )

    async def _load_payload(self, metadata: BackupMetadata) -> BackupPayload:
        raw = await self.writer.retrieve(metadata)
        if not raw:
            raise InvalidBackupError("Could not retrieve backup data")
        payload = parse_backup_json(raw)
        if payload is None:
            raise InvalidBackupError("Stored backup data is not a valid backup")
        self._check_counts(metadata, payload)
        return payload

    async def _replace_database(self, db_name: str, version: int, payload: BackupPayload) -> RecordsRestored:
        try:
            await self.environment.delete_database(db_name)
            connection = await self.environment.open(
                db_name, version, mode=OpenMode.REAL_UPGRADE, on_upgrade=self.apply_upgrade
            )
        except MigrationGuardError as e:
            raise RestoreError(f"Could not recreate {db_name} at v{version}: {e}") from e
        try:
            return await self._restore_all_stores(connection, payload)
        finally:
            connection.close()

    async def _restore_all_stores(self, connection: Connection, payload: BackupPayload) -> RecordsRestored:
        present = [name for name in ALL_STORES if name in connection.collection_names]
        skipped = [name for name in ALL_STORES if name not in present and payload.rows_for(name)]
        if skipped:
            logger.warning(f"Collections missing at v{connection.version}, not restored: {skipped}")

        if present:
            async with connection.transaction(present, "readwrite") as tx:
                for name in present:
                    await tx.put_many(name, payload.rows_for(name))

        counts = {name: len(payload.rows_for(name)) for name in present}
        return RecordsRestored(
            chapters=counts.get("chapters", 0),
            translations=counts.get("translations", 0),
            settings=counts.get("settings", 0),
            feedback=counts.get("feedback", 0),
            other=sum(count for name, count in counts.items() if name not in KEY_STORES),
        )

    @staticmethod
    def _check_counts(metadata: BackupMetadata, payload: BackupPayload) -> None:
        if (
            len(payload.chapters) != metadata.chapter_count
            or len(payload.translations) != metadata.translation_count
        ):
            logger.warning(
                f"Backup counts differ from metadata: {len(payload.chapters)} chapters "
                f"(expected {metadata.chapter_count}), {len(payload.translations)} translations "
                f"(expected {metadata.translation_count})"
            )

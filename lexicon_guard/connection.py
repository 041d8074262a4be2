"""Startup path to the main store: check, back up, then open for real."""

import asyncio
from typing import Optional

from tenacity import retry, retry_if_result, stop_after_attempt, wait_exponential

from ._storage.versioned import Connection, OpenMode, StoreEnvironment, UpgradeCallback
from ._utils import logger
from .backup.manager import BackupManager
from .backup.metadata import BackupMetadataStore
from .backup.models import VersionCheckAction, VersionCheckResult, VersionCheckStatus
from .backup.version_gate import VersionGate, format_version_check, should_block_app
from .errors import StoreAccessError, UpgradeAbortedError, UpgradeError


def _is_blocked(result: VersionCheckResult) -> bool:
    return result.status == VersionCheckStatus.BLOCKED


class ConnectionManager:
    """Owns the one read-write connection of the application.

    ``prepare()`` runs the version gate and, when an upgrade is about to
    happen, the pre-migration backup. ``get_connection()`` then opens the
    store in upgrade mode and moves the backup metadata to completed or
    failed depending on how the upgrade went.
    """

    def __init__(
        self,
        environment: StoreEnvironment,
        gate: VersionGate,
        backup_manager: BackupManager,
        metadata_store: BackupMetadataStore,
        db_name: str,
        expected_version: int,
        apply_upgrade: UpgradeCallback,
        blocked_retry_attempts: int = 3,
        blocked_retry_wait: float = 0.5,
    ):
        self.environment = environment
        self.gate = gate
        self.backup_manager = backup_manager
        self.metadata_store = metadata_store
        self.db_name = db_name
        self.expected_version = expected_version
        self.apply_upgrade = apply_upgrade

        self._connection: Optional[Connection] = None
        self._version_check: Optional[VersionCheckResult] = None
        self._lock = asyncio.Lock()

        # a blocked check is retried; the last result is returned when attempts run out
        self._retry_decorator = retry(
            stop=stop_after_attempt(blocked_retry_attempts),
            wait=wait_exponential(multiplier=blocked_retry_wait, max=10),
            retry=retry_if_result(_is_blocked),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )

    @property
    def last_version_check(self) -> Optional[VersionCheckResult]:
        return self._version_check

    async def prepare(self) -> VersionCheckResult:
        """Check the store and back it up if the coming open will upgrade it."""
        result = await self._retry_decorator(self.gate.check)(self.db_name, self.expected_version)
        logger.info(f"Version check: {format_version_check(result)}")

        if should_block_app(result):
            self._version_check = result
            return result

        if result.requires_backup and result.current_on_disk_version is not None:
            logger.info("Creating pre-migration backup...")
            backup_ok = await self.backup_manager.create_pre_migration_backup(
                self.db_name, result.current_on_disk_version, self.expected_version
            )
            if not backup_ok:
                logger.error("Backup failed; refusing to upgrade without a backup")
                result = result.model_copy(update={
                    "can_proceed": False,
                    "message": (
                        f"Could not store a backup of your data (v{result.current_on_disk_version}). "
                        "The upgrade was not started. Free some space or save the backup file, then retry."
                    ),
                    "action": VersionCheckAction.CREATE_BACKUP,
                })

        self._version_check = result
        return result

    async def get_connection(self) -> Connection:
        """Return the open connection, preparing and opening the store on first use.

        Raises:
            StoreAccessError: The version check says the app must not open the store.
            UpgradeError: The upgrade failed; the backup is marked failed.
        """
        if self._connection is not None and not self._connection.closed:
            return self._connection

        async with self._lock:
            if self._connection is not None and not self._connection.closed:
                return self._connection

            if self._version_check is None:
                await self.prepare()
            result = self._version_check
            if should_block_app(result):
                raise StoreAccessError(result.message, status=result.status.value)

            try:
                connection = await self.environment.open(
                    self.db_name,
                    self.expected_version,
                    mode=OpenMode.REAL_UPGRADE,
                    on_upgrade=self.apply_upgrade,
                )
            except (UpgradeError, UpgradeAbortedError):
                if result.requires_backup:
                    self.metadata_store.mark_failed()
                raise

            if result.requires_backup:
                self.metadata_store.mark_completed()
                try:
                    await self.backup_manager.cleanup_old_backups()
                except Exception as e:
                    logger.warning(f"Backup cleanup failed: {e}")

            connection.on_versionchange = self._on_versionchange
            self._connection = connection
            return connection

    def _on_versionchange(self, old_version: int, new_version: Optional[int]) -> None:
        logger.info(f"Another connection requested v{old_version} -> {new_version}; closing")
        self.close()

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
        self._connection = None

    def reset(self) -> None:
        """Close the connection and forget the last version check."""
        self.close()
        self._version_check = None

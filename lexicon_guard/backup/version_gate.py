"""Classify the on-disk store against the expected schema version, without upgrading it."""

from typing import Optional

from .._storage.versioned import OpenMode, StoreEnvironment
from .._utils import logger
from ..errors import BlockedError, MigrationGuardError, UpgradePreconditionError
from .metadata import BackupMetadataStore
from .models import (
    BackupStatus,
    VersionCheckAction,
    VersionCheckResult,
    VersionCheckStatus,
)
from .utils import needs_pre_migration_backup

STATUS_TITLES = {
    VersionCheckStatus.OK: "Ready",
    VersionCheckStatus.FRESH_INSTALL: "Welcome",
    VersionCheckStatus.UPGRADE_NEEDED: "Database Upgrade",
    VersionCheckStatus.DB_NEWER: "App Update Required",
    VersionCheckStatus.DB_CORRUPTED: "Database Error",
    VersionCheckStatus.MIGRATION_FAILED: "Migration Failed",
    VersionCheckStatus.BLOCKED: "Database Busy",
}

ACTION_BUTTON_TEXT = {
    VersionCheckAction.UPDATE_APP: "Check for Updates",
    VersionCheckAction.RESTORE_BACKUP: "Restore from Backup",
    VersionCheckAction.CREATE_BACKUP: "Continue with Backup",
    VersionCheckAction.FRESH_START: "Start Fresh",
}


class VersionGate:
    """Runs before the store is opened for real and decides whether startup may go on.

    The gate only ever opens the store in ``READ_ONLY_NO_UPGRADE`` mode, so
    checking can never change the schema.
    """

    def __init__(
        self,
        environment: StoreEnvironment,
        metadata_store: BackupMetadataStore,
        use_introspection: bool = True,
        app_name: str = "LexiconForge",
    ):
        self.environment = environment
        self.metadata_store = metadata_store
        self.use_introspection = use_introspection
        self.app_name = app_name

    async def check(self, db_name: str, expected_version: int) -> VersionCheckResult:
        """Classify ``db_name`` into exactly one ``VersionCheckStatus``."""
        metadata = self.metadata_store.get()
        if metadata is not None and metadata.status == BackupStatus.FAILED:
            return VersionCheckResult(
                status=VersionCheckStatus.MIGRATION_FAILED,
                current_on_disk_version=metadata.from_version,
                expected_version=expected_version,
                can_proceed=False,
                requires_backup=False,
                message=(
                    f"Previous migration to v{metadata.to_version} failed. "
                    f"A backup from v{metadata.from_version} is available."
                ),
                action=VersionCheckAction.RESTORE_BACKUP,
            )

        try:
            current = await self.peek_version(db_name)
        except BlockedError as e:
            logger.warning(f"Version check for {db_name} blocked: {e}")
            return VersionCheckResult(
                status=VersionCheckStatus.BLOCKED,
                expected_version=expected_version,
                can_proceed=False,
                message=(
                    f"Database is being used by another tab. "
                    f"Please close other {self.app_name} tabs and try again."
                ),
            )
        except Exception as e:
            logger.error(f"Version check for {db_name} failed: {e}")
            return VersionCheckResult(
                status=VersionCheckStatus.DB_CORRUPTED,
                expected_version=expected_version,
                can_proceed=False,
                message=f"Could not read database: {e}",
                action=VersionCheckAction.FRESH_START,
            )

        return self.classify(current, expected_version)

    @staticmethod
    def classify(current: Optional[int], expected_version: int) -> VersionCheckResult:
        """Map an on-disk version (None when absent) to a result."""
        if current is None:
            return VersionCheckResult(
                status=VersionCheckStatus.FRESH_INSTALL,
                expected_version=expected_version,
                can_proceed=True,
                message="Fresh installation, no existing data.",
            )
        if current == expected_version:
            return VersionCheckResult(
                status=VersionCheckStatus.OK,
                current_on_disk_version=current,
                expected_version=expected_version,
                can_proceed=True,
                message="Database version matches app version.",
            )
        if current < expected_version:
            return VersionCheckResult(
                status=VersionCheckStatus.UPGRADE_NEEDED,
                current_on_disk_version=current,
                expected_version=expected_version,
                can_proceed=True,
                requires_backup=needs_pre_migration_backup(current, expected_version),
                message=(
                    f"Database will be upgraded from v{current} to v{expected_version}. "
                    "A backup will be created first."
                ),
                action=VersionCheckAction.CREATE_BACKUP,
            )
        return VersionCheckResult(
            status=VersionCheckStatus.DB_NEWER,
            current_on_disk_version=current,
            expected_version=expected_version,
            can_proceed=False,
            message=(
                f"Your database (v{current}) is from a newer version of the app "
                f"(expects v{expected_version}). Please update the app or use the "
                "newer version to export your data."
            ),
            action=VersionCheckAction.UPDATE_APP,
        )

    async def peek_version(self, db_name: str) -> Optional[int]:
        """On-disk version of ``db_name``, or None if it does not exist."""
        if self.use_introspection:
            try:
                for info in await self.environment.databases():
                    if info.name == db_name:
                        return info.version
                return None
            except NotImplementedError:
                pass
            except MigrationGuardError as e:
                logger.debug(f"Introspection failed, falling back to open: {e}")
        return await self._open_to_check_version(db_name)

    async def _open_to_check_version(self, db_name: str) -> Optional[int]:
        try:
            connection = await self.environment.open(db_name, mode=OpenMode.READ_ONLY_NO_UPGRADE)
        except UpgradePreconditionError as e:
            # an upgrade from v0 means the database does not exist; nothing was created
            if e.old_version == 0:
                return None
            raise
        version = connection.version
        connection.close()
        return version


def format_version_check(result: VersionCheckResult) -> str:
    """One-line summary for logs."""
    parts = [
        f"Status: {result.status.value}",
        f"DB Version: {result.current_on_disk_version if result.current_on_disk_version is not None else 'none'}",
        f"App Version: {result.expected_version}",
        f"Can Proceed: {str(result.can_proceed).lower()}",
        f"Requires Backup: {str(result.requires_backup).lower()}",
    ]
    if result.action:
        parts.append(f"Action: {result.action.value}")
    return " | ".join(parts)


def should_show_upgrade_notice(result: VersionCheckResult) -> bool:
    return result.status == VersionCheckStatus.UPGRADE_NEEDED and result.requires_backup


def should_block_app(result: VersionCheckResult) -> bool:
    return not result.can_proceed


def get_status_title(status: VersionCheckStatus) -> str:
    return STATUS_TITLES.get(status, "Database Status")


def get_action_button_text(action: Optional[VersionCheckAction] = None) -> str:
    return ACTION_BUTTON_TEXT.get(action, "Continue") if action else "Continue"

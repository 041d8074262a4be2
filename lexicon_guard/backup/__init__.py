"""Pre-migration backup, tiered storage, version gate and restore."""

from .manager import BackupManager
from .metadata import BACKUP_METADATA_KEY, BackupMetadataStore
from .models import (
    BackupMetadata,
    BackupPayload,
    BackupStatus,
    BackupStorageTier,
    RecordsRestored,
    RestoreInfo,
    RestoreResult,
    VersionCheckAction,
    VersionCheckResult,
    VersionCheckStatus,
)
from .version_gate import (
    VersionGate,
    format_version_check,
    get_action_button_text,
    get_status_title,
    should_block_app,
    should_show_upgrade_notice,
)
from .writer import TieredBackupWriter

__all__ = [
    "BACKUP_METADATA_KEY",
    "BackupManager",
    "BackupMetadata",
    "BackupMetadataStore",
    "BackupPayload",
    "BackupStatus",
    "BackupStorageTier",
    "RecordsRestored",
    "RestoreInfo",
    "RestoreResult",
    "TieredBackupWriter",
    "VersionCheckAction",
    "VersionCheckResult",
    "VersionCheckStatus",
    "VersionGate",
    "format_version_check",
    "get_action_button_text",
    "get_status_title",
    "should_block_app",
    "should_show_upgrade_notice",
]

"""Backup tiers, in fallback order."""

from typing import Callable, Dict, List, Optional

from ..._storage.kv_local import LocalKVStorage
from ...base import BaseBackupRecordStore, BaseBackupTier
from ...config import BackupConfig
from .backup_db import BackupDBTier
from .file_system import FileSystemTier
from .local_storage import BACKUP_DATA_KEY, LocalStorageTier
from .user_download import ConsoleHandoff, NoHandoff, UserDownloadTier, UserHandoff, confirm_message


def default_handoff(config: BackupConfig) -> UserHandoff:
    if config.handoff == "console":
        return ConsoleHandoff(config.download_dir)
    return NoHandoff()


def build_tiers(
    config: BackupConfig,
    data_dir: str,
    local_storage: LocalKVStorage,
    record_store: BaseBackupRecordStore,
    handoff: Optional[UserHandoff] = None,
) -> List[BaseBackupTier]:
    """Instantiate the configured tiers in ``config.tiers`` order."""
    handoff = handoff or default_handoff(config)
    builders: Dict[str, Callable[[], BaseBackupTier]] = {
        "tier-A": lambda: FileSystemTier(data_dir, config.backups_dir_name),
        "tier-B": lambda: BackupDBTier(record_store),
        "tier-C": lambda: LocalStorageTier(local_storage, config.local_storage_max_bytes),
        "tier-D": lambda: UserDownloadTier(handoff, config.file_prefix),
    }
    return [builders[tier_id]() for tier_id in config.tiers]


__all__ = [
    "BACKUP_DATA_KEY",
    "BackupDBTier",
    "ConsoleHandoff",
    "FileSystemTier",
    "LocalStorageTier",
    "NoHandoff",
    "UserDownloadTier",
    "UserHandoff",
    "build_tiers",
    "confirm_message",
    "default_handoff",
]

"""Tier C: the small synchronous key-value store, under a conservative ceiling."""

from typing import Optional

from ..._storage.kv_local import LocalKVStorage
from ..._utils import format_mb, logger
from ...base import BaseBackupTier
from ...errors import TierStorageError
from ..models import BackupMetadata, BackupStorageTier
from ..utils import payload_size

BACKUP_DATA_KEY = "lexiconforge-migration-backup-data"


class LocalStorageTier(BaseBackupTier):
    """Keeps the payload next to the metadata record.

    Payloads over ``max_bytes`` are rejected without an attempt; the ceiling
    sits below the store's real quota so the metadata record still fits.
    """

    tier_id = BackupStorageTier.LOCAL_STORAGE.value
    name = "local storage"

    def __init__(self, storage: LocalKVStorage, max_bytes: int = 4 * 1024 * 1024, key: str = BACKUP_DATA_KEY):
        self.storage = storage
        self.max_bytes = max_bytes
        self.key = key

    async def try_store(self, payload_json: str, metadata: BackupMetadata) -> bool:
        size = payload_size(payload_json)
        if size > self.max_bytes:
            logger.warning(
                f"[{self.tier_id}] Backup too large ({format_mb(size)} > {format_mb(self.max_bytes)}), skipping"
            )
            return False
        try:
            self.storage.set_item(self.key, payload_json)
        except (TierStorageError, OSError) as e:
            logger.warning(f"[{self.tier_id}] Failed to store backup: {e}")
            return False
        logger.info(f"[{self.tier_id}] Stored backup ({format_mb(size)})")
        return True

    async def try_retrieve(self, metadata: BackupMetadata) -> Optional[str]:
        try:
            return self.storage.get_item(self.key)
        except TierStorageError as e:
            logger.error(f"[{self.tier_id}] Failed to read backup: {e}")
            return None

    async def try_cleanup(self, metadata: BackupMetadata) -> bool:
        try:
            self.storage.remove_item(self.key)
        except (TierStorageError, OSError) as e:
            logger.warning(f"[{self.tier_id}] Failed to delete backup: {e}")
            return False
        return True

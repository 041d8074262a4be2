"""Repository for the single backup metadata record."""

from typing import Optional

from pydantic import ValidationError

from .._storage.kv_local import LocalKVStorage
from .._utils import logger
from ..errors import TierStorageError
from .models import BackupMetadata, BackupStatus

BACKUP_METADATA_KEY = "lexiconforge-migration-backup-metadata"


class BackupMetadataStore:
    """Holds at most one ``BackupMetadata`` record in the local key-value store.

    The record lives outside the main store so it survives when the main
    store is wiped. Reads never raise: a missing, unreadable or malformed
    record is reported as ``None``.
    """

    def __init__(self, storage: LocalKVStorage, key: str = BACKUP_METADATA_KEY):
        self.storage = storage
        self.key = key

    def get(self) -> Optional[BackupMetadata]:
        try:
            raw = self.storage.get_item(self.key)
        except TierStorageError as e:
            logger.warning(f"Could not read backup metadata: {e}")
            return None
        if not raw:
            return None
        try:
            return BackupMetadata.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed backup metadata: {e.error_count()} error(s)")
            return None

    def set(self, metadata: BackupMetadata) -> None:
        self.storage.set_item(self.key, metadata.model_dump_json(by_alias=True))

    def clear(self) -> None:
        self.storage.remove_item(self.key)

    def mark_completed(self) -> Optional[BackupMetadata]:
        return self._set_status(BackupStatus.COMPLETED)

    def mark_failed(self) -> Optional[BackupMetadata]:
        return self._set_status(BackupStatus.FAILED)

    def _set_status(self, status: BackupStatus) -> Optional[BackupMetadata]:
        metadata = self.get()
        if metadata is None:
            return None
        metadata.status = status
        self.set(metadata)
        logger.info(f"Backup v{metadata.from_version} marked {status.value}")
        return metadata

"""Tier B: backup records in a secondary, independent store."""

import json
from typing import Optional

from ..._utils import format_mb, logger
from ...base import BaseBackupRecordStore, BaseBackupTier
from ..models import BackupMetadata, BackupStorageTier
from ..utils import backup_record, backup_record_id


class BackupDBTier(BaseBackupTier):
    """One record per backup, keyed ``v{from_version}-{timestamp}``."""

    tier_id = BackupStorageTier.BACKUP_DB.value
    name = "backup database"

    def __init__(self, record_store: BaseBackupRecordStore):
        self.record_store = record_store

    async def try_store(self, payload_json: str, metadata: BackupMetadata) -> bool:
        record_id = backup_record_id(metadata)
        try:
            await self.record_store.put_record(record_id, backup_record(payload_json, metadata))
        except Exception as e:
            logger.warning(f"[{self.tier_id}] Failed to store backup record {record_id}: {e}")
            return False
        metadata.file_name = record_id
        logger.info(f"[{self.tier_id}] Stored backup record {record_id} ({format_mb(metadata.size_bytes)})")
        return True

    async def try_retrieve(self, metadata: BackupMetadata) -> Optional[str]:
        record_id = metadata.file_name or backup_record_id(metadata)
        try:
            record = await self.record_store.get_record(record_id)
        except Exception as e:
            logger.error(f"[{self.tier_id}] Failed to read backup record {record_id}: {e}")
            return None
        if not record or "data" not in record:
            return None
        data = record["data"]
        # older records hold the payload object rather than its JSON text
        return data if isinstance(data, str) else json.dumps(data)

    async def try_cleanup(self, metadata: BackupMetadata) -> bool:
        record_id = metadata.file_name or backup_record_id(metadata)
        try:
            await self.record_store.delete_record(record_id)
        except Exception as e:
            logger.warning(f"[{self.tier_id}] Failed to delete backup record {record_id}: {e}")
            return False
        logger.info(f"[{self.tier_id}] Deleted backup record {record_id}")
        return True

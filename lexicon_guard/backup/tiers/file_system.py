"""Tier A: backup files in a dedicated directory of the app data dir."""

import asyncio
import os
from typing import Optional

from ..._utils import format_mb, logger
from ...base import BaseBackupTier
from ..models import BackupMetadata, BackupStorageTier
from ..utils import file_system_file_name


class FileSystemTier(BaseBackupTier):
    """Writes each backup to its own file; no meaningful size ceiling."""

    tier_id = BackupStorageTier.FILE_SYSTEM.value
    name = "file system"

    def __init__(self, data_dir: str, backups_dir_name: str = "migration-backups"):
        self.backups_dir = os.path.join(data_dir, backups_dir_name)

    async def is_available(self) -> bool:
        try:
            await asyncio.to_thread(os.makedirs, self.backups_dir, exist_ok=True)
        except OSError as e:
            logger.warning(f"[{self.tier_id}] Backups directory unavailable: {e}")
            return False
        return os.access(self.backups_dir, os.W_OK)

    async def try_store(self, payload_json: str, metadata: BackupMetadata) -> bool:
        if not await self.is_available():
            return False
        file_name = file_system_file_name(metadata.from_version, metadata.timestamp)
        path = os.path.join(self.backups_dir, file_name)
        try:
            await asyncio.to_thread(self._write, path, payload_json)
        except OSError as e:
            logger.warning(f"[{self.tier_id}] Failed to write {file_name}: {e}")
            return False
        metadata.file_name = file_name
        logger.info(f"[{self.tier_id}] Stored backup {file_name} ({format_mb(metadata.size_bytes)})")
        return True

    async def try_retrieve(self, metadata: BackupMetadata) -> Optional[str]:
        if not metadata.file_name:
            return None
        path = os.path.join(self.backups_dir, metadata.file_name)
        try:
            return await asyncio.to_thread(self._read, path)
        except OSError as e:
            logger.error(f"[{self.tier_id}] Failed to read {metadata.file_name}: {e}")
            return None

    async def try_cleanup(self, metadata: BackupMetadata) -> bool:
        if not metadata.file_name:
            return False
        path = os.path.join(self.backups_dir, metadata.file_name)
        try:
            await asyncio.to_thread(os.remove, path)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"[{self.tier_id}] Failed to delete {metadata.file_name}: {e}")
            return False
        logger.info(f"[{self.tier_id}] Deleted backup {metadata.file_name}")
        return True

    @staticmethod
    def _write(path: str, payload_json: str) -> None:
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(payload_json)
        os.replace(tmp_path, path)

    @staticmethod
    def _read(path: str) -> str:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

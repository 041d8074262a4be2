"""Backup record store kept in its own versioned database."""

import asyncio
from typing import Any, Dict, Optional

from .._utils import logger
from ..base import BaseBackupRecordStore
from .versioned import Connection, OpenMode, StoreEnvironment, UpgradeTransaction

BACKUP_DB_VERSION = 1
BACKUP_COLLECTION = "backups"


def _create_backup_schema(raw, tx: UpgradeTransaction, old_version: int, new_version: int) -> None:
    if BACKUP_COLLECTION not in tx.collection_names():
        tx.create_collection(BACKUP_COLLECTION, "id")


class SQLiteBackupDB(BaseBackupRecordStore):
    """Backup records in a separate database that application migrations never touch."""

    def __init__(self, environment: StoreEnvironment, db_name: str = "lexiconforge-backups"):
        self.environment = environment
        self.db_name = db_name
        self._connection: Optional[Connection] = None
        self._lock = asyncio.Lock()

    async def _ensure_initialized(self) -> Connection:
        async with self._lock:
            if self._connection is None or self._connection.closed:
                connection = await self.environment.open(
                    self.db_name,
                    BACKUP_DB_VERSION,
                    mode=OpenMode.REAL_UPGRADE,
                    on_upgrade=_create_backup_schema,
                )
                connection.on_versionchange = lambda old, new: connection.close()
                self._connection = connection
                logger.debug(f"Opened backup database {self.db_name}")
            return self._connection

    async def put_record(self, record_id: str, record: Dict[str, Any]) -> None:
        connection = await self._ensure_initialized()
        async with connection.transaction(BACKUP_COLLECTION, "readwrite") as tx:
            await tx.put(BACKUP_COLLECTION, {**record, "id": record_id})

    async def get_record(self, record_id: str) -> Optional[Dict[str, Any]]:
        connection = await self._ensure_initialized()
        async with connection.transaction(BACKUP_COLLECTION) as tx:
            return await tx.get(BACKUP_COLLECTION, record_id)

    async def delete_record(self, record_id: str) -> None:
        connection = await self._ensure_initialized()
        async with connection.transaction(BACKUP_COLLECTION, "readwrite") as tx:
            await tx.delete(BACKUP_COLLECTION, record_id)

    async def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

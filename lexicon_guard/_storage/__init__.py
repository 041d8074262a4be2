"""Storage module with lazy loading support."""

from typing import TYPE_CHECKING

from .factory import StorageFactory, _register_backends
from .kv_local import LocalKVStorage
from .versioned import (
    Connection,
    DatabaseInfo,
    OpenMode,
    StoreEnvironment,
    Transaction,
    UpgradeTransaction,
)

if TYPE_CHECKING:
    from .backup_db import SQLiteBackupDB
    from .kv_redis import RedisBackupDB


def __getattr__(name):
    """Lazy import backup record stores so redis loads only when used."""
    if name == "SQLiteBackupDB":
        from .backup_db import SQLiteBackupDB
        return SQLiteBackupDB
    elif name == "RedisBackupDB":
        from .kv_redis import RedisBackupDB
        return RedisBackupDB
    else:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "StorageFactory",
    "_register_backends",
    "LocalKVStorage",
    "StoreEnvironment",
    "Connection",
    "Transaction",
    "UpgradeTransaction",
    "DatabaseInfo",
    "OpenMode",
    "SQLiteBackupDB",
    "RedisBackupDB",
]

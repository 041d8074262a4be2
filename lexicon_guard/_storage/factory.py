"""Storage factory for the backup-database tier backends."""

from typing import Callable, Dict, Type

from ..base import BaseBackupRecordStore
from ..config import BackupConfig
from .versioned import StoreEnvironment


class StorageFactory:
    """Factory for creating backup record stores with validation and registration."""

    _backup_db_backends: Dict[str, Callable[[], Type[BaseBackupRecordStore]]] = {}

    ALLOWED_BACKUP_DB = {"sqlite", "redis"}

    @classmethod
    def register_backup_db(cls, name: str, backend_loader: Callable[[], Type[BaseBackupRecordStore]]) -> None:
        """Register a backup record store backend.

        Args:
            name: Backend name (must be in ALLOWED_BACKUP_DB)
            backend_loader: Function that returns the record store class

        Raises:
            ValueError: If backend name not in allowed list
        """
        if name not in cls.ALLOWED_BACKUP_DB:
            raise ValueError(f"Backend {name} not in allowed backup DB backends: {cls.ALLOWED_BACKUP_DB}")
        cls._backup_db_backends[name] = backend_loader

    @classmethod
    def create_backup_db(
        cls,
        backend: str,
        environment: StoreEnvironment,
        config: BackupConfig,
    ) -> BaseBackupRecordStore:
        """Create a backup record store.

        Args:
            backend: Backend name
            environment: Environment hosting the sqlite backend's database
            config: Backup configuration

        Returns:
            Record store instance (connections open lazily)

        Raises:
            ValueError: If backend not registered
        """
        if backend not in cls._backup_db_backends:
            _register_backends()
            if backend not in cls._backup_db_backends:
                raise ValueError(
                    f"Unknown backup DB backend: {backend}. Available: {list(cls._backup_db_backends.keys())}"
                )

        backend_class = cls._backup_db_backends[backend]()
        if backend == "redis":
            return backend_class(
                redis_url=config.redis_url,
                redis_password=config.redis_password,
                namespace=config.backup_db_name,
                max_connections=config.redis_max_connections,
                socket_timeout=config.redis_socket_timeout,
                connection_timeout=config.redis_connection_timeout,
            )
        return backend_class(environment=environment, db_name=config.backup_db_name)


def _get_sqlite_backup_db():
    """Lazy loader for the SQLite backup database."""
    from .backup_db import SQLiteBackupDB
    return SQLiteBackupDB


def _get_redis_backup_db():
    """Lazy loader for the Redis backup database."""
    from .kv_redis import RedisBackupDB
    return RedisBackupDB


def _register_backends():
    """Register built-in backends with lazy loaders. Called when factory is first used."""
    if not StorageFactory._backup_db_backends:
        StorageFactory.register_backup_db("sqlite", _get_sqlite_backup_db)
        StorageFactory.register_backup_db("redis", _get_redis_backup_db)

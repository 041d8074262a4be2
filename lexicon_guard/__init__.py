from .config import BackupConfig, GuardConfig, StoreConfig
from .guard import MigrationGuard
from .schema import SCHEMA_VERSIONS, STORE_NAMES, apply_migrations, schema_version

__version__ = "0.1.0"
__author__ = "LexiconForge contributors"
__url__ = ""

__all__ = [
    "BackupConfig",
    "GuardConfig",
    "MigrationGuard",
    "SCHEMA_VERSIONS",
    "STORE_NAMES",
    "StoreConfig",
    "apply_migrations",
    "schema_version",
]

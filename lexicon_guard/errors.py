"""Exception hierarchy for the migration guard."""

from typing import Optional


class MigrationGuardError(RuntimeError):
    """Base exception for migration guard failures."""


# Store / version classification errors

class BlockedError(MigrationGuardError):
    """Another connection (or process) holds the store and blocks the request."""


class StoreCorruptedError(MigrationGuardError):
    """The store exists but cannot be read."""


class VersionError(MigrationGuardError):
    """Requested version is lower than the version on disk."""

    def __init__(self, name: str, requested: int, current: int):
        super().__init__(
            f"Cannot open {name} at v{requested}: database is already at v{current}"
        )
        self.requested = requested
        self.current = current


class UpgradeAbortedError(MigrationGuardError):
    """The upgrade callback aborted the version change."""


class UpgradeError(MigrationGuardError):
    """The upgrade callback raised; the version change was rolled back."""

    def __init__(self, message: str, old_version: int = 0, new_version: int = 0):
        super().__init__(message)
        self.old_version = old_version
        self.new_version = new_version


class UpgradePreconditionError(MigrationGuardError):
    """An upgrade would have run during an open that must not upgrade."""

    def __init__(self, name: str, old_version: int, new_version: int):
        super().__init__(
            f"Opening {name} would upgrade v{old_version} -> v{new_version}; "
            "refusing in read-only mode"
        )
        self.name = name
        self.old_version = old_version
        self.new_version = new_version


class StoreAccessError(MigrationGuardError):
    """Raised when the application must not open the store."""

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status


# Backup write errors

class TierStorageError(MigrationGuardError):
    """A backup tier failed to store, read or delete a payload."""


class QuotaExceededError(TierStorageError):
    """The local key-value store would exceed its quota."""


# Restore errors

class RestoreError(MigrationGuardError):
    """Restoring a backup failed."""


class InvalidBackupError(RestoreError):
    """A backup payload is missing or cannot be parsed."""


__all__ = [
    "MigrationGuardError",
    "BlockedError",
    "StoreCorruptedError",
    "VersionError",
    "UpgradeAbortedError",
    "UpgradeError",
    "UpgradePreconditionError",
    "StoreAccessError",
    "TierStorageError",
    "QuotaExceededError",
    "RestoreError",
    "InvalidBackupError",
]

"""Base interfaces for backup tiers and backup record stores."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .backup.models import BackupMetadata


class BaseBackupTier(ABC):
    """One storage backend in the backup fallback chain.

    Implementations never raise from the ``try_*`` methods; a failure is
    logged and reported as ``False`` / ``None`` so the writer can move on
    to the next tier.
    """

    tier_id: str = ""
    name: str = ""

    async def is_available(self) -> bool:
        """Whether this tier can be attempted at all on this host."""
        return True

    @abstractmethod
    async def try_store(self, payload_json: str, metadata: "BackupMetadata") -> bool:
        """Persist the payload.

        Tiers that address the payload by name set ``metadata.file_name``
        before returning True.
        """
        pass

    @abstractmethod
    async def try_retrieve(self, metadata: "BackupMetadata") -> Optional[str]:
        """Read the payload back, or None if this tier cannot produce it."""
        pass

    @abstractmethod
    async def try_cleanup(self, metadata: "BackupMetadata") -> bool:
        """Delete the payload held for ``metadata``."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(tier_id={self.tier_id!r})"


class BaseBackupRecordStore(ABC):
    """Record store behind the backup-database tier.

    Holds whole backup records (metadata, data and creation time) keyed by
    ``v{from_version}-{timestamp}``. It must be independent of the main
    store so application migrations never touch it.
    """

    @abstractmethod
    async def put_record(self, record_id: str, record: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def get_record(self, record_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def delete_record(self, record_id: str) -> None:
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        pass

"""Data models for pre-migration backup and restore."""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .._utils import utc_now


class CamelModel(BaseModel):
    """Model serialized with camelCase keys, accepting either spelling on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BackupStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class BackupStorageTier(str, Enum):
    FILE_SYSTEM = "tier-A"
    BACKUP_DB = "tier-B"
    LOCAL_STORAGE = "tier-C"
    USER_DOWNLOAD = "tier-D"


# tier names written by older releases
LEGACY_TIER_NAMES = {
    "opfs": BackupStorageTier.FILE_SYSTEM,
    "backupDb": BackupStorageTier.BACKUP_DB,
    "localStorage": BackupStorageTier.LOCAL_STORAGE,
    "userDownload": BackupStorageTier.USER_DOWNLOAD,
}


class VersionCheckStatus(str, Enum):
    OK = "ok"
    FRESH_INSTALL = "fresh-install"
    UPGRADE_NEEDED = "upgrade-needed"
    DB_NEWER = "db-newer"
    DB_CORRUPTED = "db-corrupted"
    MIGRATION_FAILED = "migration-failed"
    BLOCKED = "blocked"


class VersionCheckAction(str, Enum):
    UPDATE_APP = "update-app"
    RESTORE_BACKUP = "restore-backup"
    CREATE_BACKUP = "create-backup"
    FRESH_START = "fresh-start"


class BackupMetadata(CamelModel):
    """The single record describing the current backup."""

    from_version: int = Field(..., ge=0, description="Schema version the backup was taken at")
    to_version: int = Field(..., ge=0, description="Schema version the upgrade targets")
    timestamp: datetime = Field(default_factory=utc_now)
    chapter_count: int = 0
    translation_count: int = 0
    size_bytes: int = 0
    status: BackupStatus = BackupStatus.PENDING
    storage: BackupStorageTier = BackupStorageTier.LOCAL_STORAGE
    file_name: Optional[str] = None

    @field_validator("storage", mode="before")
    @classmethod
    def accept_legacy_tier(cls, value: Any) -> Any:
        if isinstance(value, str) and value in LEGACY_TIER_NAMES:
            return LEGACY_TIER_NAMES[value]
        return value


class BackupPayload(CamelModel):
    """Snapshot of every collection taken right before an upgrade."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    metadata: BackupMetadata
    chapters: List[Dict[str, Any]]
    translations: List[Dict[str, Any]] = Field(default_factory=list)
    settings: List[Dict[str, Any]] = Field(default_factory=list)
    feedback: List[Dict[str, Any]] = Field(default_factory=list)
    prompt_templates: List[Dict[str, Any]] = Field(default_factory=list)
    url_mappings: List[Dict[str, Any]] = Field(default_factory=list)
    novels: List[Dict[str, Any]] = Field(default_factory=list)
    chapter_summaries: List[Dict[str, Any]] = Field(default_factory=list)
    amendment_logs: List[Dict[str, Any]] = Field(default_factory=list)
    diff_results: List[Dict[str, Any]] = Field(default_factory=list)

    # store name -> payload field
    STORE_FIELDS: ClassVar[Dict[str, str]] = {
        "chapters": "chapters",
        "translations": "translations",
        "settings": "settings",
        "feedback": "feedback",
        "prompt_templates": "prompt_templates",
        "url_mappings": "url_mappings",
        "novels": "novels",
        "chapter_summaries": "chapter_summaries",
        "amendment_logs": "amendment_logs",
        "diffResults": "diff_results",
    }

    def rows_for(self, store_name: str) -> List[Dict[str, Any]]:
        return getattr(self, self.STORE_FIELDS[store_name])

    def counts(self) -> Dict[str, int]:
        return {store: len(self.rows_for(store)) for store in self.STORE_FIELDS}


class RecordsRestored(BaseModel):
    chapters: int = 0
    translations: int = 0
    settings: int = 0
    feedback: int = 0
    other: int = 0


class RestoreResult(CamelModel):
    """Outcome of a restore; failures are reported here, not raised."""

    success: bool
    message: str
    restored_version: Optional[int] = None
    records_restored: Optional[RecordsRestored] = None


class RestoreInfo(CamelModel):
    available: bool
    metadata: Optional[BackupMetadata] = None
    reason: Optional[str] = None


class VersionCheckResult(CamelModel):
    """Classification of the on-disk store against the expected schema version."""

    status: VersionCheckStatus
    current_on_disk_version: Optional[int] = None
    expected_version: int
    can_proceed: bool
    requires_backup: bool = False
    message: str
    action: Optional[VersionCheckAction] = None

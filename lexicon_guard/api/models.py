"""Pydantic models for API requests and responses."""

from pydantic import Field
from typing import Optional

from lexicon_guard.backup.models import BackupMetadata, CamelModel, VersionCheckResult


class VersionStatusResponse(CamelModel):
    check: VersionCheckResult
    title: str
    action_label: str
    show_upgrade_notice: bool
    block_app: bool


class BackupRequest(CamelModel):
    from_version: int = Field(..., ge=0)
    to_version: Optional[int] = Field(default=None, ge=0)
    db_name: Optional[str] = None


class BackupResponse(CamelModel):
    created: bool
    metadata: Optional[BackupMetadata] = None


class CleanupResponse(CamelModel):
    removed: bool


class FreshStartResponse(CamelModel):
    deleted: bool
    message: str

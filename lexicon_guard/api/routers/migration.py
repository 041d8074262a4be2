"""Migration status, backup and recovery endpoints."""

from fastapi import APIRouter, Depends, File, UploadFile
from typing import Dict, Optional

from ..config import settings
from ..dependencies import get_guard
from ..exceptions import (
    BackupMetadataNotFoundError,
    BackupRefusedError,
    InvalidUploadError,
    RestoreFailedError,
    StoreBusyError,
    UploadTooLargeError,
)
from ..models import (
    BackupRequest,
    BackupResponse,
    CleanupResponse,
    FreshStartResponse,
    VersionStatusResponse,
)
from lexicon_guard import MigrationGuard
from lexicon_guard._utils import logger
from lexicon_guard.backup.models import BackupMetadata, RestoreInfo, RestoreResult
from lexicon_guard.backup.version_gate import (
    get_action_button_text,
    get_status_title,
    should_block_app,
    should_show_upgrade_notice,
)
from lexicon_guard.errors import BlockedError

router = APIRouter(prefix="/migration", tags=["migration"])


@router.get("/status", response_model=VersionStatusResponse)
async def get_status(guard: MigrationGuard = Depends(get_guard)) -> VersionStatusResponse:
    """Version check of the configured store, with the labels a recovery screen shows."""
    result = await guard.check_database_version()
    return VersionStatusResponse(
        check=result,
        title=get_status_title(result.status),
        action_label=get_action_button_text(result.action),
        show_upgrade_notice=should_show_upgrade_notice(result),
        block_app=should_block_app(result),
    )


@router.post("/backup", response_model=BackupResponse)
async def create_backup(
    request: BackupRequest,
    guard: MigrationGuard = Depends(get_guard),
) -> BackupResponse:
    """Create the pre-migration backup.

    Answers 409 when no tier accepted it; the caller must not upgrade then.
    """
    to_version = guard.schema_version() if request.to_version is None else request.to_version
    created = await guard.create_pre_migration_backup(
        request.db_name or guard.db_name, request.from_version, to_version
    )
    if not created:
        raise BackupRefusedError(request.from_version, to_version)
    return BackupResponse(created=True, metadata=guard.get_backup_metadata())


@router.get("/backup/metadata", response_model=BackupMetadata)
async def get_backup_metadata(guard: MigrationGuard = Depends(get_guard)) -> BackupMetadata:
    metadata = guard.get_backup_metadata()
    if metadata is None:
        raise BackupMetadataNotFoundError()
    return metadata


@router.delete("/backup/metadata")
async def clear_backup_metadata(guard: MigrationGuard = Depends(get_guard)) -> Dict[str, str]:
    guard.clear_backup_metadata()
    return {"message": "Backup metadata cleared"}


@router.post("/backup/cleanup", response_model=CleanupResponse)
async def cleanup_old_backups(
    max_age_ms: Optional[int] = None,
    guard: MigrationGuard = Depends(get_guard),
) -> CleanupResponse:
    """Remove a completed backup older than the retention window."""
    removed = await guard.cleanup_old_backups(max_age_ms)
    return CleanupResponse(removed=removed)


@router.get("/restore", response_model=RestoreInfo)
async def get_restore_info(guard: MigrationGuard = Depends(get_guard)) -> RestoreInfo:
    return guard.get_restore_info()


@router.post("/restore", response_model=RestoreResult)
async def restore_from_backup(guard: MigrationGuard = Depends(get_guard)) -> RestoreResult:
    """Restore the store from the backup named by the metadata record."""
    result = await guard.restore_from_backup()
    if not result.success:
        raise RestoreFailedError(result.message)
    return result


@router.post("/restore/upload", response_model=RestoreResult)
async def restore_from_upload(
    file: UploadFile = File(...),
    guard: MigrationGuard = Depends(get_guard),
) -> RestoreResult:
    """Restore from a backup file the user saved earlier.

    Upload a lexiconforge-backup-v*.json file.
    """
    content = await file.read(settings.max_upload_bytes + 1)
    if len(content) > settings.max_upload_bytes:
        raise UploadTooLargeError(settings.max_upload_bytes)
    try:
        raw_text = content.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidUploadError("Backup file must be UTF-8 encoded JSON")

    logger.info(f"Uploaded backup file: {file.filename} ({len(content):,} bytes)")

    result = await guard.emergency_restore(raw_text)
    if not result.success:
        raise RestoreFailedError(result.message)
    return result


@router.post("/fresh-start", response_model=FreshStartResponse)
async def fresh_start(guard: MigrationGuard = Depends(get_guard)) -> FreshStartResponse:
    """Delete the store and every backup artifact."""
    try:
        deleted = await guard.start_fresh()
    except BlockedError as e:
        raise StoreBusyError(str(e))
    message = "Database deleted" if deleted else "No database to delete"
    return FreshStartResponse(deleted=deleted, message=message)

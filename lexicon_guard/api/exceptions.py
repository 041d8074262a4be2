"""Custom exceptions for FastAPI application."""

from fastapi import HTTPException
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    HTTP_503_SERVICE_UNAVAILABLE,
)


class MigrationAPIError(HTTPException):
    """Base exception for migration guard API errors."""
    pass


class BackupMetadataNotFoundError(MigrationAPIError):
    def __init__(self):
        super().__init__(HTTP_404_NOT_FOUND, "No backup metadata found")


class BackupRefusedError(MigrationAPIError):
    def __init__(self, from_version: int, to_version: int):
        super().__init__(
            HTTP_409_CONFLICT,
            f"No backup tier accepted the v{from_version} -> v{to_version} backup; do not upgrade",
        )


class RestoreFailedError(MigrationAPIError):
    def __init__(self, message: str):
        super().__init__(HTTP_409_CONFLICT, message)


class InvalidUploadError(MigrationAPIError):
    def __init__(self, message: str):
        super().__init__(HTTP_400_BAD_REQUEST, message)


class UploadTooLargeError(MigrationAPIError):
    def __init__(self, limit: int):
        super().__init__(HTTP_413_REQUEST_ENTITY_TOO_LARGE, f"Backup file exceeds {limit} bytes")


class StoreBusyError(MigrationAPIError):
    def __init__(self, message: str):
        super().__init__(HTTP_503_SERVICE_UNAVAILABLE, message)

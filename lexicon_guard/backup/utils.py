"""Utility functions for backup payloads and backup names."""

import json
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .._utils import epoch_ms, logger, utf8_size
from .models import BackupMetadata, BackupPayload


def serialize_payload(payload: BackupPayload) -> str:
    """Serialize a payload with ``metadata.size_bytes`` set to its own size.

    The size is embedded in the payload it measures, so the serialization
    is repeated until the number stops changing (at most a few rounds, as
    only the digit count can shift).
    """
    payload_json = payload.model_dump_json(by_alias=True)
    for _ in range(5):
        size = utf8_size(payload_json)
        if payload.metadata.size_bytes == size:
            break
        payload.metadata.size_bytes = size
        payload_json = payload.model_dump_json(by_alias=True)
    return payload_json


def payload_size(payload_json: str) -> int:
    return utf8_size(payload_json)


def parse_backup_json(raw: str) -> Optional[BackupPayload]:
    """Parse a stored or uploaded backup. Returns None when it is not a valid backup."""
    try:
        return BackupPayload.model_validate_json(raw)
    except ValidationError as e:
        logger.error(f"Invalid backup payload: {e.error_count()} validation error(s)")
        return None


def backup_record(payload_json: str, metadata: BackupMetadata) -> Dict[str, Any]:
    """Record stored by the backup-database tier."""
    return {
        "metadata": json.loads(metadata.model_dump_json(by_alias=True)),
        "data": payload_json,
        "createdAt": metadata.timestamp.isoformat(),
    }


def backup_record_id(metadata: BackupMetadata) -> str:
    """Key of a backup record: ``v{from_version}-{timestamp}``."""
    return f"v{metadata.from_version}-{metadata.timestamp.isoformat()}"


def file_system_file_name(from_version: int, moment: Optional[datetime] = None) -> str:
    return f"backup-v{from_version}-{epoch_ms(moment)}.json"


def download_file_name(metadata: BackupMetadata, prefix: str = "lexiconforge") -> str:
    """File name offered to the user, safe on every file system."""
    stamp = metadata.timestamp.isoformat().replace(":", "-").replace(".", "-")
    return f"{prefix}-backup-v{metadata.from_version}-{stamp}.json"


def needs_pre_migration_backup(old_version: int, new_version: int) -> bool:
    """Only an existing store that is about to be upgraded needs a backup."""
    return 0 < old_version < new_version

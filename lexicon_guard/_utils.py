import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("lexicon-guard")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def epoch_ms(moment: Optional[datetime] = None) -> int:
    """Milliseconds since the epoch for ``moment`` (defaults to now)."""
    moment = moment or utc_now()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def format_mb(size_bytes: int) -> str:
    return f"{size_bytes / 1024 / 1024:.2f}MB"


def utf8_size(text: str) -> int:
    return len(text.encode("utf-8"))

"""Collection layout of the main store, one migration step per schema version."""

from typing import Dict, List, Union

from ._utils import logger

KeyPath = Union[str, List[str]]

SCHEMA_VERSIONS = {
    "INITIAL": 1,
    "PROMPT_TEMPLATES": 4,
    "URL_MAPPINGS": 5,
    "NOVELS": 7,
    "AMENDMENT_LOGS": 11,
    "DIFF_RESULTS": 12,
    "CURRENT": 12,
}

STORE_NAMES = {
    "CHAPTERS": "chapters",
    "TRANSLATIONS": "translations",
    "SETTINGS": "settings",
    "FEEDBACK": "feedback",
    "PROMPT_TEMPLATES": "prompt_templates",
    "URL_MAPPINGS": "url_mappings",
    "NOVELS": "novels",
    "CHAPTER_SUMMARIES": "chapter_summaries",
    "AMENDMENT_LOGS": "amendment_logs",
    "DIFF_RESULTS": "diffResults",
}

ALL_STORES = list(STORE_NAMES.values())

# collection name -> key path
KEY_PATHS: Dict[str, KeyPath] = {
    "chapters": "url",
    "translations": "id",
    "settings": "key",
    "feedback": "id",
    "prompt_templates": "id",
    "url_mappings": "url",
    "novels": "id",
    "chapter_summaries": "stableId",
    "amendment_logs": "id",
    "diffResults": ["chapterId", "aiVersionId", "fanVersionId", "rawVersionId", "algoVersion"],
}

# version -> collections first created at that version
MIGRATIONS: Dict[int, List[str]] = {
    1: ["chapters", "translations", "settings", "feedback"],
    4: ["prompt_templates"],
    5: ["url_mappings"],
    7: ["novels", "chapter_summaries"],
    11: ["amendment_logs"],
    12: ["diffResults"],
}


def schema_version() -> int:
    """Version of the collection layout this application expects."""
    return SCHEMA_VERSIONS["CURRENT"]


def collections_at(version: int) -> List[str]:
    """Collections that exist once the store is at ``version``."""
    names: List[str] = []
    for step in sorted(MIGRATIONS):
        if step > version:
            break
        names.extend(MIGRATIONS[step])
    return names


def apply_migrations(connection, tx, old_version: int, new_version: int) -> None:
    """Bring the store from ``old_version`` to ``new_version``.

    Runs inside the upgrade transaction. Only creates collections that are
    missing, so re-running a step after a partial earlier attempt is safe.
    """
    existing = set(tx.collection_names())
    for step in sorted(MIGRATIONS):
        if step <= old_version or step > new_version:
            continue
        for name in MIGRATIONS[step]:
            if name in existing:
                continue
            tx.create_collection(name, KEY_PATHS[name])
            existing.add(name)
        logger.debug(f"Applied schema step v{step}")
    logger.info(f"Schema upgraded from v{old_version} to v{new_version}")


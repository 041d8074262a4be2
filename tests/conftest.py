"""Global pytest configuration and fixtures."""

import pytest
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from lexicon_guard import BackupConfig, GuardConfig, StoreConfig
from lexicon_guard._storage import LocalKVStorage, StoreEnvironment
from lexicon_guard.schema import apply_migrations


@pytest.fixture
def data_dir(tmp_path):
    """Data directory of the store under test."""
    path = tmp_path / "data"
    path.mkdir()
    return str(path)


@pytest.fixture
def environment(data_dir):
    """Store environment over the test data directory."""
    env = StoreEnvironment(data_dir, busy_timeout=0.1)
    yield env
    env.close_all()


@pytest.fixture
def local_storage(data_dir):
    return LocalKVStorage(str(Path(data_dir) / "local_storage.json"))


@pytest.fixture
def guard_config(data_dir, tmp_path):
    """Guard config that never waits and never asks a user."""
    return GuardConfig(
        store=StoreConfig(data_dir=data_dir, busy_timeout=0.1),
        backup=BackupConfig(handoff="none", download_dir=str(tmp_path / "downloads")),
        blocked_retry_wait=0,
    )


@pytest.fixture
def sample_rows():
    """A few rows per collection, valid for every schema version that has them."""
    return {
        "chapters": [
            {"url": f"https://example.com/novel/{i}", "title": f"Chapter {i}", "content": "text " * 20}
            for i in range(1, 6)
        ],
        "translations": [
            {"id": f"tr-{i}", "chapterUrl": f"https://example.com/novel/{i}", "translation": "traduction"}
            for i in range(1, 4)
        ],
        "settings": [{"key": "theme", "value": "dark"}],
        "feedback": [{"id": "fb-1", "chapterId": "1", "type": "👍"}],
        "prompt_templates": [{"id": "pt-1", "name": "Default", "content": "Translate."}],
        "url_mappings": [{"url": "https://example.com/novel/1", "stableId": "ch-1"}],
        "novels": [{"id": "novel-1", "title": "A Novel"}],
        "chapter_summaries": [{"stableId": "ch-1", "summary": "It begins."}],
        "amendment_logs": [{"id": "am-1", "proposal": "Use 'sect' for 宗"}],
        "diffResults": [{
            "chapterId": "ch-1",
            "aiVersionId": "ai-1",
            "fanVersionId": "fan-1",
            "rawVersionId": "raw-1",
            "algoVersion": "1.0.0",
            "markers": [],
        }],
    }


@pytest.fixture
def seed_store(sample_rows):
    """Return a coroutine that creates a store at a version and fills it."""

    async def seed(environment, name, version, rows=None):
        rows = sample_rows if rows is None else rows
        connection = await environment.open(name, version, on_upgrade=apply_migrations)
        try:
            present = [c for c in rows if c in connection.collection_names]
            async with connection.transaction(present, "readwrite") as tx:
                for collection in present:
                    await tx.put_many(collection, rows[collection])
            return {c: len(rows[c]) for c in present}
        finally:
            connection.close()

    return seed

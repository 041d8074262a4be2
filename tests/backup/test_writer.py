"""Tests for the tiered backup writer."""

from typing import List, Optional

import pytest
from unittest.mock import MagicMock

from lexicon_guard.backup.metadata import BackupMetadataStore
from lexicon_guard.backup.models import BackupMetadata, BackupStatus, BackupStorageTier
from lexicon_guard.backup.writer import TieredBackupWriter
from lexicon_guard.base import BaseBackupTier
from lexicon_guard.errors import QuotaExceededError

PAYLOAD = '{"chapters": []}'


class RecordingTier(BaseBackupTier):
    """Tier with a scripted outcome that records every call into a shared log."""

    def __init__(self, tier_id: str, calls: List[str], outcome="ok", payload: Optional[str] = PAYLOAD):
        self.tier_id = tier_id
        self.name = f"fake {tier_id}"
        self.calls = calls
        self.outcome = outcome
        self.payload = payload
        self.cleaned = 0

    async def try_store(self, payload_json, metadata):
        self.calls.append(self.tier_id)
        if self.outcome == "raise":
            raise RuntimeError(f"{self.tier_id} exploded")
        if self.outcome == "ok":
            metadata.file_name = f"{self.tier_id}.json"
            return True
        return False

    async def try_retrieve(self, metadata):
        return self.payload

    async def try_cleanup(self, metadata):
        self.cleaned += 1
        return True


@pytest.fixture
def metadata_store(local_storage):
    return BackupMetadataStore(local_storage)


@pytest.fixture
def metadata():
    return BackupMetadata(from_version=11, to_version=12)


def make_tiers(calls, *outcomes):
    ids = ["tier-A", "tier-B", "tier-C", "tier-D"]
    return [RecordingTier(tier_id, calls, outcome) for tier_id, outcome in zip(ids, outcomes)]


@pytest.mark.asyncio
async def test_first_success_stops_the_walk(metadata_store, metadata):
    calls = []
    writer = TieredBackupWriter(make_tiers(calls, "ok", "ok", "ok", "ok"), metadata_store)

    assert await writer.store(PAYLOAD, metadata) is True

    assert calls == ["tier-A"]
    stored = metadata_store.get()
    assert stored.storage == BackupStorageTier.FILE_SYSTEM
    assert stored.file_name == "tier-A.json"
    assert stored.status == BackupStatus.PENDING


@pytest.mark.asyncio
async def test_falls_back_in_order(metadata_store, metadata):
    calls = []
    writer = TieredBackupWriter(make_tiers(calls, "fail", "raise", "ok", "ok"), metadata_store)

    assert await writer.store(PAYLOAD, metadata) is True

    assert calls == ["tier-A", "tier-B", "tier-C"]
    assert metadata_store.get().storage == BackupStorageTier.LOCAL_STORAGE
    assert metadata.storage == BackupStorageTier.LOCAL_STORAGE
    assert metadata.file_name == "tier-C.json"


@pytest.mark.asyncio
async def test_all_tiers_fail(metadata_store, metadata):
    calls = []
    writer = TieredBackupWriter(make_tiers(calls, "fail", "fail", "raise", "fail"), metadata_store)

    assert await writer.store(PAYLOAD, metadata) is False

    assert calls == ["tier-A", "tier-B", "tier-C", "tier-D"]
    assert metadata_store.get() is None


@pytest.mark.asyncio
async def test_metadata_write_failure_moves_to_next_tier(metadata, local_storage):
    calls = []
    tiers = make_tiers(calls, "ok", "ok")
    metadata_store = BackupMetadataStore(local_storage)
    real_set = metadata_store.set
    attempts = []

    def flaky_set(candidate):
        attempts.append(candidate.storage)
        if len(attempts) == 1:
            raise QuotaExceededError("no room for metadata")
        real_set(candidate)

    metadata_store.set = flaky_set
    writer = TieredBackupWriter(tiers, metadata_store)

    assert await writer.store(PAYLOAD, metadata) is True

    assert calls == ["tier-A", "tier-B"]
    assert tiers[0].cleaned == 1
    assert metadata_store.get().storage == BackupStorageTier.BACKUP_DB


@pytest.mark.asyncio
async def test_superseded_backup_is_cleaned_up(metadata_store, metadata):
    calls = []
    tiers = make_tiers(calls, "fail", "ok")
    previous = BackupMetadata(from_version=11, to_version=12, storage=BackupStorageTier.FILE_SYSTEM, file_name="old.json")
    metadata_store.set(previous)
    writer = TieredBackupWriter(tiers, metadata_store)

    assert await writer.store(PAYLOAD, metadata) is True

    assert tiers[0].cleaned == 1
    assert tiers[1].cleaned == 0
    assert metadata_store.get().file_name == "tier-B.json"


@pytest.mark.asyncio
async def test_backup_in_same_location_is_not_cleaned_up(metadata_store, metadata):
    calls = []
    tiers = make_tiers(calls, "ok")
    metadata_store.set(BackupMetadata(
        from_version=10, to_version=12, storage=BackupStorageTier.FILE_SYSTEM, file_name="tier-A.json"
    ))
    writer = TieredBackupWriter(tiers, metadata_store)

    assert await writer.store(PAYLOAD, metadata) is True

    assert tiers[0].cleaned == 0
    assert metadata_store.get().from_version == 11


@pytest.mark.asyncio
async def test_failed_tier_does_not_leak_file_name(metadata_store, metadata):
    calls = []

    class HalfWrittenTier(RecordingTier):
        async def try_store(self, payload_json, metadata):
            metadata.file_name = "partial.json"
            return False

    tiers = [HalfWrittenTier("tier-A", calls), RecordingTier("tier-C", calls, "ok")]
    writer = TieredBackupWriter(tiers, metadata_store)

    assert await writer.store(PAYLOAD, metadata) is True

    assert metadata_store.get().file_name == "tier-C.json"


@pytest.mark.asyncio
async def test_retrieve_and_cleanup_use_named_tier(metadata_store):
    calls = []
    tiers = [
        RecordingTier("tier-A", calls, payload="from A"),
        RecordingTier("tier-C", calls, payload="from C"),
    ]
    writer = TieredBackupWriter(tiers, metadata_store)
    metadata = BackupMetadata(from_version=11, to_version=12, storage=BackupStorageTier.LOCAL_STORAGE)

    assert await writer.retrieve(metadata) == "from C"
    assert await writer.cleanup(metadata) is True
    assert tiers[1].cleaned == 1
    assert tiers[0].cleaned == 0


@pytest.mark.asyncio
async def test_unconfigured_tier(metadata_store):
    writer = TieredBackupWriter([RecordingTier("tier-A", [])], metadata_store)
    metadata = BackupMetadata(from_version=11, to_version=12, storage=BackupStorageTier.BACKUP_DB)

    assert writer.tier_for(metadata) is None
    assert await writer.retrieve(metadata) is None
    assert await writer.cleanup(metadata) is False


@pytest.mark.asyncio
async def test_retrieve_swallows_tier_errors(metadata_store):
    tier = RecordingTier("tier-A", [])
    tier.try_retrieve = MagicMock(side_effect=RuntimeError("disk gone"))
    writer = TieredBackupWriter([tier], metadata_store)
    metadata = BackupMetadata(from_version=1, to_version=2, storage=BackupStorageTier.FILE_SYSTEM)

    assert await writer.retrieve(metadata) is None

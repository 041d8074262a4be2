"""Persist a backup payload in the first tier that accepts it."""

from typing import List, Optional

from .._utils import format_mb, logger
from ..base import BaseBackupTier
from ..errors import TierStorageError
from .metadata import BackupMetadataStore
from .models import BackupMetadata, BackupStorageTier


class TieredBackupWriter:
    """Walks an ordered list of tiers and stops at the first success.

    A tier that fails or raises is logged and skipped. The metadata record
    is written only once a tier holds the payload, and names that tier.
    A payload left by an earlier backup is deleted once the new record
    replaces it, so only one backup exists at a time.
    """

    def __init__(self, tiers: List[BaseBackupTier], metadata_store: BackupMetadataStore):
        self.tiers = tiers
        self.metadata_store = metadata_store

    async def store(self, payload_json: str, metadata: BackupMetadata) -> bool:
        """Store the payload and persist its metadata.

        Returns:
            True if some tier holds the payload and the metadata names it,
            False if every tier failed.
        """
        logger.info(
            f"Storing backup v{metadata.from_version} -> v{metadata.to_version} "
            f"({format_mb(metadata.size_bytes)}) across {len(self.tiers)} tier(s)"
        )
        previous = self.metadata_store.get()
        for tier in self.tiers:
            candidate = metadata.model_copy()
            try:
                stored = await tier.try_store(payload_json, candidate)
            except Exception as e:
                logger.warning(f"[{tier.tier_id}] {tier.name} raised while storing backup: {e}")
                continue
            if not stored:
                logger.info(f"[{tier.tier_id}] {tier.name} did not accept the backup, trying next tier")
                continue

            candidate.storage = BackupStorageTier(tier.tier_id)
            try:
                self.metadata_store.set(candidate)
            except (TierStorageError, OSError) as e:
                logger.error(f"[{tier.tier_id}] Backup stored but metadata could not be saved: {e}")
                await self._cleanup_tier(tier, candidate)
                continue

            metadata.storage = candidate.storage
            metadata.file_name = candidate.file_name
            logger.info(f"Backup stored in {tier.tier_id} ({tier.name})")
            if previous is not None and not _same_location(previous, candidate):
                logger.info(f"Removing superseded backup from {previous.storage.value}")
                await self.cleanup(previous)
            return True

        logger.error("All backup tiers failed; the upgrade must not proceed")
        return False

    def tier_for(self, metadata: BackupMetadata) -> Optional[BaseBackupTier]:
        for tier in self.tiers:
            if tier.tier_id == metadata.storage.value:
                return tier
        return None

    async def retrieve(self, metadata: BackupMetadata) -> Optional[str]:
        """Read the payload back from the tier named by ``metadata.storage``."""
        tier = self.tier_for(metadata)
        if tier is None:
            logger.error(f"Backup tier {metadata.storage.value} is not configured")
            return None
        try:
            return await tier.try_retrieve(metadata)
        except Exception as e:
            logger.error(f"[{tier.tier_id}] Failed to retrieve backup: {e}")
            return None

    async def cleanup(self, metadata: BackupMetadata) -> bool:
        """Delete the payload from the tier holding it. Failures are logged, not raised."""
        tier = self.tier_for(metadata)
        if tier is None:
            logger.warning(f"Backup tier {metadata.storage.value} is not configured, nothing to clean up")
            return False
        return await self._cleanup_tier(tier, metadata)

    @staticmethod
    async def _cleanup_tier(tier: BaseBackupTier, metadata: BackupMetadata) -> bool:
        try:
            return await tier.try_cleanup(metadata)
        except Exception as e:
            logger.warning(f"[{tier.tier_id}] Failed to clean up backup: {e}")
            return False


def _same_location(a: BackupMetadata, b: BackupMetadata) -> bool:
    return a.storage == b.storage and a.file_name == b.file_name

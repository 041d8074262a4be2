"""Tier D: hand the backup to the user as a file, after explicit confirmation."""

import asyncio
import os
from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..._utils import logger
from ...base import BaseBackupTier
from ..models import BackupMetadata, BackupStorageTier
from ..utils import download_file_name


def confirm_message(metadata: BackupMetadata, app_name: str = "LexiconForge") -> str:
    return (
        f"{app_name} needs to upgrade your data (v{metadata.from_version} → v{metadata.to_version}).\n\n"
        "For safety, please save a backup file before continuing.\n\n"
        "Click OK to download the backup."
    )


class UserHandoff(ABC):
    """How the user is asked for, and handed, a backup file."""

    @abstractmethod
    def confirm(self, message: str) -> bool:
        """Block until the user accepts or refuses."""
        pass

    @abstractmethod
    def save_file(self, file_name: str, content: str) -> str:
        """Save ``content`` where the user chose; returns the saved location."""
        pass


class ConsoleHandoff(UserHandoff):
    """Asks on the terminal and saves into a download directory."""

    def __init__(self, download_dir: str = "./downloads", input_func: Callable[[str], str] = input):
        self.download_dir = download_dir
        self.input_func = input_func

    def confirm(self, message: str) -> bool:
        answer = self.input_func(f"{message}\n[y/N] ")
        return answer.strip().lower() in ("y", "yes", "ok")

    def save_file(self, file_name: str, content: str) -> str:
        os.makedirs(self.download_dir, exist_ok=True)
        path = os.path.join(self.download_dir, file_name)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return path


class NoHandoff(UserHandoff):
    """No user is attached (services, tests): every request is refused."""

    def confirm(self, message: str) -> bool:
        logger.warning("No user available to accept a backup download")
        return False

    def save_file(self, file_name: str, content: str) -> str:
        raise RuntimeError("No user available to save a backup file")


class UserDownloadTier(BaseBackupTier):
    """Last resort. The payload leaves the app's control, so it cannot be retrieved later."""

    tier_id = BackupStorageTier.USER_DOWNLOAD.value
    name = "user download"

    def __init__(self, handoff: UserHandoff, file_prefix: str = "lexiconforge"):
        self.handoff = handoff
        self.file_prefix = file_prefix

    async def try_store(self, payload_json: str, metadata: BackupMetadata) -> bool:
        file_name = download_file_name(metadata, self.file_prefix)
        confirmed = await asyncio.to_thread(self.handoff.confirm, confirm_message(metadata))
        if not confirmed:
            logger.warning(f"[{self.tier_id}] User declined to download backup")
            return False
        try:
            location = await asyncio.to_thread(self.handoff.save_file, file_name, payload_json)
        except (OSError, RuntimeError) as e:
            logger.error(f"[{self.tier_id}] Download failed: {e}")
            return False
        metadata.file_name = file_name
        logger.info(f"[{self.tier_id}] User downloaded backup: {location}")
        return True

    async def try_retrieve(self, metadata: BackupMetadata) -> Optional[str]:
        return None

    async def try_cleanup(self, metadata: BackupMetadata) -> bool:
        return True

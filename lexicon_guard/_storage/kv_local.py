"""Small synchronous string-keyed store persisted as one JSON file."""

import json
import os
import tempfile
import threading
from typing import Dict, List, Optional

from .._utils import logger, utf8_size
from ..errors import QuotaExceededError, TierStorageError


class LocalKVStorage:
    """String key/value store with a hard size quota.

    The whole store is one JSON object on disk, rewritten atomically on every
    change. Usage is counted as the UTF-8 size of keys plus values, and a
    write that would push it past ``quota_bytes`` is rejected.
    """

    def __init__(self, path: str, quota_bytes: int = 5 * 1024 * 1024):
        self.path = path
        self.quota_bytes = quota_bytes
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``.

        Raises:
            QuotaExceededError: The store would grow past its quota.
        """
        if not isinstance(value, str):
            raise TypeError(f"LocalKVStorage values must be str, got {type(value).__name__}")
        with self._lock:
            data = self._load()
            data[key] = value
            usage = self._usage(data)
            if usage > self.quota_bytes:
                raise QuotaExceededError(
                    f"Storing {key} needs {usage} bytes, quota is {self.quota_bytes}"
                )
            self._save(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._save(data)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._load())

    def usage_bytes(self) -> int:
        with self._lock:
            return self._usage(self._load())

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise TierStorageError(f"Local storage at {self.path} is unreadable: {e}") from e
        if not isinstance(data, dict):
            logger.warning(f"Local storage at {self.path} is not an object, starting empty")
            return {}
        return data

    def _save(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".kv-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    @staticmethod
    def _usage(data: Dict[str, str]) -> int:
        return sum(utf8_size(k) + utf8_size(v) for k, v in data.items())

"""Redis-backed record store for the backup-database tier."""

import json
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.retry import Retry

from .._utils import logger
from ..base import BaseBackupRecordStore


class RedisBackupDB(BaseBackupRecordStore):
    """Backup records stored as JSON values under a namespaced Redis key."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        redis_password: Optional[str] = None,
        namespace: str = "lexiconforge-backups",
        max_connections: int = 10,
        socket_timeout: float = 5.0,
        connection_timeout: float = 5.0,
    ):
        self.redis_url = redis_url
        self.redis_password = redis_password
        self.namespace = namespace
        self.max_connections = max_connections
        self.socket_timeout = socket_timeout
        self.connection_timeout = connection_timeout
        self._prefix = f"lexicon_guard:{namespace}:"
        self._redis_client = None
        self._connection_pool = None
        self._initialized = False

    async def _ensure_initialized(self):
        """Ensure Redis connection is initialized."""
        if self._initialized:
            return

        retry = Retry(
            ExponentialBackoff(cap=10, base=1),
            retries=3,
            supported_errors=(RedisConnectionError, TimeoutError, ConnectionError)
        )

        self._connection_pool = aioredis.ConnectionPool.from_url(
            self.redis_url,
            password=self.redis_password,
            max_connections=self.max_connections,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.connection_timeout,
            decode_responses=False,
            retry=retry,
        )
        self._redis_client = aioredis.Redis(connection_pool=self._connection_pool)

        try:
            await self._redis_client.ping()
            logger.info(f"Connected to Redis for backup namespace: {self.namespace}")
        except RedisError as e:
            logger.error(f"Redis connection failed: {e}")
            raise

        self._initialized = True

    def _get_key(self, record_id: str) -> str:
        return f"{self._prefix}{record_id}"

    def _serialize(self, data: Any) -> bytes:
        return json.dumps(data, default=str).encode('utf-8')

    def _deserialize(self, data: Optional[bytes]) -> Optional[Dict[str, Any]]:
        if data is None:
            return None
        try:
            return json.loads(data.decode('utf-8'))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Failed to deserialize backup record: {e}")
            return None

    async def put_record(self, record_id: str, record: Dict[str, Any]) -> None:
        await self._ensure_initialized()
        await self._redis_client.set(self._get_key(record_id), self._serialize({**record, "id": record_id}))
        logger.debug(f"Stored backup record {record_id} in Redis")

    async def get_record(self, record_id: str) -> Optional[Dict[str, Any]]:
        await self._ensure_initialized()
        try:
            data = await self._redis_client.get(self._get_key(record_id))
        except RedisError as e:
            logger.error(f"Redis get error for {record_id}: {e}")
            raise
        return self._deserialize(data)

    async def delete_record(self, record_id: str) -> None:
        await self._ensure_initialized()
        await self._redis_client.delete(self._get_key(record_id))

    async def close(self) -> None:
        """Close the client and its connection pool."""
        if self._redis_client is not None:
            await self._redis_client.aclose()
        if self._connection_pool is not None:
            await self._connection_pool.disconnect()
        self._redis_client = None
        self._connection_pool = None
        self._initialized = False

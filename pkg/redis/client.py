from typing import Optional, Any, Union, AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
import asyncio
import json
import logging
import uuid

import redis.asyncio as aioredis
from redis.exceptions import RedisError


class LockNotAcquired(RedisError):
    pass


class RedisClient:
    """
    Async Redis client with connection pooling, JSON values and distributed locks.
    """

    _RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        logger: logging.Logger,
        url: Optional[str] = None,
        host: str = "localhost",
        port: int = 6379,
        password: Optional[str] = None,
        ssl: bool = False,
    ):
        self.logger = logger
        self.url = url
        self.host = host
        self.port = port
        self.password = password
        self.ssl = ssl
        self._async_redis: Optional[aioredis.Redis] = None
        self._async_pool: Optional[aioredis.ConnectionPool] = None

    async def _get_async_redis(self) -> aioredis.Redis:
        """Get or create async Redis client"""
        if self._async_redis is None:
            if self.url:
                self._async_pool = aioredis.ConnectionPool.from_url(
                    self.url, decode_responses=True, max_connections=20
                )
            else:
                pool_kwargs = dict(
                    host=self.host,
                    port=self.port,
                    password=self.password,
                    decode_responses=True,
                    max_connections=20,
                    socket_timeout=5.0,
                    socket_connect_timeout=5.0,
                )
                if self.ssl:
                    pool_kwargs["connection_class"] = aioredis.SSLConnection
                self._async_pool = aioredis.ConnectionPool(**pool_kwargs)
            self._async_redis = aioredis.Redis(connection_pool=self._async_pool)
        return self._async_redis

    async def ping(self) -> bool:
        try:
            redis = await self._get_async_redis()
            return bool(await redis.ping())
        except RedisError as e:
            self.logger.error(f"Redis ping failed: {str(e)}")
            raise

    async def async_close(self) -> None:
        """Close async Redis connection pool"""
        if self._async_redis is not None:
            await self._async_redis.aclose()
            self._async_redis = None
        if self._async_pool is not None:
            await self._async_pool.disconnect()
            self._async_pool = None
            self.logger.info("Async Redis connection pool closed")

    async def async_get_value(self, key: str, default: Any = None) -> Any:
        """
        Async get value for a key from Redis.

        Returns the value deserialized from JSON if possible, otherwise the
        raw string, or ``default`` when the key does not exist.
        """
        try:
            redis = await self._get_async_redis()
            value: Optional[str] = await redis.get(key)
            if value is None:
                return default
            try:
                if isinstance(value, str) and (value.startswith('{') or value.startswith('[')):
                    return json.loads(value)
                return value
            except (TypeError, json.JSONDecodeError):
                return value
        except RedisError as e:
            self.logger.error(f"Error getting key {key}: {str(e)}")
            raise

    async def async_set_value(self, key: str, value: Any, expiry: Optional[Union[int, timedelta]] = None) -> bool:
        """Async set a key-value pair; non-scalar values are JSON serialized."""
        try:
            if not isinstance(value, (str, int, float, bool)):
                value = json.dumps(value, default=str)
            if isinstance(expiry, timedelta):
                expiry = int(expiry.total_seconds())
            redis = await self._get_async_redis()
            return bool(await redis.set(key, value, ex=expiry))
        except RedisError as e:
            self.logger.error(f"Error setting key {key}: {str(e)}")
            raise

    async def async_delete(self, *keys: str) -> int:
        try:
            redis = await self._get_async_redis()
            return await redis.delete(*keys)
        except RedisError as e:
            self.logger.error(f"Error deleting keys {keys}: {str(e)}")
            raise

    async def acquire_lock(self, lock_name: str, timeout: int = 10) -> Optional[str]:
        """
        Acquire a distributed lock with timeout.
        Returns a lock identifier if successful, None otherwise.
        """
        lock_id = str(uuid.uuid4())
        redis = await self._get_async_redis()
        # SET NX is the atomic acquire
        acquired = await redis.set(f"lock:{lock_name}", lock_id, nx=True, ex=timeout)
        if acquired:
            self.logger.debug(f"Acquired lock {lock_name} with ID {lock_id}")
            return lock_id
        return None

    async def release_lock(self, lock_name: str, lock_id: str) -> bool:
        """Release a distributed lock only if we still own it."""
        try:
            redis = await self._get_async_redis()
            result = await redis.eval(self._RELEASE_SCRIPT, 1, f"lock:{lock_name}", lock_id)
            return bool(result)
        except RedisError as e:
            self.logger.error(f"Error releasing lock {lock_name}: {str(e)}")
            return False

    @asynccontextmanager
    async def lock(
        self, lock_name: str, timeout: int = 10, wait_timeout: float = 5.0, poll_interval: float = 0.05
    ) -> AsyncIterator[str]:
        """Hold ``lock_name`` for the duration of the block, waiting up to ``wait_timeout``."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_timeout
        lock_id = await self.acquire_lock(lock_name, timeout)
        while lock_id is None:
            if loop.time() >= deadline:
                raise LockNotAcquired(f"Timed out waiting for lock {lock_name}")
            await asyncio.sleep(poll_interval)
            lock_id = await self.acquire_lock(lock_name, timeout)
        try:
            yield lock_id
        finally:
            await self.release_lock(lock_name, lock_id)

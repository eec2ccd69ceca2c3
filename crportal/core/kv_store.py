"""
Key-value storage adapter.

Every piece of portal state (users, the session, change requests, their
documents and the index lists) is a string value under a string key. Two
backends implement the same async contract:

- RedisKeyValueStore: the shared store, visible to every client
- LocalKeyValueStore: a per-process store, optionally persisted to a JSON file

init_store() probes for the shared backend once at startup and falls back
to the local one. The choice is fixed until close_store().
"""

import asyncio
import json
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Set

import aiofiles
import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from crportal.core.config import Settings, settings
from crportal.core.exceptions import StorageError
from crportal.core.logging_config import logger


STORAGE_MODES = ("auto", "redis", "local")

# Redis glob metacharacters that must be escaped in a SCAN prefix
_GLOB_CHARS = re.compile(r'([*?\[\]\\])')


class KeyValueStore(ABC):
    """
    Async string-to-string store.

    get() returns None for a missing key and raises StorageError when the
    backend itself fails. Callers that want the lenient "a fault reads as
    absent" behaviour use get_or_none().
    """

    backend_name = "abstract"

    @abstractmethod
    async def get(self, key: str, shared: bool = True) -> Optional[str]:
        """Return the value stored under key, or None"""

    @abstractmethod
    async def set(self, key: str, value: str, shared: bool = True) -> bool:
        """Store value under key"""

    @abstractmethod
    async def delete(self, key: str, shared: bool = True) -> bool:
        """Remove key; True when something was removed"""

    @abstractmethod
    async def list_keys(self, prefix: str = "", shared: bool = True) -> Set[str]:
        """Return every key starting with prefix"""

    async def get_or_none(self, key: str, shared: bool = True) -> Optional[str]:
        """
        Read key, reporting a backend failure as absence.

        This is the only place where a transport fault and a missing key are
        folded together; swap it for get() to get a strict error channel.
        """
        try:
            return await self.get(key, shared=shared)
        except StorageError as e:
            logger.log_storage_event("get", key, self.backend_name, success=False, reason=e.message)
            return None

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class RedisKeyValueStore(KeyValueStore):
    """Shared key-value store on Redis"""

    backend_name = "redis"

    def __init__(
        self,
        url: str,
        namespace: Optional[str] = None,
        connect_timeout: Optional[float] = None,
        client: Optional[Redis] = None,
    ):
        self.url = url
        self.namespace = namespace or settings.CLIENT_NAMESPACE
        self.connect_timeout = connect_timeout or settings.REDIS_CONNECT_TIMEOUT
        self.redis: Optional[Redis] = client

    async def connect(self) -> bool:
        """Create the client if needed and probe it; False when Redis is unreachable"""
        if self.redis is None:
            self.redis = aioredis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.connect_timeout,
            )
        return await self.ping()

    async def ping(self) -> bool:
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.ping())
        except (RedisError, OSError) as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis disconnected")

    def _client(self) -> Redis:
        if self.redis is None:
            raise StorageError("Redis client is not connected")
        return self.redis

    def _physical_key(self, key: str, shared: bool) -> str:
        return key if shared else f"{self.namespace}:{key}"

    async def get(self, key: str, shared: bool = True) -> Optional[str]:
        try:
            return await self._client().get(self._physical_key(key, shared))
        except (RedisError, OSError) as e:
            raise StorageError(f"Redis GET error: {e}", key=key) from e

    async def set(self, key: str, value: str, shared: bool = True) -> bool:
        try:
            await self._client().set(self._physical_key(key, shared), value)
        except (RedisError, OSError) as e:
            raise StorageError(f"Redis SET error: {e}", key=key) from e
        logger.log_storage_event("set", key, self.backend_name)
        return True

    async def delete(self, key: str, shared: bool = True) -> bool:
        try:
            removed = await self._client().delete(self._physical_key(key, shared))
        except (RedisError, OSError) as e:
            raise StorageError(f"Redis DELETE error: {e}", key=key) from e
        logger.log_storage_event("delete", key, self.backend_name)
        return removed > 0

    async def list_keys(self, prefix: str = "", shared: bool = True) -> Set[str]:
        namespace_prefix = f"{self.namespace}:"
        pattern = _GLOB_CHARS.sub(r'\\\1', self._physical_key(prefix, shared)) + "*"
        keys: Set[str] = set()
        try:
            async for key in self._client().scan_iter(match=pattern, count=500):
                if shared:
                    # Client-scoped keys live in the same keyspace
                    if not key.startswith(namespace_prefix) or prefix.startswith(namespace_prefix):
                        keys.add(key)
                else:
                    keys.add(key[len(namespace_prefix):])
        except (RedisError, OSError) as e:
            raise StorageError(f"Redis SCAN error: {e}", key=prefix) from e
        return keys


class LocalKeyValueStore(KeyValueStore):
    """
    Local-only key-value store.

    Values live in a dict; when a path is given the whole dict is written to
    that JSON file after each mutation and read back on first use. The shared
    flag is accepted for interface compatibility: everything here is local.
    """

    backend_name = "local"

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path).expanduser() if path else None
        self._data: Dict[str, str] = {}
        self._loaded = self.path is None
        self._lock = asyncio.Lock()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if self.path.exists():
            try:
                async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                    payload = json.loads(await f.read() or "{}")
            except (OSError, json.JSONDecodeError) as e:
                raise StorageError(f"Local store unreadable: {e}") from e
            if isinstance(payload, dict):
                self._data = {str(k): v for k, v in payload.items() if isinstance(v, str)}
        self._loaded = True
        logger.info(f"Local store loaded {len(self._data)} keys from {self.path}")

    async def _persist(self) -> None:
        if self.path is None:
            return
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(self._data, sort_keys=True))
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Local store write failed: {e}") from e

    async def get(self, key: str, shared: bool = True) -> Optional[str]:
        async with self._lock:
            await self._ensure_loaded()
            return self._data.get(key)

    async def set(self, key: str, value: str, shared: bool = True) -> bool:
        async with self._lock:
            await self._ensure_loaded()
            self._data[key] = value
            await self._persist()
        logger.log_storage_event("set", key, self.backend_name)
        return True

    async def delete(self, key: str, shared: bool = True) -> bool:
        async with self._lock:
            await self._ensure_loaded()
            removed = self._data.pop(key, None) is not None
            if removed:
                await self._persist()
        logger.log_storage_event("delete", key, self.backend_name)
        return removed

    async def list_keys(self, prefix: str = "", shared: bool = True) -> Set[str]:
        async with self._lock:
            await self._ensure_loaded()
            return {key for key in self._data if key.startswith(prefix)}


# ==================== PROCESS-WIDE BACKEND ====================

_store: Optional[KeyValueStore] = None
_init_lock = asyncio.Lock()


async def init_store(config: Settings = settings) -> KeyValueStore:
    """
    Choose the backend for this process.

    auto  - Redis when REDIS_URL answers a PING, otherwise local
    redis - Redis or StorageError
    local - local without probing
    """
    global _store

    async with _init_lock:
        if _store is not None:
            return _store

        mode = config.STORAGE_MODE.lower()
        if mode not in STORAGE_MODES:
            raise ValueError(f"Unknown STORAGE_MODE '{config.STORAGE_MODE}'. Expected one of {STORAGE_MODES}")

        chosen: Optional[KeyValueStore] = None
        if mode != "local":
            if config.REDIS_URL:
                candidate = RedisKeyValueStore(
                    config.REDIS_URL,
                    namespace=config.CLIENT_NAMESPACE,
                    connect_timeout=config.REDIS_CONNECT_TIMEOUT,
                )
                if await candidate.connect():
                    chosen = candidate
                else:
                    await candidate.close()
                    if mode == "redis":
                        raise StorageError("Shared store is unavailable")
                    logger.warning("Shared store unavailable - falling back to local storage")
            elif mode == "redis":
                raise StorageError("STORAGE_MODE=redis requires REDIS_URL")
            else:
                logger.info("REDIS_URL not set - using local storage")

        if chosen is None:
            chosen = LocalKeyValueStore(config.LOCAL_STORE_PATH or None)

        _store = chosen
        logger.info(f"Key-value store initialized: {_store.backend_name}")
        return _store


def get_store() -> KeyValueStore:
    """Return the backend chosen by init_store()"""
    if _store is None:
        raise RuntimeError("Key-value store is not initialized; call init_store() first")
    return _store


async def close_store() -> None:
    """Release the backend; the next init_store() probes again"""
    global _store
    if _store is not None:
        await _store.close()
        _store = None

"""
Key-value store for pollable job records.

Job records are transient progress tickets: every write replaces the whole
record and resets its TTL. Unlike the read-through cache pattern, write
failures here propagate, since a job whose status cannot be recorded
cannot be polled.
"""

import json
import time
from typing import Any, Dict, Optional, Protocol

import redis.asyncio as aioredis

from studygen.services.redis_client import get_redis

KEY_PREFIX = "studygen:"


def job_key(job_id: str) -> str:
    return f"job:{job_id}"


def source_content_key(document_id: str) -> str:
    return f"pdf-content:{document_id}"


class JobStore(Protocol):
    async def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None: ...

    async def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    async def delete(self, key: str) -> None: ...


class RedisJobStore:
    """JSON records in Redis with a per-write expiry."""

    def __init__(self, client: aioredis.Redis, prefix: str = KEY_PREFIX):
        self._client = client
        self._prefix = prefix

    async def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        await self._client.set(f"{self._prefix}{key}", json.dumps(value, default=str), ex=ttl_seconds)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = await self._client.get(f"{self._prefix}{key}")
        if raw is None:
            return None
        return json.loads(raw)

    async def delete(self, key: str) -> None:
        await self._client.delete(f"{self._prefix}{key}")


class MemoryJobStore:
    """In-process store with lazy TTL expiry. Single-process use only."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._items: Dict[str, tuple] = {}

    async def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        # Round-trip through JSON so readers never share mutable state with writers
        self._items[key] = (json.loads(json.dumps(value, default=str)), self._clock() + ttl_seconds)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            self._items.pop(key, None)
            return None
        return json.loads(json.dumps(value))

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)


_memory_store: Optional[MemoryJobStore] = None


def get_job_store() -> JobStore:
    """Redis-backed store when connected, otherwise the process-wide memory store."""
    global _memory_store
    client = get_redis()
    if client is not None:
        return RedisJobStore(client)
    if _memory_store is None:
        _memory_store = MemoryJobStore()
    return _memory_store

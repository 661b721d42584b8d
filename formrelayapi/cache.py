import json
import logging
import time
from typing import Any, Optional, Protocol

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from redis.asyncio import Redis

logger = logging.getLogger(__name__)

COMMENTS_PREFIX = "comments_"


class ListingCache(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def evict_prefix(self, prefix: str) -> None: ...


class MemoryListingCache:
    """Process-local cache; past max_entries the oldest-inserted half is dropped."""

    def __init__(self, ttl: int = 300, max_entries: int = 100, evict_count: int = 50):
        self.ttl = ttl
        self.max_entries = max_entries
        self.evict_count = evict_count
        self._entries: dict[str, tuple[Any, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if time.monotonic() - stored_at >= self.ttl:
            return None
        return value

    async def set(self, key: str, value: Any) -> None:
        self._entries[key] = (value, time.monotonic())
        if len(self._entries) > self.max_entries:
            for old_key in list(self._entries)[: self.evict_count]:
                del self._entries[old_key]

    async def evict_prefix(self, prefix: str) -> None:
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]


class RedisListingCache:
    def __init__(self, redis: Redis, ttl: int = 300, namespace: str = "formrelay:"):
        self.redis = redis
        self.ttl = ttl
        self.namespace = namespace

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.redis.get(self.namespace + key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        await self.redis.setex(self.namespace + key, self.ttl, json.dumps(jsonable_encoder(value)))

    async def evict_prefix(self, prefix: str) -> None:
        keys = [k async for k in self.redis.scan_iter(match=f"{self.namespace}{prefix}*")]
        if keys:
            await self.redis.delete(*keys)


def listing_key(*parts: Optional[str]) -> str:
    return COMMENTS_PREFIX + "_".join("None" if p is None else str(p) for p in parts)


def get_listing_cache(request: Request) -> ListingCache:
    return request.app.state.listing_cache

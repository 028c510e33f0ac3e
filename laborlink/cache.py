import json
import time
from dataclasses import dataclass, asdict
from typing import Any

QueryKey = tuple


def key_matches(key: QueryKey, prefix: QueryKey) -> bool:
    return tuple(key[: len(prefix)]) == tuple(prefix)


@dataclass
class CacheEntry:
    data: Any
    updated_at: float
    stale: bool = False

    def is_fresh(self, stale_seconds: float, now: float | None = None) -> bool:
        if self.stale:
            return False
        now = time.time() if now is None else now
        return (now - self.updated_at) < stale_seconds


class MemoryCacheStore:
    """Key -> entry map held in process memory. Values must be JSON-compatible."""

    def __init__(self, namespace: str = ""):
        self.namespace = namespace
        self._entries: dict[QueryKey, CacheEntry] = {}

    async def get(self, key: QueryKey) -> CacheEntry | None:
        return self._entries.get(tuple(key))

    async def set(self, key: QueryKey, entry: CacheEntry) -> None:
        self._entries[tuple(key)] = entry

    async def mark_stale(self, prefixes) -> list[QueryKey]:
        matched = []
        for key, entry in self._entries.items():
            if any(key_matches(key, p) for p in prefixes):
                entry.stale = True
                matched.append(key)
        return matched

    async def keys(self) -> list[QueryKey]:
        return list(self._entries)

    async def delete(self, keys) -> None:
        for key in keys:
            self._entries.pop(tuple(key), None)

    async def clear(self) -> None:
        self._entries.clear()


class RedisCacheStore:
    """
    Redis-backed entries shared by every worker process.

    Each entry is indexed in one set per key prefix so that invalidation
    by prefix finds every matching entry without scanning.
    """

    def __init__(self, redis_client, namespace: str, ttl_seconds: int = 300):
        self.redis = redis_client
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds

    def _entry_key(self, key: QueryKey) -> str:
        return f"qc:{self.namespace}:entry:{json.dumps(list(key))}"

    def _index_key(self, prefix: QueryKey) -> str:
        return f"qc:{self.namespace}:index:{json.dumps(list(prefix))}"

    async def get(self, key: QueryKey) -> CacheEntry | None:
        raw = await self.redis.get(self._entry_key(key))
        if not raw:
            return None
        try:
            return CacheEntry(**json.loads(raw))
        except (ValueError, TypeError):
            return None

    async def set(self, key: QueryKey, entry: CacheEntry) -> None:
        key = tuple(key)
        pipe = self.redis.pipeline()
        pipe.set(self._entry_key(key), json.dumps(asdict(entry)), ex=self.ttl_seconds)
        # n == 0 indexes every key under the empty prefix
        for n in range(0, len(key) + 1):
            idx = self._index_key(key[:n])
            pipe.sadd(idx, json.dumps(list(key)))
            pipe.expire(idx, self.ttl_seconds + 30)
        await pipe.execute()

    async def mark_stale(self, prefixes) -> list[QueryKey]:
        matched = []
        for prefix in prefixes:
            members = await self.redis.smembers(self._index_key(tuple(prefix)))
            for member in members:
                key = tuple(json.loads(member))
                if key in matched:
                    continue
                entry = await self.get(key)
                if entry is None:
                    continue
                entry.stale = True
                await self.redis.set(self._entry_key(key), json.dumps(asdict(entry)), ex=self.ttl_seconds)
                matched.append(key)
        return matched

    async def keys(self) -> list[QueryKey]:
        members = await self.redis.smembers(self._index_key(()))
        return [tuple(json.loads(m)) for m in members]

    async def delete(self, keys) -> None:
        keys = [tuple(k) for k in keys]
        if not keys:
            return
        pipe = self.redis.pipeline()
        for key in keys:
            pipe.delete(self._entry_key(key))
            member = json.dumps(list(key))
            for n in range(0, len(key) + 1):
                pipe.srem(self._index_key(key[:n]), member)
        await pipe.execute()

    async def clear(self) -> None:
        found = []
        async for k in self.redis.scan_iter(match=f"qc:{self.namespace}:*"):
            found.append(k)
        if found:
            await self.redis.delete(*found)

"""
Candidate cache.

Two tiers keyed by ``cand:{user_id}:{mode}:{key}``:

- fast: in-process LRU (or Redis when REDIS_URL is set), optional
- durable: the candidate_cache table

Reads go fast -> durable and populate the fast tier on a durable hit. Writes
are scheduled as background tasks so requests never wait on them. Any tier
failure is logged and treated as a miss.
"""

import asyncio
import json
import time
from collections import OrderedDict
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from shelfwise import models
from shelfwise.core.config import get_settings
from shelfwise.core.logging import get_logger
from shelfwise.core.timing import utcnow
from shelfwise.services.sql_stores import SqlStore
from shelfwise.services.stores import CacheStore
from shelfwise.services.types import CacheEntry

logger = get_logger(__name__)
settings = get_settings()

CANDIDATE_NAMESPACE = "cand"


class LRUCache:
    """Bounded in-process cache with least-recently-used eviction and per-entry TTL."""

    def __init__(self, capacity: int, default_ttl: float | None = None, clock: Callable[[], float] = time.monotonic):
        if capacity <= 0:
            raise ValueError("LRU capacity must be positive")
        self.capacity = capacity
        self.default_ttl = default_ttl
        self._clock = clock
        self._data: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._data)

    def _expired(self, expires_at: float | None) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    def get(self, key: str) -> Any | None:
        item = self._data.get(key)
        if item is None:
            return None

        value, expires_at = item
        if self._expired(expires_at):
            del self._data[key]
            return None

        self._data.move_to_end(key)
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl is not None and ttl <= 0:
            # Already expired; never displaces live entries
            self._data.pop(key, None)
            return
        expires_at = None if ttl is None else self._clock() + ttl

        self._data[key] = (value, expires_at)
        self._data.move_to_end(key)
        while len(self._data) > self.capacity:
            self._data.popitem(last=False)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        keys = [k for k in self._data if k.startswith(prefix)]
        for k in keys:
            del self._data[k]
        return len(keys)

    def purge_expired(self) -> int:
        keys = [k for k, (_, expires_at) in self._data.items() if self._expired(expires_at)]
        for k in keys:
            del self._data[k]
        return len(keys)

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        return list(self._data.keys())


class MemoryCacheStore:
    """CacheStore over an LRUCache."""

    def __init__(self, lru: LRUCache):
        self.lru = lru

    async def get(self, key: str) -> Any | None:
        return self.lru.get(key)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        self.lru.set(key, value, ttl)

    async def delete(self, prefix: str) -> int:
        return self.lru.delete_prefix(prefix)

    async def cleanup_expired(self) -> int:
        return self.lru.purge_expired()


class RedisCacheStore:
    """CacheStore over redis.asyncio with JSON-encoded values."""

    SCAN_BATCH = 500

    def __init__(self, client):
        self.client = client

    async def get(self, key: str) -> Any | None:
        value = await self.client.get(key)
        return json.loads(value) if value else None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        await self.client.setex(key, ttl, json.dumps(value))

    async def delete(self, prefix: str) -> int:
        deleted = 0
        batch: list[str] = []
        async for key in self.client.scan_iter(match=f"{prefix}*", count=self.SCAN_BATCH):
            batch.append(key)
            if len(batch) >= self.SCAN_BATCH:
                deleted += await self.client.delete(*batch)
                batch = []
        if batch:
            deleted += await self.client.delete(*batch)
        return deleted

    async def cleanup_expired(self) -> int:
        # Redis expires keys itself
        return 0


def parse_candidate_key(key: str) -> tuple[str, str, str]:
    """Split ``cand:{user}:{mode}:{key}`` into (user_id, mode, key)."""
    head, mode, cache_key = key.rsplit(":", 2)
    namespace, _, user_id = head.partition(":")
    if namespace != CANDIDATE_NAMESPACE or not user_id:
        raise ValueError(f"Not a candidate cache key: {key!r}")
    return user_id, mode, cache_key


class SqlCandidateCacheStore(SqlStore):
    """CacheStore over the candidate_cache table (durable tier)."""

    async def get(self, key: str) -> dict | None:
        return await self.run(self._get, parse_candidate_key(key))

    @staticmethod
    def _get(db: Session, parts: tuple[str, str, str]) -> dict | None:
        user_id, mode, cache_key = parts
        row = db.scalar(
            select(models.CandidateCache).where(
                models.CandidateCache.user_id == user_id,
                models.CandidateCache.mode == mode,
                models.CandidateCache.cache_key == cache_key,
                models.CandidateCache.expires_at > utcnow(),
            )
        )
        if row is None:
            return None
        return CacheEntry(
            work_ids=list(row.work_ids),
            scores=[float(s) for s in row.scores],
            created_at=row.created_at,
            expires_at=row.expires_at,
        ).to_dict()

    async def set(self, key: str, value: dict, ttl: int) -> None:
        await self.run(self._set, parse_candidate_key(key), CacheEntry.from_dict(value))

    @staticmethod
    def _set(db: Session, parts: tuple[str, str, str], entry: CacheEntry) -> None:
        user_id, mode, cache_key = parts
        insert = sqlite_insert if db.get_bind().dialect.name == "sqlite" else pg_insert
        values = {
            "work_ids": list(entry.work_ids),
            "scores": list(entry.scores),
            "created_at": entry.created_at,
            "expires_at": entry.expires_at,
        }
        stmt = insert(models.CandidateCache).values(user_id=user_id, mode=mode, cache_key=cache_key, **values)
        db.execute(
            stmt.on_conflict_do_update(
                index_elements=["user_id", "mode", "cache_key"],
                set_={column: stmt.excluded[column] for column in values},
            )
        )
        db.commit()

    async def delete(self, prefix: str) -> int:
        namespace, _, rest = prefix.partition(":")
        if namespace != CANDIDATE_NAMESPACE or not rest:
            raise ValueError(f"Unsupported candidate cache prefix: {prefix!r}")
        return await self.run(self._delete_user, rest.removesuffix(":"))

    @staticmethod
    def _delete_user(db: Session, user_id: str) -> int:
        result = db.execute(delete(models.CandidateCache).where(models.CandidateCache.user_id == user_id))
        db.commit()
        return result.rowcount or 0

    async def cleanup_expired(self) -> int:
        return await self.run(self._cleanup_expired)

    @staticmethod
    def _cleanup_expired(db: Session) -> int:
        result = db.execute(delete(models.CandidateCache).where(models.CandidateCache.expires_at < utcnow()))
        db.commit()
        return result.rowcount or 0


class CandidateCache:
    """Two-tier, cache-aside store for candidate pools."""

    def __init__(
        self,
        fast: CacheStore | None = None,
        durable: CacheStore | None = None,
        ttl: int | None = None,
        fast_ttl: int | None = None,
    ):
        self.fast = fast
        self.durable = durable
        self.ttl = ttl or settings.CANDIDATE_CACHE_TTL_SECONDS
        self.fast_ttl = fast_ttl or settings.FAST_CACHE_TTL_SECONDS
        self._pending: set[asyncio.Task] = set()

    @staticmethod
    def build_key(user_id: str, mode: str, key: str) -> str:
        return f"{CANDIDATE_NAMESPACE}:{user_id}:{mode}:{key}"

    @staticmethod
    def user_prefix(user_id: str) -> str:
        return f"{CANDIDATE_NAMESPACE}:{user_id}:"

    async def get(self, user_id: str, mode: str, key: str) -> CacheEntry | None:
        cache_key = self.build_key(user_id, mode, key)

        entry = await self._read(self.fast, cache_key, "fast")
        if entry is not None:
            return entry

        entry = await self._read(self.durable, cache_key, "durable")
        if entry is None:
            return None

        await self._write(self.fast, cache_key, entry, self.fast_ttl, "fast")
        return entry

    async def set(self, user_id: str, mode: str, key: str, work_ids: list[int], scores: list[float]) -> None:
        now = utcnow()
        entry = CacheEntry(
            work_ids=list(work_ids),
            scores=list(scores),
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl),
        )
        cache_key = self.build_key(user_id, mode, key)

        await self._write(self.durable, cache_key, entry, self.ttl, "durable")
        await self._write(self.fast, cache_key, entry, self.fast_ttl, "fast")

    def store(self, user_id: str, mode: str, key: str, work_ids: list[int], scores: list[float]) -> asyncio.Task:
        """Schedule ``set`` in the background; the caller does not wait for it."""
        task = asyncio.get_running_loop().create_task(self.set(user_id, mode, key, work_ids, scores))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def flush(self) -> None:
        """Wait for all scheduled writes to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def invalidate_user(self, user_id: str) -> int:
        # Pending writes would otherwise land after the delete
        await self.flush()

        prefix = self.user_prefix(user_id)
        deleted = 0
        for tier_name, tier in (("fast", self.fast), ("durable", self.durable)):
            if tier is None:
                continue
            try:
                deleted += await tier.delete(prefix)
            except Exception as e:
                logger.warning(
                    f"Cache invalidation failed on {tier_name} tier",
                    extra={"extra_fields": {"user_id": user_id, "tier": tier_name, "error": str(e)}},
                )

        logger.info(
            "Invalidated candidate caches",
            extra={"extra_fields": {"user_id": user_id, "deleted": deleted}},
        )
        return deleted

    async def cleanup_expired(self) -> int:
        removed = 0
        for tier in (self.fast, self.durable):
            if tier is not None:
                removed += await tier.cleanup_expired()
        return removed

    async def _read(self, tier: CacheStore | None, cache_key: str, tier_name: str) -> CacheEntry | None:
        if tier is None:
            return None
        try:
            value = await tier.get(cache_key)
            if value is None:
                return None
            entry = CacheEntry.from_dict(value)
        except Exception as e:
            logger.warning(
                f"Cache read failed on {tier_name} tier",
                extra={"extra_fields": {"key": cache_key, "tier": tier_name, "error": str(e)}},
            )
            return None

        if entry.expires_at <= utcnow():
            return None
        return entry

    async def _write(
        self, tier: CacheStore | None, cache_key: str, entry: CacheEntry, ttl: int, tier_name: str
    ) -> None:
        if tier is None:
            return
        try:
            await tier.set(cache_key, entry.to_dict(), ttl)
        except Exception as e:
            logger.warning(
                f"Cache write failed on {tier_name} tier",
                extra={"extra_fields": {"key": cache_key, "tier": tier_name, "error": str(e)}},
            )

"""
Interfaces to the collaborators the recommendation pipeline queries.

Every method is a coroutine so fetches can be issued concurrently and joined
with ``asyncio.gather``. The SQL implementations live in ``sql_stores``;
tests provide in-memory fakes.
"""

from datetime import datetime
from typing import Any, Protocol, Sequence

import numpy as np

from shelfwise.services.types import (
    AlsoRead,
    Blocks,
    Cooccurrence,
    ListMate,
    QualityPrior,
    ReadingEvent,
    TasteSummary,
    UserProfile,
    VectorMatch,
    WorkEngagement,
    WorkMetadata,
)


class VectorIndex(Protocol):
    async def knn(
        self, vector: np.ndarray, limit: int, exclude_ids: Sequence[int] = ()
    ) -> list[VectorMatch]:
        """Approximate nearest works by cosine similarity, best first."""
        ...


class GraphStore(Protocol):
    async def neighbors(self, work_id: int, max_hops: int = 2) -> list[int]:
        """Works reachable within ``max_hops`` over shared authors and series."""
        ...

    async def proximity(self, work_ids: Sequence[int]) -> dict[int, float]:
        """Precomputed graph proximity score (0-1) per work."""
        ...

    async def community_members(self, work_id: int, limit: int) -> list[int]:
        """Other works in the same reader community."""
        ...


class CollaborativeStore(Protocol):
    async def also_read(self, catalog_key: str, limit: int) -> list[AlsoRead]:
        ...

    async def list_mates(self, catalog_key: str, limit: int) -> list[ListMate]:
        ...

    async def similar_by_cooccurrence(self, catalog_key: str, limit: int) -> list[Cooccurrence]:
        ...

    async def trending(self, limit: int) -> list[str]:
        """Catalog keys ordered by recent reading-log popularity."""
        ...


class CatalogStore(Protocol):
    async def get_metadata(self, work_ids: Sequence[int]) -> dict[int, WorkMetadata]:
        ...

    async def get_embeddings(self, work_ids: Sequence[int]) -> dict[int, np.ndarray]:
        """Embeddings for the given works; works without one are absent."""
        ...

    async def get_catalog_keys(self, work_ids: Sequence[int]) -> dict[int, str]:
        ...

    async def resolve_catalog_keys(self, catalog_keys: Sequence[str]) -> dict[str, int]:
        ...

    async def works_by_authors(self, author_ids: Sequence[int]) -> set[int]:
        ...

    async def works_by_subjects(
        self,
        subjects: Sequence[str],
        year_min: int | None = None,
        year_max: int | None = None,
        exclude_ids: Sequence[int] = (),
        limit: int = 1000,
    ) -> list[int]:
        ...

    async def works_with_subjects(self, work_ids: Sequence[int], subjects: Sequence[str]) -> set[int]:
        """The subset of ``work_ids`` tagged with any of ``subjects``."""
        ...


class QualityStore(Protocol):
    async def get_quality(self, work_ids: Sequence[int]) -> dict[int, QualityPrior]:
        ...


class UserStateStore(Protocol):
    async def get_read_work_ids(self, user_id: str) -> set[int]:
        ...

    async def get_blocks(self, user_id: str) -> Blocks:
        ...

    async def get_reading_events(self, user_id: str, limit: int) -> list[ReadingEvent]:
        """Events whose work has an embedding, highest priority first."""
        ...

    async def get_engagements(self, user_id: str, work_ids: Sequence[int]) -> dict[int, WorkEngagement]:
        ...

    async def last_activity_at(self, user_id: str) -> datetime | None:
        """Latest change to any reading event, engagement aggregate or block."""
        ...

    async def get_taste_summary(self, user_id: str) -> TasteSummary:
        ...


class ProfileStore(Protocol):
    async def get_profile(self, user_id: str) -> UserProfile | None:
        ...

    async def save_profile(self, profile: UserProfile) -> None:
        ...


class CacheStore(Protocol):
    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, ttl: int) -> None:
        ...

    async def delete(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; returns how many were removed."""
        ...

    async def cleanup_expired(self) -> int:
        """Purge entries past their TTL; returns how many were removed."""
        ...

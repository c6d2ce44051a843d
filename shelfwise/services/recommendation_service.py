"""
Recommendation service.

End-to-end orchestration used by the API, one instance per process:

1. Make sure the user's profile is fresh (rebuild + invalidate caches if not)
2. Generate a candidate pool for the requested mode (cache-aside)
3. Re-rank the pool with MMR and paginate the ranked list
"""

import asyncio
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from shelfwise.core.config import get_settings
from shelfwise.core.database import SessionLocal
from shelfwise.core.logging import get_logger
from shelfwise.services.cache import (
    CandidateCache,
    LRUCache,
    MemoryCacheStore,
    RedisCacheStore,
    SqlCandidateCacheStore,
)
from shelfwise.services.candidates import CandidateGenerator, validate_limit
from shelfwise.services.profile_service import ProfileBuilder
from shelfwise.services.rerank import Reranker
from shelfwise.services.sql_stores import (
    SqlCatalogStore,
    SqlCollaborativeStore,
    SqlGraphStore,
    SqlProfileStore,
    SqlQualityStore,
    SqlUserStateStore,
    SqlVectorIndex,
)
from shelfwise.services.types import RankedRecommendation, TasteSummary, UserProfile

logger = get_logger(__name__)
settings = get_settings()

MAX_PAGE_SIZE = 100


@dataclass
class RecommendationPage:
    items: list[RankedRecommendation]
    page: int
    page_size: int
    total: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


def validate_page(page: int, page_size: int) -> None:
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {page_size}")


def paginate(ranked: list[RankedRecommendation], page: int, page_size: int) -> RecommendationPage:
    validate_page(page, page_size)
    start = (page - 1) * page_size
    return RecommendationPage(
        items=ranked[start : start + page_size],
        page=page,
        page_size=page_size,
        total=len(ranked),
    )


class RecommendationService:
    def __init__(
        self,
        profiles: ProfileBuilder,
        generator: CandidateGenerator,
        reranker: Reranker,
        cache: CandidateCache,
        rerank_limit: int | None = None,
    ):
        self.profiles = profiles
        self.generator = generator
        self.reranker = reranker
        self.cache = cache
        self.rerank_limit = rerank_limit or settings.RERANK_POOL_LIMIT

    @classmethod
    def create(
        cls,
        session_factory: Callable[[], Session] = SessionLocal,
        redis_client=None,
    ) -> "RecommendationService":
        """Wire the SQL stores and the two-tier cache."""
        catalog = SqlCatalogStore(session_factory)
        user_state = SqlUserStateStore(session_factory)
        graph = SqlGraphStore(session_factory)

        if redis_client is not None:
            fast = RedisCacheStore(redis_client)
        else:
            fast = MemoryCacheStore(LRUCache(settings.FAST_CACHE_CAPACITY, settings.FAST_CACHE_TTL_SECONDS))
        cache = CandidateCache(fast=fast, durable=SqlCandidateCacheStore(session_factory))

        profiles = ProfileBuilder(user_state, SqlProfileStore(session_factory))
        generator = CandidateGenerator(
            profiles=profiles,
            user_state=user_state,
            catalog=catalog,
            vectors=SqlVectorIndex(session_factory),
            graph=graph,
            collaborative=SqlCollaborativeStore(session_factory),
            cache=cache,
        )
        reranker = Reranker(
            catalog=catalog,
            quality=SqlQualityStore(session_factory),
            graph=graph,
            user_state=user_state,
        )
        return cls(profiles, generator, reranker, cache)

    async def general(self, user_id: str, page: int = 1, page_size: int = 20) -> RecommendationPage:
        validate_page(page, page_size)
        await self.refresh_if_stale(user_id)

        candidates = await self.generator.generate(user_id, settings.GENERAL_CANDIDATE_LIMIT)
        ranked = await self.reranker.rerank(candidates, self.rerank_limit, user_id)
        return paginate(ranked, page, page_size)

    async def by_book(self, user_id: str, work_id: int, page: int = 1, page_size: int = 20) -> RecommendationPage:
        validate_page(page, page_size)
        await self.refresh_if_stale(user_id)

        candidates = await self.generator.generate_from_seed(user_id, work_id, settings.BY_BOOK_CANDIDATE_LIMIT)
        ranked = await self.reranker.rerank(candidates, self.rerank_limit, user_id)
        return paginate(ranked, page, page_size)

    async def by_category(self, user_id: str, slug: str, page: int = 1, page_size: int = 20) -> RecommendationPage:
        validate_page(page, page_size)
        await self.refresh_if_stale(user_id)

        candidates = await self.generator.generate_for_category(
            user_id, slug, settings.BY_CATEGORY_CANDIDATE_LIMIT
        )
        ranked = await self.reranker.rerank(candidates, self.rerank_limit, user_id)
        return paginate(ranked, page, page_size)

    async def popular(self, limit: int = 20) -> list[RankedRecommendation]:
        """Trending works for users without a reading history."""
        validate_limit(limit)
        candidates = await self.generator.generate_trending(limit)
        return await self.reranker.rerank(candidates, limit)

    async def profile(self, user_id: str) -> tuple[UserProfile, TasteSummary]:
        profile, summary = await asyncio.gather(
            self.profiles.get_or_build_profile(user_id),
            self.profiles.get_taste_summary(user_id),
        )
        return profile, summary

    async def rebuild_profile(self, user_id: str) -> UserProfile:
        profile = await self.profiles.build_profile(user_id)
        await self.cache.invalidate_user(user_id)
        return profile

    async def invalidate(self, user_id: str) -> int:
        return await self.cache.invalidate_user(user_id)

    async def refresh_if_stale(self, user_id: str) -> bool:
        """Rebuild the profile when new reading activity arrived; returns whether it did."""
        if not await self.profiles.needs_refresh(user_id):
            return False

        logger.info("Profile is stale, rebuilding", extra={"extra_fields": {"user_id": user_id}})
        await self.rebuild_profile(user_id)
        return True

    async def close(self) -> None:
        await self.cache.flush()

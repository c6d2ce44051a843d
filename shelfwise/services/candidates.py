"""
Candidate generation.

Builds the initial candidate pool for a user from several independent sources
and fuses them into one deduplicated, score-ordered list:

- general: profile-vector kNN, graph expansion of the top anchors, reader
  communities of the top anchors, and Jaccard co-occurrence of anchor books
- by-book: seed-embedding kNN, graph neighbors of the seed, "readers also
  read" and "appears in the same lists"
- by-category: works matching a category's subjects and years, scored by
  similarity to the user's taste vector

Works the user has already shelved or blocked never appear. Every mode is
cache-aside through the CandidateCache.
"""

import asyncio
import logging
import math
from typing import Awaitable, Iterable

from shelfwise.core.config import get_settings
from shelfwise.core.logging import get_context_logger, get_logger
from shelfwise.core.timing import time_operation
from shelfwise.data.categories import get_category_constraints
from shelfwise.services.cache import CandidateCache
from shelfwise.services.profile_service import ProfileBuilder
from shelfwise.services.stores import CatalogStore, CollaborativeStore, GraphStore, UserStateStore, VectorIndex
from shelfwise.services.types import Anchor, Candidate, CandidateSource
from shelfwise.services.vectors import cosine_similarity

logger = get_logger(__name__)
settings = get_settings()

# Share of a later source's score added to a work another source already found
SOURCE_DAMPING: dict[str, float] = {
    "vector": 0.0,
    "graph": 0.2,
    "collaborative": 0.3,
    "community": 0.15,
    "category": 0.0,
    "trending": 0.0,
}

GRAPH_ANCHORS = 5
COMMUNITY_ANCHORS = 3
COOCCURRENCE_ANCHORS = 10
GRAPH_ANCHOR_FACTOR = 0.5
COMMUNITY_ANCHOR_FACTOR = 0.3

SEED_GRAPH_SCORE = 0.5
ALSO_READ_LIMIT = 50
LIST_MATES_LIMIT = 30
NEUTRAL_CATEGORY_SCORE = 0.5

MODE_GENERAL = "general"
MODE_BY_BOOK = "by-book"
MODE_BY_CATEGORY = "by-category"

# Source tag given to candidates served from cache, per mode
CACHED_SOURCE: dict[str, CandidateSource] = {
    MODE_GENERAL: "vector",
    MODE_BY_BOOK: "vector",
    MODE_BY_CATEGORY: "category",
}


class UnknownCategoryError(ValueError):
    """Raised for a category slug with no definition."""

    def __init__(self, slug: str):
        super().__init__(f"Unknown category: {slug}")
        self.slug = slug


def validate_limit(limit: int) -> None:
    if limit <= 0:
        raise ValueError(f"limit must be positive, got {limit}")


def also_read_score(overlap: int) -> float:
    return min(0.8, 0.3 + 0.2 * math.log10(overlap + 1))


def list_mate_score(shared_lists: int) -> float:
    return min(0.6, 0.2 + 0.05 * shared_lists)


def cooccurrence_score(jaccard: float) -> float:
    return min(0.8, 0.3 + jaccard)


class CandidatePool:
    """
    Fusion table keyed by work id.

    The first source to find a work inserts it with its own score (capped at
    1.0) and tag. Later sources only add their damped score, capped at 1.0;
    scores and tags are never overwritten.
    """

    def __init__(self, exclude: Iterable[int] = ()):
        self.exclude = set(exclude)
        self._candidates: dict[int, Candidate] = {}

    def __len__(self) -> int:
        return len(self._candidates)

    def __contains__(self, work_id: int) -> bool:
        return work_id in self._candidates

    def add(self, work_id: int, score: float, source: CandidateSource) -> None:
        if work_id in self.exclude:
            return

        existing = self._candidates.get(work_id)
        if existing is None:
            self._candidates[work_id] = Candidate(work_id=work_id, score=min(1.0, score), source=source)
        else:
            existing.score = min(1.0, existing.score + SOURCE_DAMPING[source] * score)

    def add_all(self, scored: Iterable[tuple[int, float]], source: CandidateSource) -> None:
        for work_id, score in scored:
            self.add(work_id, score, source)

    def remove(self, work_ids: Iterable[int]) -> None:
        for work_id in work_ids:
            self._candidates.pop(work_id, None)

    def ranked(self, limit: int) -> list[Candidate]:
        # Stable sort: ties keep insertion order
        return sorted(self._candidates.values(), key=lambda c: c.score, reverse=True)[:limit]


class CandidateGenerator:
    def __init__(
        self,
        profiles: ProfileBuilder,
        user_state: UserStateStore,
        catalog: CatalogStore,
        vectors: VectorIndex,
        graph: GraphStore,
        collaborative: CollaborativeStore,
        cache: CandidateCache | None = None,
        graph_max_hops: int | None = None,
    ):
        self.profiles = profiles
        self.user_state = user_state
        self.catalog = catalog
        self.vectors = vectors
        self.graph = graph
        self.collaborative = collaborative
        self.cache = cache
        self.graph_max_hops = graph_max_hops or settings.GRAPH_MAX_HOPS

    # ------------------------------------------------------------------
    # General mode
    # ------------------------------------------------------------------

    async def generate(self, user_id: str, limit: int, use_cache: bool = True) -> list[Candidate]:
        """Candidates for the user's overall taste."""
        validate_limit(limit)
        log = get_context_logger(__name__, user_id=user_id, mode=MODE_GENERAL)

        if use_cache:
            cached = await self._from_cache(user_id, MODE_GENERAL, "all", limit)
            if cached is not None:
                log.debug("Using cached candidates", extra={"extra_fields": {"count": len(cached)}})
                return cached

        with time_operation("General candidate generation", log, logging.INFO) as stats:
            profile, read_ids, blocks = await asyncio.gather(
                self.profiles.get_or_build_profile(user_id),
                self.user_state.get_read_work_ids(user_id),
                self.user_state.get_blocks(user_id),
            )
            if profile.is_empty:
                log.warning("No user profile available")
                stats["candidate_count"] = 0
                return []

            exclude = read_ids | blocks.work_ids
            anchors = profile.anchors

            vector_matches, graph_scored, community_scored, cooccurrence_scored, author_blocked = await asyncio.gather(
                self.vectors.knn(profile.profile_vector, limit, sorted(exclude)),
                self._optional("graph", self._graph_candidates(anchors[:GRAPH_ANCHORS]), log),
                self._optional("community", self._community_candidates(anchors[:COMMUNITY_ANCHORS]), log),
                self._optional(
                    "collaborative", self._cooccurrence_candidates(anchors[:COOCCURRENCE_ANCHORS]), log
                ),
                self.catalog.works_by_authors(sorted(blocks.author_ids)),
            )

            pool = CandidatePool(exclude)
            pool.add_all(((m.id, m.similarity) for m in vector_matches), "vector")
            pool.add_all(graph_scored, "graph")
            pool.add_all(community_scored, "community")
            pool.add_all(cooccurrence_scored, "collaborative")
            pool.remove(author_blocked)

            candidates = pool.ranked(limit)
            stats["candidate_count"] = len(candidates)

        self._store(user_id, MODE_GENERAL, "all", candidates)
        return candidates

    async def _graph_candidates(self, anchors: list[Anchor]) -> list[tuple[int, float]]:
        neighbor_lists = await asyncio.gather(
            *(self.graph.neighbors(anchor.work_id, self.graph_max_hops) for anchor in anchors)
        )
        return [
            (neighbor_id, GRAPH_ANCHOR_FACTOR * anchor.weight)
            for anchor, neighbors in zip(anchors, neighbor_lists)
            for neighbor_id in neighbors
        ]

    async def _community_candidates(self, anchors: list[Anchor]) -> list[tuple[int, float]]:
        member_lists = await asyncio.gather(
            *(self.graph.community_members(anchor.work_id, settings.COMMUNITY_MEMBER_LIMIT) for anchor in anchors)
        )
        return [
            (member_id, COMMUNITY_ANCHOR_FACTOR * anchor.weight)
            for anchor, members in zip(anchors, member_lists)
            for member_id in members
        ]

    async def _cooccurrence_candidates(self, anchors: list[Anchor]) -> list[tuple[int, float]]:
        catalog_keys = await self.catalog.get_catalog_keys([a.work_id for a in anchors])
        keys = [catalog_keys[a.work_id] for a in anchors if a.work_id in catalog_keys]
        if not keys:
            return []

        related_lists = await asyncio.gather(
            *(self.collaborative.similar_by_cooccurrence(key, settings.COOCCURRENCE_LIMIT) for key in keys)
        )
        related = [item for items in related_lists for item in items]
        resolved = await self.catalog.resolve_catalog_keys(sorted({r.catalog_key for r in related}))

        return [
            (resolved[r.catalog_key], cooccurrence_score(r.jaccard))
            for r in related
            if r.catalog_key in resolved
        ]

    # ------------------------------------------------------------------
    # Seed-book mode
    # ------------------------------------------------------------------

    async def generate_from_seed(
        self, user_id: str, seed_work_id: int, limit: int, use_cache: bool = True
    ) -> list[Candidate]:
        """Candidates similar to one seed work."""
        validate_limit(limit)
        log = get_context_logger(__name__, user_id=user_id, mode=MODE_BY_BOOK, seed_work_id=seed_work_id)
        cache_key = str(seed_work_id)

        if use_cache:
            cached = await self._from_cache(user_id, MODE_BY_BOOK, cache_key, limit)
            if cached is not None:
                return cached

        with time_operation("By-book candidate generation", log, logging.INFO) as stats:
            embeddings, catalog_keys, read_ids, blocks = await asyncio.gather(
                self.catalog.get_embeddings([seed_work_id]),
                self.catalog.get_catalog_keys([seed_work_id]),
                self.user_state.get_read_work_ids(user_id),
                self.user_state.get_blocks(user_id),
            )
            seed_embedding = embeddings.get(seed_work_id)
            seed_key = catalog_keys.get(seed_work_id)
            exclude = read_ids | blocks.work_ids | {seed_work_id}

            if seed_embedding is None:
                log.warning("Seed work has no embedding; skipping vector source")

            vector_matches, graph_neighbors, also_read_scored, list_mate_scored, author_blocked = await asyncio.gather(
                self._seed_knn(seed_embedding, limit, exclude),
                self._optional("graph", self.graph.neighbors(seed_work_id, self.graph_max_hops), log),
                self._optional("collaborative", self._also_read_candidates(seed_key), log),
                self._optional("collaborative", self._list_mate_candidates(seed_key), log),
                self.catalog.works_by_authors(sorted(blocks.author_ids)),
            )

            pool = CandidatePool(exclude)
            pool.add_all(((m.id, m.similarity) for m in vector_matches), "vector")
            pool.add_all(((n, SEED_GRAPH_SCORE) for n in graph_neighbors), "graph")
            pool.add_all(also_read_scored, "collaborative")
            pool.add_all(list_mate_scored, "collaborative")
            pool.remove(author_blocked)

            candidates = pool.ranked(limit)
            stats["candidate_count"] = len(candidates)

        self._store(user_id, MODE_BY_BOOK, cache_key, candidates)
        return candidates

    async def _seed_knn(self, embedding, limit: int, exclude: set[int]):
        if embedding is None:
            return []
        return await self.vectors.knn(embedding, limit, sorted(exclude))

    async def _also_read_candidates(self, seed_key: str | None) -> list[tuple[int, float]]:
        if not seed_key:
            return []
        also_read = await self.collaborative.also_read(seed_key, ALSO_READ_LIMIT)
        resolved = await self.catalog.resolve_catalog_keys([a.catalog_key for a in also_read])
        return [
            (resolved[a.catalog_key], also_read_score(a.overlap))
            for a in also_read
            if a.catalog_key in resolved
        ]

    async def _list_mate_candidates(self, seed_key: str | None) -> list[tuple[int, float]]:
        if not seed_key:
            return []
        mates = await self.collaborative.list_mates(seed_key, LIST_MATES_LIMIT)
        resolved = await self.catalog.resolve_catalog_keys([m.catalog_key for m in mates])
        return [
            (resolved[m.catalog_key], list_mate_score(m.shared_lists))
            for m in mates
            if m.catalog_key in resolved
        ]

    # ------------------------------------------------------------------
    # Category mode
    # ------------------------------------------------------------------

    async def generate_for_category(
        self, user_id: str, category_slug: str, limit: int, use_cache: bool = True
    ) -> list[Candidate]:
        """Candidates from one category, ordered by similarity to the user's taste."""
        validate_limit(limit)
        constraints = get_category_constraints(category_slug)
        if constraints is None:
            raise UnknownCategoryError(category_slug)

        log = get_context_logger(__name__, user_id=user_id, mode=MODE_BY_CATEGORY, category=category_slug)

        if use_cache:
            cached = await self._from_cache(user_id, MODE_BY_CATEGORY, category_slug, limit)
            if cached is not None:
                return cached

        with time_operation("By-category candidate generation", log, logging.INFO) as stats:
            profile, read_ids, blocks = await asyncio.gather(
                self.profiles.get_or_build_profile(user_id),
                self.user_state.get_read_work_ids(user_id),
                self.user_state.get_blocks(user_id),
            )
            exclude = read_ids | blocks.work_ids

            # Over-fetch so that subject exclusion still leaves enough works
            work_ids = await self.catalog.works_by_subjects(
                constraints.subjects,
                year_min=constraints.year_min,
                year_max=constraints.year_max,
                exclude_ids=sorted(exclude),
                limit=limit * 2,
            )

            excluded_by_subject, author_blocked = await asyncio.gather(
                self.catalog.works_with_subjects(work_ids, constraints.exclude_subjects),
                self.catalog.works_by_authors(sorted(blocks.author_ids)),
            )
            dropped = exclude | excluded_by_subject | author_blocked
            work_ids = [w for w in work_ids if w not in dropped][:limit]

            pool = CandidatePool(exclude)
            if profile.is_empty:
                pool.add_all(((w, NEUTRAL_CATEGORY_SCORE) for w in work_ids), "category")
            else:
                # Works without an embedding cannot be compared to the taste vector
                embeddings = await self.catalog.get_embeddings(work_ids)
                pool.add_all(
                    (
                        (w, cosine_similarity(profile.profile_vector, embeddings[w]))
                        for w in work_ids
                        if w in embeddings
                    ),
                    "category",
                )

            candidates = pool.ranked(limit)
            stats["candidate_count"] = len(candidates)

        self._store(user_id, MODE_BY_CATEGORY, category_slug, candidates)
        return candidates

    # ------------------------------------------------------------------
    # Trending (cold start)
    # ------------------------------------------------------------------

    async def generate_trending(self, limit: int) -> list[Candidate]:
        """Popular works from public reading logs, scored by rank."""
        validate_limit(limit)
        keys = await self.collaborative.trending(limit)
        resolved = await self.catalog.resolve_catalog_keys(keys)
        work_ids = [resolved[k] for k in keys if k in resolved]

        pool = CandidatePool()
        for rank, work_id in enumerate(work_ids):
            pool.add(work_id, 1.0 - rank / len(work_ids), "trending")
        return pool.ranked(limit)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _optional(self, source: str, fetch: Awaitable[list], log) -> list:
        """Await an optional source; on failure it contributes nothing."""
        try:
            return await fetch
        except Exception as e:
            log.warning(
                f"Candidate source '{source}' failed",
                extra={"extra_fields": {"source": source, "error": str(e)}},
            )
            return []

    async def _from_cache(self, user_id: str, mode: str, key: str, limit: int) -> list[Candidate] | None:
        if self.cache is None:
            return None
        entry = await self.cache.get(user_id, mode, key)
        if entry is None:
            return None

        # Shelves and blocks may have changed since the entry was written
        read_ids, blocks = await asyncio.gather(
            self.user_state.get_read_work_ids(user_id),
            self.user_state.get_blocks(user_id),
        )
        exclude = read_ids | blocks.work_ids
        if blocks.author_ids:
            exclude |= await self.catalog.works_by_authors(sorted(blocks.author_ids))

        source = CACHED_SOURCE[mode]
        kept = [
            Candidate(work_id=work_id, score=score, source=source)
            for work_id, score in zip(entry.work_ids, entry.scores)
            if work_id not in exclude
        ]
        if not kept:
            return None
        return kept[:limit]

    def _store(self, user_id: str, mode: str, key: str, candidates: list[Candidate]) -> None:
        if self.cache is None or not candidates:
            return
        self.cache.store(
            user_id,
            mode,
            key,
            [c.work_id for c in candidates],
            [c.score for c in candidates],
        )

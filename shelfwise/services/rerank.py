"""
Re-ranking with Maximal Marginal Relevance (MMR).

1. Base score per candidate from relevance, quality prior, graph proximity
   and the user's own engagement with the work
2. Keep the top 2 x limit candidates by base score (bounds embedding fetches)
3. Greedy selection: each round picks the candidate maximizing
   (1 - lambda) x base + lambda x novelty x novelty_weight - author_penalty
   where novelty is 1 - mean cosine similarity to what is already selected
4. final = 0.7 x base + novelty x novelty_weight, mapped to a letter grade
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Sequence

import numpy as np

from shelfwise.core.config import get_settings
from shelfwise.core.logging import get_context_logger, get_logger
from shelfwise.core.timing import time_operation, utcnow
from shelfwise.services.candidates import validate_limit
from shelfwise.services.stores import CatalogStore, GraphStore, QualityStore, UserStateStore
from shelfwise.services.types import (
    Candidate,
    Grade,
    QualityPrior,
    RankedRecommendation,
    WorkEngagement,
    WorkMetadata,
)
from shelfwise.services.vectors import cosine_similarity

logger = get_logger(__name__)
settings = get_settings()

AUTHOR_PENALTY = 0.1
FINAL_BASE_WEIGHT = 0.7
ENGAGEMENT_RECENCY_DAYS = 90

GRADE_THRESHOLDS: list[tuple[float, Grade]] = [
    (0.85, "A+"),
    (0.75, "A"),
    (0.65, "A-"),
    (0.55, "B+"),
    (0.45, "B"),
]


@dataclass(frozen=True)
class RerankWeights:
    relevance: float = 0.4
    quality: float = 0.25
    graph: float = 0.2
    engagement: float = 0.1
    novelty: float = 0.15


def calculate_quality_score(
    blended_avg: float | None,
    blended_wilson: float | None = None,
    total_ratings: int | None = None,
) -> float:
    """Quality in 0-1 from the blended prior; 0.5 when there is no rating data."""
    if blended_avg is None:
        return 0.5

    rating_component = (blended_avg - 1) / 4
    wilson_component = blended_wilson or 0.0
    count = total_ratings if total_ratings is not None else 1
    count_weight = min(1.0, math.log10(count + 1) / 4)

    return (rating_component * 0.6 + wilson_component * 0.4) * (0.5 + 0.5 * count_weight)


def calculate_engagement_score(engagement: WorkEngagement | None, now: datetime | None = None) -> float:
    """The user's own engagement with a work, capped at 1."""
    if engagement is None:
        return 0.0

    score = 0.0
    total_seconds = engagement.total_seconds or 0.0
    if total_seconds > 0:
        hours = total_seconds / 3600
        score += min(1.0, math.log10(hours + 1) / 2)

    if (engagement.last_30d_seconds or 0.0) > 0:
        score += 0.1

    if engagement.last_read_at is not None:
        now = now or utcnow()
        age_days = (now - engagement.last_read_at).total_seconds() / 86400
        score += 0.2 * max(0.0, 1 - age_days / ENGAGEMENT_RECENCY_DAYS)

    return min(1.0, score)


def calculate_novelty_score(embedding: np.ndarray | None, selected_embeddings: Sequence[np.ndarray]) -> float:
    """1 - mean cosine similarity to the selected embeddings; 1.0 when either side is missing."""
    if embedding is None or len(selected_embeddings) == 0:
        return 1.0

    total = sum(cosine_similarity(embedding, selected) for selected in selected_embeddings)
    return 1.0 - total / len(selected_embeddings)


def score_to_grade(score: float) -> Grade:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "B-"


@dataclass
class ScoredCandidate:
    work_id: int
    meta: WorkMetadata | None
    quality: QualityPrior | None
    relevance_score: float
    quality_score: float
    graph_score: float
    engagement_score: float
    base_score: float
    embedding: np.ndarray | None = None

    @property
    def authors(self) -> list[str]:
        return self.meta.authors if self.meta else []


class Reranker:
    def __init__(
        self,
        catalog: CatalogStore,
        quality: QualityStore,
        graph: GraphStore,
        user_state: UserStateStore,
        weights: RerankWeights | None = None,
        diversity_lambda: float | None = None,
    ):
        self.catalog = catalog
        self.quality = quality
        self.graph = graph
        self.user_state = user_state
        self.weights = weights or RerankWeights()
        self.diversity_lambda = (
            settings.RERANK_DIVERSITY_LAMBDA if diversity_lambda is None else diversity_lambda
        )

    async def rerank(
        self,
        candidates: list[Candidate],
        limit: int,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> list[RankedRecommendation]:
        validate_limit(limit)
        if not candidates:
            return []

        log = get_context_logger(__name__, user_id=user_id)
        now = now or utcnow()

        # First occurrence wins if a work id is repeated
        unique: dict[int, Candidate] = {}
        for candidate in candidates:
            unique.setdefault(candidate.work_id, candidate)
        work_ids = list(unique)

        with time_operation("Candidate re-ranking", log, logging.INFO) as stats:
            metadata, qualities, proximity, engagements = await asyncio.gather(
                self.catalog.get_metadata(work_ids),
                self._optional("quality", self.quality.get_quality(work_ids), log),
                self._optional("graph", self.graph.proximity(work_ids), log),
                self._optional("engagement", self._engagements(user_id, work_ids), log),
            )

            scored = [
                self._score(candidate, metadata, qualities, proximity, engagements, now)
                for candidate in unique.values()
            ]
            scored.sort(key=lambda s: s.base_score, reverse=True)
            pool = scored[: limit * 2]

            # Embeddings only for the bounded pool
            embeddings = await self._optional(
                "embeddings", self.catalog.get_embeddings([s.work_id for s in pool]), log
            )
            for item in pool:
                item.embedding = embeddings.get(item.work_id)

            selected = self._select(pool, limit)
            stats.update(candidate_count=len(candidates), pool_size=len(pool), selected_count=len(selected))

        return selected

    async def _engagements(self, user_id: str | None, work_ids: list[int]) -> dict[int, WorkEngagement]:
        if not user_id:
            return {}
        return await self.user_state.get_engagements(user_id, work_ids)

    async def _optional(self, name: str, fetch: Awaitable[dict], log) -> dict:
        try:
            return await fetch
        except Exception as e:
            log.warning(
                f"Rerank signal '{name}' unavailable",
                extra={"extra_fields": {"signal": name, "error": str(e)}},
            )
            return {}

    def _score(
        self,
        candidate: Candidate,
        metadata: dict[int, WorkMetadata],
        qualities: dict[int, QualityPrior],
        proximity: dict[int, float],
        engagements: dict[int, WorkEngagement],
        now: datetime,
    ) -> ScoredCandidate:
        quality = qualities.get(candidate.work_id)
        quality_score = calculate_quality_score(
            quality.blended_average if quality else None,
            quality.blended_lower_bound if quality else None,
            quality.total_rating_count if quality else None,
        )
        graph_score = proximity.get(candidate.work_id, 0.0)
        engagement_score = calculate_engagement_score(engagements.get(candidate.work_id), now)

        w = self.weights
        base_score = (
            w.relevance * candidate.score
            + w.quality * quality_score
            + w.graph * graph_score
            + w.engagement * engagement_score
        )

        return ScoredCandidate(
            work_id=candidate.work_id,
            meta=metadata.get(candidate.work_id),
            quality=quality,
            relevance_score=candidate.score,
            quality_score=quality_score,
            graph_score=graph_score,
            engagement_score=engagement_score,
            base_score=base_score,
        )

    def _select(self, pool: list[ScoredCandidate], limit: int) -> list[RankedRecommendation]:
        """Greedy MMR over a pool already sorted by base score."""
        lam = self.diversity_lambda
        novelty_weight = self.weights.novelty

        selected: list[RankedRecommendation] = []
        selected_embeddings: list[np.ndarray] = []
        selected_authors: set[str] = set()
        remaining = list(pool)

        while remaining and len(selected) < limit:
            best_index = -1
            best_mmr = -math.inf

            for index, item in enumerate(remaining):
                novelty = calculate_novelty_score(item.embedding, selected_embeddings)
                penalty = AUTHOR_PENALTY * sum(1 for author in item.authors if author in selected_authors)
                mmr = (1 - lam) * item.base_score + lam * novelty * novelty_weight - penalty
                # Strict comparison keeps the earlier (higher base score) item on ties
                if mmr > best_mmr:
                    best_mmr = mmr
                    best_index = index

            best = remaining.pop(best_index)

            # Novelty against the selection as it was before this pick
            novelty = calculate_novelty_score(best.embedding, selected_embeddings)
            if best.embedding is not None:
                selected_embeddings.append(best.embedding)
            selected_authors.update(best.authors)

            final_score = best.base_score * FINAL_BASE_WEIGHT + novelty * novelty_weight
            selected.append(
                RankedRecommendation(
                    work_id=best.work_id,
                    title=best.meta.title if best.meta else "Unknown",
                    authors=list(best.authors),
                    year=best.meta.publication_year if best.meta else None,
                    avg_rating=best.quality.blended_average if best.quality else None,
                    rating_count=best.quality.total_rating_count if best.quality else None,
                    relevance_score=best.relevance_score,
                    quality_score=best.quality_score,
                    engagement_score=best.engagement_score,
                    diversity_score=novelty,
                    final_score=final_score,
                    confidence=final_score,
                    grade=score_to_grade(final_score),
                )
            )

        return selected


def calculate_ild(
    recommendations: list[RankedRecommendation],
    embeddings: dict[int, np.ndarray] | None = None,
) -> float:
    """
    Intra-list diversity: mean pairwise distance between recommendations.

    Uses 1 - cosine similarity when embeddings are given, otherwise author
    Jaccard distance. 1.0 for lists of fewer than two items.
    """
    if len(recommendations) <= 1:
        return 1.0

    total = 0.0
    pairs = 0

    if embeddings:
        for i, first in enumerate(recommendations):
            first_embedding = embeddings.get(first.work_id)
            if first_embedding is None:
                continue
            for second in recommendations[i + 1 :]:
                second_embedding = embeddings.get(second.work_id)
                if second_embedding is None:
                    continue
                total += 1 - cosine_similarity(first_embedding, second_embedding)
                pairs += 1
    else:
        author_sets = [set(r.authors) for r in recommendations]
        for i, first in enumerate(author_sets):
            for second in author_sets[i + 1 :]:
                union = first | second
                similarity = len(first & second) / len(union) if union else 0.0
                total += 1 - similarity
                pairs += 1

    return total / pairs if pairs else 1.0


def get_diversity_metrics(recommendations: list[RankedRecommendation]) -> dict:
    all_authors = [author for r in recommendations for author in r.authors]
    unique_authors = len(set(all_authors))
    repeat_rate = 1 - unique_authors / len(all_authors) if all_authors else 0.0

    return {
        "ild": calculate_ild(recommendations),
        "unique_authors": unique_authors,
        "author_repeat_rate": repeat_rate,
    }

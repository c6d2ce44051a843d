from shelfwise.services import recommendation_service
from shelfwise.services.cache import (
    CandidateCache,
    LRUCache,
    MemoryCacheStore,
    RedisCacheStore,
    SqlCandidateCacheStore,
)
from shelfwise.services.candidates import CandidateGenerator, CandidatePool, UnknownCategoryError
from shelfwise.services.engagement import calculate_event_weight, compute_signals
from shelfwise.services.profile_service import ProfileBuilder, compute_profile
from shelfwise.services.quality import blend_ratings, compute_work_quality
from shelfwise.services.recommendation_service import RecommendationPage, RecommendationService
from shelfwise.services.rerank import (
    Reranker,
    RerankWeights,
    calculate_engagement_score,
    calculate_ild,
    calculate_novelty_score,
    calculate_quality_score,
    get_diversity_metrics,
    score_to_grade,
)

__all__ = [
    "recommendation_service",
    # Engagement
    "calculate_event_weight",
    "compute_signals",
    # Profiles
    "ProfileBuilder",
    "compute_profile",
    # Candidates
    "CandidateGenerator",
    "CandidatePool",
    "UnknownCategoryError",
    # Cache
    "CandidateCache",
    "LRUCache",
    "MemoryCacheStore",
    "RedisCacheStore",
    "SqlCandidateCacheStore",
    # Quality
    "blend_ratings",
    "compute_work_quality",
    # Re-ranking
    "Reranker",
    "RerankWeights",
    "calculate_novelty_score",
    "calculate_quality_score",
    "calculate_engagement_score",
    "score_to_grade",
    "calculate_ild",
    "get_diversity_metrics",
    # Orchestration
    "RecommendationService",
    "RecommendationPage",
]

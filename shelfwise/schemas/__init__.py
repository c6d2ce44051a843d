from shelfwise.schemas.category import CategoryResponse
from shelfwise.schemas.profile import (
    AnchorResponse,
    CacheInvalidationResponse,
    EngagementSignalsResponse,
    ProfileResponse,
    TasteSummaryResponse,
)
from shelfwise.schemas.recommendation import RecommendationPageResponse, RecommendationResponse

__all__ = [
    "RecommendationResponse",
    "RecommendationPageResponse",
    "AnchorResponse",
    "EngagementSignalsResponse",
    "TasteSummaryResponse",
    "ProfileResponse",
    "CacheInvalidationResponse",
    "CategoryResponse",
]

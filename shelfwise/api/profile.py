from fastapi import APIRouter, Depends, Query

from shelfwise.api.deps import get_recommendation_service
from shelfwise.schemas.profile import (
    AnchorResponse,
    CacheInvalidationResponse,
    ProfileResponse,
    TasteSummaryResponse,
)
from shelfwise.services.recommendation_service import RecommendationService
from shelfwise.services.types import TasteSummary, UserProfile

router = APIRouter()


def _profile_response(profile: UserProfile, summary: TasteSummary) -> ProfileResponse:
    return ProfileResponse(
        user_id=profile.user_id,
        has_profile=not profile.is_empty,
        anchors=[AnchorResponse.model_validate(anchor) for anchor in profile.anchors],
        built_at=profile.built_at,
        summary=TasteSummaryResponse.model_validate(summary),
    )


@router.get("", response_model=ProfileResponse)
async def get_profile(
    user_id: str = Query(..., min_length=1),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Get the user's anchor books and taste summary."""
    profile, summary = await service.profile(user_id)
    return _profile_response(profile, summary)


@router.post("/rebuild", response_model=ProfileResponse)
async def rebuild_profile(
    user_id: str = Query(..., min_length=1),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Rebuild the taste profile now and drop the user's cached candidates."""
    profile = await service.rebuild_profile(user_id)
    summary = await service.profiles.get_taste_summary(user_id)
    return _profile_response(profile, summary)


@router.delete("/cache", response_model=CacheInvalidationResponse)
async def invalidate_cache(
    user_id: str = Query(..., min_length=1),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Drop the user's cached candidate pools."""
    deleted = await service.invalidate(user_id)
    return CacheInvalidationResponse(user_id=user_id, deleted=deleted)

from fastapi import APIRouter, Depends, HTTPException, Query, status

from shelfwise.api.deps import get_recommendation_service
from shelfwise.schemas.recommendation import RecommendationPageResponse, RecommendationResponse
from shelfwise.services.candidates import UnknownCategoryError
from shelfwise.services.recommendation_service import RecommendationPage, RecommendationService

router = APIRouter()


def _page_response(page: RecommendationPage) -> RecommendationPageResponse:
    return RecommendationPageResponse(
        items=[RecommendationResponse.model_validate(item) for item in page.items],
        page=page.page,
        page_size=page.page_size,
        total=page.total,
        has_more=page.has_more,
    )


@router.get("/general", response_model=RecommendationPageResponse)
async def get_general_recommendations(
    user_id: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """
    Personalized recommendations from the user's whole reading history.

    Rebuilds the taste profile first if new reading activity arrived.
    """
    try:
        result = await service.general(user_id, page=page, page_size=page_size)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _page_response(result)


@router.get("/by-book", response_model=RecommendationPageResponse)
async def get_by_book_recommendations(
    user_id: str = Query(..., min_length=1),
    work_id: int = Query(...),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Books similar to one seed work."""
    try:
        result = await service.by_book(user_id, work_id, page=page, page_size=page_size)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _page_response(result)


@router.get("/by-category", response_model=RecommendationPageResponse)
async def get_by_category_recommendations(
    user_id: str = Query(..., min_length=1),
    slug: str = Query(...),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Books from one category, ordered by similarity to the user's taste."""
    try:
        result = await service.by_category(user_id, slug, page=page, page_size=page_size)
    except UnknownCategoryError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _page_response(result)


@router.get("/popular", response_model=list[RecommendationResponse])
async def get_popular_books(
    limit: int = Query(20, ge=1, le=50),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """
    Trending books (no reading history required).

    Good starting points for new readers.
    """
    try:
        ranked = await service.popular(limit)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return [RecommendationResponse.model_validate(item) for item in ranked]

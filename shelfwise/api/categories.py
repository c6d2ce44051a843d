from fastapi import APIRouter

from shelfwise.data.categories import get_category_metadata
from shelfwise.schemas.category import CategoryResponse

router = APIRouter()


@router.get("", response_model=list[CategoryResponse])
async def list_categories():
    """List categories available for by-category recommendations."""
    return [CategoryResponse(**category) for category in get_category_metadata()]

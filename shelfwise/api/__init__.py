from fastapi import APIRouter

from shelfwise.api import categories, profile, recommendations

router = APIRouter()

router.include_router(recommendations.router, prefix="/recommendations", tags=["recommendations"])
router.include_router(profile.router, prefix="/profile", tags=["profile"])
router.include_router(categories.router, prefix="/categories", tags=["categories"])

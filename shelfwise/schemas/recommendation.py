from pydantic import BaseModel


class RecommendationResponse(BaseModel):
    work_id: int
    title: str
    authors: list[str] = []
    year: int | None = None

    # Quality prior
    avg_rating: float | None = None
    rating_count: int | None = None

    # Score breakdown
    relevance_score: float
    quality_score: float
    engagement_score: float
    diversity_score: float
    final_score: float
    confidence: float
    grade: str

    class Config:
        from_attributes = True


class RecommendationPageResponse(BaseModel):
    items: list[RecommendationResponse]
    page: int
    page_size: int
    total: int
    has_more: bool

    class Config:
        from_attributes = True

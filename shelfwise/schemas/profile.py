from datetime import datetime

from pydantic import BaseModel


class EngagementSignalsResponse(BaseModel):
    five_star: bool = False
    reread: bool = False
    binge: bool = False
    session_quality: bool = False
    author_loyalty: bool = False
    series_velocity: bool = False
    purchased: bool = False

    class Config:
        from_attributes = True


class AnchorResponse(BaseModel):
    work_id: int
    title: str
    weight: float
    signals: EngagementSignalsResponse

    class Config:
        from_attributes = True


class TasteSummaryResponse(BaseModel):
    top_authors: list[str] = []
    top_subjects: list[str] = []
    read_count: int = 0
    avg_rating: float | None = None

    class Config:
        from_attributes = True


class ProfileResponse(BaseModel):
    user_id: str
    has_profile: bool
    anchors: list[AnchorResponse] = []
    built_at: datetime | None = None
    summary: TasteSummaryResponse


class CacheInvalidationResponse(BaseModel):
    user_id: str
    deleted: int

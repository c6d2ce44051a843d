from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shelfwise.core.database import Base
from shelfwise.core.timing import utcnow


class WorkRating(Base):
    """Aggregate rating for a work as reported by one external source."""

    __tablename__ = "work_ratings"
    __table_args__ = (UniqueConstraint("work_id", "source", name="unique_work_rating_source"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    work_id: Mapped[int] = mapped_column(ForeignKey("works.id"), index=True)
    source: Mapped[str] = mapped_column(String(50))  # openlibrary, googlebooks, ...
    avg: Mapped[float | None] = mapped_column(Float)
    count: Mapped[int] = mapped_column(Integer, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class WorkQuality(Base):
    """Blended, count-aware quality prior (recomputed by scripts.compute_quality)."""

    __tablename__ = "work_quality"

    work_id: Mapped[int] = mapped_column(ForeignKey("works.id"), primary_key=True)
    blended_avg: Mapped[float] = mapped_column(Float)
    blended_wilson: Mapped[float] = mapped_column(Float)
    total_ratings: Mapped[int] = mapped_column(Integer, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON, Column, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shelfwise.core.config import get_settings
from shelfwise.core.database import Base
from shelfwise.core.timing import utcnow

settings = get_settings()


class UserProfile(Base):
    """Persisted taste vector and anchor list (full replace on every rebuild)."""

    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    profile_vector = Column(Vector(settings.EMBEDDING_DIMENSIONS), nullable=True)
    anchors: Mapped[list] = mapped_column(JSON, default=list)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class CandidateCache(Base):
    """Durable tier of the candidate cache."""

    __tablename__ = "candidate_cache"
    __table_args__ = (
        UniqueConstraint("user_id", "mode", "cache_key", name="unique_candidate_cache_key"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), index=True)
    mode: Mapped[str] = mapped_column(String(32))  # general, by-book, by-category
    cache_key: Mapped[str] = mapped_column(String(255))  # work id for by-book, slug for by-category
    work_ids: Mapped[list] = mapped_column(JSON)
    scores: Mapped[list] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shelfwise.core.database import Base
from shelfwise.core.timing import utcnow


class ReadingEvent(Base):
    """A work on one of the user's shelves (read, currently-reading, to-read, dnf)."""

    __tablename__ = "reading_events"
    __table_args__ = (UniqueConstraint("user_id", "work_id", name="unique_user_work_event"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), index=True)
    work_id: Mapped[int] = mapped_column(ForeignKey("works.id"), index=True)

    shelf: Mapped[str] = mapped_column(String(32), index=True)
    rating: Mapped[int | None] = mapped_column(Integer)  # 1-5 scale
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, index=True)

    # Source tracking
    source: Mapped[str] = mapped_column(String(50), default="goodreads_import")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, index=True)

    work: Mapped["Work"] = relationship()


class ReadingAggregate(Base):
    """Per-user, per-work reading telemetry rolled up from e-reader sessions."""

    __tablename__ = "reading_aggregates"
    __table_args__ = (UniqueConstraint("user_id", "work_id", name="unique_user_work_aggregate"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), index=True)
    work_id: Mapped[int] = mapped_column(ForeignKey("works.id"), index=True)

    total_seconds: Mapped[float | None] = mapped_column(Float)
    last_read_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_30d_seconds: Mapped[float | None] = mapped_column(Float)
    avg_session_seconds: Mapped[float | None] = mapped_column(Float)
    max_session_seconds: Mapped[float | None] = mapped_column(Float)
    sessions: Mapped[int | None] = mapped_column(Integer)

    # Number of times the work was finished (re-reads)
    completion_count: Mapped[int] = mapped_column(Integer, default=1)

    # "purchase", "subscription", "library", ...
    acquisition_type: Mapped[str | None] = mapped_column(String(32))

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, index=True
    )


class Block(Base):
    """A work or an author the user never wants recommended."""

    __tablename__ = "blocks"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), index=True)
    work_id: Mapped[int | None] = mapped_column(ForeignKey("works.id"))
    author_id: Mapped[int | None] = mapped_column(ForeignKey("authors.id"))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# Forward reference
from shelfwise.models.work import Work  # noqa: E402, F401

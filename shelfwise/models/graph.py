from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shelfwise.core.database import Base
from shelfwise.core.timing import utcnow


class WorkGraphFeatures(Base):
    """Precomputed structural features of a work in the author/subject/series graph."""

    __tablename__ = "work_graph_features"

    work_id: Mapped[int] = mapped_column(ForeignKey("works.id"), primary_key=True)
    author_affinity: Mapped[float] = mapped_column(Float, default=0.0)
    subject_overlap: Mapped[float] = mapped_column(Float, default=0.0)
    same_series: Mapped[bool] = mapped_column(Boolean, default=False)
    proximity_score: Mapped[float] = mapped_column(Float, default=0.0)  # 0-1

    computed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ReadingLog(Base):
    """Public reading-log entry from an external catalog (who read what)."""

    __tablename__ = "reading_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    reader_key: Mapped[str] = mapped_column(String(100), index=True)
    catalog_key: Mapped[str] = mapped_column(String(50), index=True)
    status: Mapped[str] = mapped_column(String(32), index=True)  # already-read, currently-reading, want-to-read


class ListSeed(Base):
    """Membership of a work in a curated public list."""

    __tablename__ = "list_seeds"

    id: Mapped[int] = mapped_column(primary_key=True)
    list_id: Mapped[str] = mapped_column(String(100), index=True)
    seed_key: Mapped[str] = mapped_column(String(50), index=True)


class WorkCooccurrence(Base):
    """Precomputed reader overlap between two works (stored once per unordered pair)."""

    __tablename__ = "work_cooccurrence"
    __table_args__ = (UniqueConstraint("work_key_a", "work_key_b", name="unique_work_pair"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    work_key_a: Mapped[str] = mapped_column(String(50), index=True)
    work_key_b: Mapped[str] = mapped_column(String(50), index=True)
    overlap: Mapped[int] = mapped_column(Integer)
    jaccard: Mapped[float] = mapped_column(Float, index=True)
    readers_a: Mapped[int] = mapped_column(Integer)
    readers_b: Mapped[int] = mapped_column(Integer)

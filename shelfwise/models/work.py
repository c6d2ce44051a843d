from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shelfwise.core.config import get_settings
from shelfwise.core.database import Base
from shelfwise.core.timing import utcnow

settings = get_settings()


# Association table for work <-> author many-to-many
work_author_association = Table(
    "work_authors",
    Base.metadata,
    Column("work_id", Integer, ForeignKey("works.id"), primary_key=True),
    Column("author_id", Integer, ForeignKey("authors.id"), primary_key=True),
)


class Work(Base):
    """Canonical catalog record - one per unique work regardless of edition."""

    __tablename__ = "works"

    id: Mapped[int] = mapped_column(primary_key=True)

    # External catalog key used by the collaborative sources (e.g., OL12345W)
    catalog_key: Mapped[str | None] = mapped_column(String(50), unique=True, index=True)

    title: Mapped[str] = mapped_column(String(500), index=True)
    description: Mapped[str | None] = mapped_column(Text)
    publication_year: Mapped[int | None] = mapped_column(Integer, index=True)
    series_name: Mapped[str | None] = mapped_column(String(255), index=True)
    language: Mapped[str | None] = mapped_column(String(10))

    # Content embedding (produced externally)
    embedding = Column(Vector(settings.EMBEDDING_DIMENSIONS), nullable=True)

    # Precomputed reader community (label propagation over co-reads)
    community_id: Mapped[int | None] = mapped_column(Integer, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    authors: Mapped[list["Author"]] = relationship(
        secondary=work_author_association, back_populates="works"
    )
    subjects: Mapped[list["WorkSubject"]] = relationship(
        back_populates="work", cascade="all, delete-orphan"
    )


class Author(Base):
    __tablename__ = "authors"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), index=True)

    works: Mapped[list["Work"]] = relationship(
        secondary=work_author_association, back_populates="authors"
    )


class WorkSubject(Base):
    """Subject heading attached to a work (e.g., "fantasy", "science fiction")."""

    __tablename__ = "work_subjects"

    work_id: Mapped[int] = mapped_column(ForeignKey("works.id"), primary_key=True)
    subject: Mapped[str] = mapped_column(String(255), primary_key=True, index=True)

    work: Mapped["Work"] = relationship(back_populates="subjects")

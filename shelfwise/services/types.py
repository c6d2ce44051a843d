"""
Domain types shared by the recommendation pipeline.

These are plain dataclasses, independent of the ORM: the SQL stores map rows
into them, and the scorer, profile builder, candidate generator and reranker
only ever see these shapes. Optional fields are explicit ``None`` rather than
missing attributes; ReadingEvent validates itself once on construction.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal, NamedTuple

import numpy as np

SHELVES = ("read", "currently-reading", "to-read", "dnf")

CandidateSource = Literal["vector", "graph", "collaborative", "community", "category", "trending"]
Grade = Literal["A+", "A", "A-", "B+", "B", "B-"]


@dataclass(frozen=True)
class ReadingEvent:
    """One shelved work in a user's history plus its engagement aggregates."""

    user_id: str
    work_id: int
    shelf: str
    title: str = ""
    rating: int | None = None
    finished_at: datetime | None = None
    embedding: np.ndarray | None = field(default=None, compare=False, repr=False)

    # Reading telemetry
    total_seconds: float | None = None
    last_read_at: datetime | None = None
    last_30d_seconds: float | None = None
    avg_session_seconds: float | None = None
    max_session_seconds: float | None = None
    sessions: int | None = None

    completion_count: int = 1
    author_books_read: int = 0
    days_since_previous_finish: float | None = None
    acquisition_type: str | None = None

    def __post_init__(self):
        if self.shelf not in SHELVES:
            raise ValueError(f"Unknown shelf {self.shelf!r}; expected one of {', '.join(SHELVES)}")
        if self.rating is not None and not 1 <= self.rating <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {self.rating}")

    @property
    def total_hours(self) -> float:
        return (self.total_seconds or 0.0) / 3600

    @property
    def avg_session_minutes(self) -> float:
        return (self.avg_session_seconds or 0.0) / 60

    @property
    def max_session_minutes(self) -> float:
        return (self.max_session_seconds or 0.0) / 60


@dataclass(frozen=True)
class EngagementSignals:
    """Why an anchor carries a high weight (shown next to the anchor in the UI)."""

    five_star: bool = False
    reread: bool = False
    binge: bool = False
    session_quality: bool = False
    author_loyalty: bool = False
    series_velocity: bool = False
    purchased: bool = False

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "EngagementSignals":
        data = data or {}
        return cls(**{name: bool(data.get(name, False)) for name in cls.__dataclass_fields__})


@dataclass(frozen=True)
class Anchor:
    work_id: int
    title: str
    weight: float
    signals: EngagementSignals = field(default_factory=EngagementSignals)

    def to_dict(self) -> dict[str, Any]:
        return {
            "work_id": self.work_id,
            "title": self.title,
            "weight": self.weight,
            "signals": self.signals.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Anchor":
        return cls(
            work_id=int(data["work_id"]),
            title=data.get("title", ""),
            weight=float(data["weight"]),
            signals=EngagementSignals.from_dict(data.get("signals")),
        )


@dataclass
class UserProfile:
    user_id: str
    profile_vector: np.ndarray
    anchors: list[Anchor] = field(default_factory=list)
    built_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return self.profile_vector.size == 0

    @classmethod
    def empty(cls, user_id: str) -> "UserProfile":
        return cls(user_id=user_id, profile_vector=np.array([], dtype=float), anchors=[])


@dataclass
class Candidate:
    work_id: int
    score: float
    source: CandidateSource


@dataclass(frozen=True)
class WorkMetadata:
    id: int
    title: str
    authors: list[str] = field(default_factory=list)
    publication_year: int | None = None


@dataclass(frozen=True)
class QualityPrior:
    work_id: int
    blended_average: float
    blended_lower_bound: float
    total_rating_count: int


@dataclass(frozen=True)
class WorkEngagement:
    """The user's own reading telemetry for one work."""

    work_id: int
    total_seconds: float | None = None
    last_30d_seconds: float | None = None
    last_read_at: datetime | None = None


@dataclass(frozen=True)
class Blocks:
    work_ids: frozenset[int] = frozenset()
    author_ids: frozenset[int] = frozenset()


@dataclass(frozen=True)
class TasteSummary:
    """Read-shelf aggregates shown next to the profile."""

    top_authors: list[str] = field(default_factory=list)
    top_subjects: list[str] = field(default_factory=list)
    read_count: int = 0
    avg_rating: float | None = None


class VectorMatch(NamedTuple):
    id: int
    similarity: float


class AlsoRead(NamedTuple):
    catalog_key: str
    overlap: int


class ListMate(NamedTuple):
    catalog_key: str
    shared_lists: int


class Cooccurrence(NamedTuple):
    catalog_key: str
    jaccard: float


@dataclass
class RankedRecommendation:
    work_id: int
    title: str
    authors: list[str]
    year: int | None
    avg_rating: float | None
    rating_count: int | None
    relevance_score: float
    quality_score: float
    engagement_score: float
    diversity_score: float
    final_score: float
    confidence: float
    grade: Grade


@dataclass
class CacheEntry:
    work_ids: list[int]
    scores: list[float]
    created_at: datetime
    expires_at: datetime

    def __post_init__(self):
        if len(self.work_ids) != len(self.scores):
            raise ValueError("Cache entry work_ids and scores must have the same length")

    def to_dict(self) -> dict[str, Any]:
        return {
            "work_ids": list(self.work_ids),
            "scores": list(self.scores),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            work_ids=[int(w) for w in data["work_ids"]],
            scores=[float(s) for s in data["scores"]],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )

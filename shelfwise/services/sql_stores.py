"""
SQLAlchemy implementations of the store interfaces.

Queries are plain synchronous SQLAlchemy, run in a worker thread with
``asyncio.to_thread`` and a fresh Session per call, so concurrent fetches of
one request genuinely overlap on the connection pool.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Callable, Sequence

import numpy as np
from sqlalchemy import and_, case, distinct, func, or_, select
from sqlalchemy.orm import Session

from shelfwise import models
from shelfwise.core.config import get_settings
from shelfwise.core.database import SessionLocal
from shelfwise.core.logging import get_logger
from shelfwise.core.timing import utcnow
from shelfwise.models.work import work_author_association
from shelfwise.services.types import (
    AlsoRead,
    Anchor,
    Blocks,
    Cooccurrence,
    ListMate,
    QualityPrior,
    ReadingEvent,
    TasteSummary,
    UserProfile,
    VectorMatch,
    WorkEngagement,
    WorkMetadata,
)
from shelfwise.services.vectors import as_vector

logger = get_logger(__name__)
settings = get_settings()

READING_LOG_STATUS_WEIGHTS = {
    "already-read": 1.0,
    "currently-reading": 0.5,
    "want-to-read": 0.2,
}
AUTHOR_LOYALTY_SHELVES = ("read", "currently-reading")


class SqlStore:
    """Runs blocking session work off the event loop."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    async def run(self, fn, *args):
        return await asyncio.to_thread(self._with_session, fn, *args)

    def _with_session(self, fn, *args):
        with self.session_factory() as db:
            return fn(db, *args)


class SqlVectorIndex(SqlStore):
    """pgvector cosine kNN over works.embedding (served by the IVFFlat index)."""

    async def knn(self, vector: np.ndarray, limit: int, exclude_ids: Sequence[int] = ()) -> list[VectorMatch]:
        return await self.run(self._knn, as_vector(vector), limit, list(exclude_ids))

    @staticmethod
    def _knn(db: Session, vector: np.ndarray, limit: int, exclude_ids: list[int]) -> list[VectorMatch]:
        distance = models.Work.embedding.cosine_distance(vector.tolist())
        stmt = select(models.Work.id, distance.label("distance")).where(models.Work.embedding.is_not(None))
        if exclude_ids:
            stmt = stmt.where(models.Work.id.not_in(exclude_ids))
        stmt = stmt.order_by(distance).limit(limit)

        return [VectorMatch(row.id, 1.0 - float(row.distance)) for row in db.execute(stmt)]


class SqlGraphStore(SqlStore):
    """Work graph where edges are shared authors and shared series."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, neighbor_limit: int | None = None):
        super().__init__(session_factory)
        self.neighbor_limit = neighbor_limit or settings.GRAPH_NEIGHBOR_LIMIT

    async def neighbors(self, work_id: int, max_hops: int = 2) -> list[int]:
        return await self.run(self._neighbors, work_id, max_hops)

    def _neighbors(self, db: Session, work_id: int, max_hops: int) -> list[int]:
        wa = work_author_association
        visited = {work_id}
        found: list[int] = []
        frontier = [work_id]

        for _ in range(max_hops):
            if not frontier or len(found) >= self.neighbor_limit:
                break

            author_ids = select(wa.c.author_id).where(wa.c.work_id.in_(frontier))
            by_author = select(wa.c.work_id).where(wa.c.author_id.in_(author_ids))

            series = select(models.Work.series_name).where(
                models.Work.id.in_(frontier), models.Work.series_name.is_not(None)
            )
            by_series = select(models.Work.id).where(models.Work.series_name.in_(series))

            next_ids = db.scalars(
                select(models.Work.id)
                .where(or_(models.Work.id.in_(by_author), models.Work.id.in_(by_series)))
                .order_by(models.Work.id)
            ).all()

            frontier = []
            for neighbor_id in next_ids:
                if neighbor_id in visited:
                    continue
                visited.add(neighbor_id)
                frontier.append(neighbor_id)
                found.append(neighbor_id)
                if len(found) >= self.neighbor_limit:
                    break

        return found

    async def proximity(self, work_ids: Sequence[int]) -> dict[int, float]:
        if not work_ids:
            return {}
        return await self.run(self._proximity, list(work_ids))

    @staticmethod
    def _proximity(db: Session, work_ids: list[int]) -> dict[int, float]:
        rows = db.execute(
            select(models.WorkGraphFeatures.work_id, models.WorkGraphFeatures.proximity_score).where(
                models.WorkGraphFeatures.work_id.in_(work_ids)
            )
        )
        return {row.work_id: float(row.proximity_score or 0.0) for row in rows}

    async def community_members(self, work_id: int, limit: int) -> list[int]:
        return await self.run(self._community_members, work_id, limit)

    @staticmethod
    def _community_members(db: Session, work_id: int, limit: int) -> list[int]:
        community = select(models.Work.community_id).where(models.Work.id == work_id).scalar_subquery()
        return list(
            db.scalars(
                select(models.Work.id)
                .where(
                    models.Work.community_id.is_not(None),
                    models.Work.community_id == community,
                    models.Work.id != work_id,
                )
                .order_by(models.Work.id)
                .limit(limit)
            )
        )


class SqlCollaborativeStore(SqlStore):
    """Co-reading signals from public reading logs, curated lists and precomputed co-occurrence."""

    async def also_read(self, catalog_key: str, limit: int) -> list[AlsoRead]:
        return await self.run(self._also_read, catalog_key, limit)

    @staticmethod
    def _also_read(db: Session, catalog_key: str, limit: int) -> list[AlsoRead]:
        logs = models.ReadingLog
        readers = select(logs.reader_key).where(logs.catalog_key == catalog_key, logs.status == "already-read")
        overlap = func.count(distinct(logs.reader_key))

        rows = db.execute(
            select(logs.catalog_key, overlap.label("overlap"))
            .where(
                logs.reader_key.in_(readers),
                logs.catalog_key != catalog_key,
                logs.status == "already-read",
            )
            .group_by(logs.catalog_key)
            .having(overlap >= 2)
            .order_by(overlap.desc(), logs.catalog_key)
            .limit(limit)
        )
        return [AlsoRead(row.catalog_key, int(row.overlap)) for row in rows]

    async def list_mates(self, catalog_key: str, limit: int) -> list[ListMate]:
        return await self.run(self._list_mates, catalog_key, limit)

    @staticmethod
    def _list_mates(db: Session, catalog_key: str, limit: int) -> list[ListMate]:
        seeds = models.ListSeed
        # Seeds may be stored as bare keys or as paths like /works/OL123W
        is_seed = or_(seeds.seed_key == catalog_key, seeds.seed_key.like(f"%/{catalog_key}"))
        containing_lists = select(seeds.list_id).where(is_seed)
        shared = func.count(distinct(seeds.list_id))

        rows = db.execute(
            select(seeds.seed_key, shared.label("shared_lists"))
            .where(seeds.list_id.in_(containing_lists), ~is_seed)
            .group_by(seeds.seed_key)
            .order_by(shared.desc(), seeds.seed_key)
            .limit(limit)
        )
        return [ListMate(row.seed_key.rsplit("/", 1)[-1], int(row.shared_lists)) for row in rows]

    async def similar_by_cooccurrence(self, catalog_key: str, limit: int) -> list[Cooccurrence]:
        return await self.run(self._similar_by_cooccurrence, catalog_key, limit)

    @classmethod
    def _similar_by_cooccurrence(cls, db: Session, catalog_key: str, limit: int) -> list[Cooccurrence]:
        # Single-overlap pairs only when no stronger pair exists
        results = cls._cooccurrence_pairs(db, catalog_key, limit, min_overlap=2)
        if not results:
            logger.debug(
                "No co-occurrence pairs with overlap >= 2, using single-overlap pairs",
                extra={"extra_fields": {"catalog_key": catalog_key}},
            )
            results = cls._cooccurrence_pairs(db, catalog_key, limit, min_overlap=1)
        return results

    @staticmethod
    def _cooccurrence_pairs(db: Session, catalog_key: str, limit: int, min_overlap: int) -> list[Cooccurrence]:
        pairs = models.WorkCooccurrence
        related = case((pairs.work_key_a == catalog_key, pairs.work_key_b), else_=pairs.work_key_a)

        rows = db.execute(
            select(related.label("related_key"), pairs.jaccard)
            .where(
                or_(pairs.work_key_a == catalog_key, pairs.work_key_b == catalog_key),
                pairs.overlap >= min_overlap,
            )
            .order_by(pairs.jaccard.desc(), pairs.id)
            .limit(limit)
        )
        return [Cooccurrence(row.related_key, float(row.jaccard)) for row in rows]

    async def trending(self, limit: int) -> list[str]:
        return await self.run(self._trending, limit)

    @staticmethod
    def _trending(db: Session, limit: int) -> list[str]:
        logs = models.ReadingLog
        weight = case(
            *[(logs.status == status, value) for status, value in READING_LOG_STATUS_WEIGHTS.items()],
            else_=0.0,
        )
        popularity = func.sum(weight)

        return list(
            db.scalars(
                select(logs.catalog_key)
                .group_by(logs.catalog_key)
                .order_by(popularity.desc(), logs.catalog_key)
                .limit(limit)
            )
        )


class SqlCatalogStore(SqlStore):
    async def get_metadata(self, work_ids: Sequence[int]) -> dict[int, WorkMetadata]:
        if not work_ids:
            return {}
        return await self.run(self._get_metadata, list(work_ids))

    @staticmethod
    def _get_metadata(db: Session, work_ids: list[int]) -> dict[int, WorkMetadata]:
        # Embeddings are large and only needed for the MMR pool; fetched separately
        rows = db.execute(
            select(models.Work.id, models.Work.title, models.Work.publication_year).where(
                models.Work.id.in_(work_ids)
            )
        ).all()

        wa = work_author_association
        authors: dict[int, list[str]] = defaultdict(list)
        author_rows = db.execute(
            select(wa.c.work_id, models.Author.name)
            .join(models.Author, models.Author.id == wa.c.author_id)
            .where(wa.c.work_id.in_(work_ids))
            .order_by(wa.c.work_id, models.Author.id)
        )
        for work_id, name in author_rows:
            authors[work_id].append(name)

        return {
            row.id: WorkMetadata(
                id=row.id,
                title=row.title,
                authors=authors.get(row.id, []),
                publication_year=row.publication_year,
            )
            for row in rows
        }

    async def get_embeddings(self, work_ids: Sequence[int]) -> dict[int, np.ndarray]:
        if not work_ids:
            return {}
        return await self.run(self._get_embeddings, list(work_ids))

    @staticmethod
    def _get_embeddings(db: Session, work_ids: list[int]) -> dict[int, np.ndarray]:
        rows = db.execute(
            select(models.Work.id, models.Work.embedding).where(
                models.Work.id.in_(work_ids), models.Work.embedding.is_not(None)
            )
        )
        return {row.id: as_vector(row.embedding) for row in rows}

    async def get_catalog_keys(self, work_ids: Sequence[int]) -> dict[int, str]:
        if not work_ids:
            return {}
        return await self.run(self._get_catalog_keys, list(work_ids))

    @staticmethod
    def _get_catalog_keys(db: Session, work_ids: list[int]) -> dict[int, str]:
        rows = db.execute(
            select(models.Work.id, models.Work.catalog_key).where(
                models.Work.id.in_(work_ids), models.Work.catalog_key.is_not(None)
            )
        )
        return {row.id: row.catalog_key for row in rows}

    async def resolve_catalog_keys(self, catalog_keys: Sequence[str]) -> dict[str, int]:
        if not catalog_keys:
            return {}
        return await self.run(self._resolve_catalog_keys, list(catalog_keys))

    @staticmethod
    def _resolve_catalog_keys(db: Session, catalog_keys: list[str]) -> dict[str, int]:
        rows = db.execute(
            select(models.Work.catalog_key, models.Work.id).where(models.Work.catalog_key.in_(catalog_keys))
        )
        return {row.catalog_key: row.id for row in rows}

    async def works_by_authors(self, author_ids: Sequence[int]) -> set[int]:
        if not author_ids:
            return set()
        return await self.run(self._works_by_authors, list(author_ids))

    @staticmethod
    def _works_by_authors(db: Session, author_ids: list[int]) -> set[int]:
        wa = work_author_association
        return set(db.scalars(select(distinct(wa.c.work_id)).where(wa.c.author_id.in_(author_ids))))

    async def works_by_subjects(
        self,
        subjects: Sequence[str],
        year_min: int | None = None,
        year_max: int | None = None,
        exclude_ids: Sequence[int] = (),
        limit: int = 1000,
    ) -> list[int]:
        if not subjects:
            return []
        return await self.run(
            self._works_by_subjects, list(subjects), year_min, year_max, list(exclude_ids), limit
        )

    @staticmethod
    def _works_by_subjects(
        db: Session,
        subjects: list[str],
        year_min: int | None,
        year_max: int | None,
        exclude_ids: list[int],
        limit: int,
    ) -> list[int]:
        matching = select(models.WorkSubject.work_id).where(models.WorkSubject.subject.in_(subjects))
        stmt = select(models.Work.id).where(models.Work.id.in_(matching))

        if year_min is not None:
            stmt = stmt.where(models.Work.publication_year >= year_min)
        if year_max is not None:
            stmt = stmt.where(models.Work.publication_year <= year_max)
        if exclude_ids:
            stmt = stmt.where(models.Work.id.not_in(exclude_ids))

        return list(db.scalars(stmt.order_by(models.Work.id).limit(limit)))

    async def works_with_subjects(self, work_ids: Sequence[int], subjects: Sequence[str]) -> set[int]:
        if not work_ids or not subjects:
            return set()
        return await self.run(self._works_with_subjects, list(work_ids), list(subjects))

    @staticmethod
    def _works_with_subjects(db: Session, work_ids: list[int], subjects: list[str]) -> set[int]:
        return set(
            db.scalars(
                select(distinct(models.WorkSubject.work_id)).where(
                    models.WorkSubject.work_id.in_(work_ids),
                    models.WorkSubject.subject.in_(subjects),
                )
            )
        )


class SqlQualityStore(SqlStore):
    async def get_quality(self, work_ids: Sequence[int]) -> dict[int, QualityPrior]:
        if not work_ids:
            return {}
        return await self.run(self._get_quality, list(work_ids))

    @staticmethod
    def _get_quality(db: Session, work_ids: list[int]) -> dict[int, QualityPrior]:
        rows = db.scalars(select(models.WorkQuality).where(models.WorkQuality.work_id.in_(work_ids)))
        return {
            row.work_id: QualityPrior(
                work_id=row.work_id,
                blended_average=row.blended_avg,
                blended_lower_bound=row.blended_wilson,
                total_rating_count=row.total_ratings,
            )
            for row in rows
        }


class SqlUserStateStore(SqlStore):
    async def get_read_work_ids(self, user_id: str) -> set[int]:
        return await self.run(self._get_read_work_ids, user_id)

    @staticmethod
    def _get_read_work_ids(db: Session, user_id: str) -> set[int]:
        # Any shelf counts as seen, including to-read and dnf
        return set(
            db.scalars(select(distinct(models.ReadingEvent.work_id)).where(models.ReadingEvent.user_id == user_id))
        )

    async def get_blocks(self, user_id: str) -> Blocks:
        return await self.run(self._get_blocks, user_id)

    @staticmethod
    def _get_blocks(db: Session, user_id: str) -> Blocks:
        rows = db.execute(
            select(models.Block.work_id, models.Block.author_id).where(models.Block.user_id == user_id)
        ).all()
        return Blocks(
            work_ids=frozenset(row.work_id for row in rows if row.work_id is not None),
            author_ids=frozenset(row.author_id for row in rows if row.author_id is not None),
        )

    async def get_reading_events(self, user_id: str, limit: int) -> list[ReadingEvent]:
        return await self.run(self._get_reading_events, user_id, limit)

    @classmethod
    def _get_reading_events(cls, db: Session, user_id: str, limit: int) -> list[ReadingEvent]:
        event, work, aggregate = models.ReadingEvent, models.Work, models.ReadingAggregate

        rows = db.execute(
            select(event, work.title, work.embedding, aggregate)
            .join(work, event.work_id == work.id)
            .outerjoin(aggregate, and_(aggregate.user_id == event.user_id, aggregate.work_id == event.work_id))
            .where(event.user_id == user_id, work.embedding.is_not(None))
            .order_by(
                func.coalesce(event.rating, 3).desc(),
                event.finished_at.desc().nulls_last(),
                event.created_at.desc(),
            )
            .limit(limit)
        ).all()
        if not rows:
            return []

        days_since_previous = cls._days_since_previous_finish(db, user_id)
        author_books_read = cls._author_books_read(db, user_id, [row[0].work_id for row in rows])

        events = []
        for row_event, title, embedding, agg in rows:
            events.append(
                ReadingEvent(
                    user_id=row_event.user_id,
                    work_id=row_event.work_id,
                    shelf=row_event.shelf,
                    title=title,
                    rating=row_event.rating,
                    finished_at=row_event.finished_at,
                    embedding=as_vector(embedding),
                    total_seconds=agg.total_seconds if agg else None,
                    last_read_at=agg.last_read_at if agg else None,
                    last_30d_seconds=agg.last_30d_seconds if agg else None,
                    avg_session_seconds=agg.avg_session_seconds if agg else None,
                    max_session_seconds=agg.max_session_seconds if agg else None,
                    sessions=agg.sessions if agg else None,
                    completion_count=(agg.completion_count or 1) if agg else 1,
                    author_books_read=author_books_read.get(row_event.work_id, 0),
                    days_since_previous_finish=days_since_previous.get(row_event.work_id),
                    acquisition_type=agg.acquisition_type if agg else None,
                )
            )
        return events

    @staticmethod
    def _days_since_previous_finish(db: Session, user_id: str) -> dict[int, float]:
        event = models.ReadingEvent
        finishes = db.execute(
            select(event.work_id, event.finished_at)
            .where(event.user_id == user_id, event.finished_at.is_not(None))
            .order_by(event.finished_at, event.id)
        ).all()

        gaps: dict[int, float] = {}
        previous = None
        for work_id, finished_at in finishes:
            if previous is not None:
                gaps[work_id] = (finished_at - previous).total_seconds() / 86400
            previous = finished_at
        return gaps

    @staticmethod
    def _author_books_read(db: Session, user_id: str, work_ids: list[int]) -> dict[int, int]:
        """Per work: the most books the user has read by any one of its authors."""
        event = models.ReadingEvent
        wa = work_author_association

        counts = dict(
            db.execute(
                select(wa.c.author_id, func.count(distinct(event.work_id)))
                .select_from(event)
                .join(wa, wa.c.work_id == event.work_id)
                .where(event.user_id == user_id, event.shelf.in_(AUTHOR_LOYALTY_SHELVES))
                .group_by(wa.c.author_id)
            ).all()
        )

        result: dict[int, int] = {}
        for work_id, author_id in db.execute(select(wa.c.work_id, wa.c.author_id).where(wa.c.work_id.in_(work_ids))):
            result[work_id] = max(result.get(work_id, 0), counts.get(author_id, 0))
        return result

    async def get_engagements(self, user_id: str, work_ids: Sequence[int]) -> dict[int, WorkEngagement]:
        if not work_ids:
            return {}
        return await self.run(self._get_engagements, user_id, list(work_ids))

    @staticmethod
    def _get_engagements(db: Session, user_id: str, work_ids: list[int]) -> dict[int, WorkEngagement]:
        aggregate = models.ReadingAggregate
        rows = db.scalars(
            select(aggregate).where(aggregate.user_id == user_id, aggregate.work_id.in_(work_ids))
        )
        return {
            row.work_id: WorkEngagement(
                work_id=row.work_id,
                total_seconds=row.total_seconds,
                last_30d_seconds=row.last_30d_seconds,
                last_read_at=row.last_read_at,
            )
            for row in rows
        }

    async def last_activity_at(self, user_id: str) -> datetime | None:
        return await self.run(self._last_activity_at, user_id)

    @staticmethod
    def _last_activity_at(db: Session, user_id: str) -> datetime | None:
        last_event = db.scalar(
            select(func.max(models.ReadingEvent.updated_at)).where(models.ReadingEvent.user_id == user_id)
        )
        last_aggregate = db.scalar(
            select(func.max(models.ReadingAggregate.updated_at)).where(models.ReadingAggregate.user_id == user_id)
        )
        last_block = db.scalar(select(func.max(models.Block.created_at)).where(models.Block.user_id == user_id))
        timestamps = [ts for ts in (last_event, last_aggregate, last_block) if ts is not None]
        return max(timestamps) if timestamps else None

    async def get_taste_summary(self, user_id: str) -> TasteSummary:
        return await self.run(self._get_taste_summary, user_id)

    @staticmethod
    def _get_taste_summary(db: Session, user_id: str) -> TasteSummary:
        event = models.ReadingEvent
        wa = work_author_association
        read_filter = (event.user_id == user_id, event.shelf == "read")

        read_count, avg_rating = db.execute(
            select(func.count(event.id), func.avg(event.rating)).where(*read_filter)
        ).one()

        author_count = func.count(event.id)
        top_authors = db.scalars(
            select(models.Author.name)
            .select_from(event)
            .join(wa, wa.c.work_id == event.work_id)
            .join(models.Author, models.Author.id == wa.c.author_id)
            .where(*read_filter)
            .group_by(models.Author.id, models.Author.name)
            .order_by(author_count.desc(), models.Author.name)
            .limit(5)
        ).all()

        subject_count = func.count(event.id)
        top_subjects = db.scalars(
            select(models.WorkSubject.subject)
            .select_from(event)
            .join(models.WorkSubject, models.WorkSubject.work_id == event.work_id)
            .where(*read_filter)
            .group_by(models.WorkSubject.subject)
            .order_by(subject_count.desc(), models.WorkSubject.subject)
            .limit(5)
        ).all()

        return TasteSummary(
            top_authors=list(top_authors),
            top_subjects=list(top_subjects),
            read_count=int(read_count or 0),
            avg_rating=float(avg_rating) if avg_rating is not None else None,
        )


class SqlProfileStore(SqlStore):
    async def get_profile(self, user_id: str) -> UserProfile | None:
        return await self.run(self._get_profile, user_id)

    @staticmethod
    def _get_profile(db: Session, user_id: str) -> UserProfile | None:
        row = db.get(models.UserProfile, user_id)
        if row is None:
            return None

        vector = as_vector(row.profile_vector) if row.profile_vector is not None else np.array([], dtype=float)
        return UserProfile(
            user_id=row.user_id,
            profile_vector=vector,
            anchors=[Anchor.from_dict(a) for a in (row.anchors or [])],
            built_at=row.updated_at,
        )

    async def save_profile(self, profile: UserProfile) -> None:
        await self.run(self._save_profile, profile)

    @staticmethod
    def _save_profile(db: Session, profile: UserProfile) -> None:
        db.merge(
            models.UserProfile(
                user_id=profile.user_id,
                profile_vector=None if profile.is_empty else profile.profile_vector.tolist(),
                anchors=[a.to_dict() for a in profile.anchors],
                updated_at=profile.built_at or utcnow(),
            )
        )
        db.commit()

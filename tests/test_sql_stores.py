"""Tests for the SQLAlchemy store implementations (SQLite)."""

import asyncio
from datetime import datetime

import numpy as np
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from shelfwise import models
from shelfwise.core.config import get_settings
from shelfwise.services.profile_service import ProfileBuilder
from shelfwise.services.sql_stores import (
    SqlCatalogStore,
    SqlCollaborativeStore,
    SqlGraphStore,
    SqlProfileStore,
    SqlQualityStore,
    SqlUserStateStore,
)
from shelfwise.services.types import AlsoRead, Anchor, Cooccurrence, EngagementSignals, ListMate, UserProfile

DIMENSIONS = get_settings().EMBEDDING_DIMENSIONS


def vec(*head: float) -> np.ndarray:
    v = np.zeros(DIMENSIONS, dtype=np.float32)
    v[: len(head)] = head
    return v


@pytest.fixture
def library(db: Session) -> Session:
    """Works, authors, subjects, one user's history and public co-reading data."""
    tolkien = models.Author(id=1, name="J.R.R. Tolkien")
    le_guin = models.Author(id=2, name="Ursula K. Le Guin")

    works = [
        models.Work(
            id=1, title="The Hobbit", catalog_key="OL1W", publication_year=1937,
            embedding=vec(1, 0), community_id=7, authors=[tolkien],
        ),
        models.Work(
            id=2, title="The Fellowship of the Ring", catalog_key="OL2W", publication_year=1954,
            series_name="The Lord of the Rings", embedding=vec(1, 1), community_id=7, authors=[tolkien],
        ),
        models.Work(
            id=3, title="The Two Towers", catalog_key="OL3W", publication_year=1954,
            series_name="The Lord of the Rings",
        ),
        models.Work(
            id=4, title="A Wizard of Earthsea", catalog_key="OL4W", publication_year=1968,
            embedding=vec(0, 1), community_id=9, authors=[le_guin],
        ),
        models.Work(
            id=5, title="The Left Hand of Darkness", catalog_key="OL5W", publication_year=1969,
            embedding=vec(0, 0, 1), authors=[le_guin],
        ),
    ]
    db.add_all(works)
    db.add_all(
        [
            models.WorkSubject(work_id=1, subject="fantasy"),
            models.WorkSubject(work_id=2, subject="fantasy"),
            models.WorkSubject(work_id=3, subject="fantasy"),
            models.WorkSubject(work_id=3, subject="epic fantasy"),
            models.WorkSubject(work_id=4, subject="fantasy"),
            models.WorkSubject(work_id=4, subject="juvenile fiction"),
            models.WorkSubject(work_id=5, subject="science fiction"),
        ]
    )

    db.add_all(
        [
            models.ReadingEvent(
                user_id="u1", work_id=1, shelf="read", rating=5,
                finished_at=datetime(2026, 1, 10), created_at=datetime(2026, 1, 1), updated_at=datetime(2026, 1, 1),
            ),
            models.ReadingEvent(
                user_id="u1", work_id=2, shelf="read", rating=4,
                finished_at=datetime(2026, 1, 12), created_at=datetime(2026, 1, 2), updated_at=datetime(2026, 1, 2),
            ),
            models.ReadingEvent(
                user_id="u1", work_id=3, shelf="read", created_at=datetime(2026, 1, 3), updated_at=datetime(2026, 1, 3),
            ),
            models.ReadingEvent(
                user_id="u1", work_id=5, shelf="dnf", created_at=datetime(2026, 1, 4), updated_at=datetime(2026, 1, 4),
            ),
            models.ReadingAggregate(
                user_id="u1", work_id=2, total_seconds=7200, last_30d_seconds=0, completion_count=2,
                acquisition_type="purchase", last_read_at=datetime(2026, 1, 12), updated_at=datetime(2026, 2, 1),
            ),
            models.Block(user_id="u1", work_id=4, created_at=datetime(2026, 1, 5)),
            models.Block(user_id="u1", author_id=2, created_at=datetime(2026, 1, 5)),
        ]
    )

    db.add_all(
        [
            models.ReadingLog(reader_key="r1", catalog_key="OL1W", status="already-read"),
            models.ReadingLog(reader_key="r2", catalog_key="OL1W", status="already-read"),
            models.ReadingLog(reader_key="r3", catalog_key="OL1W", status="already-read"),
            models.ReadingLog(reader_key="r1", catalog_key="OL4W", status="already-read"),
            models.ReadingLog(reader_key="r2", catalog_key="OL4W", status="already-read"),
            models.ReadingLog(reader_key="r3", catalog_key="OL5W", status="already-read"),
            models.ReadingLog(reader_key="r1", catalog_key="OL5W", status="want-to-read"),
            models.ListSeed(list_id="L1", seed_key="/works/OL1W"),
            models.ListSeed(list_id="L1", seed_key="/works/OL4W"),
            models.ListSeed(list_id="L1", seed_key="/works/OL5W"),
            models.ListSeed(list_id="L2", seed_key="OL1W"),
            models.ListSeed(list_id="L2", seed_key="/works/OL4W"),
            models.WorkCooccurrence(
                work_key_a="OL1W", work_key_b="OL4W", overlap=3, jaccard=0.4, readers_a=10, readers_b=8
            ),
            models.WorkCooccurrence(
                work_key_a="OL5W", work_key_b="OL1W", overlap=2, jaccard=0.6, readers_a=4, readers_b=10
            ),
            models.WorkCooccurrence(
                work_key_a="OL1W", work_key_b="OL9W", overlap=1, jaccard=0.9, readers_a=10, readers_b=1
            ),
            models.WorkGraphFeatures(work_id=4, proximity_score=0.7),
            models.WorkQuality(work_id=1, blended_avg=4.4, blended_wilson=0.8, total_ratings=5000),
        ]
    )
    db.commit()
    return db


class TestSqlCatalogStore:
    """Catalog lookups."""

    def test_metadata_with_authors(self, library, session_factory):
        store = SqlCatalogStore(session_factory)

        metadata = asyncio.run(store.get_metadata([1, 3, 99]))

        assert set(metadata) == {1, 3}
        assert metadata[1].title == "The Hobbit"
        assert metadata[1].authors == ["J.R.R. Tolkien"]
        assert metadata[3].authors == []

    def test_embeddings_only_for_works_that_have_one(self, library, session_factory):
        store = SqlCatalogStore(session_factory)

        embeddings = asyncio.run(store.get_embeddings([1, 3]))

        assert set(embeddings) == {1}
        assert embeddings[1][0] == pytest.approx(1.0)
        assert embeddings[1].shape == (DIMENSIONS,)

    def test_catalog_keys_both_ways(self, library, session_factory):
        store = SqlCatalogStore(session_factory)

        assert asyncio.run(store.get_catalog_keys([1, 4])) == {1: "OL1W", 4: "OL4W"}
        assert asyncio.run(store.resolve_catalog_keys(["OL5W", "OL404W"])) == {"OL5W": 5}

    def test_works_by_authors(self, library, session_factory):
        store = SqlCatalogStore(session_factory)

        assert asyncio.run(store.works_by_authors([2])) == {4, 5}
        assert asyncio.run(store.works_by_authors([])) == set()

    def test_works_by_subjects(self, library, session_factory):
        store = SqlCatalogStore(session_factory)

        assert asyncio.run(store.works_by_subjects(["fantasy"], exclude_ids=[1])) == [2, 3, 4]
        assert asyncio.run(store.works_by_subjects(["fantasy"], year_min=1950, year_max=1960)) == [2, 3]
        assert asyncio.run(store.works_by_subjects(["fantasy"], limit=2)) == [1, 2]

    def test_works_with_subjects(self, library, session_factory):
        store = SqlCatalogStore(session_factory)

        assert asyncio.run(store.works_with_subjects([1, 2, 3, 4], ["juvenile fiction"])) == {4}


class TestSqlGraphStore:
    """Author and series graph."""

    def test_neighbors_by_hops(self, library, session_factory):
        store = SqlGraphStore(session_factory, neighbor_limit=50)

        # Hop 1 via the shared author, hop 2 via the shared series
        assert asyncio.run(store.neighbors(1, max_hops=1)) == [2]
        assert asyncio.run(store.neighbors(1, max_hops=2)) == [2, 3]

    def test_neighbor_limit(self, library, session_factory):
        store = SqlGraphStore(session_factory, neighbor_limit=1)

        assert asyncio.run(store.neighbors(1, max_hops=2)) == [2]

    def test_proximity(self, library, session_factory):
        store = SqlGraphStore(session_factory)

        assert asyncio.run(store.proximity([1, 4])) == {4: pytest.approx(0.7)}

    def test_community_members(self, library, session_factory):
        store = SqlGraphStore(session_factory)

        assert asyncio.run(store.community_members(1, 10)) == [2]
        assert asyncio.run(store.community_members(3, 10)) == []


class TestSqlCollaborativeStore:
    """Public co-reading sources."""

    def test_also_read_requires_two_shared_readers(self, library, session_factory):
        store = SqlCollaborativeStore(session_factory)

        assert asyncio.run(store.also_read("OL1W", 10)) == [AlsoRead("OL4W", 2)]

    def test_list_mates_normalize_paths(self, library, session_factory):
        store = SqlCollaborativeStore(session_factory)

        assert asyncio.run(store.list_mates("OL1W", 10)) == [ListMate("OL4W", 2), ListMate("OL5W", 1)]

    def test_cooccurrence_both_directions(self, library, session_factory):
        store = SqlCollaborativeStore(session_factory)

        result = asyncio.run(store.similar_by_cooccurrence("OL1W", 10))

        assert result == [Cooccurrence("OL5W", pytest.approx(0.6)), Cooccurrence("OL4W", pytest.approx(0.4))]

    def test_cooccurrence_falls_back_to_single_overlap(self, library, session_factory):
        store = SqlCollaborativeStore(session_factory)

        assert asyncio.run(store.similar_by_cooccurrence("OL9W", 10)) == [Cooccurrence("OL1W", pytest.approx(0.9))]

    def test_trending_weights_status(self, library, session_factory):
        store = SqlCollaborativeStore(session_factory)

        assert asyncio.run(store.trending(10)) == ["OL1W", "OL4W", "OL5W"]


class TestSqlUserStateStore:
    """Reading history, blocks and aggregates."""

    def test_read_ids_cover_every_shelf(self, library, session_factory):
        store = SqlUserStateStore(session_factory)

        assert asyncio.run(store.get_read_work_ids("u1")) == {1, 2, 3, 5}

    def test_blocks(self, library, session_factory):
        store = SqlUserStateStore(session_factory)

        blocks = asyncio.run(store.get_blocks("u1"))

        assert blocks.work_ids == frozenset({4})
        assert blocks.author_ids == frozenset({2})

    def test_reading_events(self, library, session_factory):
        store = SqlUserStateStore(session_factory)

        events = asyncio.run(store.get_reading_events("u1", 100))
        by_id = {e.work_id: e for e in events}

        # Works without an embedding are skipped; rating desc orders the rest
        assert [e.work_id for e in events] == [1, 2, 5]
        assert by_id[2].days_since_previous_finish == pytest.approx(2.0)
        assert by_id[2].completion_count == 2
        assert by_id[2].total_seconds == 7200
        assert by_id[2].acquisition_type == "purchase"
        assert by_id[1].author_books_read == 2
        assert by_id[5].author_books_read == 0
        assert by_id[1].embedding.shape == (DIMENSIONS,)

    def test_reading_events_limit(self, library, session_factory):
        store = SqlUserStateStore(session_factory)

        assert [e.work_id for e in asyncio.run(store.get_reading_events("u1", 1))] == [1]

    def test_engagements(self, library, session_factory):
        store = SqlUserStateStore(session_factory)

        engagements = asyncio.run(store.get_engagements("u1", [2, 4]))

        assert set(engagements) == {2}
        assert engagements[2].total_seconds == 7200

    def test_last_activity(self, library, session_factory):
        store = SqlUserStateStore(session_factory)

        assert asyncio.run(store.last_activity_at("u1")) == datetime(2026, 2, 1)
        assert asyncio.run(store.last_activity_at("nobody")) is None

    def test_rating_change_counts_as_activity(self, library, session_factory):
        event = library.scalar(select(models.ReadingEvent).where(models.ReadingEvent.work_id == 1))
        event.rating = 2
        library.commit()

        last = asyncio.run(SqlUserStateStore(session_factory).last_activity_at("u1"))

        assert last > datetime(2026, 2, 1)

    def test_new_block_counts_as_activity(self, library, session_factory):
        library.add(models.Block(user_id="u1", work_id=3, created_at=datetime(2026, 3, 1)))
        library.commit()

        assert asyncio.run(SqlUserStateStore(session_factory).last_activity_at("u1")) == datetime(2026, 3, 1)

    def test_taste_summary(self, library, session_factory):
        store = SqlUserStateStore(session_factory)

        summary = asyncio.run(store.get_taste_summary("u1"))

        assert summary.read_count == 3
        assert summary.avg_rating == pytest.approx(4.5)
        assert summary.top_authors == ["J.R.R. Tolkien"]
        assert summary.top_subjects == ["fantasy", "epic fantasy"]


class TestSqlQualityStore:
    def test_get_quality(self, library, session_factory):
        store = SqlQualityStore(session_factory)

        quality = asyncio.run(store.get_quality([1, 2]))

        assert set(quality) == {1}
        assert quality[1].blended_average == pytest.approx(4.4)
        assert quality[1].total_rating_count == 5000


class TestSqlProfileStore:
    """Profile persistence (full replace)."""

    def test_round_trip_and_replace(self, library, session_factory):
        store = SqlProfileStore(session_factory)
        anchors = [Anchor(work_id=1, title="The Hobbit", weight=3.2, signals=EngagementSignals(five_star=True))]
        first = UserProfile("u1", vec(0.6, 0.8), anchors, built_at=datetime(2026, 3, 1))
        second = UserProfile("u1", vec(1, 0), [], built_at=datetime(2026, 4, 1))

        async def run():
            await store.save_profile(first)
            loaded_first = await store.get_profile("u1")
            await store.save_profile(second)
            return loaded_first, await store.get_profile("u1")

        loaded_first, loaded_second = asyncio.run(run())

        np.testing.assert_allclose(loaded_first.profile_vector, first.profile_vector, rtol=1e-6)
        assert loaded_first.anchors == anchors
        assert loaded_first.built_at == datetime(2026, 3, 1)
        assert loaded_second.anchors == []
        assert loaded_second.built_at == datetime(2026, 4, 1)

    def test_missing_profile(self, library, session_factory):
        assert asyncio.run(SqlProfileStore(session_factory).get_profile("nobody")) is None


class TestProfileStaleness:
    """Refresh decisions against the SQL stores."""

    def test_rating_change_marks_profile_stale(self, library, session_factory):
        builder = ProfileBuilder(SqlUserStateStore(session_factory), SqlProfileStore(session_factory))
        asyncio.run(builder.profiles.save_profile(UserProfile("u1", vec(1, 0), [], built_at=datetime(2026, 3, 1))))

        assert asyncio.run(builder.needs_refresh("u1")) is False

        event = library.scalar(select(models.ReadingEvent).where(models.ReadingEvent.work_id == 2))
        event.rating = 1
        library.commit()

        assert asyncio.run(builder.needs_refresh("u1")) is True

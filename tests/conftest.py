"""
Pytest configuration and fixtures.

Service-level tests run against in-memory fakes of the store interfaces;
SQL store tests use an in-memory SQLite database.
"""

from datetime import datetime
from types import SimpleNamespace
from typing import Generator

import numpy as np
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shelfwise.core.database import Base
from shelfwise.services.cache import CandidateCache, LRUCache, MemoryCacheStore
from shelfwise.services.candidates import CandidateGenerator
from shelfwise.services.profile_service import ProfileBuilder
from shelfwise.services.recommendation_service import RecommendationService
from shelfwise.services.rerank import Reranker
from shelfwise.services.types import (
    AlsoRead,
    Blocks,
    Cooccurrence,
    ListMate,
    QualityPrior,
    ReadingEvent,
    TasteSummary,
    VectorMatch,
    WorkEngagement,
    WorkMetadata,
)
from shelfwise.services.vectors import cosine_similarity

# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db: Session) -> sessionmaker:
    """Session factory bound to the test database (tables already created)."""
    return TestingSessionLocal


# ----------------------------------------------------------------------
# Fake stores
# ----------------------------------------------------------------------


class SourceUnavailable(RuntimeError):
    pass


class FakeCatalog:
    def __init__(self):
        self.metadata: dict[int, WorkMetadata] = {}
        self.embeddings: dict[int, np.ndarray] = {}
        self.catalog_keys: dict[int, str] = {}
        self.author_ids: dict[int, set[int]] = {}
        self.subjects: dict[int, set[str]] = {}

    def add_work(self, work_id, title, authors, year, embedding=None, key=None, author_ids=(), subjects=()):
        self.metadata[work_id] = WorkMetadata(id=work_id, title=title, authors=list(authors), publication_year=year)
        if embedding is not None:
            self.embeddings[work_id] = np.asarray(embedding, dtype=float)
        if key is not None:
            self.catalog_keys[work_id] = key
        self.author_ids[work_id] = set(author_ids)
        self.subjects[work_id] = set(subjects)

    async def get_metadata(self, work_ids):
        return {w: self.metadata[w] for w in work_ids if w in self.metadata}

    async def get_embeddings(self, work_ids):
        return {w: self.embeddings[w] for w in work_ids if w in self.embeddings}

    async def get_catalog_keys(self, work_ids):
        return {w: self.catalog_keys[w] for w in work_ids if w in self.catalog_keys}

    async def resolve_catalog_keys(self, catalog_keys):
        by_key = {key: work_id for work_id, key in self.catalog_keys.items()}
        return {key: by_key[key] for key in catalog_keys if key in by_key}

    async def works_by_authors(self, author_ids):
        wanted = set(author_ids)
        return {w for w, authors in self.author_ids.items() if authors & wanted}

    async def works_by_subjects(self, subjects, year_min=None, year_max=None, exclude_ids=(), limit=100):
        wanted = set(subjects)
        excluded = set(exclude_ids)
        matches = []
        for work_id in sorted(self.metadata):
            year = self.metadata[work_id].publication_year
            if work_id in excluded or not self.subjects[work_id] & wanted:
                continue
            if year_min is not None and (year is None or year < year_min):
                continue
            if year_max is not None and (year is None or year > year_max):
                continue
            matches.append(work_id)
        return matches[:limit]

    async def works_with_subjects(self, work_ids, subjects):
        wanted = set(subjects)
        return {w for w in work_ids if self.subjects.get(w, set()) & wanted}


class FakeVectorIndex:
    def __init__(self, catalog: FakeCatalog):
        self.catalog = catalog
        self.calls = 0

    async def knn(self, vector, limit, exclude_ids=()):
        self.calls += 1
        excluded = set(exclude_ids)
        matches = [
            VectorMatch(work_id, cosine_similarity(vector, embedding))
            for work_id, embedding in self.catalog.embeddings.items()
            if work_id not in excluded
        ]
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]


class FakeGraph:
    def __init__(self):
        self.neighbor_map: dict[int, list[int]] = {}
        self.proximity_map: dict[int, float] = {}
        self.communities: dict[int, list[int]] = {}
        self.fail = False

    async def neighbors(self, work_id, max_hops=2):
        if self.fail:
            raise SourceUnavailable("graph backend down")
        return list(self.neighbor_map.get(work_id, []))

    async def proximity(self, work_ids):
        if self.fail:
            raise SourceUnavailable("graph backend down")
        return {w: self.proximity_map[w] for w in work_ids if w in self.proximity_map}

    async def community_members(self, work_id, limit):
        if self.fail:
            raise SourceUnavailable("graph backend down")
        return list(self.communities.get(work_id, []))[:limit]


class FakeCollaborative:
    def __init__(self):
        self.also_read_map: dict[str, list[AlsoRead]] = {}
        self.list_mate_map: dict[str, list[ListMate]] = {}
        self.cooccurrence_map: dict[str, list[Cooccurrence]] = {}
        self.trending_keys: list[str] = []
        self.fail = False

    def _check(self):
        if self.fail:
            raise SourceUnavailable("collaborative backend down")

    async def also_read(self, catalog_key, limit):
        self._check()
        return self.also_read_map.get(catalog_key, [])[:limit]

    async def list_mates(self, catalog_key, limit):
        self._check()
        return self.list_mate_map.get(catalog_key, [])[:limit]

    async def similar_by_cooccurrence(self, catalog_key, limit):
        self._check()
        return self.cooccurrence_map.get(catalog_key, [])[:limit]

    async def trending(self, limit):
        self._check()
        return self.trending_keys[:limit]


class FakeQuality:
    def __init__(self):
        self.priors: dict[int, QualityPrior] = {}
        self.fail = False

    async def get_quality(self, work_ids):
        if self.fail:
            raise SourceUnavailable("quality table unavailable")
        return {w: self.priors[w] for w in work_ids if w in self.priors}


class FakeUserState:
    def __init__(self, catalog: FakeCatalog):
        self.catalog = catalog
        self.events: dict[str, list[ReadingEvent]] = {}
        self.blocks: dict[str, Blocks] = {}
        self.engagements: dict[str, dict[int, WorkEngagement]] = {}
        self.last_activity: dict[str, datetime] = {}
        self.summaries: dict[str, TasteSummary] = {}
        self.event_fetches = 0

    def shelve(self, user_id, work_id, shelf="read", rating=None, finished_at=None, **aggregates):
        meta = self.catalog.metadata.get(work_id)
        self.events.setdefault(user_id, []).append(
            ReadingEvent(
                user_id=user_id,
                work_id=work_id,
                shelf=shelf,
                title=meta.title if meta else "",
                rating=rating,
                finished_at=finished_at,
                embedding=self.catalog.embeddings.get(work_id),
                **aggregates,
            )
        )

    async def get_read_work_ids(self, user_id):
        return {e.work_id for e in self.events.get(user_id, [])}

    async def get_blocks(self, user_id):
        return self.blocks.get(user_id, Blocks())

    async def get_reading_events(self, user_id, limit):
        self.event_fetches += 1
        with_embedding = [e for e in self.events.get(user_id, []) if e.embedding is not None]
        return with_embedding[:limit]

    async def get_engagements(self, user_id, work_ids):
        per_user = self.engagements.get(user_id, {})
        return {w: per_user[w] for w in work_ids if w in per_user}

    async def last_activity_at(self, user_id):
        return self.last_activity.get(user_id)

    async def get_taste_summary(self, user_id):
        return self.summaries.get(user_id, TasteSummary())


class FakeProfiles:
    def __init__(self):
        self.saved = {}

    async def get_profile(self, user_id):
        return self.saved.get(user_id)

    async def save_profile(self, profile):
        self.saved[profile.user_id] = profile


class FakeCacheStore:
    """Dict-backed CacheStore that can be switched into a failing mode."""

    def __init__(self):
        self.data = {}
        self.fail = False

    async def get(self, key):
        if self.fail:
            raise SourceUnavailable("cache down")
        return self.data.get(key)

    async def set(self, key, value, ttl):
        if self.fail:
            raise SourceUnavailable("cache down")
        self.data[key] = value

    async def delete(self, prefix):
        if self.fail:
            raise SourceUnavailable("cache down")
        keys = [k for k in self.data if k.startswith(prefix)]
        for key in keys:
            del self.data[key]
        return len(keys)

    async def cleanup_expired(self):
        return 0


def build_library() -> FakeCatalog:
    """A small catalog: 4-dimensional embeddings, one work without an embedding."""
    catalog = FakeCatalog()
    catalog.add_work(1, "The Hobbit", ["J.R.R. Tolkien"], 1937, [1, 0, 0, 0], "OL1W", [1], ["fantasy", "classics"])
    catalog.add_work(2, "The Fellowship of the Ring", ["J.R.R. Tolkien"], 1954, [0.9, 0.1, 0, 0], "OL2W", [1], ["fantasy"])
    catalog.add_work(3, "A Wizard of Earthsea", ["Ursula K. Le Guin"], 1968, [0.8, 0.2, 0, 0], "OL3W", [2], ["fantasy"])
    catalog.add_work(
        4, "The Left Hand of Darkness", ["Ursula K. Le Guin"], 1969, [0.2, 0.8, 0, 0], "OL4W", [2], ["science fiction"]
    )
    catalog.add_work(5, "Dune", ["Frank Herbert"], 1965, [0.1, 0.9, 0.1, 0], "OL5W", [3], ["science fiction"])
    catalog.add_work(6, "Gone Girl", ["Gillian Flynn"], 2012, [0, 0, 1, 0], "OL6W", [4], ["mystery", "thriller"])
    catalog.add_work(
        7, "The Name of the Wind", ["Patrick Rothfuss"], 2007, [0.85, 0.15, 0, 0.1], "OL7W", [5], ["fantasy"]
    )
    catalog.add_work(8, "Mistborn", ["Brandon Sanderson"], 2006, [0.7, 0.3, 0, 0.1], "OL8W", [6], ["fantasy"])
    catalog.add_work(9, "Pride and Prejudice", ["Jane Austen"], 1813, [0, 0, 0, 1], "OL9W", [7], ["romance", "classics"])
    catalog.add_work(10, "Neuromancer", ["William Gibson"], 1984, None, "OL10W", [8], ["science fiction", "cyberpunk"])
    return catalog


@pytest.fixture
def stores() -> SimpleNamespace:
    """Fake stores around the sample library; tests mutate them freely."""
    catalog = build_library()
    return SimpleNamespace(
        catalog=catalog,
        vectors=FakeVectorIndex(catalog),
        graph=FakeGraph(),
        collaborative=FakeCollaborative(),
        quality=FakeQuality(),
        user_state=FakeUserState(catalog),
        profiles=FakeProfiles(),
        fast=FakeCacheStore(),
        durable=FakeCacheStore(),
    )


@pytest.fixture
def profile_builder(stores) -> ProfileBuilder:
    return ProfileBuilder(stores.user_state, stores.profiles, max_events=100, anchor_count=10, negative_weight=0.3)


@pytest.fixture
def candidate_cache(stores) -> CandidateCache:
    return CandidateCache(fast=stores.fast, durable=stores.durable, ttl=3600, fast_ttl=600)


@pytest.fixture
def generator(stores, profile_builder, candidate_cache) -> CandidateGenerator:
    return CandidateGenerator(
        profiles=profile_builder,
        user_state=stores.user_state,
        catalog=stores.catalog,
        vectors=stores.vectors,
        graph=stores.graph,
        collaborative=stores.collaborative,
        cache=candidate_cache,
        graph_max_hops=2,
    )


@pytest.fixture
def reranker(stores) -> Reranker:
    return Reranker(
        catalog=stores.catalog,
        quality=stores.quality,
        graph=stores.graph,
        user_state=stores.user_state,
        diversity_lambda=0.3,
    )


@pytest.fixture
def service(profile_builder, generator, reranker, candidate_cache) -> RecommendationService:
    return RecommendationService(profile_builder, generator, reranker, candidate_cache, rerank_limit=50)


@pytest.fixture
def fantasy_reader(stores) -> str:
    """A user who loved two Tolkien books and quickly abandoned a thriller."""
    user_id = "reader-1"
    stores.user_state.shelve(user_id, 1, rating=5, finished_at=datetime(2026, 1, 10))
    stores.user_state.shelve(user_id, 2, rating=4, finished_at=datetime(2025, 11, 2))
    stores.user_state.shelve(user_id, 6, shelf="dnf", total_seconds=1800)
    return user_id


@pytest.fixture
def memory_cache() -> CandidateCache:
    return CandidateCache(fast=MemoryCacheStore(LRUCache(capacity=16)), ttl=3600, fast_ttl=600)


@pytest.fixture
def client(service: RecommendationService) -> Generator[TestClient, None, None]:
    """Test client with the recommendation service wired to fake stores."""
    from shelfwise.main import app

    with TestClient(app) as test_client:
        app.state.recommendations = service
        yield test_client

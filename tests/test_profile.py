"""Tests for profile building."""

import asyncio
from datetime import datetime, timedelta

import numpy as np
import pytest

from shelfwise.services.profile_service import compute_profile
from shelfwise.services.types import ReadingEvent, UserProfile

NOW = datetime(2026, 6, 1, 12, 0, 0)


def event(work_id, embedding, shelf="read", rating=None, **kwargs) -> ReadingEvent:
    return ReadingEvent(
        user_id="u1",
        work_id=work_id,
        shelf=shelf,
        title=f"Work {work_id}",
        rating=rating,
        embedding=None if embedding is None else np.asarray(embedding, dtype=float),
        **kwargs,
    )


class TestComputeProfile:
    """Pure profile computation."""

    def test_unit_length_vector(self):
        profile = compute_profile("u1", [event(1, [3, 0, 0]), event(2, [0, 4, 0], rating=5)], NOW)

        assert np.linalg.norm(profile.profile_vector) == pytest.approx(1.0)
        assert profile.built_at == NOW

    def test_anchors_ordered_by_weight(self):
        events = [event(1, [1, 0, 0], rating=3), event(2, [0, 1, 0], rating=5), event(3, [0, 0, 1], rating=4)]
        profile = compute_profile("u1", events, NOW)

        assert [a.work_id for a in profile.anchors] == [2, 3, 1]
        assert profile.anchors[0].weight == pytest.approx(4.0)
        assert profile.anchors[0].signals.five_star

    def test_anchor_count_limit(self):
        events = [event(i, [1, i, 0]) for i in range(1, 15)]
        profile = compute_profile("u1", events, NOW, anchor_count=10)

        assert len(profile.anchors) == 10
        # Equal weights keep the event order
        assert [a.work_id for a in profile.anchors] == list(range(1, 11))

    def test_negative_events_push_vector_away(self):
        positive = event(1, [1, 1, 0])
        quick_dnf = event(2, [0, 1, 0], shelf="dnf", total_seconds=600)

        without = compute_profile("u1", [positive], NOW)
        with_negative = compute_profile("u1", [positive, quick_dnf], NOW)

        assert with_negative.profile_vector[1] < without.profile_vector[1]
        assert [a.work_id for a in with_negative.anchors] == [1]

    def test_negative_only_history_is_empty(self):
        profile = compute_profile("u1", [event(1, [1, 0, 0], shelf="dnf")], NOW)

        assert profile.is_empty
        assert profile.anchors == []

    def test_neutral_dnf_is_ignored(self):
        long_dnf = event(2, [0, 1, 0], shelf="dnf", total_seconds=8 * 3600)
        profile = compute_profile("u1", [event(1, [1, 0, 0]), long_dnf], NOW)

        np.testing.assert_allclose(profile.profile_vector, [1, 0, 0])

    def test_events_without_embedding_are_skipped(self):
        profile = compute_profile("u1", [event(1, None, rating=5), event(2, [0, 2, 0])], NOW)

        assert [a.work_id for a in profile.anchors] == [2]

    def test_idempotent(self):
        events = [event(1, [1, 0, 0], rating=4), event(2, [0.5, 0.5, 0], rating=5)]

        first = compute_profile("u1", events, NOW)
        second = compute_profile("u1", events, NOW)

        np.testing.assert_array_equal(first.profile_vector, second.profile_vector)
        assert first.anchors == second.anchors


class TestProfileBuilder:
    """Persistence and refresh logic."""

    def test_build_persists_profile(self, stores, profile_builder, fantasy_reader):
        profile = asyncio.run(profile_builder.build_profile(fantasy_reader, now=NOW))

        assert stores.profiles.saved[fantasy_reader] is profile
        assert [a.work_id for a in profile.anchors] == [1, 2]
        # The quick DNF of a thriller pulls the taste away from it
        assert profile.profile_vector[2] < 0

    def test_empty_rebuild_replaces_stale_profile(self, stores, profile_builder, fantasy_reader):
        asyncio.run(profile_builder.build_profile(fantasy_reader, now=NOW))
        stores.user_state.events[fantasy_reader] = []

        later = NOW + timedelta(days=1)
        profile = asyncio.run(profile_builder.build_profile(fantasy_reader, now=later))

        stored = stores.profiles.saved[fantasy_reader]
        assert profile.is_empty
        assert stored.is_empty
        assert stored.anchors == []
        assert stored.built_at == later

    def test_empty_profile_for_new_user_is_persisted(self, stores, profile_builder):
        profile = asyncio.run(profile_builder.build_profile("nobody", now=NOW))

        assert profile.is_empty
        assert stores.profiles.saved["nobody"].built_at == NOW

    def test_get_or_build_uses_stored_profile(self, stores, profile_builder, fantasy_reader):
        async def run():
            await profile_builder.build_profile(fantasy_reader, now=NOW)
            return await profile_builder.get_or_build_profile(fantasy_reader)

        profile = asyncio.run(run())

        assert profile is stores.profiles.saved[fantasy_reader]
        assert stores.user_state.event_fetches == 1

    def test_get_or_build_rebuilds_empty_stored_profile(self, stores, profile_builder, fantasy_reader):
        stores.profiles.saved[fantasy_reader] = UserProfile.empty(fantasy_reader)

        profile = asyncio.run(profile_builder.get_or_build_profile(fantasy_reader))

        assert not profile.is_empty

    def test_needs_refresh_without_profile(self, profile_builder):
        assert asyncio.run(profile_builder.needs_refresh("u1")) is True

    def test_needs_refresh_after_new_activity(self, stores, profile_builder, fantasy_reader):
        asyncio.run(profile_builder.build_profile(fantasy_reader, now=NOW))

        stores.user_state.last_activity[fantasy_reader] = NOW - timedelta(hours=1)
        assert asyncio.run(profile_builder.needs_refresh(fantasy_reader)) is False

        stores.user_state.last_activity[fantasy_reader] = NOW + timedelta(hours=1)
        assert asyncio.run(profile_builder.needs_refresh(fantasy_reader)) is True

    def test_no_activity_means_fresh(self, profile_builder, fantasy_reader):
        asyncio.run(profile_builder.build_profile(fantasy_reader, now=NOW))

        assert asyncio.run(profile_builder.needs_refresh(fantasy_reader)) is False

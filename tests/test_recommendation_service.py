"""Tests for the recommendation service orchestration."""

import asyncio
from datetime import timedelta


class TestStaleProfileRefresh:
    """Every personalized mode rebuilds a stale profile before generating."""

    def test_by_book_builds_missing_profile(self, stores, service, fantasy_reader):
        asyncio.run(service.by_book(fantasy_reader, 1))

        assert not stores.profiles.saved[fantasy_reader].is_empty

    def test_by_book_drops_cached_pool_after_new_activity(self, stores, service, fantasy_reader):
        async def run():
            await service.by_book(fantasy_reader, 1)
            await service.cache.flush()
            built_at = stores.profiles.saved[fantasy_reader].built_at
            stores.user_state.last_activity[fantasy_reader] = built_at + timedelta(days=1)
            await service.by_book(fantasy_reader, 1)

        asyncio.run(run())

        assert stores.vectors.calls == 2

    def test_by_category_drops_cached_pool_after_new_activity(self, stores, service, fantasy_reader):
        async def run():
            first = await service.by_category(fantasy_reader, "fantasy")
            await service.cache.flush()
            built_at = stores.profiles.saved[fantasy_reader].built_at
            stores.user_state.last_activity[fantasy_reader] = built_at + timedelta(days=1)
            stores.catalog.subjects[4].add("fantasy")
            return first, await service.by_category(fantasy_reader, "fantasy")

        first, second = asyncio.run(run())

        assert 4 not in {item.work_id for item in first.items}
        assert 4 in {item.work_id for item in second.items}

    def test_fresh_profile_keeps_cached_pool(self, stores, service, fantasy_reader):
        async def run():
            await service.by_book(fantasy_reader, 1)
            await service.cache.flush()
            await service.by_book(fantasy_reader, 1)

        asyncio.run(run())

        assert stores.vectors.calls == 1

    def test_general_is_empty_once_history_has_no_positive_signal(self, stores, service, fantasy_reader):
        async def run():
            first = await service.general(fantasy_reader)
            await service.cache.flush()
            built_at = stores.profiles.saved[fantasy_reader].built_at
            stores.user_state.events[fantasy_reader] = []
            stores.user_state.shelve(fantasy_reader, 1, shelf="dnf", total_seconds=600)
            stores.user_state.shelve(fantasy_reader, 2, shelf="dnf", total_seconds=600)
            stores.user_state.last_activity[fantasy_reader] = built_at + timedelta(days=1)
            return first, await service.general(fantasy_reader)

        first, second = asyncio.run(run())

        assert first.items
        assert second.items == []
        assert stores.profiles.saved[fantasy_reader].is_empty

"""
Batch job for rebuilding taste profiles.

Rebuilds the profile of every user with reading history and drops their
cached candidate pools. Pass --stale-only to skip users with no new
activity since their last build.

Run with: python -m shelfwise.scripts.build_profiles [--stale-only]
"""

import argparse
import asyncio
import time

from sqlalchemy import select

from shelfwise.core.database import SessionLocal
from shelfwise.core.logging import setup_logging
from shelfwise.core.redis import close_redis_client, create_redis_client
from shelfwise.models.reading import ReadingEvent
from shelfwise.scripts._progress import progress_callback
from shelfwise.services.recommendation_service import RecommendationService


def list_user_ids() -> list[str]:
    with SessionLocal() as db:
        return list(db.scalars(select(ReadingEvent.user_id).distinct().order_by(ReadingEvent.user_id)))


async def build_profiles(service: RecommendationService, user_ids: list[str], stale_only: bool = False) -> dict:
    """Rebuild profiles one user at a time; returns counts of built, empty and skipped profiles."""
    stats = {"profiles_built": 0, "profiles_empty": 0, "users_skipped": 0}
    total = len(user_ids)

    for index, user_id in enumerate(user_ids, start=1):
        if stale_only and not await service.profiles.needs_refresh(user_id):
            stats["users_skipped"] += 1
        else:
            profile = await service.rebuild_profile(user_id)
            if profile.is_empty:
                stats["profiles_empty"] += 1
            else:
                stats["profiles_built"] += 1
        progress_callback(index, total)

    await service.close()
    return stats


async def run(stale_only: bool) -> dict:
    redis_client = create_redis_client()
    try:
        service = RecommendationService.create(redis_client=redis_client)
        user_ids = await asyncio.to_thread(list_user_ids)
        print(f"Rebuilding profiles for {len(user_ids)} users...")
        return await build_profiles(service, user_ids, stale_only=stale_only)
    finally:
        await close_redis_client(redis_client)


def main():
    parser = argparse.ArgumentParser(description="Rebuild user taste profiles")
    parser.add_argument("--stale-only", action="store_true", help="Only rebuild profiles with new activity")
    args = parser.parse_args()

    setup_logging()
    print("Starting profile rebuild...\n")
    start_time = time.time()

    try:
        stats = asyncio.run(run(args.stale_only))
        print()

        elapsed = time.time() - start_time

        print("\n=== Rebuild Complete ===")
        print(f"Time elapsed: {elapsed:.1f} seconds")
        print(f"Profiles built: {stats['profiles_built']}")
        print(f"Users without usable history: {stats['profiles_empty']}")
        print(f"Users skipped (no new activity): {stats['users_skipped']}")
        print("\n✓ Batch job complete!")

    except Exception as e:
        print(f"\n✗ Error during rebuild: {e}")
        raise


if __name__ == "__main__":
    main()

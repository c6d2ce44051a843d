"""
Delete expired rows from the durable candidate cache.

Run with: python -m shelfwise.scripts.cleanup_cache
"""

import asyncio

from shelfwise.core.logging import setup_logging
from shelfwise.services.cache import CandidateCache, SqlCandidateCacheStore


def main():
    setup_logging()
    cache = CandidateCache(durable=SqlCandidateCacheStore())

    try:
        deleted = asyncio.run(cache.cleanup_expired())
        print(f"✓ Removed {deleted} expired cache entries")
    except Exception as e:
        print(f"✗ Error during cleanup: {e}")
        raise


if __name__ == "__main__":
    main()

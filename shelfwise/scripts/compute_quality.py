"""
Batch job for recomputing quality priors.

Run after new per-source rating aggregates are loaded into work_ratings.

Run with: python -m shelfwise.scripts.compute_quality
"""

import time

from shelfwise.core.database import SessionLocal
from shelfwise.core.logging import setup_logging
from shelfwise.scripts._progress import progress_callback
from shelfwise.services.quality import compute_work_quality


def main():
    """Run batch quality prior computation."""
    setup_logging()
    print("Starting quality prior computation...\n")
    start_time = time.time()

    db = SessionLocal()

    try:
        stats = compute_work_quality(db, progress_callback=progress_callback)
        print()

        elapsed = time.time() - start_time

        print("\n=== Computation Complete ===")
        print(f"Time elapsed: {elapsed:.1f} seconds")
        print(f"Works processed: {stats['works_processed']}")
        print("\n✓ Batch job complete!")

    except Exception as e:
        print(f"\n✗ Error during computation: {e}")
        raise

    finally:
        db.close()


if __name__ == "__main__":
    main()

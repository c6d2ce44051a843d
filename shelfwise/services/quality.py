"""
Quality prior computation.

Blends per-source rating aggregates into one count-aware quality prior per
work:

1. Weighted average across sources (source reliability x rating count)
2. Bayesian average pulling toward a 3.5 prior worth 10 ratings
3. Wilson lower bound (95%) of the normalized average

The results are stored in work_quality and read by the reranker.
"""

import math
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from shelfwise.core.logging import get_logger
from shelfwise.core.timing import time_operation, utcnow
from shelfwise.models.quality import WorkQuality, WorkRating

logger = get_logger(__name__)

PRIOR_MEAN = 3.5
PRIOR_WEIGHT = 10
WILSON_Z = 1.96

SOURCE_WEIGHTS = {
    "openlibrary": 1.2,
    "googlebooks": 1.0,
}
DEFAULT_SOURCE_WEIGHT = 1.0

BATCH_SIZE = 1000


@dataclass(frozen=True)
class RatingStats:
    source: str
    avg: float
    count: int


@dataclass(frozen=True)
class BlendedQuality:
    blended_avg: float
    blended_wilson: float
    total_count: int


def bayesian_average(avg: float, count: int) -> float:
    return (PRIOR_WEIGHT * PRIOR_MEAN + count * avg) / (PRIOR_WEIGHT + count)


def wilson_lower_bound(positive_ratio: float, total_count: int, z: float = WILSON_Z) -> float:
    """Lower bound of the Wilson score interval; 0 when there are no ratings."""
    if total_count <= 0:
        return 0.0

    n = total_count
    denominator = 1 + z * z / n
    center = positive_ratio + z * z / (2 * n)
    spread = z * math.sqrt((positive_ratio * (1 - positive_ratio) + z * z / (4 * n)) / n)
    return (center - spread) / denominator


def rating_to_positive_ratio(avg_rating: float) -> float:
    """Map a 1-5 average onto 0-1."""
    return max(0.0, min(1.0, (avg_rating - 1) / 4))


def blend_ratings(ratings: list[RatingStats]) -> BlendedQuality:
    usable = [r for r in ratings if r.count > 0]
    if not usable:
        return BlendedQuality(blended_avg=PRIOR_MEAN, blended_wilson=0.0, total_count=0)

    weighted_sum = 0.0
    weighted_count = 0.0
    total_count = 0
    for rating in usable:
        weight = SOURCE_WEIGHTS.get(rating.source, DEFAULT_SOURCE_WEIGHT)
        weighted_sum += rating.avg * rating.count * weight
        weighted_count += rating.count * weight
        total_count += rating.count

    blended_avg = bayesian_average(weighted_sum / weighted_count, total_count)
    blended_wilson = wilson_lower_bound(rating_to_positive_ratio(blended_avg), total_count)
    return BlendedQuality(blended_avg=blended_avg, blended_wilson=blended_wilson, total_count=total_count)


def compute_work_quality(db: Session, progress_callback=None) -> dict:
    """
    Recompute work_quality for every work with ratings (batch job).

    Args:
        db: Database session
        progress_callback: Optional callable(current, total)

    Returns:
        Statistics dict
    """
    with time_operation("Quality score computation", logger) as stats:
        rows = db.execute(
            select(WorkRating.work_id, WorkRating.source, WorkRating.avg, WorkRating.count)
            .where(WorkRating.avg.is_not(None), WorkRating.count > 0)
            .order_by(WorkRating.work_id)
        ).all()

        by_work: dict[int, list[RatingStats]] = defaultdict(list)
        for row in rows:
            by_work[row.work_id].append(RatingStats(source=row.source, avg=float(row.avg), count=row.count))

        total = len(by_work)
        logger.info(f"Processing {total} works with ratings")

        processed = 0
        batch: list[tuple[int, BlendedQuality]] = []
        for work_id, ratings in by_work.items():
            batch.append((work_id, blend_ratings(ratings)))
            if len(batch) >= BATCH_SIZE:
                _store_batch(db, batch)
                processed += len(batch)
                batch = []
                if progress_callback:
                    progress_callback(processed, total)

        if batch:
            _store_batch(db, batch)
            processed += len(batch)
            if progress_callback:
                progress_callback(processed, total)

        stats["works_processed"] = processed

    return {"works_processed": processed}


def _store_batch(db: Session, batch: list[tuple[int, BlendedQuality]]) -> None:
    now = utcnow()
    existing = {
        row.work_id: row
        for row in db.scalars(select(WorkQuality).where(WorkQuality.work_id.in_([w for w, _ in batch])))
    }

    for work_id, quality in batch:
        row = existing.get(work_id)
        if row is None:
            row = WorkQuality(work_id=work_id)
            db.add(row)
        row.blended_avg = quality.blended_avg
        row.blended_wilson = quality.blended_wilson
        row.total_ratings = quality.total_count
        row.updated_at = now

    db.commit()

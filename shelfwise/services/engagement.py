"""
Engagement scoring for reading-history events.

Maps one ReadingEvent to a signed weight used by the profile builder:
positive weights pull the taste vector toward a book, negative weights push
it away, and zero excludes the event.

The magnitude is built in stages, each a multiplier:
1. Rating: 2^((rating - 3) / 2)   (5 -> 2.0, 3 -> 1.0, 1 -> 0.25)
2. Explicit 5-star bonus: x2
3. Recency decay with a 2-year half-life (4 years for high-engagement books)
4. Reading intensity: 1 + min(1, log10(hours + 1))
5. Recent activity in the last 30 days: x1.1
6. Re-reads: min(3, 1.5^(completions - 1))
7. Session quality: 1 + min(0.5, avg_session_min / 30)
8. Binge factor: 1 + min(0.5, max_session_min / 240)
9. Author loyalty: min(2, 1 + (books_by_author - 2) * 0.25) from 3 books up
10. Series velocity: x1.3 when finished within 3 days of the previous book
11. Purchase commitment: x1.15 for paid purchases

The shelf is applied last and decides the sign. A DNF after 6+ hours is
neutral (the reader moved on for variety); a quick DNF is a negative signal.
"""

import math
from datetime import datetime, timezone

from shelfwise.core.timing import utcnow
from shelfwise.services.types import EngagementSignals, ReadingEvent

SECONDS_PER_YEAR = 365 * 24 * 60 * 60

NORMAL_HALF_LIFE_YEARS = 2.0
HIGH_ENGAGEMENT_HALF_LIFE_YEARS = 4.0

DNF_NEUTRAL_HOURS = 6.0
SERIES_VELOCITY_MAX_DAYS = 3.0
PURCHASE_ACQUISITION_TYPES = {"purchase"}

SHELF_FACTORS = {
    "read": 1.0,
    "currently-reading": 0.8,
    "to-read": 0.3,
}
DNF_FACTOR = -0.5


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def has_high_engagement(event: ReadingEvent) -> bool:
    return (
        event.completion_count >= 3
        or event.avg_session_minutes >= 15
        or event.max_session_minutes >= 120
    )


def has_series_velocity(event: ReadingEvent) -> bool:
    days = event.days_since_previous_finish
    return days is not None and 0 <= days <= SERIES_VELOCITY_MAX_DAYS


def is_purchase(event: ReadingEvent) -> bool:
    return (event.acquisition_type or "").lower() in PURCHASE_ACQUISITION_TYPES


def recency_decay(event: ReadingEvent, now: datetime | None = None) -> float:
    """Exponential decay factor from finished_at, else last_read_at, else 1.0."""
    recency_date = event.finished_at or event.last_read_at
    if recency_date is None:
        return 1.0

    now = _as_naive_utc(now) if now is not None else utcnow()
    age_years = (now - _as_naive_utc(recency_date)).total_seconds() / SECONDS_PER_YEAR
    half_life = HIGH_ENGAGEMENT_HALF_LIFE_YEARS if has_high_engagement(event) else NORMAL_HALF_LIFE_YEARS
    return math.pow(0.5, age_years / half_life)


def calculate_event_weight(event: ReadingEvent, now: datetime | None = None) -> float:
    """Signed weight of one reading event (see module docstring for the stages)."""
    magnitude = 1.0

    if event.rating is not None:
        magnitude *= math.pow(2, (event.rating - 3) / 2)

    if event.rating == 5:
        magnitude *= 2.0

    magnitude *= recency_decay(event, now)

    hours = event.total_hours
    if hours > 0:
        magnitude *= 1 + min(1.0, math.log10(hours + 1))

    if (event.last_30d_seconds or 0) > 0:
        magnitude *= 1.1

    if event.completion_count > 1:
        magnitude *= min(3.0, math.pow(1.5, event.completion_count - 1))

    magnitude *= 1 + min(0.5, event.avg_session_minutes / 30)
    magnitude *= 1 + min(0.5, event.max_session_minutes / 240)

    if event.author_books_read >= 3:
        magnitude *= min(2.0, 1 + (event.author_books_read - 2) * 0.25)

    if has_series_velocity(event):
        magnitude *= 1.3

    if is_purchase(event):
        magnitude *= 1.15

    if event.shelf == "dnf":
        if hours >= DNF_NEUTRAL_HOURS:
            return 0.0
        return magnitude * DNF_FACTOR

    return magnitude * SHELF_FACTORS[event.shelf]


def compute_signals(event: ReadingEvent) -> EngagementSignals:
    """Flags explaining which engagement signals boosted an event's weight."""
    return EngagementSignals(
        five_star=event.rating == 5,
        reread=event.completion_count >= 2,
        binge=event.max_session_minutes >= 240,
        session_quality=event.avg_session_minutes >= 15,
        author_loyalty=event.author_books_read >= 3,
        series_velocity=has_series_velocity(event),
        purchased=is_purchase(event),
    )

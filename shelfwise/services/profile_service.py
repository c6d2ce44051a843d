"""
User taste profile builder.

A profile is one unit-length taste vector plus the anchor works that
contributed most to it:

1. Fetch the user's reading events whose work has an embedding
2. Weight each event with the engagement scorer
3. Positive vector = weighted average of positive events' embeddings
4. Subtract 0.3 x the weighted average of negative (quick-DNF) events
5. Normalize; anchors are the top positive events by weight

Users with no positive signal get an empty profile (empty vector, no anchors).
"""

import asyncio
from datetime import datetime

from shelfwise.core.config import get_settings
from shelfwise.core.logging import get_logger
from shelfwise.core.timing import time_operation, utcnow
from shelfwise.services.engagement import calculate_event_weight, compute_signals
from shelfwise.services.stores import ProfileStore, UserStateStore
from shelfwise.services.types import Anchor, ReadingEvent, TasteSummary, UserProfile
from shelfwise.services.vectors import normalize_vector, weighted_average_vectors

logger = get_logger(__name__)
settings = get_settings()


def compute_profile(
    user_id: str,
    events: list[ReadingEvent],
    now: datetime,
    anchor_count: int = 10,
    negative_weight: float = 0.3,
) -> UserProfile:
    """Pure profile computation from already-fetched events."""
    positives: list[tuple[ReadingEvent, float]] = []
    negatives: list[tuple[ReadingEvent, float]] = []

    for event in events:
        if event.embedding is None or event.embedding.size == 0:
            continue
        weight = calculate_event_weight(event, now)
        if weight > 0:
            positives.append((event, weight))
        elif weight < 0:
            negatives.append((event, weight))

    if not positives:
        return UserProfile.empty(user_id)

    vector = weighted_average_vectors([e.embedding for e, _ in positives], [w for _, w in positives])

    if negatives:
        negative_vector = weighted_average_vectors(
            [e.embedding for e, _ in negatives], [abs(w) for _, w in negatives]
        )
        vector = vector - negative_weight * negative_vector

    # sorted() is stable, so equal weights keep the event order
    top = sorted(positives, key=lambda pair: pair[1], reverse=True)[:anchor_count]
    anchors = [
        Anchor(work_id=event.work_id, title=event.title, weight=weight, signals=compute_signals(event))
        for event, weight in top
    ]

    return UserProfile(
        user_id=user_id,
        profile_vector=normalize_vector(vector),
        anchors=anchors,
        built_at=now,
    )


class ProfileBuilder:
    """Builds, persists and serves user profiles."""

    def __init__(
        self,
        user_state: UserStateStore,
        profiles: ProfileStore,
        max_events: int | None = None,
        anchor_count: int | None = None,
        negative_weight: float | None = None,
    ):
        self.user_state = user_state
        self.profiles = profiles
        self.max_events = max_events or settings.PROFILE_MAX_EVENTS
        self.anchor_count = anchor_count or settings.PROFILE_ANCHOR_COUNT
        self.negative_weight = settings.PROFILE_NEGATIVE_WEIGHT if negative_weight is None else negative_weight

    async def build_profile(self, user_id: str, now: datetime | None = None) -> UserProfile:
        """Rebuild the profile from scratch and persist it (full replace)."""
        now = now or utcnow()

        with time_operation("Profile build", logger) as stats:
            events = await self.user_state.get_reading_events(user_id, self.max_events)
            profile = compute_profile(
                user_id,
                events,
                now,
                anchor_count=self.anchor_count,
                negative_weight=self.negative_weight,
            )
            stats.update(user_id=user_id, event_count=len(events), anchor_count=len(profile.anchors))

        if profile.is_empty:
            # Full replace: an empty rebuild clears any previously stored vector
            profile.built_at = profile.built_at or now
            logger.info(
                "No positive reading signal; profile is empty",
                extra={"extra_fields": {"user_id": user_id, "event_count": len(events)}},
            )

        await self.profiles.save_profile(profile)
        return profile

    async def get_or_build_profile(self, user_id: str) -> UserProfile:
        stored = await self.profiles.get_profile(user_id)
        if stored is not None and not stored.is_empty:
            return stored
        return await self.build_profile(user_id)

    async def needs_refresh(self, user_id: str) -> bool:
        """True when reading events or aggregates changed after the profile was built."""
        stored, last_activity = await asyncio.gather(
            self.profiles.get_profile(user_id),
            self.user_state.last_activity_at(user_id),
        )
        if stored is None or stored.built_at is None:
            return True
        if last_activity is None:
            return False
        return last_activity > stored.built_at

    async def get_taste_summary(self, user_id: str) -> TasteSummary:
        return await self.user_state.get_taste_summary(user_id)

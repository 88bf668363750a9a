"""EligibilityClassifier: which feeds may be settled now.

Batch (sweep) selection splits by module family:

    - Time-based feeds:     status = pending AND resolution_date <= now
    - Event-outcome feeds:  status = pending AND config match status = finished

Feeds that already carry a settled value are never selected, and neither
are feeds currently leased by another worker. Single-feed selection returns
the requested feed unconditionally; the manual trigger bypasses timing.

The classifier only reads. Store errors propagate to the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from .errors import FeedNotFoundError
from .Feed import (
    EVENT_OUTCOME_MODULES,
    TIME_BASED_MODULES,
    EventOutcomeConfig,
    Feed,
    FeedStatus,
)

if TYPE_CHECKING:
    from .FeedStore import FeedStore

logger = logging.getLogger(__name__)


def is_eligible(feed: Feed, now: datetime) -> bool:
    """Check whether a feed qualifies for the automatic sweep.

    :param feed: Feed to check.
    :param now: Current time (timezone-aware).
    :returns: True if the sweep may attempt settlement.
    """
    if feed.status is not FeedStatus.PENDING or feed.is_settled:
        return False

    if isinstance(feed.config, EventOutcomeConfig):
        return feed.config.is_finished

    return feed.resolution_date is not None and feed.resolution_date <= now


class EligibilityClassifier:
    """Selects settlement candidates from the feed store.

    :ivar store: Feed store to read from.
    """

    def __init__(self, store: FeedStore) -> None:
        """Initialize the classifier.

        :param store: Feed store to read from.
        """
        self.store = store

    async def select_batch(self, now: datetime | None = None) -> list[Feed]:
        """Select every feed eligible for the automatic sweep.

        :param now: Current time (default: now in UTC).
        :returns: Eligible feeds, time-based first.
        :raises StoreError: If the store cannot be read.
        """
        now = now or datetime.now(timezone.utc)

        time_based = await self.store.list_feeds(FeedStatus.PENDING, TIME_BASED_MODULES)
        event_outcome = await self.store.list_feeds(FeedStatus.PENDING, EVENT_OUTCOME_MODULES)

        selected: list[Feed] = []
        leased = 0
        for feed in [*time_based, *event_outcome]:
            if not is_eligible(feed, now):
                continue
            if feed.lease_active(now):
                leased += 1
                continue
            selected.append(feed)

        finished_events = sum(1 for f in selected if f.is_event_outcome)
        if finished_events:
            logger.info(f"Found {finished_events} finished event-outcome feeds to settle")
        if leased:
            logger.info(f"Skipping {leased} eligible feeds leased by another worker")
        return selected

    async def select_single(self, feed_id: str) -> Feed:
        """Select one feed for a manual settlement.

        :param feed_id: Feed identifier.
        :returns: The feed, regardless of timing.
        :raises FeedNotFoundError: If the feed does not exist.
        :raises StoreError: If the store cannot be read.
        """
        feed = await self.store.get_feed(feed_id)
        if feed is None:
            raise FeedNotFoundError(feed_id)
        return feed

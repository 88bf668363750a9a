"""FeedStore: Abstract base class for the persistent feed store."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from .Feed import Feed, FeedStatus

# Statuses a manual (single-feed) settlement may start from.
MANUAL_CLAIM_STATUSES = (FeedStatus.PENDING, FeedStatus.MANUAL, FeedStatus.FAILED)

# Statuses the automatic sweep may start from.
SWEEP_CLAIM_STATUSES = (FeedStatus.PENDING,)


class FeedStore(ABC):
    """Abstract base class for feed store implementations.

    Every write is a single conditional row update, so two workers can never
    interleave partial writes to the same feed. Settlement writes only apply
    while ``settled_value`` is still null.
    """

    @abstractmethod
    async def get_feed(self, feed_id: str) -> Feed | None:
        """Fetch one feed.

        :param feed_id: Feed identifier.
        :returns: The feed, or None if it does not exist.
        :raises StoreError: If the store cannot be read.
        """
        pass

    @abstractmethod
    async def list_feeds(self, status: FeedStatus, modules: Sequence[str]) -> list[Feed]:
        """List feeds with a given status in the given modules.

        Records that cannot be parsed are skipped.

        :param status: Lifecycle status to match.
        :param modules: Module tags to include.
        :returns: Matching feeds.
        :raises StoreError: If the store cannot be read.
        """
        pass

    @abstractmethod
    async def claim(
        self,
        feed_id: str,
        *,
        until: datetime,
        now: datetime,
        statuses: Sequence[FeedStatus] = SWEEP_CLAIM_STATUSES,
    ) -> bool:
        """Atomically take a settlement lease on a feed.

        Succeeds only if the feed is unsettled, in one of ``statuses``, and
        not under a lease that is still valid at ``now``.

        :param feed_id: Feed identifier.
        :param until: Lease expiry.
        :param now: Current time.
        :param statuses: Statuses the feed may be in.
        :returns: True if this caller now holds the lease.
        :raises StoreError: If the store cannot be written.
        """
        pass

    @abstractmethod
    async def release(self, feed_id: str) -> None:
        """Drop a settlement lease without changing status.

        :param feed_id: Feed identifier.
        :raises StoreError: If the store cannot be written.
        """
        pass

    @abstractmethod
    async def mark_settled(
        self,
        feed_id: str,
        *,
        value: str,
        tx: str | None,
        settled_at: datetime,
    ) -> bool:
        """Transition a feed to ``settled`` in one update.

        :param feed_id: Feed identifier.
        :param value: Settled value.
        :param tx: Confirmed transaction id, or None for off-chain settlement.
        :param settled_at: Settlement timestamp.
        :returns: False if the feed was already settled (nothing written).
        :raises StoreError: If the store cannot be written.
        """
        pass

    @abstractmethod
    async def mark_failed(self, feed_id: str) -> bool:
        """Transition a feed to ``failed`` without settlement fields.

        :param feed_id: Feed identifier.
        :returns: False if the feed was already settled (nothing written).
        :raises StoreError: If the store cannot be written.
        """
        pass

    @abstractmethod
    async def update_config(
        self, feed_id: str, config: dict[str, Any], updated_at: datetime
    ) -> None:
        """Replace a feed's configuration blob (status poller path).

        :param feed_id: Feed identifier.
        :param config: New configuration blob.
        :param updated_at: Modification timestamp.
        :raises StoreError: If the store cannot be written.
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the store."""
        return None

"""FeedStoreMemory: In-process feed store for local development."""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from .Feed import Feed, FeedStatus, format_timestamp, parse_timestamp
from .FeedStore import SWEEP_CLAIM_STATUSES, FeedStore

logger = logging.getLogger(__name__)


class FeedStoreMemory(FeedStore):
    """Feed store backed by a dict of records.

    No method awaits between reading and writing a record, so every update
    is atomic with respect to other tasks on the same event loop.

    :ivar records: Feed records keyed by id, in the store's record shape.
    """

    def __init__(self, records: Iterable[dict[str, Any]] = ()) -> None:
        """Initialize the store.

        :param records: Initial feed records (each must have an ``id``).
        """
        self.records: dict[str, dict[str, Any]] = {}
        for record in records:
            self.records[str(record["id"])] = dict(record)

    def _parse(self, record: dict[str, Any]) -> Feed | None:
        try:
            return Feed.from_record(record)
        except (KeyError, ValueError) as e:
            logger.warning(f"Skipping unreadable feed record {record.get('id')}: {e}")
            return None

    async def get_feed(self, feed_id: str) -> Feed | None:
        record = self.records.get(str(feed_id))
        return self._parse(record) if record is not None else None

    async def list_feeds(self, status: FeedStatus, modules: Sequence[str]) -> list[Feed]:
        feeds = []
        for record in self.records.values():
            if record.get("status") != status.value or record.get("module") not in modules:
                continue
            feed = self._parse(record)
            if feed is not None:
                feeds.append(feed)
        return feeds

    async def claim(
        self,
        feed_id: str,
        *,
        until: datetime,
        now: datetime,
        statuses: Sequence[FeedStatus] = SWEEP_CLAIM_STATUSES,
    ) -> bool:
        record = self.records.get(str(feed_id))
        if record is None or record.get("settled_value") is not None:
            return False
        if record.get("status") not in {s.value for s in statuses}:
            return False
        held_until = parse_timestamp(record.get("claimed_until"))
        if held_until is not None and held_until > now:
            return False
        record["claimed_until"] = format_timestamp(until)
        return True

    async def release(self, feed_id: str) -> None:
        record = self.records.get(str(feed_id))
        if record is not None:
            record["claimed_until"] = None

    async def mark_settled(
        self,
        feed_id: str,
        *,
        value: str,
        tx: str | None,
        settled_at: datetime,
    ) -> bool:
        record = self.records.get(str(feed_id))
        if record is None or record.get("settled_value") is not None:
            return False
        record.update(
            status=FeedStatus.SETTLED.value,
            settled_value=value,
            settled_at=format_timestamp(settled_at),
            settlement_tx=tx,
            claimed_until=None,
        )
        return True

    async def mark_failed(self, feed_id: str) -> bool:
        record = self.records.get(str(feed_id))
        if record is None or record.get("settled_value") is not None:
            return False
        record.update(status=FeedStatus.FAILED.value, claimed_until=None)
        return True

    async def update_config(
        self, feed_id: str, config: dict[str, Any], updated_at: datetime
    ) -> None:
        record = self.records.get(str(feed_id))
        if record is not None:
            record["config"] = dict(config)
            record["updated_at"] = format_timestamp(updated_at)

"""Unit tests for FeedStoreMemory."""

import asyncio
from datetime import timedelta

from feedsettler.src.Feed import FeedStatus
from feedsettler.src.FeedStore import MANUAL_CLAIM_STATUSES
from feedsettler.src.FeedStoreMemory import FeedStoreMemory


class TestFeedStoreMemoryReads:
    """Test reading feeds."""

    def test_get_feed(self, make_record) -> None:
        """Existing feeds should be returned, missing ones as None."""
        store = FeedStoreMemory([make_record("f1")])
        assert asyncio.run(store.get_feed("f1")).id == "f1"
        assert asyncio.run(store.get_feed("nope")) is None

    def test_list_filters_status_and_module(self, make_record) -> None:
        """Only matching status and module should be listed."""
        store = FeedStoreMemory(
            [
                make_record("f1", "crypto"),
                make_record("f2", "esports"),
                make_record("f3", "crypto", status="settled", settled_value="1"),
            ]
        )
        feeds = asyncio.run(store.list_feeds(FeedStatus.PENDING, ("crypto",)))
        assert [f.id for f in feeds] == ["f1"]

    def test_list_skips_unreadable(self, make_record) -> None:
        """Records that fail to parse should be skipped."""
        store = FeedStoreMemory(
            [make_record("f1"), make_record("bad", resolution_date="yesterday")]
        )
        feeds = asyncio.run(store.list_feeds(FeedStatus.PENDING, ("crypto",)))
        assert [f.id for f in feeds] == ["f1"]


class TestFeedStoreMemoryWrites:
    """Test conditional writes."""

    def test_claim_once(self, make_record, now) -> None:
        """A second claim inside the lease should fail."""
        store = FeedStoreMemory([make_record("f1")])
        until = now + timedelta(minutes=5)
        assert asyncio.run(store.claim("f1", until=until, now=now))
        assert not asyncio.run(store.claim("f1", until=until, now=now))

    def test_claim_after_expiry(self, make_record, now) -> None:
        """An expired lease should be claimable again."""
        store = FeedStoreMemory([make_record("f1")])
        asyncio.run(store.claim("f1", until=now + timedelta(minutes=5), now=now))
        later = now + timedelta(minutes=6)
        assert asyncio.run(store.claim("f1", until=later + timedelta(minutes=5), now=later))

    def test_claim_respects_status(self, make_record, now) -> None:
        """Failed feeds should be claimable only with manual statuses."""
        store = FeedStoreMemory([make_record("f1", status="failed")])
        until = now + timedelta(minutes=5)
        assert not asyncio.run(store.claim("f1", until=until, now=now))
        assert asyncio.run(
            store.claim("f1", until=until, now=now, statuses=MANUAL_CLAIM_STATUSES)
        )

    def test_release(self, make_record, now) -> None:
        """A released feed should be claimable again inside the old lease."""
        store = FeedStoreMemory([make_record("f1")])
        until = now + timedelta(minutes=5)
        asyncio.run(store.claim("f1", until=until, now=now))
        asyncio.run(store.release("f1"))
        assert store.records["f1"]["claimed_until"] is None
        assert store.records["f1"]["status"] == "pending"
        assert asyncio.run(store.claim("f1", until=until, now=now))

    def test_mark_settled_round_trip(self, make_record, now) -> None:
        """A settled feed should read back with the written fields."""
        store = FeedStoreMemory([make_record("f1", claimed_until="2025-06-01T12:05:00Z")])
        assert asyncio.run(store.mark_settled("f1", value="45231.67", tx="0xtx", settled_at=now))

        feed = asyncio.run(store.get_feed("f1"))
        assert feed.status is FeedStatus.SETTLED
        assert feed.settled_value == "45231.67"
        assert feed.settlement_tx == "0xtx"
        assert feed.settled_at == now
        assert feed.claimed_until is None

    def test_mark_settled_only_once(self, make_record, now) -> None:
        """A settled feed should never be overwritten."""
        store = FeedStoreMemory([make_record("f1")])
        asyncio.run(store.mark_settled("f1", value="1", tx=None, settled_at=now))
        assert not asyncio.run(store.mark_settled("f1", value="2", tx="0x", settled_at=now))
        assert not asyncio.run(store.mark_failed("f1"))
        assert asyncio.run(store.get_feed("f1")).settled_value == "1"

    def test_mark_failed(self, make_record) -> None:
        """Failed feeds should have no settlement fields."""
        store = FeedStoreMemory([make_record("f1")])
        assert asyncio.run(store.mark_failed("f1"))
        feed = asyncio.run(store.get_feed("f1"))
        assert feed.status is FeedStatus.FAILED
        assert feed.settled_value is None
        assert feed.settled_at is None
        assert feed.settlement_tx is None

    def test_update_config(self, make_record, now) -> None:
        """Config updates should replace the blob and stamp updated_at."""
        store = FeedStoreMemory([make_record("f1", "esports")])
        asyncio.run(store.update_config("f1", {"matchStatus": "finished"}, now))
        assert store.records["f1"]["config"] == {"matchStatus": "finished"}
        assert store.records["f1"]["updated_at"] == "2025-06-01T12:00:00+00:00"

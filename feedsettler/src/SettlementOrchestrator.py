"""SettlementOrchestrator: drive feeds from pending to a terminal status.

Per feed, strictly in order:

    claim lease -> resolve value -> settle on-chain -> persist settled | failed

Value resolution:
    - Event-outcome feeds: derived from the stored outcome, no network call
    - Everything else: simulation endpoint under the shared RetryPolicy

On-chain settlement runs only when the feed has an address and a job hash
and a settler client is configured. A settler failure is logged and the
off-chain value is used; a settler success overrides it. The terminal write
is a single conditional update: ``settled`` when a value exists, ``failed``
otherwise.

A sweep processes eligible feeds with bounded concurrency. One feed's
failure never stops the others, and a failed persist leaves the feed in
its prior status for a later sweep.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from .EligibilityClassifier import EligibilityClassifier
from .errors import ResolverUnavailableError, SettlementError, SettlerError, StoreError
from .Feed import EventOutcomeConfig, Feed, FeedStatus, utcnow
from .FeedStore import MANUAL_CLAIM_STATUSES, SWEEP_CLAIM_STATUSES
from .RetryPolicy import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .FeedStore import FeedStore
    from .SettlerClient import SettlerClient
    from .ValueResolver import ValueResolver

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Why a feed did not settle."""

    NO_VALUE = "no_value"
    RESOLVER_UNAVAILABLE = "resolver_unavailable"
    STORE_ERROR = "store_error"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    ALREADY_CLAIMED = "already_claimed"
    ALREADY_SETTLED = "already_settled"
    UNEXPECTED = "unexpected_error"


# Outcomes that leave the feed untouched rather than failed.
SKIPPED_KINDS = (ErrorKind.ALREADY_CLAIMED, ErrorKind.ALREADY_SETTLED)


@dataclass
class _Attempt:
    """Progress of one claimed settlement attempt."""

    settler_called: bool = False


@dataclass
class SettlementResult:
    """Outcome of one settlement attempt.

    :ivar feed_id: Feed identifier.
    :ivar success: True if the feed is settled.
    :ivar settled_value: Settled value, if any.
    :ivar settlement_tx: Confirmed transaction id, if settled on-chain.
    :ivar error: Human-readable reason when not settled.
    :ivar error_kind: Machine-readable reason when not settled.
    """

    feed_id: str
    success: bool
    settled_value: str | None = None
    settlement_tx: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def on_chain(self) -> bool:
        return self.settlement_tx is not None

    @property
    def skipped(self) -> bool:
        return self.error_kind in SKIPPED_KINDS

    def to_dict(self) -> dict[str, Any]:
        """Single-feed response body."""
        body: dict[str, Any] = {
            "success": self.success,
            "settled_value": self.settled_value,
            "settlement_tx": self.settlement_tx,
            "on_chain": self.on_chain,
            "error": self.error,
        }
        if self.error_kind is not None:
            body["error_kind"] = self.error_kind.value
        return body

    def to_summary_entry(self) -> dict[str, Any]:
        """Per-feed entry of a sweep response."""
        entry: dict[str, Any] = {"feedId": self.feed_id, "success": self.success}
        if self.settled_value is not None:
            entry["value"] = self.settled_value
        if self.settlement_tx is not None:
            entry["tx"] = self.settlement_tx
        if self.error is not None:
            entry["error"] = self.error
            entry["errorKind"] = self.error_kind.value if self.error_kind else None
        return entry


@dataclass
class SweepSummary:
    """Aggregate outcome of one sweep."""

    results: list[SettlementResult] = field(default_factory=list)

    @property
    def settled(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def on_chain(self) -> int:
        return sum(1 for r in self.results if r.success and r.on_chain)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success and not r.skipped)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "settled": self.settled,
            "on_chain": self.on_chain,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.to_summary_entry() for r in self.results],
        }


class SettlementOrchestrator:
    """Settles eligible feeds against the store, resolver and settler.

    :ivar store: Persistent feed store.
    :ivar resolver: Off-chain value resolver.
    :ivar settler: Settler service client, or None to settle off-chain only.
    :ivar classifier: Eligibility classifier over the same store.
    :ivar retry_policy: Policy for resolver calls; its endpoints are the
        simulator base URLs.
    :ivar max_workers: Maximum feeds processed at once in a sweep.
    :ivar claim_ttl: Lease length in seconds (0 disables claiming).
    :ivar sweep_deadline: Seconds a sweep may run, or None for no limit.
    """

    def __init__(
        self,
        store: FeedStore,
        resolver: ValueResolver,
        settler: SettlerClient | None = None,
        retry_policy: RetryPolicy | None = None,
        max_workers: int = 4,
        claim_ttl: float = 300.0,
        sweep_deadline: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the orchestrator.

        :param store: Persistent feed store.
        :param resolver: Off-chain value resolver.
        :param settler: Settler service client (None disables on-chain writes).
        :param retry_policy: Resolver retry policy (default: 3 rounds, 2s base).
        :param max_workers: Concurrent feeds per sweep (default: 4).
        :param claim_ttl: Lease length in seconds (default: 300, 0 disables).
        :param sweep_deadline: Sweep time limit in seconds (default: none).
        :param clock: Returns the current aware UTC time.
        :raises ValueError: If max_workers is below 1.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.store = store
        self.resolver = resolver
        self.settler = settler
        self.classifier = EligibilityClassifier(store)
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_workers = max_workers
        self.claim_ttl = claim_ttl
        self.sweep_deadline = sweep_deadline
        self.clock = clock

    async def _resolve_value(self, feed: Feed) -> tuple[str | None, bool]:
        """Find the off-chain value for a feed.

        :returns: The value (or None) and whether infrastructure was the
            reason for not having one.
        """
        if isinstance(feed.config, EventOutcomeConfig):
            value = feed.config.outcome_value()
            logger.info(f"[feed {feed.id}] Derived outcome value: {value}")
            return value, False

        if not feed.feed_hash:
            logger.warning(f"[feed {feed.id}] No job hash, cannot resolve a value")
            return None, False

        job_hash = feed.feed_hash
        try:
            value = await self.retry_policy.run(
                lambda base_url: self.resolver.resolve(job_hash, base_url),
                retry_on=(ResolverUnavailableError,),
                description=f"[feed {feed.id}] simulate",
            )
        except ResolverUnavailableError as e:
            logger.warning(f"[feed {feed.id}] Value resolver unavailable: {e}")
            return None, True

        logger.info(f"[feed {feed.id}] Resolved value: {value}")
        return value, False

    async def _process(
        self, feed: Feed, statuses: Sequence[FeedStatus]
    ) -> SettlementResult:
        """Run one settlement attempt.

        If the attempt ends early (error or cancellation) before the settler
        was called, the lease is released so the feed can be retried at
        once. After that point a submission may be in flight and the lease
        is left to expire.

        :raises StoreError: If the lease or the terminal write fails.
        """
        if self.claim_ttl > 0:
            now = self.clock()
            claimed = await self.store.claim(
                feed.id,
                until=now + timedelta(seconds=self.claim_ttl),
                now=now,
                statuses=statuses,
            )
            if not claimed:
                logger.info(f"[feed {feed.id}] Already claimed by another worker, skipping")
                return SettlementResult(
                    feed.id,
                    False,
                    error="Feed is being settled by another worker",
                    error_kind=ErrorKind.ALREADY_CLAIMED,
                )

        attempt = _Attempt()
        try:
            return await self._settle_claimed(feed, attempt)
        except BaseException:
            if self.claim_ttl > 0 and not attempt.settler_called:
                await self._release(feed)
            raise

    async def _release(self, feed: Feed) -> None:
        try:
            await self.store.release(feed.id)
            logger.info(f"[feed {feed.id}] Lease released")
        except StoreError as e:
            logger.error(f"[feed {feed.id}] Could not release lease: {e}")

    async def _settle_claimed(self, feed: Feed, attempt: _Attempt) -> SettlementResult:
        value, resolver_down = await self._resolve_value(feed)

        tx: str | None = None
        if feed.feed_pubkey and feed.feed_hash and self.settler is not None:
            config = feed.config
            outcome = isinstance(config, EventOutcomeConfig)
            attempt.settler_called = True
            try:
                settled = await self.settler.settle(
                    feed.feed_pubkey,
                    feed.feed_hash,
                    feed_id=feed.id,
                    module=feed.module,
                    winner_id=config.winner_id if outcome else None,
                    team1_id=config.team1_id if outcome else None,
                    team2_id=config.team2_id if outcome else None,
                )
                tx = settled.tx_signature
                if settled.settled_value is not None:
                    value = settled.settled_value
                logger.info(f"[feed {feed.id}] On-chain settlement confirmed: {tx}")
            except SettlerError as e:
                logger.warning(
                    f"[feed {feed.id}] On-chain settlement failed ({e.code}): {e}, "
                    f"using off-chain value"
                )
        elif not (feed.feed_pubkey and feed.feed_hash):
            logger.info(f"[feed {feed.id}] No on-chain address or job hash, settling off-chain")

        if value is None:
            written = await self.store.mark_failed(feed.id)
            kind = ErrorKind.RESOLVER_UNAVAILABLE if resolver_down else ErrorKind.NO_VALUE
            error = (
                "Value resolver unavailable"
                if resolver_down
                else "Could not determine a settled value"
            )
            if not written:
                kind, error = ErrorKind.ALREADY_SETTLED, "Feed was already settled"
            logger.warning(f"[feed {feed.id}] Not settled: {error}")
            if tx is not None:
                logger.error(
                    f"[feed {feed.id}] Orphaned confirmed transaction {tx}: "
                    f"written on-chain but no value to record"
                )
            return SettlementResult(
                feed.id, False, settlement_tx=tx, error=error, error_kind=kind
            )

        written = await self.store.mark_settled(
            feed.id, value=value, tx=tx, settled_at=self.clock()
        )
        if not written:
            logger.warning(f"[feed {feed.id}] Already settled by another worker")
            return SettlementResult(
                feed.id,
                False,
                settled_value=value,
                settlement_tx=tx,
                error="Feed was already settled",
                error_kind=ErrorKind.ALREADY_SETTLED,
            )

        logger.info(f"[feed {feed.id}] Settled: value={value} tx={tx}")
        return SettlementResult(feed.id, True, settled_value=value, settlement_tx=tx)

    async def _process_in_sweep(self, feed: Feed) -> SettlementResult:
        try:
            return await self._process(feed, SWEEP_CLAIM_STATUSES)
        except StoreError as e:
            logger.error(f"[feed {feed.id}] Store error, leaving status unchanged: {e}")
            return SettlementResult(
                feed.id, False, error=str(e), error_kind=ErrorKind.STORE_ERROR
            )
        except Exception as e:
            logger.exception(f"[feed {feed.id}] Unexpected error")
            return SettlementResult(
                feed.id, False, error=str(e), error_kind=ErrorKind.UNEXPECTED
            )

    async def settle_feed(self, feed_id: str) -> SettlementResult:
        """Settle one feed on demand, regardless of timing.

        A feed that is already settled is returned as stored.

        :param feed_id: Feed identifier.
        :returns: Settlement result.
        :raises FeedNotFoundError: If the feed does not exist.
        :raises StoreError: If the store cannot be read or written.
        """
        feed = await self.classifier.select_single(feed_id)
        if feed.is_settled:
            logger.info(f"[feed {feed.id}] Already settled, returning stored settlement")
            return SettlementResult(
                feed.id,
                True,
                settled_value=feed.settled_value,
                settlement_tx=feed.settlement_tx,
            )
        logger.info(f"[feed {feed.id}] Manual settlement ({feed.module}, {feed.status.value})")
        return await self._process(feed, MANUAL_CLAIM_STATUSES)

    async def run_sweep(self, now: datetime | None = None) -> SweepSummary:
        """Settle every eligible feed once.

        :param now: Eligibility reference time (default: clock()).
        :returns: Per-feed results and counts.
        :raises StoreError: If eligible feeds cannot be listed.
        """
        feeds = await self.classifier.select_batch(now or self.clock())
        if not feeds:
            logger.info("No feeds to settle")
            return SweepSummary()

        logger.info(f"Settling {len(feeds)} feeds ({self.max_workers} workers)")
        semaphore = asyncio.Semaphore(self.max_workers)

        async def worker(feed: Feed) -> SettlementResult:
            async with semaphore:
                return await self._process_in_sweep(feed)

        tasks = [(feed, asyncio.create_task(worker(feed))) for feed in feeds]
        _, pending = await asyncio.wait(
            [task for _, task in tasks], timeout=self.sweep_deadline
        )
        if pending:
            logger.warning(
                f"Sweep deadline of {self.sweep_deadline}s reached, "
                f"cancelling {len(pending)} feeds"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        summary = SweepSummary()
        for feed, task in tasks:
            if task.cancelled():
                summary.results.append(
                    SettlementResult(
                        feed.id,
                        False,
                        error="Sweep deadline exceeded",
                        error_kind=ErrorKind.DEADLINE_EXCEEDED,
                    )
                )
            else:
                summary.results.append(task.result())

        logger.info(
            f"Sweep done: {summary.settled} settled ({summary.on_chain} on-chain), "
            f"{summary.failed} failed, {summary.skipped} skipped"
        )
        return summary

    async def run(self, interval: float) -> None:
        """Sweep forever, every ``interval`` seconds.

        :param interval: Seconds between sweep starts.
        """
        logger.info(f"Starting sweep loop (every {interval}s)")
        while True:
            try:
                await self.run_sweep()
            except SettlementError as e:
                logger.error(f"Sweep failed: {e}")
            await asyncio.sleep(interval)

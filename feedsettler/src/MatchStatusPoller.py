"""MatchStatusPoller: keep event-outcome feeds' match status current.

For each pending esports feed whose match has started and is not yet
finished or canceled, asks PandaScore for the match and writes the mapped
status and winner back into the feed's config. Once a match is finished the
sweep picks the feed up.

PandaScore status mapping:
    - finished             -> finished
    - running              -> running
    - canceled, postponed  -> canceled
    - anything else        -> waiting
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from .errors import StoreError
from .Feed import EventOutcomeConfig, FeedStatus, MatchStatus, utcnow

if TYPE_CHECKING:
    from .FeedStore import FeedStore

logger = logging.getLogger(__name__)

PANDASCORE_URL = "https://api.pandascore.co"

_STATUS_MAP = {
    "finished": MatchStatus.FINISHED,
    "running": MatchStatus.RUNNING,
    "canceled": MatchStatus.CANCELED,
    "postponed": MatchStatus.CANCELED,
}


def map_match_status(provider_status: str | None) -> MatchStatus:
    """Map a PandaScore match status onto ours."""
    return _STATUS_MAP.get(provider_status or "", MatchStatus.WAITING)


class PandaScoreError(Exception):
    """Raised when a match cannot be fetched."""

    pass


@dataclass
class MatchInfo:
    """The parts of a PandaScore match the poller needs."""

    status: MatchStatus
    winner_id: Any = None


class PandaScoreClient:
    """Minimal PandaScore match client.

    :ivar client: Shared async HTTP client (owned by the caller).
    :ivar api_key: PandaScore API token.
    :ivar base_url: API base URL.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: str = PANDASCORE_URL,
        timeout: float = 10.0,
    ) -> None:
        if not api_key:
            raise ValueError("PandaScore API key not configured")
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def get_match(self, match_id: str) -> MatchInfo:
        """Fetch one match.

        :param match_id: PandaScore match id.
        :returns: Mapped status and winner id.
        :raises PandaScoreError: On transport errors or non-2xx responses.
        """
        try:
            response = await self.client.get(
                f"{self.base_url}/matches/{match_id}",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.RequestError as e:
            raise PandaScoreError(f"Request for match {match_id} failed: {e}") from e

        if not response.is_success:
            raise PandaScoreError(f"PandaScore HTTP {response.status_code} for match {match_id}")

        try:
            data = response.json()
        except ValueError as e:
            raise PandaScoreError(f"Invalid JSON for match {match_id}: {e}") from e

        winner = data.get("winner") or {}
        return MatchInfo(
            status=map_match_status(data.get("status")),
            winner_id=winner.get("id") if isinstance(winner, dict) else None,
        )


class MatchStatusPoller:
    """Refreshes match status on pending event-outcome feeds.

    :ivar store: Persistent feed store.
    :ivar matches: PandaScore client.
    :ivar modules: Module tags to poll.
    """

    def __init__(
        self,
        store: FeedStore,
        matches: PandaScoreClient,
        modules: Sequence[str] = ("esports",),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.matches = matches
        self.modules = tuple(modules)
        self.clock = clock

    async def poll(self) -> dict[str, int]:
        """Check every pending match once.

        :returns: ``{"checked", "updated", "finished"}`` counts.
        :raises StoreError: If pending feeds cannot be listed.
        """
        feeds = await self.store.list_feeds(FeedStatus.PENDING, self.modules)
        logger.info(f"Found {len(feeds)} event feeds to check")
        now = self.clock()
        updated = finished = 0

        for feed in feeds:
            config = feed.config
            if not isinstance(config, EventOutcomeConfig):
                continue
            if config.match_status in (MatchStatus.FINISHED, MatchStatus.CANCELED):
                logger.debug(f"[feed {feed.id}] Already {config.match_status.value}, skipping")
                continue
            if config.scheduled_at is not None and config.scheduled_at > now:
                logger.debug(f"[feed {feed.id}] Match not started yet, skipping")
                continue
            if not config.match_id:
                logger.info(f"[feed {feed.id}] No matchId in config, skipping")
                continue

            try:
                match = await self.matches.get_match(config.match_id)
            except PandaScoreError as e:
                logger.error(f"[feed {feed.id}] {e}")
                continue

            if match.status is MatchStatus.FINISHED:
                finished += 1
            if match.status is config.match_status and match.winner_id == config.winner_id:
                continue

            new_config = {
                **feed.raw_config,
                "matchStatus": match.status.value,
                "winnerId": match.winner_id,
            }
            try:
                await self.store.update_config(feed.id, new_config, self.clock())
            except StoreError as e:
                logger.error(f"[feed {feed.id}] Could not update match status: {e}")
                continue
            updated += 1
            logger.info(
                f"[feed {feed.id}] Match {config.match_id} now {match.status.value} "
                f"(winner={match.winner_id})"
            )

        logger.info(f"Match watcher complete: {updated} feeds updated, {finished} finished")
        return {"checked": len(feeds), "updated": updated, "finished": finished}

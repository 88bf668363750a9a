"""Feed: the unit of settlement and its per-module configuration.

A feed record comes out of the store as a flat dict. ``Feed.from_record``
selects the configuration variant from the module tag, so the rest of the
pipeline works with typed fields instead of a free-form blob:

.. code-block:: python

    >>> feed = Feed.from_record({
    ...     "id": "f2", "module": "esports", "status": "pending",
    ...     "config": {"team1Id": 77, "team2Id": 88, "winnerId": 77,
    ...                "matchStatus": "finished"},
    ... })
    >>> feed.is_event_outcome
    True
    >>> feed.config.outcome_value()
    '1'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class FeedStatus(str, Enum):
    """Lifecycle status of a feed."""

    PENDING = "pending"
    MANUAL = "manual"
    SETTLED = "settled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FeedStatus.SETTLED, FeedStatus.FAILED)


class MatchStatus(str, Enum):
    """Status of the real-world event behind an event-outcome feed."""

    WAITING = "waiting"
    RUNNING = "running"
    FINISHED = "finished"
    CANCELED = "canceled"


# Module tags grouped by how they become eligible.
TIME_BASED_MODULES = ("crypto", "memecoin", "weather")
EVENT_OUTCOME_MODULES = ("esports", "sports")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp from the store into an aware UTC datetime.

    :param value: ISO string, datetime, or None.
    :returns: Timezone-aware datetime, or None if value is empty.
    :raises ValueError: If the string is not ISO-8601.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way the store expects (ISO-8601, UTC)."""
    return value.astimezone(timezone.utc).isoformat()


def derive_outcome_value(
    winner_id: Any, team1_id: Any, team2_id: Any
) -> str | None:
    """Encode a match outcome as the tri-state settled value.

    Identifiers are compared by their string form, so ``77`` and ``"77"``
    refer to the same team.

    :param winner_id: Winning side identifier, or None for draw/void.
    :param team1_id: Side A identifier.
    :param team2_id: Side B identifier.
    :returns: ``"1"`` if side A won, ``"2"`` if side B won, ``"0"`` otherwise;
        None if either side identifier is missing.

    .. code-block:: python

        >>> derive_outcome_value(77, 77, 88)
        '1'
        >>> derive_outcome_value("88", 77, 88)
        '2'
        >>> derive_outcome_value(None, 77, 88)
        '0'
    """
    if team1_id is None or team2_id is None:
        return None
    if winner_id is None:
        return "0"
    winner = str(winner_id)
    if winner == str(team1_id):
        return "1"
    if winner == str(team2_id):
        return "2"
    return "0"


@dataclass
class TimeBasedConfig:
    """Configuration for price, token-analytics and weather feeds.

    :ivar symbol: Trading symbol (e.g., "BTCUSDT").
    :ivar contract_address: Token contract address for memecoin feeds.
    :ivar latitude: Latitude for weather feeds.
    :ivar longitude: Longitude for weather feeds.
    :ivar metric: Metric selector (e.g., "price", "temperature").
    :ivar extra: Any other keys from the record, preserved as-is.
    """

    symbol: str | None = None
    contract_address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    metric: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KEYS = {
        "symbol": "symbol",
        "contractAddress": "contract_address",
        "latitude": "latitude",
        "longitude": "longitude",
        "metric": "metric",
    }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TimeBasedConfig:
        known = {attr: raw.get(key) for key, attr in cls._KEYS.items()}
        extra = {k: v for k, v in raw.items() if k not in cls._KEYS}
        for coord in ("latitude", "longitude"):
            if known[coord] is not None:
                known[coord] = float(known[coord])
        return cls(extra=extra, **known)


@dataclass
class EventOutcomeConfig:
    """Configuration for feeds settled by a real-world event's result.

    :ivar match_id: External match identifier.
    :ivar team1_id: Side A identifier.
    :ivar team2_id: Side B identifier.
    :ivar winner_id: Winning side identifier, written by the status poller.
    :ivar match_status: Event status, written by the status poller.
    :ivar scheduled_at: Scheduled start of the event.
    :ivar extra: Any other keys from the record, preserved as-is.
    """

    match_id: str | None = None
    team1_id: Any = None
    team2_id: Any = None
    winner_id: Any = None
    match_status: MatchStatus = MatchStatus.WAITING
    scheduled_at: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    _OWN_KEYS = (
        "matchId", "team1Id", "team2Id", "winnerId",
        "matchStatus", "status", "scheduledAt",
    )

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> EventOutcomeConfig:
        status_raw = raw.get("matchStatus") or raw.get("status") or "waiting"
        try:
            status = MatchStatus(str(status_raw))
        except ValueError:
            status = MatchStatus.WAITING
        match_id = raw.get("matchId")
        return cls(
            match_id=str(match_id) if match_id is not None else None,
            team1_id=raw.get("team1Id"),
            team2_id=raw.get("team2Id"),
            winner_id=raw.get("winnerId"),
            match_status=status,
            scheduled_at=parse_timestamp(raw.get("scheduledAt")),
            extra={k: v for k, v in raw.items() if k not in cls._OWN_KEYS},
        )

    @property
    def is_finished(self) -> bool:
        return self.match_status is MatchStatus.FINISHED

    def outcome_value(self) -> str | None:
        """Derived tri-state value for this event's outcome."""
        return derive_outcome_value(self.winner_id, self.team1_id, self.team2_id)


FeedConfig = TimeBasedConfig | EventOutcomeConfig


@dataclass
class Feed:
    """A persisted feed record.

    :ivar id: Unique feed identifier.
    :ivar module: Module tag (see TIME_BASED_MODULES, EVENT_OUTCOME_MODULES).
    :ivar status: Lifecycle status.
    :ivar config: Typed module configuration.
    :ivar raw_config: The configuration blob as stored.
    :ivar feed_pubkey: On-chain address of the feed.
    :ivar feed_hash: Job hash registered with the oracle network.
    :ivar resolution_date: When a time-based feed may settle.
    :ivar settled_value: Settled value (set only when settled).
    :ivar settled_at: Settlement timestamp (set only when settled).
    :ivar settlement_tx: Confirmed transaction id, if any.
    :ivar claimed_until: Expiry of a settlement lease held by a worker.
    """

    id: str
    module: str
    status: FeedStatus
    config: FeedConfig
    raw_config: dict[str, Any] = field(default_factory=dict)
    feed_pubkey: str | None = None
    feed_hash: str | None = None
    resolution_date: datetime | None = None
    settled_value: str | None = None
    settled_at: datetime | None = None
    settlement_tx: str | None = None
    claimed_until: datetime | None = None

    @property
    def is_event_outcome(self) -> bool:
        return isinstance(self.config, EventOutcomeConfig)

    @property
    def is_time_based(self) -> bool:
        return isinstance(self.config, TimeBasedConfig)

    @property
    def is_settled(self) -> bool:
        return self.settled_value is not None

    def lease_active(self, now: datetime) -> bool:
        """Check whether another worker currently holds this feed."""
        return self.claimed_until is not None and self.claimed_until > now

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Feed:
        """Build a Feed from a store record.

        :param record: Row as returned by the store.
        :returns: Feed with the config variant selected by module tag.
        :raises ValueError: If the module tag or status is unknown.
        """
        module = str(record.get("module") or "").lower()
        raw_config = dict(record.get("config") or {})

        config: FeedConfig
        if module in TIME_BASED_MODULES:
            config = TimeBasedConfig.from_dict(raw_config)
        elif module in EVENT_OUTCOME_MODULES:
            config = EventOutcomeConfig.from_dict(raw_config)
        else:
            raise ValueError(f"Unknown feed module '{module}' for feed {record.get('id')}")

        settled_value = record.get("settled_value")
        return cls(
            id=str(record["id"]),
            module=module,
            status=FeedStatus(record.get("status") or "pending"),
            config=config,
            raw_config=raw_config,
            feed_pubkey=record.get("feed_pubkey") or None,
            feed_hash=record.get("feed_hash") or None,
            resolution_date=parse_timestamp(record.get("resolution_date")),
            settled_value=str(settled_value) if settled_value is not None else None,
            settled_at=parse_timestamp(record.get("settled_at")),
            settlement_tx=record.get("settlement_tx") or None,
            claimed_until=parse_timestamp(record.get("claimed_until")),
        )

    def to_record(self) -> dict[str, Any]:
        """Serialize back to the store's record shape."""
        return {
            "id": self.id,
            "module": self.module,
            "status": self.status.value,
            "config": dict(self.raw_config),
            "feed_pubkey": self.feed_pubkey,
            "feed_hash": self.feed_hash,
            "resolution_date": (
                format_timestamp(self.resolution_date) if self.resolution_date else None
            ),
            "settled_value": self.settled_value,
            "settled_at": format_timestamp(self.settled_at) if self.settled_at else None,
            "settlement_tx": self.settlement_tx,
            "claimed_until": (
                format_timestamp(self.claimed_until) if self.claimed_until else None
            ),
        }

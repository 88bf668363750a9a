"""Shared fixtures for feedsettler tests."""

from datetime import datetime, timezone
from typing import Any, Callable

import pytest

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

FEED_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
JOB_HASH = "0x" + "ab" * 32


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_record() -> Callable[..., dict[str, Any]]:
    """Factory for store records with sensible defaults."""

    def _make(feed_id: str = "f1", module: str = "crypto", **overrides: Any) -> dict[str, Any]:
        record: dict[str, Any] = {
            "id": feed_id,
            "module": module,
            "status": "pending",
            "config": {"symbol": "BTCUSDT"},
            "feed_pubkey": FEED_ADDRESS,
            "feed_hash": JOB_HASH,
            "resolution_date": "2025-06-01T11:00:00Z",
            "settled_value": None,
            "settled_at": None,
            "settlement_tx": None,
            "claimed_until": None,
        }
        if module in ("esports", "sports"):
            record["config"] = {
                "matchId": "1001",
                "team1Id": 77,
                "team2Id": 88,
                "winnerId": None,
                "matchStatus": "waiting",
            }
            record["resolution_date"] = None
        record.update(overrides)
        return record

    return _make

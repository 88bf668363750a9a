"""Tests for the orchestrator HTTP service."""

from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from feedsettler.src.errors import FeedNotFoundError, StoreError
from feedsettler.src.OrchestratorService import create_orchestrator_app
from feedsettler.src.SettlementOrchestrator import (
    ErrorKind,
    SettlementResult,
    SweepSummary,
)


def make_orchestrator() -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.settler = None
    orchestrator.settle_feed = AsyncMock(
        return_value=SettlementResult("f1", True, settled_value="45231.67", settlement_tx="sig123")
    )
    orchestrator.run_sweep = AsyncMock(
        return_value=SweepSummary(
            [
                SettlementResult("f1", True, settled_value="1"),
                SettlementResult("f2", False, error="no", error_kind=ErrorKind.NO_VALUE),
            ]
        )
    )
    return orchestrator


class TestSettle:
    """Test POST /settle."""

    def test_single_feed(self) -> None:
        """A feedId body should settle that feed."""
        orchestrator = make_orchestrator()
        with TestClient(create_orchestrator_app(orchestrator)) as client:
            response = client.post("/settle", json={"feedId": "f1"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "settled_value": "45231.67",
            "settlement_tx": "sig123",
            "on_chain": True,
            "error": None,
        }
        orchestrator.settle_feed.assert_awaited_once_with("f1")
        orchestrator.run_sweep.assert_not_awaited()

    def test_no_body_runs_sweep(self) -> None:
        """Without a feedId the whole batch should be swept."""
        orchestrator = make_orchestrator()
        with TestClient(create_orchestrator_app(orchestrator)) as client:
            body = client.post("/settle").json()

        assert body["success"] is True
        assert (body["settled"], body["failed"], body["skipped"]) == (1, 1, 0)
        assert body["results"][1]["errorKind"] == "no_value"

    def test_not_found(self) -> None:
        """Unknown feeds should answer 404."""
        orchestrator = make_orchestrator()
        orchestrator.settle_feed.side_effect = FeedNotFoundError("nope")
        with TestClient(create_orchestrator_app(orchestrator)) as client:
            response = client.post("/settle", json={"feedId": "nope"})

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Feed not found: nope"}

    def test_store_error(self) -> None:
        """Store failures should answer 500."""
        orchestrator = make_orchestrator()
        orchestrator.run_sweep.side_effect = StoreError("database down")
        with TestClient(create_orchestrator_app(orchestrator)) as client:
            response = client.post("/sweep")

        assert response.status_code == 500
        assert response.json()["error"] == "database down"

    def test_unexpected_error(self) -> None:
        """Any other failure should still answer with a JSON error body."""
        orchestrator = make_orchestrator()
        orchestrator.settle_feed.side_effect = RuntimeError("bad store URL")
        app = create_orchestrator_app(orchestrator)
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.post("/settle", json={"feedId": "f1"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "bad store URL"}

    def test_sweep(self) -> None:
        """/sweep should always run the batch."""
        orchestrator = make_orchestrator()
        with TestClient(create_orchestrator_app(orchestrator)) as client:
            response = client.post("/sweep")
        assert response.status_code == 200
        orchestrator.run_sweep.assert_awaited_once()


class TestWatchMatches:
    """Test POST /watch-matches."""

    def test_without_poller(self) -> None:
        """Polling should be unavailable without an API key."""
        with TestClient(create_orchestrator_app(make_orchestrator())) as client:
            response = client.post("/watch-matches")
        assert response.status_code == 503

    def test_with_poller(self) -> None:
        """Poll counts should be returned."""
        poller = MagicMock()
        poller.poll = AsyncMock(return_value={"checked": 3, "updated": 1, "finished": 1})
        with TestClient(create_orchestrator_app(make_orchestrator(), poller)) as client:
            body = client.post("/watch-matches").json()
        assert body == {"success": True, "checked": 3, "updated": 1, "finished": 1}


class TestHealth:
    """Test GET /health."""

    def test_health(self) -> None:
        """Health should report which optional parts are enabled."""
        orchestrator = make_orchestrator()
        orchestrator.settler = MagicMock()
        with TestClient(create_orchestrator_app(orchestrator)) as client:
            body = client.get("/health").json()
        assert body == {"status": "ok", "onChain": True, "matchWatcher": False}

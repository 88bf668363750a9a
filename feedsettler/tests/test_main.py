"""Tests for CLI helpers and component wiring."""

import argparse
import json
from unittest.mock import MagicMock, patch

from feedsettler.main import build_orchestrator, build_poller, build_store, parse_list
from feedsettler.src.FeedStoreMemory import FeedStoreMemory
from feedsettler.src.FeedStorePostgrest import FeedStorePostgrest


def make_args(**overrides) -> argparse.Namespace:
    fields = {
        "retry_attempts": 3,
        "retry_base_delay": 0.5,
        "store": "memory",
        "supabase_url": None,
        "feeds_file": None,
        "simulator_urls": "https://sim1, https://sim2,",
        "settler_urls": None,
        "max_workers": 2,
        "claim_ttl": 300.0,
        "sweep_deadline": 0.0,
    }
    fields.update(overrides)
    return argparse.Namespace(**fields)


class TestParseList:
    """Test comma-separated option parsing."""

    def test_parse_list(self) -> None:
        """Items should be stripped and empties dropped."""
        assert parse_list(" a, b ,,c ") == ["a", "b", "c"]
        assert parse_list(None) == []
        assert parse_list("") == []


class TestBuildStore:
    """Test feed store selection."""

    def test_memory_from_file(self, tmp_path, make_record) -> None:
        """The memory store should be seeded from the feeds file."""
        path = tmp_path / "feeds.json"
        path.write_text(json.dumps([make_record("f1"), make_record("f2")]))

        store = build_store(make_args(feeds_file=str(path)), MagicMock())

        assert isinstance(store, FeedStoreMemory)
        assert set(store.records) == {"f1", "f2"}

    def test_postgrest(self) -> None:
        """The postgrest store should use the Supabase settings."""
        with patch.dict("os.environ", {"SUPABASE_SERVICE_ROLE_KEY": "service"}):
            store = build_store(
                make_args(store="postgrest", supabase_url="https://x.supabase.co"), MagicMock()
            )
        assert isinstance(store, FeedStorePostgrest)


class TestBuildOrchestrator:
    """Test orchestrator wiring."""

    def test_off_chain_only(self) -> None:
        """Without settler URLs no settler client should be created."""
        orchestrator = build_orchestrator(make_args(), MagicMock())

        assert orchestrator.settler is None
        assert orchestrator.retry_policy.endpoints == ("https://sim1", "https://sim2")
        assert orchestrator.retry_policy.base_delay == 0.5
        assert orchestrator.max_workers == 2
        assert orchestrator.sweep_deadline is None

    def test_with_settlers(self) -> None:
        """Settler URLs should produce a settler client with the shared key."""
        with patch.dict("os.environ", {"SETTLER_API_KEY": "secret"}):
            orchestrator = build_orchestrator(
                make_args(settler_urls="http://settler:3000/", sweep_deadline=30.0), MagicMock()
            )

        assert orchestrator.settler.api_key == "secret"
        assert orchestrator.settler.retry_policy.endpoints == ("http://settler:3000",)
        assert orchestrator.sweep_deadline == 30.0


class TestBuildPoller:
    """Test match poller wiring."""

    def test_requires_key(self) -> None:
        """No PandaScore key should mean no poller."""
        with patch.dict("os.environ", {}, clear=True):
            assert build_poller(FeedStoreMemory(), MagicMock()) is None

    def test_with_key(self) -> None:
        """A PandaScore key should enable the poller."""
        with patch.dict("os.environ", {"PANDASCORE_API_KEY": "token"}):
            poller = build_poller(FeedStoreMemory(), MagicMock())
        assert poller.matches.api_key == "token"

"""Unit tests for ConsensusGateway."""

import asyncio

import httpx
import pytest

from feedsettler.src.ConsensusGateway import ConsensusGateway, OracleUpdate
from feedsettler.src.errors import ConsensusUnavailableError
from feedsettler.src.RetryPolicy import RetryPolicy

FAST_POLICY = RetryPolicy(max_attempts=2, base_delay=0.0, endpoints=("https://gw1", "https://gw2"))


def fetch_with(handler, policy: RetryPolicy = FAST_POLICY) -> OracleUpdate:
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            gateway = ConsensusGateway(client, chain_id=421614, retry_policy=policy)
            return await gateway.fetch_update("0xjob")

    return asyncio.run(run())


class TestOracleUpdate:
    """Test the update container."""

    def test_payloads(self) -> None:
        """Hex payloads should decode with or without prefix."""
        update = OracleUpdate(encoded=["0x0102", "ff"])
        assert update.payloads() == [b"\x01\x02", b"\xff"]

    def test_first_value(self) -> None:
        """first_value should be None without values."""
        assert OracleUpdate(encoded=["00"]).first_value is None
        assert OracleUpdate(encoded=["00"], values=["1", "2"]).first_value == "1"


class TestConsensusGateway:
    """Test fetching updates."""

    def test_fetch_update(self) -> None:
        """A good response should produce payloads and values."""
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(
                200,
                json={"encoded": ["0xaa"], "results": [{"result": "45231.67"}, 45230]},
            )

        update = fetch_with(handler)
        assert seen == ["https://gw1/updates/evm/421614/0xjob"]
        assert update.encoded == ["0xaa"]
        assert update.values == ["45231.67", "45230"]
        assert update.gateway == "https://gw1"

    def test_fails_over_to_next_gateway(self) -> None:
        """A failing gateway should be followed by the next one."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "gw1":
                return httpx.Response(500)
            return httpx.Response(200, json={"encoded": ["0xbb"], "results": []})

        update = fetch_with(handler)
        assert update.gateway == "https://gw2"
        assert update.first_value is None

    def test_empty_update_exhausts(self) -> None:
        """Empty updates everywhere should raise ConsensusUnavailableError."""
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.host)
            return httpx.Response(200, json={"encoded": [], "results": []})

        with pytest.raises(ConsensusUnavailableError, match="empty update"):
            fetch_with(handler)
        assert calls == ["gw1", "gw2", "gw1", "gw2"]

    def test_transport_errors_exhaust(self) -> None:
        """Unreachable gateways should raise ConsensusUnavailableError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ConsensusUnavailableError):
            fetch_with(handler)

"""Unit tests for KeyProvider and KeyProviderAppd."""

import asyncio
from unittest.mock import patch

import httpx
import pytest

from feedsettler.src.errors import SignerConfigError
from feedsettler.src.KeyProvider import EnvKeyProvider, account_from_key
from feedsettler.src.KeyProviderAppd import AppdKeyProvider
from feedsettler.src.RetryPolicy import RetryPolicy

# Well-known development key (first Hardhat account).
DEV_KEY = "ac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEV_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


class TestAccountFromKey:
    """Test key parsing."""

    def test_without_prefix(self) -> None:
        """Keys without 0x should be accepted."""
        assert account_from_key(DEV_KEY).address == DEV_ADDRESS

    def test_with_prefix(self) -> None:
        """Keys with 0x and whitespace should be accepted."""
        assert account_from_key(f" 0x{DEV_KEY}\n").address == DEV_ADDRESS

    def test_invalid_key(self) -> None:
        """Malformed keys should raise SignerConfigError."""
        with pytest.raises(SignerConfigError):
            account_from_key("0x1234")


class TestEnvKeyProvider:
    """Test the environment key source."""

    def test_loads_account(self) -> None:
        """The configured key should become the signing account."""
        with patch.dict("os.environ", {"SETTLER_PRIVATE_KEY": DEV_KEY}):
            account = asyncio.run(EnvKeyProvider().load_account())
        assert account.address == DEV_ADDRESS

    def test_missing_key(self) -> None:
        """A missing key should raise SignerConfigError."""
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(SignerConfigError, match="not configured"):
                asyncio.run(EnvKeyProvider().load_account())


class TestAppdKeyProvider:
    """Test the appd key source."""

    def test_base_url(self) -> None:
        """HTTP URLs should be used directly, sockets via localhost."""
        assert AppdKeyProvider(url="http://appd:8080").base_url == "http://appd:8080"
        assert AppdKeyProvider().base_url == "http://localhost"

    def test_loads_generated_key(self) -> None:
        """The generated key should become the signing account."""
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append({"path": request.url.path, "body": request.content})
            return httpx.Response(200, json={"key": DEV_KEY})

        provider = AppdKeyProvider(url="http://appd", key_id="settler-1")
        with patch.object(
            provider, "_build_transport", return_value=httpx.MockTransport(handler)
        ):
            account = asyncio.run(provider.load_account())

        assert account.address == DEV_ADDRESS
        assert seen[0]["path"] == "/rofl/v1/keys/generate"
        assert b'"key_id":"settler-1"' in seen[0]["body"].replace(b" ", b"")

    def test_retries_then_fails(self) -> None:
        """Persistent appd failures should end in SignerConfigError."""
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(503)

        provider = AppdKeyProvider(
            url="http://appd", retry_policy=RetryPolicy(max_attempts=2, base_delay=0.0)
        )
        with patch.object(
            provider, "_build_transport", return_value=httpx.MockTransport(handler)
        ):
            with pytest.raises(SignerConfigError, match="after 2 attempts"):
                asyncio.run(provider.load_account())
        assert len(calls) == 2

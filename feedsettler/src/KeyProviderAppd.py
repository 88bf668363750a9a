"""KeyProviderAppd: settler key from a local key-management daemon."""

import logging

import httpx
from eth_account.signers.local import LocalAccount

from .errors import SignerConfigError
from .KeyProvider import KeyProvider, account_from_key
from .RetryPolicy import RetryPolicy

logger = logging.getLogger(__name__)

# Retry configuration for appd requests
MAX_RETRIES = 30  # ~1 minute with capped backoff
BACKOFF_BASE = 1.0
BACKOFF_MAX = 5.0


class AppdRequestError(Exception):
    """Raised when an appd request fails (retryable)."""

    pass


class AppdKeyProvider(KeyProvider):
    """Key provider backed by the appd key generation endpoint.

    The daemon derives the key deterministically from ``key_id``, so every
    settler replica gets the same account without the key ever being
    configured by hand. Communicates via Unix domain socket or HTTP.

    :cvar APPD_SOCKET_PATH: Default Unix socket path for appd.
    :ivar url: Optional HTTP URL or socket path override.
    :ivar key_id: Key identifier passed to the daemon.
    """

    APPD_SOCKET_PATH = "/run/rofl-appd.sock"
    KEY_PATH = "/rofl/v1/keys/generate"

    def __init__(
        self,
        url: str = "",
        key_id: str = "feed-settler",
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the appd key provider.

        :param url: Optional URL or socket path. Empty uses default socket.
        :param key_id: Key identifier passed to the daemon.
        :param retry_policy: Retry policy for appd requests.
        """
        self.url = url
        self.key_id = key_id
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=MAX_RETRIES, base_delay=BACKOFF_BASE, max_delay=BACKOFF_MAX
        )

    def _build_transport(self) -> httpx.AsyncHTTPTransport | None:
        """Build HTTP transport for appd requests."""
        if self.url and not self.url.startswith("http"):
            logger.debug("Using socket path: %s", self.url)
            return httpx.AsyncHTTPTransport(uds=self.url)
        if not self.url:
            logger.debug("Using unix domain socket: %s", self.APPD_SOCKET_PATH)
            return httpx.AsyncHTTPTransport(uds=self.APPD_SOCKET_PATH)
        return None

    @property
    def base_url(self) -> str:
        return self.url if self.url and self.url.startswith("http") else "http://localhost"

    async def _post_generate(self, client: httpx.AsyncClient) -> str:
        payload = {"key_id": self.key_id, "kind": "secp256k1"}
        try:
            response = await client.post(self.base_url + self.KEY_PATH, json=payload)
        except httpx.RequestError as exc:
            raise AppdRequestError(str(exc)) from exc
        if not response.is_success:
            raise AppdRequestError(f"{response.status_code} {response.reason_phrase}")
        try:
            return str(response.json()["key"])
        except (ValueError, KeyError, TypeError) as exc:
            raise SignerConfigError(f"appd returned no key: {exc}") from exc

    async def load_account(self) -> LocalAccount:
        async with httpx.AsyncClient(transport=self._build_transport(), timeout=None) as client:
            try:
                key = await self.retry_policy.run(
                    lambda _endpoint: self._post_generate(client),
                    retry_on=(AppdRequestError,),
                    description=f"appd POST {self.KEY_PATH}",
                )
            except AppdRequestError as exc:
                raise SignerConfigError(
                    f"appd POST {self.KEY_PATH} failed after "
                    f"{self.retry_policy.max_attempts} attempts: {exc}"
                ) from exc
        return account_from_key(key)

"""ConsensusGateway: signed oracle updates from the consensus network.

Endpoint: GET {gateway}/updates/evm/{chainId}/{jobHash}

Response:
    {"encoded": ["0x..."], "results": [{"result": "45231.67"}, ...]}

``encoded`` holds the signed update payloads to submit on-chain; ``results``
holds what the oracles reported. Individual results may be bare scalars or
objects with ``result`` or ``value``.

Gateways are redundant: the gateway list is walked under a RetryPolicy,
and only when every gateway has failed in every round does the caller see
ConsensusUnavailableError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from .errors import ConsensusUnavailableError
from .RetryPolicy import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "https://crossbar.switchboard.xyz"


class GatewayError(Exception):
    """A single gateway attempt failed (retryable)."""

    pass


@dataclass
class OracleUpdate:
    """Signed update for one job hash.

    :ivar encoded: Hex-encoded update payloads for the ledger.
    :ivar values: Values reported by the oracles, as strings.
    :ivar gateway: Gateway that served the update.
    """

    encoded: list[str]
    values: list[str] = field(default_factory=list)
    gateway: str | None = None

    @property
    def first_value(self) -> str | None:
        return self.values[0] if self.values else None

    def payloads(self) -> list[bytes]:
        """Decode the update payloads into raw bytes."""
        return [bytes.fromhex(e.removeprefix("0x")) for e in self.encoded]


def _result_value(result: Any) -> str | None:
    if isinstance(result, dict):
        for key in ("result", "value"):
            if result.get(key) is not None:
                return str(result[key])
        return None
    return str(result) if result is not None else None


class ConsensusGateway:
    """Client for the consensus network's update endpoint.

    :ivar client: Shared async HTTP client (owned by the caller).
    :ivar retry_policy: Policy whose endpoints are the candidate gateways.
    :ivar chain_id: Target chain id.
    """

    DEFAULT_TIMEOUT = 20.0

    def __init__(
        self,
        client: httpx.AsyncClient,
        chain_id: int,
        retry_policy: RetryPolicy | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the gateway client.

        :param client: Async HTTP client, created once per process.
        :param chain_id: Target chain id.
        :param retry_policy: Retry policy; its endpoints are the gateways
            (default: 3 rounds over the public gateway).
        :param timeout: Request timeout in seconds (default: 20).
        """
        self.client = client
        self.chain_id = chain_id
        self.retry_policy = retry_policy or RetryPolicy(endpoints=(DEFAULT_GATEWAY_URL,))
        if not self.retry_policy.endpoints:
            self.retry_policy = self.retry_policy.with_endpoints([DEFAULT_GATEWAY_URL])
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    async def _fetch_once(self, gateway: str, job_hash: str) -> OracleUpdate:
        url = f"{gateway.rstrip('/')}/updates/evm/{self.chain_id}/{job_hash}"
        try:
            response = await self.client.get(url, timeout=self.timeout)
        except httpx.RequestError as e:
            raise GatewayError(f"Request failed: {e}") from e

        if not response.is_success:
            raise GatewayError(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError(f"Invalid JSON: {e}") from e

        encoded = data.get("encoded") if isinstance(data, dict) else None
        if not isinstance(encoded, list) or not encoded:
            raise GatewayError("No oracle responses (empty update)")

        results = data.get("results") or []
        values = [v for v in (_result_value(r) for r in results) if v is not None]
        return OracleUpdate(encoded=[str(e) for e in encoded], values=values, gateway=gateway)

    async def fetch_update(self, job_hash: str) -> OracleUpdate:
        """Fetch a signed update for a job hash.

        :param job_hash: Content hash of the oracle job definition.
        :returns: The first update any gateway produced.
        :raises ConsensusUnavailableError: If every attempt failed.
        """
        try:
            update = await self.retry_policy.run(
                lambda gateway: self._fetch_once(gateway, job_hash),
                retry_on=(GatewayError,),
                description=f"consensus update for {job_hash}",
            )
        except GatewayError as e:
            raise ConsensusUnavailableError(
                f"Oracles could not produce an update for {job_hash}: {e}"
            ) from e

        logger.info(
            f"Got oracle update for {job_hash} from {update.gateway} "
            f"({len(update.encoded)} payloads, value={update.first_value})"
        )
        return update

"""SettlerClient: the orchestrator's side of the settler trust boundary.

Request:  POST {settler}/settle-feed   X-API-Key: <key>
          {"feedPubkey", "feedHash", "feedId", "module", "winnerId", "team1Id", "team2Id"}
Response: {"success": true, "txSignature": "0x...", "settledValue": "45231.67"}
          {"success": false, "error": "...", "errorCode": "consensus_unavailable"}

Only requests that never reached a settler are retried against the next
endpoint. Once a settler has the request it may already have submitted a
transaction, so any later failure is reported instead of retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import SettlerUnavailableError, SettlerUnreachableError, settler_error_from_code
from .RetryPolicy import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class SettlerResult:
    """Confirmed settlement reported by the settler service.

    :ivar tx_signature: Confirmed transaction id.
    :ivar settled_value: Value reported by the settler, if any.
    """

    tx_signature: str
    settled_value: str | None = None


class SettlerClient:
    """HTTP client for the settler service.

    :ivar client: Shared async HTTP client (owned by the caller).
    :ivar api_key: Shared settler API key.
    :ivar retry_policy: Policy whose endpoints are the settler base URLs.
    """

    DEFAULT_TIMEOUT = 120.0
    PATH = "/settle-feed"

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoints: list[str] | tuple[str, ...],
        api_key: str | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the client.

        :param client: Async HTTP client, created once per process.
        :param endpoints: Settler base URLs, tried in order.
        :param api_key: Shared settler API key.
        :param retry_policy: Retry timing (its endpoints are replaced).
        :param timeout: Request timeout in seconds (default: 120, covers
            confirmation on the settler side).
        :raises ValueError: If no endpoint is given.
        """
        if not endpoints:
            raise ValueError("At least one settler endpoint is required")
        self.client = client
        self.api_key = api_key
        self.retry_policy = (retry_policy or RetryPolicy()).with_endpoints(
            [e.rstrip("/") for e in endpoints]
        )
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> SettlerResult:
        headers = {"X-API-Key": self.api_key} if self.api_key else {}
        try:
            response = await self.client.post(
                endpoint + self.PATH, json=payload, headers=headers, timeout=self.timeout
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise SettlerUnreachableError(f"Settler {endpoint} unreachable: {e}") from e
        except httpx.RequestError as e:
            raise SettlerUnavailableError(f"Settler {endpoint} request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict):
            raise SettlerUnavailableError(
                f"Settler {endpoint} returned HTTP {response.status_code}: {response.text[:200]}"
            )

        if data.get("success") and response.is_success:
            tx = data.get("txSignature") or data.get("signature")
            if not tx:
                raise SettlerUnavailableError("Settler reported success without a transaction")
            value = data.get("settledValue")
            return SettlerResult(
                tx_signature=str(tx), settled_value=str(value) if value is not None else None
            )

        message = data.get("error") or f"HTTP {response.status_code}"
        if response.status_code in (401, 503):
            raise SettlerUnavailableError(f"Settler {endpoint}: {message}")
        raise settler_error_from_code(data.get("errorCode"), str(message))

    async def settle(
        self,
        feed_pubkey: str,
        feed_hash: str,
        feed_id: str | None = None,
        module: str | None = None,
        winner_id: Any = None,
        team1_id: Any = None,
        team2_id: Any = None,
    ) -> SettlerResult:
        """Ask the settler service to settle a feed on-chain.

        :param feed_pubkey: Feed contract address.
        :param feed_hash: Job hash.
        :param feed_id: Store identifier.
        :param module: Module tag.
        :param winner_id: Event winner (event-outcome feeds).
        :param team1_id: Side A (event-outcome feeds).
        :param team2_id: Side B (event-outcome feeds).
        :returns: Confirmed transaction and settled value.
        :raises SettlerError: Named failure reported by or about the settler.
        """
        payload: dict[str, Any] = {
            "feedPubkey": feed_pubkey,
            "feedHash": feed_hash,
            "feedId": feed_id,
            "module": module,
        }
        if team1_id is not None or team2_id is not None:
            payload.update(winnerId=winner_id, team1Id=team1_id, team2Id=team2_id)

        return await self.retry_policy.run(
            lambda endpoint: self._post(endpoint, payload),
            retry_on=(SettlerUnreachableError,),
            description=f"settle {feed_id or feed_pubkey}",
        )

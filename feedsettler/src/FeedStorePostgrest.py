"""FeedStorePostgrest: Feed store over a Supabase/PostgREST REST API."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import httpx

from .errors import StoreError
from .Feed import Feed, FeedStatus, format_timestamp
from .FeedStore import SWEEP_CLAIM_STATUSES, FeedStore

logger = logging.getLogger(__name__)


class FeedStorePostgrest(FeedStore):
    """Feed store backed by the ``feeds`` table behind a PostgREST endpoint.

    Each write is one PATCH whose filters carry its preconditions, so the
    database applies the check and the update as a single statement. With
    ``Prefer: return=representation`` an empty response means the
    precondition did not hold.

    :cvar TABLE: Table name.
    :ivar client: Shared async HTTP client (owned by the caller).
    :ivar url: Table endpoint URL.
    """

    TABLE = "feeds"
    DEFAULT_TIMEOUT = 15.0

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        service_key: str,
        timeout: float | None = None,
    ) -> None:
        """Initialize the store.

        :param client: Async HTTP client, created once per process.
        :param base_url: Project URL (e.g., "https://xyz.supabase.co").
        :param service_key: Service role key used for both headers.
        :param timeout: Request timeout in seconds (default: 15).
        """
        if not base_url:
            raise ValueError("Store URL is required")
        if not service_key:
            raise ValueError("Store service key is required")
        self.client = client
        self.url = f"{base_url.rstrip('/')}/rest/v1/{self.TABLE}"
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        params: dict[str, str],
        payload: dict[str, Any] | None = None,
        returning: bool = False,
    ) -> list[dict[str, Any]]:
        """Send one request to the table endpoint.

        :param method: HTTP method.
        :param params: PostgREST filter/query parameters.
        :param payload: JSON body for writes.
        :param returning: Ask PostgREST to return the affected rows.
        :returns: Rows from the response body (empty for plain writes).
        :raises StoreError: On transport errors or non-2xx status.
        """
        headers = dict(self._headers)
        if returning:
            headers["Prefer"] = "return=representation"
        try:
            response = await self.client.request(
                method,
                self.url,
                params=params,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.RequestError as e:
            raise StoreError(f"Store {method} failed: {e}") from e

        if not response.is_success:
            raise StoreError(
                f"Store {method} failed: HTTP {response.status_code}: {response.text[:200]}"
            )
        if method == "GET" or returning:
            try:
                rows = response.json()
            except ValueError as e:
                raise StoreError(f"Store returned invalid JSON: {e}") from e
            return rows if isinstance(rows, list) else [rows]
        return []

    def _parse_rows(self, rows: list[dict[str, Any]]) -> list[Feed]:
        feeds = []
        for row in rows:
            try:
                feeds.append(Feed.from_record(row))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable feed record {row.get('id')}: {e}")
        return feeds

    async def get_feed(self, feed_id: str) -> Feed | None:
        rows = await self._request("GET", {"id": f"eq.{feed_id}", "select": "*"})
        feeds = self._parse_rows(rows)
        return feeds[0] if feeds else None

    async def list_feeds(self, status: FeedStatus, modules: Sequence[str]) -> list[Feed]:
        params = {
            "status": f"eq.{status.value}",
            "module": f"in.({','.join(modules)})",
            "select": "*",
        }
        return self._parse_rows(await self._request("GET", params))

    async def claim(
        self,
        feed_id: str,
        *,
        until: datetime,
        now: datetime,
        statuses: Sequence[FeedStatus] = SWEEP_CLAIM_STATUSES,
    ) -> bool:
        params = {
            "id": f"eq.{feed_id}",
            "status": f"in.({','.join(s.value for s in statuses)})",
            "settled_value": "is.null",
            "or": f"(claimed_until.is.null,claimed_until.lt.{format_timestamp(now)})",
        }
        rows = await self._request(
            "PATCH", params, {"claimed_until": format_timestamp(until)}, returning=True
        )
        return len(rows) > 0

    async def release(self, feed_id: str) -> None:
        await self._request("PATCH", {"id": f"eq.{feed_id}"}, {"claimed_until": None})

    async def mark_settled(
        self,
        feed_id: str,
        *,
        value: str,
        tx: str | None,
        settled_at: datetime,
    ) -> bool:
        payload = {
            "status": FeedStatus.SETTLED.value,
            "settled_at": format_timestamp(settled_at),
            "settled_value": value,
            "settlement_tx": tx,
            "claimed_until": None,
        }
        rows = await self._request(
            "PATCH",
            {"id": f"eq.{feed_id}", "settled_value": "is.null"},
            payload,
            returning=True,
        )
        return len(rows) > 0

    async def mark_failed(self, feed_id: str) -> bool:
        rows = await self._request(
            "PATCH",
            {"id": f"eq.{feed_id}", "settled_value": "is.null"},
            {"status": FeedStatus.FAILED.value, "claimed_until": None},
            returning=True,
        )
        return len(rows) > 0

    async def update_config(
        self, feed_id: str, config: dict[str, Any], updated_at: datetime
    ) -> None:
        await self._request(
            "PATCH",
            {"id": f"eq.{feed_id}"},
            {"config": config, "updated_at": format_timestamp(updated_at)},
        )

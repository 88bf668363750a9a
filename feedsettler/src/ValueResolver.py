"""ValueResolver: authoritative off-chain value for a feed's job hash.

Endpoint: GET {base_url}/simulate/{jobHash}

The simulation endpoint has returned its payload in several shapes over
time. Each known shape is a variant of ``SimulationShape``; ``parse_shape``
is the only place that inspects raw JSON, and ``first_value`` handles every
variant. Supporting a new shape means adding a variant and one branch in
each of those two functions.

    [{"feedHash": "...", "results": ["0.1244"], "receipts": null}]   HashResultsArray
    {"results": ["123.45"]}                                           ResultsObject
    {"result": "123.45"}                                              ScalarResult

The resolver makes exactly one request per call. Retrying across
endpoints is the caller's job (see RetryPolicy).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import ResolverUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_SIMULATOR_URL = "https://crossbar.switchboard.xyz"


@dataclass(frozen=True)
class HashResultsArray:
    """Top-level array of per-hash result objects."""

    entries: list[dict[str, Any]]


@dataclass(frozen=True)
class ResultsObject:
    """Flat object carrying a ``results`` array."""

    results: list[Any]


@dataclass(frozen=True)
class ScalarResult:
    """Flat object carrying a single ``result``."""

    result: Any


@dataclass(frozen=True)
class Unrecognized:
    """Anything else the endpoint may send."""

    payload: Any


SimulationShape = HashResultsArray | ResultsObject | ScalarResult | Unrecognized


def parse_shape(payload: Any) -> SimulationShape:
    """Classify a simulation response payload.

    :param payload: Decoded JSON body.
    :returns: The matching SimulationShape variant.
    """
    if isinstance(payload, list):
        return HashResultsArray([e for e in payload if isinstance(e, dict)])
    if isinstance(payload, dict):
        results = payload.get("results")
        if isinstance(results, list) and results:
            return ResultsObject(results)
        if "result" in payload:
            return ScalarResult(payload["result"])
        if isinstance(results, list):
            return ResultsObject(results)
    return Unrecognized(payload)


def _as_value(raw: Any) -> str | None:
    if raw is None:
        return None
    value = str(raw)
    return value or None


def first_value(shape: SimulationShape) -> str | None:
    """Extract the first reported value from a parsed shape.

    :param shape: Parsed simulation response.
    :returns: First value as a string, or None if the shape carries none.
    """
    if isinstance(shape, HashResultsArray):
        if not shape.entries:
            return None
        results = shape.entries[0].get("results")
        if not isinstance(results, list) or not results:
            return None
        return _as_value(results[0])
    if isinstance(shape, ResultsObject):
        return _as_value(shape.results[0]) if shape.results else None
    if isinstance(shape, ScalarResult):
        return _as_value(shape.result)
    if isinstance(shape, Unrecognized):
        return None
    raise TypeError(f"Unhandled simulation shape: {type(shape).__name__}")


class ValueResolver:
    """Client for the external simulation endpoint.

    :ivar client: Shared async HTTP client (owned by the caller).
    :ivar base_url: Default simulator base URL.
    :ivar timeout: Request timeout in seconds.
    """

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = DEFAULT_SIMULATOR_URL,
        timeout: float | None = None,
    ) -> None:
        """Initialize the resolver.

        :param client: Async HTTP client, created once per process.
        :param base_url: Simulator base URL used when no endpoint is given.
        :param timeout: Request timeout in seconds (default: 10).
        """
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    async def resolve(self, job_hash: str, base_url: str | None = None) -> str | None:
        """Resolve the current value for a job hash.

        :param job_hash: Content hash of the oracle job definition.
        :param base_url: Simulator base URL for this attempt (overrides default).
        :returns: First reported value as a string, or None if the endpoint
            answered but reported no usable value.
        :raises ResolverUnavailableError: On transport errors or non-2xx status.
        """
        if not job_hash:
            return None

        url = f"{(base_url or self.base_url).rstrip('/')}/simulate/{job_hash}"
        try:
            response = await self.client.get(url, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise ResolverUnavailableError(f"Simulation request timeout: {e}") from e
        except httpx.RequestError as e:
            raise ResolverUnavailableError(f"Simulation request failed: {e}") from e

        if not response.is_success:
            logger.debug(
                "Simulation GET %s failed with status %s: %s",
                url,
                response.status_code,
                response.text[:200],
            )
            raise ResolverUnavailableError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            logger.warning(f"[resolver] Unparseable simulation response for {job_hash}: {e}")
            return None

        shape = parse_shape(payload)
        value = first_value(shape)
        if value is None:
            logger.warning(
                f"[resolver] No value in {type(shape).__name__} response for {job_hash}"
            )
        else:
            logger.debug(f"[resolver] {job_hash} => {value}")
        return value

"""RetryPolicy: Bounded retry across redundant endpoints with backoff.

One policy object describes how hard to try an operation: how many rounds,
which candidate endpoints to walk in each round, and how long to wait
between rounds. It is shared by the value resolver call site, the consensus
gateway, the settler client and the appd key provider.

Each round tries every endpoint in order; the first success wins. Between
rounds the policy sleeps for an exponentially growing, capped delay:

    - After round 1: base_delay
    - After round 2: base_delay * 2
    - ... up to max_delay

.. code-block:: python

    >>> policy = RetryPolicy(max_attempts=3, base_delay=2.0, endpoints=("a", "b"))
    >>> policy.backoff(1), policy.backoff(2), policy.backoff(3)
    (2.0, 4.0, 8.0)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration.

    :ivar max_attempts: Number of rounds over the endpoint list (minimum 1).
    :ivar base_delay: Delay in seconds after the first failed round.
    :ivar max_delay: Upper bound for the delay between rounds.
    :ivar endpoints: Candidate endpoints tried in order within each round.
        An empty tuple means the operation takes no endpoint (called with None).
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 10.0
    endpoints: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    def backoff(self, attempt: int) -> float:
        """Delay after a failed round.

        :param attempt: 1-based round number that just failed.
        :returns: Seconds to wait before the next round.
        """
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def with_endpoints(self, endpoints: list[str] | tuple[str, ...]) -> RetryPolicy:
        """Return a copy of this policy walking a different endpoint list."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            endpoints=tuple(endpoints),
        )

    async def run(
        self,
        operation: Callable[[str | None], Awaitable[T]],
        *,
        retry_on: tuple[type[BaseException], ...],
        description: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        """Run an operation under this policy.

        Only exceptions listed in ``retry_on`` are retried; anything else
        propagates immediately. When every attempt fails, the last retryable
        exception is re-raised unchanged so callers keep its type.

        :param operation: Coroutine function taking the endpoint to use.
        :param retry_on: Exception types that count as a retryable failure.
        :param description: Label used in log messages.
        :param sleep: Sleep function (injectable for tests).
        :returns: The operation's result.
        """
        endpoints: tuple[str | None, ...] = self.endpoints or (None,)
        last_error: BaseException | None = None

        for attempt in range(1, self.max_attempts + 1):
            for endpoint in endpoints:
                try:
                    return await operation(endpoint)
                except retry_on as exc:
                    last_error = exc
                    logger.warning(
                        "%s failed via %s: %s (attempt %d/%d)",
                        description,
                        endpoint or "default endpoint",
                        exc,
                        attempt,
                        self.max_attempts,
                    )

            if attempt < self.max_attempts:
                delay = self.backoff(attempt)
                logger.debug("Retrying %s in %.1fs", description, delay)
                await sleep(delay)

        assert last_error is not None
        raise last_error

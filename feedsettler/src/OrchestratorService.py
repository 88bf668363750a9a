"""OrchestratorService: HTTP triggers for settlement and match polling.

Endpoints:
    GET  /health          Liveness
    POST /settle          {"feedId": ...} settles one feed; no body runs a sweep
    POST /sweep           Run a sweep (cron)
    POST /watch-matches   Refresh event-outcome match status (cron)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import FeedNotFoundError, SettlementError

if TYPE_CHECKING:
    from .MatchStatusPoller import MatchStatusPoller
    from .SettlementOrchestrator import SettlementOrchestrator

logger = logging.getLogger(__name__)


async def _read_feed_id(request: Request) -> str | None:
    """Pull ``feedId`` out of an optional JSON body."""
    body = await request.body()
    if not body:
        return None
    try:
        data = await request.json()
    except ValueError:
        return None
    if isinstance(data, dict) and data.get("feedId"):
        return str(data["feedId"])
    return None


def create_orchestrator_app(
    orchestrator: SettlementOrchestrator,
    poller: MatchStatusPoller | None = None,
    closers: Sequence[Callable[[], Awaitable[None]]] = (),
) -> FastAPI:
    """Create the orchestrator service.

    :param orchestrator: Settlement orchestrator.
    :param poller: Match status poller (None disables /watch-matches).
    :param closers: Coroutine functions called on shutdown.
    :returns: FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Orchestrator service started")
        yield
        for close in closers:
            await close()
        logger.info("Orchestrator service stopped")

    app = FastAPI(title="Feed Settlement Orchestrator", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(FeedNotFoundError)
    async def not_found_handler(request: Request, exc: FeedNotFoundError):
        return JSONResponse(status_code=404, content={"success": False, "error": str(exc)})

    @app.exception_handler(SettlementError)
    async def settlement_error_handler(request: Request, exc: SettlementError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"{request.method} {request.url.path} failed unexpectedly")
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "onChain": orchestrator.settler is not None,
            "matchWatcher": poller is not None,
        }

    @app.post("/settle")
    async def settle(request: Request) -> dict[str, Any]:
        feed_id = await _read_feed_id(request)
        if feed_id is None:
            summary = await orchestrator.run_sweep()
            return summary.to_dict()
        result = await orchestrator.settle_feed(feed_id)
        return result.to_dict()

    @app.post("/sweep")
    async def sweep() -> dict[str, Any]:
        summary = await orchestrator.run_sweep()
        return summary.to_dict()

    @app.post("/watch-matches")
    async def watch_matches() -> JSONResponse:
        if poller is None:
            return JSONResponse(
                status_code=503,
                content={"success": False, "error": "PandaScore API key not configured"},
            )
        counts = await poller.poll()
        return JSONResponse(content={"success": True, **counts})

    return app

"""SettlerService: HTTP front for the ChainSettler.

Runs in its own process so the signing key never reaches the orchestrator.

Endpoints:
    GET  /health        Status and settler address (public)
    POST /settle-feed   Settle one feed on-chain (API key)
    POST /settle        Alias of /settle-feed (one feed only)

Batch sweeps are not run here: they live on the orchestrator service
(`POST /settle` without a body, or `POST /sweep`), which calls this
service once per feed.

The API key may be sent as ``X-API-Key`` or ``Authorization: Bearer``. When
no key is configured every request is accepted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .ChainSettler import ChainSettler, SettlementRequest
from .errors import SettlerError

logger = logging.getLogger(__name__)


class _Unauthorized(Exception):
    pass


class SettleFeedBody(BaseModel):
    """Request body for /settle-feed. Field names follow the wire format."""

    feedPubkey: str | None = None
    feedHash: str | None = None
    feedId: str | None = None
    module: str | None = None
    config: dict[str, Any] | None = None
    winnerId: Any = None
    team1Id: Any = None
    team2Id: Any = None

    def to_request(self) -> SettlementRequest:
        config = self.config or {}
        return SettlementRequest(
            feed_pubkey=self.feedPubkey or "",
            feed_hash=self.feedHash or "",
            feed_id=self.feedId,
            module=self.module,
            winner_id=self.winnerId if self.winnerId is not None else config.get("winnerId"),
            team1_id=self.team1Id if self.team1Id is not None else config.get("team1Id"),
            team2_id=self.team2Id if self.team2Id is not None else config.get("team2Id"),
        )


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"success": False, "error": message, **extra}
    )


def create_settler_app(
    settler: ChainSettler,
    api_key: str | None = None,
    closers: Sequence[Callable[[], Awaitable[None]]] = (),
) -> FastAPI:
    """Create the settler service.

    :param settler: Chain settler (initialized during startup).
    :param api_key: Shared key required on settle requests, if set.
    :param closers: Coroutine functions called on shutdown (e.g. client close).
    :returns: FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.started_at = time.monotonic()
        try:
            await settler.initialize()
            app.state.init_error = None
            logger.info("Chain settler ready")
        except Exception as e:
            # Degraded: /health reports the error, settle requests get 503
            app.state.init_error = str(e)
            logger.error(f"Chain settler failed to initialize: {e}")

        yield

        for close in closers:
            await close()
        logger.info("Settler service stopped")

    app = FastAPI(title="Feed Settler", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.state.settler = settler
    app.state.init_error = "not initialized"
    app.state.last_settle_time = None

    async def require_api_key(
        x_api_key: str | None = Header(default=None),
        authorization: str | None = Header(default=None),
    ) -> None:
        if not api_key:
            return
        supplied = x_api_key
        if supplied is None and authorization and authorization.startswith("Bearer "):
            supplied = authorization.removeprefix("Bearer ").strip()
        if supplied != api_key:
            raise _Unauthorized()

    @app.exception_handler(_Unauthorized)
    async def unauthorized_handler(request, exc):
        return JSONResponse(status_code=401, content={"error": "Invalid or missing API key"})

    @app.get("/health")
    async def health() -> dict[str, Any]:
        ready = app.state.init_error is None
        return {
            "status": "ok" if ready else "degraded",
            "settler": settler.address if ready else "not initialized",
            "lastSettleTime": app.state.last_settle_time,
            "uptime": time.monotonic() - getattr(app.state, "started_at", time.monotonic()),
            "error": app.state.init_error,
        }

    @app.post("/settle-feed", dependencies=[Depends(require_api_key)])
    @app.post("/settle", dependencies=[Depends(require_api_key)])
    async def settle_feed(body: SettleFeedBody) -> JSONResponse:
        if not body.feedPubkey:
            return _error(400, "feedPubkey is required")
        if not body.feedHash:
            return _error(400, "feedHash is required for on-chain settlement")

        if app.state.init_error is not None:
            return _error(503, "Chain settler not initialized", details=app.state.init_error)

        request = body.to_request()
        logger.info(f"Single feed settlement requested: {request.feed_pubkey} ({request.feed_hash})")
        try:
            proof = await settler.settle(request)
        except ValueError as e:
            return _error(400, str(e))
        except SettlerError as e:
            logger.error(f"[feed {request.label}] Settlement failed ({e.code}): {e}")
            return _error(500, str(e), errorCode=e.code)
        except Exception as e:
            logger.exception(f"[feed {request.label}] Unexpected settlement error")
            return _error(500, str(e), errorCode=SettlerError.code)

        app.state.last_settle_time = datetime.now(timezone.utc).isoformat()
        return JSONResponse(
            content={
                "success": True,
                "signature": proof.signature,
                "txSignature": proof.signature,
                "settledValue": proof.settled_value,
            }
        )

    return app


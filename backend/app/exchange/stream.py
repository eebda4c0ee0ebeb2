"""FastAPI surface: market status and an SSE stream of committed market state."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from .store import MarketStore

logger = logging.getLogger(__name__)


def create_stream_router(store: MarketStore, interval: float = 0.5) -> APIRouter:
    """Create the exchange router bound to ``store``.

    This factory pattern lets us inject the MarketStore without globals.
    """
    router = APIRouter(prefix="/api/exchange", tags=["exchange"])

    @router.get("/status")
    async def market_status() -> dict:
        """Market-wide halt flag, reason, resume time and halted symbols."""
        return store.snapshot().status().to_dict()

    @router.get("/stream")
    async def stream_market(request: Request) -> StreamingResponse:
        """SSE endpoint for live market updates.

        Emits the whole committed snapshot whenever the store version changes:

            data: {"version": 12, "status": {...}, "instruments": {...}, ...}
        """
        return StreamingResponse(
            _generate_events(store, request, interval),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    return router


async def _generate_events(
    store: MarketStore,
    request: Request,
    interval: float = 0.5,
) -> AsyncGenerator[str, None]:
    """Yield the whole market as one SSE message each time the store version moves.

    The clock publishes a tick in one batch and bumps the version once, so a
    snapshot read here is always a complete tick: prices, indices, halts and
    live events agree with each other. Sending the full snapshot rather than
    per-symbol diffs keeps a reconnecting client correct after a single message.
    """
    # Tell the client to retry after 1 second if the connection drops
    yield "retry: 1000\n\n"

    last_version = -1
    client_ip = request.client.host if request.client else "unknown"
    logger.info("SSE client connected: %s", client_ip)

    try:
        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break

            current_version = store.version
            if current_version != last_version:
                last_version = current_version
                snapshot = store.snapshot()
                yield f"data: {json.dumps(snapshot.to_dict())}\n\n"

            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)

"""API routes for the usage summary.

Endpoints:
  GET  /api/usage           — cached summary (503 until the first refresh lands)
  POST /api/usage/refresh   — refresh now, return the fresh summary
  GET  /api/usage/status    — scheduler diagnostics
  GET  /api/usage/stream    — SSE stream of usage-updated / usage-error events
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from src.providers import ProviderError
from src.usage.cache import NotLoadedError
from src.usage.summary import UsageSummary

logger = logging.getLogger(__name__)

usage_router = APIRouter()

# ── SSE subscriber list (in-memory) ──────────────────────────────────────────

_sse_queues: list[asyncio.Queue[tuple[str, Any]]] = []


def _event_data(payload: Any) -> Any:
    if isinstance(payload, UsageSummary):
        return payload.model_dump(mode="json")
    return {"error": str(payload)}


def broadcast_event(event: str, payload: Any) -> None:
    """Push a scheduler event to all SSE subscribers."""
    data = _event_data(payload)
    for q in _sse_queues:
        try:
            q.put_nowait((event, data))
        except asyncio.QueueFull:
            pass  # slow consumer, drop


# ── Summary endpoints ────────────────────────────────────────────────────────


@usage_router.get("/usage")
def get_usage(request: Request) -> dict[str, Any]:
    """Return the cached usage summary."""
    cache = request.app.state.usage_cache
    try:
        summary = cache.get()
    except NotLoadedError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return summary.model_dump(mode="json")


@usage_router.post("/usage/refresh")
async def refresh_usage(request: Request) -> dict[str, Any]:
    """Run a refresh immediately and return its result."""
    scheduler = request.app.state.usage_scheduler
    try:
        summary = await scheduler.do_refresh()
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return summary.model_dump(mode="json")


@usage_router.get("/usage/status")
def usage_status(request: Request) -> dict[str, Any]:
    """Scheduler and notification diagnostics."""
    status = request.app.state.usage_scheduler.status()
    notifier = getattr(request.app.state, "notifier", None)
    status["notifications"] = notifier.status() if notifier else {"enabled": False}
    return status


# ── SSE stream ───────────────────────────────────────────────────────────────


@usage_router.get("/usage/stream")
async def usage_stream(request: Request) -> StreamingResponse:
    """Server-Sent Events stream of refresh results."""
    queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue(maxsize=50)
    _sse_queues.append(queue)

    async def event_generator():
        try:
            # Send initial state
            current = request.app.state.usage_cache.peek()
            init = current.model_dump(mode="json") if current else {"loaded": False}
            yield f"event: init\ndata: {json.dumps(init)}\n\n"

            while True:
                if await request.is_disconnected():
                    break

                try:
                    event, data = await asyncio.wait_for(queue.get(), timeout=30)
                    yield f"event: {event}\ndata: {json.dumps(data)}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            _sse_queues.remove(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )

"""Session event streaming routes.

Routes:
- GET /api/sessions/{session_id}/events         - Server-sent event stream
- GET /api/sessions/{session_id}/events/replay  - Missed events as JSON
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from tourquote.config import get_config
from tourquote.events.bus import SessionBus
from tourquote.models import BusEvent
from tourquote.services import Services
from tourquote.web.dependencies import get_services

router = APIRouter(tags=["events"])


def format_sse(event: BusEvent) -> str:
    return f"id: {event.id}\nevent: {event.type}\ndata: {event.model_dump_json()}\n\n"


async def event_stream(
    request: Request,
    bus: SessionBus,
    session_id: str,
    since: datetime | None,
    ping_interval: float,
) -> AsyncIterator[str]:
    """Replay the backlog after ``since``, then follow live events with pings."""
    # Subscribe first so nothing published during the replay is lost
    subscription = await bus.subscribe(session_id)
    try:
        replayed: set[str] = set()
        if since is not None:
            for event in await bus.replay_since(session_id, since):
                replayed.add(event.id)
                yield format_sse(event)

        while not subscription.closed:
            if await request.is_disconnected():
                break
            event = await subscription.get(timeout=ping_interval)
            if event is None:
                if not subscription.closed:
                    yield ": ping\n\n"
                continue
            if event.id in replayed:
                continue
            yield format_sse(event)
    finally:
        await bus.unsubscribe(subscription)


@router.get("/api/sessions/{session_id}/events")
async def stream_events(
    request: Request,
    session_id: str,
    since: datetime | None = Query(None),
    services: Services = Depends(get_services),
):
    return StreamingResponse(
        event_stream(
            request,
            services.bus,
            session_id,
            since,
            get_config().bus.ping_interval_seconds,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/api/sessions/{session_id}/events/replay")
async def replay_missed(
    session_id: str,
    since: datetime = Query(...),
    services: Services = Depends(get_services),
):
    events = await services.bus.replay_since(session_id, since)
    return [event.model_dump(mode="json") for event in events]

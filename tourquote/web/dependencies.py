"""Shared dependencies for tourquote web routes.

Dependencies are injected using FastAPI's Depends() system.

Usage:
    from fastapi import Depends
    from tourquote.web.dependencies import get_services

    @router.post("/api/sessions/{session_id}/submit")
    async def submit(session_id: str, services: Services = Depends(get_services)):
        ...
"""

from __future__ import annotations

from fastapi import Request

from tourquote.services import Services


def get_services(request: Request) -> Services:
    """Services assembled at startup and stored on the application state."""
    return request.app.state.services

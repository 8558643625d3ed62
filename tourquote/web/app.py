"""FastAPI application for tourquote."""

from __future__ import annotations

from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from tourquote.core.logging import configure_logging
from tourquote.db.connection import close_db
from tourquote.errors import (
    NotFoundError,
    PersistenceError,
    StateConflictError,
    TourQuoteError,
)
from tourquote.services import Services, build_services
from tourquote.web.routes import estimates, events

logger = structlog.get_logger()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        structlog.contextvars.clear_contextvars()

        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("request_failed", error=str(exc))
            raise

        logger.info("request_completed", status_code=response.status_code)
        response.headers["X-Request-ID"] = request_id
        return response


ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (NotFoundError, 404),
    (StateConflictError, 409),
    (PersistenceError, 503),
    (ValidationError, 422),
    (ValueError, 400),
    (TourQuoteError, 500),
]


def _error_response(exc: Exception) -> JSONResponse:
    status = next(code for kind, code in ERROR_STATUS if isinstance(exc, kind))
    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, StateConflictError) and exc.current_status:
        content["current_status"] = exc.current_status
    return JSONResponse(status_code=status, content=content)


def create_app(services: Services | None = None) -> FastAPI:
    """Build the application.

    Args:
        services: Pre-built services (tests); built from config on startup otherwise
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        if services is None:
            app.state.services = build_services()
        else:
            app.state.services = services
        app.state.services.bus.start()
        logger.info("app_started")
        try:
            yield
        finally:
            await app.state.services.bus.stop()
            if services is None:
                await close_db()
            logger.info("app_stopped")

    app = FastAPI(
        title="tourquote",
        description="Survey-to-itinerary estimate generation",
        version="0.1.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(RequestLoggingMiddleware)

    async def handle_error(request: Request, exc: Exception) -> JSONResponse:
        if not isinstance(exc, (NotFoundError, StateConflictError)):
            logger.warning("request_error", error=str(exc), error_type=type(exc).__name__)
        return _error_response(exc)

    for kind, _ in ERROR_STATUS:
        app.add_exception_handler(kind, handle_error)

    app.include_router(estimates.router)
    app.include_router(events.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app

"""structlog setup shared by the CLI and the web app.

Application events and third-party stdlib records (uvicorn, SQLAlchemy, httpx)
go through one ``ProcessorFormatter`` so every line carries the same keys and
renderer. Each line is tagged with ``service`` and ``environment``.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

SERVICE_NAME = "tourquote"
DEFAULT_LOG_FILE = Path("logs/tourquote.log")

# Libraries that log every request or statement at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine.Engine")

_configured = False


def _service_tagger(environment: str):
    def add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_service


def _renderer(json_logs: bool) -> list[Any]:
    if json_logs:
        return [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    # ConsoleRenderer formats tracebacks itself
    return [structlog.dev.ConsoleRenderer()]


def configure_logging(
    level: str | None = None,
    json_logs: bool | None = None,
    log_file: Path | None = None,
) -> None:
    """Route structlog and stdlib logging through a shared renderer.

    Safe to call more than once; later calls are no-ops, so the CLI commands
    and the web lifespan can each call it unconditionally.

    Args:
        level: Root level name; ``LOG_LEVEL`` (default INFO) when omitted
        json_logs: Force JSON output; defaults to ``JSON_LOGS=true`` or a
            production ``ENVIRONMENT``
        log_file: Extra file sink; ``logs/tourquote.log`` is used when its
            directory exists
    """
    global _configured
    if _configured:
        return

    environment = os.getenv("ENVIRONMENT", "development")
    if json_logs is None:
        json_logs = (
            os.getenv("JSON_LOGS", "false").lower() == "true" or environment == "production"
        )
    resolved_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _service_tagger(environment),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_renderer(json_logs),
        ],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is None and DEFAULT_LOG_FILE.parent.exists():
        log_file = DEFAULT_LOG_FILE
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    root = logging.getLogger()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(resolved_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))

    _configured = True

"""
Structured logging setup.

Engine code logs through structlog. Records from stdlib loggers (uvicorn,
sqlalchemy, arq) go through the same processor chain, so one deployment
emits a single format.
"""

from __future__ import annotations

import logging

import structlog

_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    numeric_level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
        tail = [structlog.processors.format_exc_info, renderer]
    else:
        # ConsoleRenderer formats exceptions itself.
        renderer = structlog.dev.ConsoleRenderer()
        tail = [renderer]

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, *tail],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[*_SHARED_PROCESSORS, structlog.stdlib.add_logger_name],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(numeric_level)
    # SQL echo is controlled by the engine, not the log level.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

"""
cluster_provisioner.observability.logging

Structured logging configuration for the service.

Responsibilities:
- Configure `structlog` for JSON (default) or console-rendered logs.
- Stamp every event with the service name and environment.
- Keep per-call HTTP client chatter out of the logs; pollers log their own events.
- Provide a small wrapper for obtaining bound loggers.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Literal

import structlog

# httpx logs one INFO line per request; pollers would flood the output.
_CHATTY_LOGGERS = ("httpx", "httpcore")


def configure_logging(
    *,
    service_name: str,
    level: str,
    env: str = "dev",
    fmt: Literal["json", "console"] = "json",
) -> None:
    """
    Provisioning events are emitted as `log.info("event_name", request_id=..., ...)`;
    the renderer is the only thing that differs between json and console output.
    """

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    renderer: Any
    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _static_fields(service=service_name, env=env),
    ]
    if fmt == "json":
        processors.append(structlog.processors.dict_tracebacks)
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _static_fields(**fields: str):
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return processor


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# --- Module Notes -----------------------------------------------------------
# Background pollers log with explicit `request_id=` keys, since they run
# outside any HTTP request context.

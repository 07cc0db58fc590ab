"""
Structured logging setup for omni-ignition.

Configures **structlog** + the stdlib ``logging`` package so that engine events
(``node_submitted``, ``node_confirmed``, ...) and library logs (httpx) share one
renderer: a pretty console renderer by default for the CLI, or JSON lines for
CI and log shipping.

Quick start
-----------
    from omni_ignition.logging import setup_logging, get_logger

    setup_logging(level="INFO", log_format="console")  # call once on process start
    log = get_logger(__name__)
    log.info("deployment_started", module="MizuPassModule")
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, Dict, Iterable, Optional

import structlog
from structlog.contextvars import merge_contextvars

REDACT_KEYS = {"authorization", "token", "api_key", "private_key", "mnemonic", "password"}


def _redact_secrets(_: logging.Logger, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Processor that redacts sensitive values for well-known keys.
    """
    for k in list(event_dict.keys()):
        if k.lower() in REDACT_KEYS and event_dict[k] is not None:
            event_dict[k] = "***"
    return event_dict


def _base_processors(include_stacktrace: bool) -> Iterable:
    yield structlog.stdlib.add_log_level
    yield structlog.processors.TimeStamper(fmt="iso", utc=True)
    yield merge_contextvars
    yield structlog.processors.StackInfoRenderer()
    if include_stacktrace:
        yield structlog.processors.format_exc_info
    yield _redact_secrets
    yield structlog.processors.UnicodeDecoder()


def setup_logging(
    *,
    level: Optional[str | int] = None,
    log_format: Optional[str] = None,
) -> None:
    """
    Configure structlog + stdlib logging. Safe to call more than once; the last
    call wins.

    level defaults to $IGNITION_LOG_LEVEL or INFO; log_format ("console" or
    "json") defaults to $IGNITION_LOG_FORMAT or "console". Logs go to stderr so
    that CLI output on stdout stays machine-readable.
    """
    level = level or os.getenv("IGNITION_LOG_LEVEL", "") or "INFO"
    if isinstance(level, str):
        level = level.upper()
    log_format = (log_format or os.getenv("IGNITION_LOG_FORMAT", "") or "console").lower()
    include_stacktrace = log_format == "json"

    processors = list(_base_processors(include_stacktrace))
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty(), sort_keys=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            *processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                *processors,
            ],
        )
    )

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)

    logging.getLogger("httpcore").setLevel(os.getenv("LOG_LEVEL_HTTPCORE", "WARNING"))
    logging.getLogger("httpx").setLevel(os.getenv("LOG_LEVEL_HTTPX", "WARNING"))


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Return a structlog logger for ``name`` (routed through stdlib logging).
    """
    return structlog.get_logger(name)


def bind_deployment_context(**kv: Any) -> None:
    """Bind run-scoped keys (deployment id, module) into the structlog contextvars store."""
    structlog.contextvars.bind_contextvars(**kv)


def clear_deployment_context(*keys: str) -> None:
    """Clear specific keys from contextvars, or all of them if none are given."""
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()


__all__ = [
    "setup_logging",
    "get_logger",
    "bind_deployment_context",
    "clear_deployment_context",
]

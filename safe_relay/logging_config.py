"""
Structured logging configuration using structlog.

JSON lines for the relay in production, colored console output at DEBUG.
Private keys never reach a handler: see ``redact_secrets``.
"""

import logging
import sys
from typing import Optional

import structlog

from .config import settings

_NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "websockets")

REDACTED = "[redacted]"


def redact_secrets(logger, method_name, event_dict):
    """Mask private keys in an event: any field named like one, and the relayer key in any text."""
    relayer_key = settings.relayer_private_key
    relayer_hex = relayer_key[2:] if relayer_key.startswith("0x") else relayer_key

    for key, value in event_dict.items():
        if "privatekey" in key.replace("_", "").lower():
            event_dict[key] = REDACTED
        elif relayer_hex and isinstance(value, str) and relayer_hex in value:
            event_dict[key] = value.replace(relayer_key, REDACTED).replace(relayer_hex, REDACTED)
    return event_dict


def setup_logging(log_level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        log_level: Override log level (default: from settings.log_level)
        json_logs: Force JSON (True) or console (False) rendering; by default
            console rendering is used only at DEBUG level.
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    if json_logs is None:
        json_logs = level != logging.DEBUG

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()
    # Last, so formatted tracebacks are covered too.
    shared_processors.append(redact_secrets)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stdlib records from module loggers get the same context and redaction.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

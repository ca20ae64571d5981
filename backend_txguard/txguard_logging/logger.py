"""
Structured logging for the evaluator: one JSON object per event on stdout.

Every record carries event_type, level, timestamp and logger name. Request
logs add wallet_id (see bind_wallet); check logs add check. Address-valued
fields are shortened before rendering so full recipient addresses never land
in aggregated logs.

Configured from LOG_LEVEL (default INFO) and LOG_FORMAT (json | console).
Imports nothing from backend_txguard so any module can use it.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

ADDRESS_FIELDS = frozenset({"address", "to", "from_address", "recipient", "similar_to"})
ADDRESS_LOG_CHARS = 16


def short_addr(addr: Any) -> str:
    """Truncate an address for log fields."""
    text = str(addr or "")
    return text[:ADDRESS_LOG_CHARS] + "..." if len(text) > ADDRESS_LOG_CHARS else text


def _shorten_addresses(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in ADDRESS_FIELDS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, (list, tuple, set)):
            event_dict[key] = [short_addr(v) for v in value]
        elif value is not None:
            event_dict[key] = short_addr(value)
    return event_dict


def _event_type(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog's 'event' becomes event_type; message mirrors it unless given."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    event_dict.setdefault("message", str(event_dict.get("event_type", "")))
    return event_dict


def configure_structlog(fmt: str = LOG_FORMAT, level: int = LOG_LEVEL_VALUE) -> None:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _shorten_addresses,
        _event_type,
    ]
    if fmt == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer(default=str))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Module logger; pass the event type first and context as keywords:

        logger = get_logger(__name__)
        logger.info("verdict_ready", wallet_id=wallet_id, risk_level="high", valid=True)
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_wallet(wallet_id: str) -> structlog.BoundLogger:
    """Logger for one validation request, with wallet_id on every record."""
    return get_logger("backend_txguard.request").bind(wallet_id=wallet_id)

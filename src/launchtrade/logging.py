"""Structured logging setup with trading-context support.

Two output formats are supported, controlled by the ``LOG_FORMAT`` environment
variable (mapped to ``settings.log_format``):

- ``text`` (default): human-readable console output.
  Format: ``2024-01-01 12:00:00 | INFO     | launchtrade.trading.lifecycle
           [tok=So1...pump] [chan=-100222] | message``

- ``json``: one JSON object per line with fields ``timestamp``, ``level``,
  ``logger``, ``message``, ``token_id``, ``channel``, ``order_id``,
  ``service`` and (on exceptions) ``exc_type`` / ``exc_value`` / ``exc_trace``.

Context propagation:
  The ContextVars below are asyncio-native: every task spawned while a value is
  set inherits a copy, so the trailing-stop task of a position logs with the
  token it was started for.

    ``token_var``     -- token being traded.
    ``channel_var``   -- source channel of the signal.
    ``order_id_var``  -- venue order ID when processing a specific order.

  Use ``set_trading_context()`` / ``clear_trading_context()`` rather than
  manipulating the ContextVars directly.
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

token_var: ContextVar[str | None] = ContextVar("token_id", default=None)
channel_var: ContextVar[str | None] = ContextVar("channel", default=None)
order_id_var: ContextVar[str | None] = ContextVar("order_id", default=None)

_SERVICE_NAME = "launchtrade"


class TradingContextFilter(logging.Filter):
    """Inject trading context into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.token_id = token_var.get() or ""
        record.channel = channel_var.get() or ""
        record.order_id = order_id_var.get() or ""
        return True


class JSONFormatter(logging.Formatter):
    """Emit one JSON object per log line.

    Context fields are empty strings (not "N/A") when absent so that log
    aggregators can filter them with ``token_id != ""``.
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=UTC).isoformat()

        payload: dict[str, Any] = {
            "timestamp": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "token_id": getattr(record, "token_id", ""),
            "channel": getattr(record, "channel", ""),
            "order_id": getattr(record, "order_id", ""),
            "service": _SERVICE_NAME,
        }

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            payload["exc_type"] = exc_type.__name__ if exc_type else None
            payload["exc_value"] = str(exc_value)
            payload["exc_trace"] = traceback.format_exception(exc_type, exc_value, exc_tb)

        return json.dumps(payload, default=str)


class _TradingTextFormatter(logging.Formatter):
    """Human-readable text formatter that appends trading context when present.

    Empty context fields are omitted entirely, so non-trading log lines stay
    short.
    """

    _BASE_FMT = "%(asctime)s | %(levelname)-8s | %(name)s"
    _DATE_FMT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self._BASE_FMT, datefmt=self._DATE_FMT)

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        tokens: list[str] = []
        tok = getattr(record, "token_id", "")
        chan = getattr(record, "channel", "")
        oid = getattr(record, "order_id", "")
        if tok:
            tokens.append(f"[tok={tok}]")
        if chan:
            tokens.append(f"[chan={chan}]")
        if oid:
            tokens.append(f"[ord={oid}]")

        trading_part = (" " + " ".join(tokens)) if tokens else ""
        line = f"{base}{trading_part} | {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """Configure application logging.

    Explicit arguments win over ``settings.log_level`` / ``settings.log_format``.
    Calling more than once only adjusts the level; a second handler is never
    added.
    """
    from launchtrade.config import settings as _settings

    log_level_str = (level or _settings.log_level).upper()
    fmt = (log_format or _settings.log_format).lower()
    log_level = getattr(logging, log_level_str, logging.INFO)

    root_logger = logging.getLogger()

    if root_logger.handlers:
        root_logger.setLevel(log_level)
        return

    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(TradingContextFilter())

    if fmt == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(_TradingTextFormatter())

    root_logger.addHandler(console_handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialised (level=%s, format=%s)", log_level_str, fmt
    )


def set_trading_context(
    token_id: str | None = None,
    channel: str | None = None,
    order_id: str | None = None,
) -> None:
    """Bind trading context into the current async context.

    Only the explicitly passed arguments are updated; omitted keyword arguments
    leave the corresponding ContextVar unchanged.
    """
    if token_id is not None:
        token_var.set(token_id)
    if channel is not None:
        channel_var.set(channel)
    if order_id is not None:
        order_id_var.set(order_id)


def clear_trading_context() -> None:
    """Clear all trading-domain ContextVars in the current async context."""
    token_var.set(None)
    channel_var.set(None)
    order_id_var.set(None)


def get_logger(name: str) -> logging.Logger:
    """Return a standard ``logging.Logger`` for the given module name."""
    return logging.getLogger(name)

"""Structured logging for a board calendar process.

Every module logs through ``logging.getLogger(__name__)``; ``configure_logging``
puts structlog's ProcessorFormatter on the root handlers so those records are
rendered as colored console text or as JSON lines. Each rendered line carries
the board id and the current OTel trace and span ids, and token-like values
are masked before anything is written.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

from boardcal.errors import redact_credential_values

_board_context: ContextVar[str | None] = ContextVar("board_id", default=None)

_NOISE_LOGGERS = ("httpx", "httpcore")

_ZERO_TRACE_ID = "0" * 32
_ZERO_SPAN_ID = "0" * 16


def add_board_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Add the ``board`` key for the current async context."""
    event_dict["board"] = _board_context.get()
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Add ``trace_id``/``span_id`` of the active span, zeroed outside a span."""
    ctx = trace.get_current_span().get_span_context()
    traced = bool(ctx and ctx.trace_id)
    event_dict["trace_id"] = format(ctx.trace_id, "032x") if traced else _ZERO_TRACE_ID
    event_dict["span_id"] = format(ctx.span_id, "016x") if traced else _ZERO_SPAN_ID
    return event_dict


class CredentialRedactionFilter(logging.Filter):
    """Mask bearer tokens and ``token=`` style values in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_credential_values(message)
        if redacted != message:
            # Args are already interpolated into the redacted text.
            record.msg = redacted
            record.args = ()
        return True


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_board_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _handler(
    handler: logging.Handler, renderer: structlog.types.Processor, time_fmt: str
) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=_pre_chain(time_fmt),
        )
    )
    # Logger filters do not see records propagated from child loggers.
    handler.addFilter(CredentialRedactionFilter())
    return handler


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_file: Path | str | None = None,
    board_id: str | None = None,
) -> None:
    """Install the boardcal handlers on the root logger, replacing existing ones.

    ``fmt`` is ``"text"`` (console, ``HH:MM:SS`` stamps) or ``"json"``. A
    ``log_file`` always receives JSON lines; its parent directories are
    created. ``board_id`` is stamped on every line from this context on.
    """
    if board_id:
        _board_context.set(board_id)

    if fmt == "json":
        console = _handler(
            logging.StreamHandler(sys.stderr), structlog.processors.JSONRenderer(), "iso"
        )
    else:
        console = _handler(
            logging.StreamHandler(sys.stderr), structlog.dev.ConsoleRenderer(), "%H:%M:%S"
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.filters.clear()
    root.addHandler(console)
    root.addFilter(CredentialRedactionFilter())
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = _handler(
            logging.FileHandler(path), structlog.processors.JSONRenderer(), "iso"
        )
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)

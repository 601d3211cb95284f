"""Error taxonomy for the board calendar engine.

Every failure the engine can produce is a ``BoardCalendarError``. Mapping
failures (``DecodeError``, ``SchemaResolutionError``) degrade a single field or
record; remote failures (``RemoteReadError``, ``RemoteWriteError``) are caught
at the orchestrator boundary and returned as structured results.
"""

from __future__ import annotations

import re
from typing import Any


class BoardCalendarError(RuntimeError):
    """Base error for all board calendar failures."""

    retryable: bool = False


class DecodeError(BoardCalendarError):
    """Raised when a field's raw encoding cannot be decoded."""

    def __init__(self, field_id: str, message: str) -> None:
        self.field_id = field_id
        super().__init__(f"Cannot decode field '{field_id}': {message}")


class SchemaResolutionError(BoardCalendarError):
    """Raised when a field or option id cannot be resolved against the schema."""


class RemoteRequestError(BoardCalendarError):
    """Raised by a data service when a remote request fails."""

    retryable = True

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Board API request failed ({status_code}): {message}")


class RemoteReadError(BoardCalendarError):
    """Raised when the record collection, schema or users cannot be read."""

    retryable = True


class RemoteWriteError(BoardCalendarError):
    """Raised when a create or update write fails."""

    retryable = True


def redact_credential_values(message: str) -> str:
    """Redact token-like values from an error message."""
    redacted = re.sub(r"(?i)\bbearer\s+[A-Za-z0-9._~+/=-]+", "Bearer [REDACTED]", message)
    redacted = re.sub(
        r"(?i)\b(api_token|access_token|authorization|token)\s*=\s*([^\s,;]+)",
        r"\1=[REDACTED]",
        redacted,
    )
    redacted = re.sub(
        r"""(?i)(['"]?(?:api_token|access_token|authorization|token)['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    redacted = re.sub(
        r"(?i)\b(api_token|access_token|authorization|token)\s*:\s*([^\s,;]+)",
        r"\1: [REDACTED]",
        redacted,
    )
    return redacted


def sanitize_error_message(message: str) -> str:
    """Collapse whitespace, redact credentials and cap at 200 characters."""
    return " ".join(redact_credential_values(message).split())[:200]


def build_structured_error(
    exc: BaseException,
    *,
    operation: str,
    board_id: str,
) -> dict[str, Any]:
    """Build the structured error fields for a failed orchestrator operation."""
    retryable = exc.retryable if isinstance(exc, BoardCalendarError) else False
    return {
        "status": "error",
        "operation": operation,
        "board_id": board_id,
        "error": sanitize_error_message(str(exc)),
        "error_type": type(exc).__name__,
        "retryable": retryable,
    }

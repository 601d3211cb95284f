"""Board calendar configuration loading and validation.

Reads ``boardcal.toml`` from a config directory, resolves ``${VAR}``
environment references, and returns a validated ``BoardCalendarConfig``
dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

CONFIG_FILENAME = "boardcal.toml"
DEFAULT_API_URL = "https://api.monday.com/v2"
DEFAULT_START_FIELD_ID = "date4"
DEFAULT_END_FIELD_ID = "date__1"
DEFAULT_STATUS_FIELD_ID = "status__1"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_PAGE_SIZE = 500
MAX_PAGE_SIZE = 500

# Matches ${VAR_NAME}; names are alphanumeric plus underscore.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when board calendar configuration is missing, malformed, or invalid."""


@dataclass(frozen=True)
class DesignatedFields:
    """Well-known field ids the mapper reads dates and status from."""

    start: str = DEFAULT_START_FIELD_ID
    end: str = DEFAULT_END_FIELD_ID
    status: str | None = DEFAULT_STATUS_FIELD_ID


@dataclass(frozen=True)
class TemporalConfig:
    """Reference frames from [temporal]. ``display_timezone`` defaults to the source frame."""

    source_timezone: str = "UTC"
    display_timezone: str | None = None


@dataclass(frozen=True)
class RemoteConfig:
    """Data service settings from [remote]."""

    api_url: str = DEFAULT_API_URL
    api_token: str | None = field(default=None, repr=False)
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    page_size: int = DEFAULT_PAGE_SIZE


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration from [logging]."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    file: str | None = None


@dataclass(frozen=True)
class BoardCalendarConfig:
    """Fully resolved configuration for one board calendar."""

    board_id: str
    fields: DesignatedFields = field(default_factory=DesignatedFields)
    temporal: TemporalConfig = field(default_factory=TemporalConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in parsed TOML values.

    Non-string leaf values (int, bool, float) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    The original string is not echoed back because it may hold a secret.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(f"Unresolved environment variable(s) in config value: {vars_str}")

    return result


def _require_str(section: dict[str, Any], key: str, path: str, default: str | None = None) -> str:
    value = section.get(key, default)
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{path}.{key} must be a non-empty string")
    return value.strip()


def _validate_timezone(value: str, path: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Invalid {path}: {value!r}. Expected an IANA timezone.") from exc
    return value


def _parse_fields(board_section: dict[str, Any]) -> DesignatedFields:
    fields_section = board_section.get("fields", {})
    if not isinstance(fields_section, dict):
        raise ConfigError("board.fields must be a TOML table")

    start = _require_str(fields_section, "start", "board.fields", DEFAULT_START_FIELD_ID)
    end = _require_str(fields_section, "end", "board.fields", DEFAULT_END_FIELD_ID)
    if start == end:
        raise ConfigError("board.fields.start and board.fields.end must be different fields")

    status_raw = fields_section.get("status", DEFAULT_STATUS_FIELD_ID)
    if status_raw is not None and not isinstance(status_raw, str):
        raise ConfigError("board.fields.status must be a string when set")
    # An empty status id disables status coloring.
    status = (status_raw.strip() or None) if isinstance(status_raw, str) else None
    return DesignatedFields(start=start, end=end, status=status)


def _parse_temporal(data: dict[str, Any]) -> TemporalConfig:
    section = data.get("temporal", {})
    if not isinstance(section, dict):
        raise ConfigError("[temporal] must be a TOML table")
    source = _validate_timezone(
        _require_str(section, "source_timezone", "temporal", "UTC"), "temporal.source_timezone"
    )
    display_raw = section.get("display_timezone")
    display: str | None = None
    if display_raw is not None:
        if not isinstance(display_raw, str) or not display_raw.strip():
            raise ConfigError("temporal.display_timezone must be a non-empty string when set")
        display = _validate_timezone(display_raw.strip(), "temporal.display_timezone")
    return TemporalConfig(source_timezone=source, display_timezone=display)


def _parse_remote(data: dict[str, Any]) -> RemoteConfig:
    section = data.get("remote", {})
    if not isinstance(section, dict):
        raise ConfigError("[remote] must be a TOML table")

    api_url = _require_str(section, "api_url", "remote", DEFAULT_API_URL)
    token_raw = section.get("api_token")
    if token_raw is not None and not isinstance(token_raw, str):
        raise ConfigError("remote.api_token must be a string when set")
    api_token = (token_raw.strip() or None) if isinstance(token_raw, str) else None

    try:
        timeout = float(section.get("request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT_SECONDS))
    except (TypeError, ValueError) as exc:
        raise ConfigError("remote.request_timeout_seconds must be a number") from exc
    if timeout <= 0:
        raise ConfigError(
            f"Invalid remote.request_timeout_seconds: {timeout!r}. Must be a positive number."
        )

    page_size = section.get("page_size", DEFAULT_PAGE_SIZE)
    if isinstance(page_size, bool) or not isinstance(page_size, int):
        raise ConfigError("remote.page_size must be an integer")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ConfigError(
            f"Invalid remote.page_size: {page_size!r}. Must be between 1 and {MAX_PAGE_SIZE}."
        )

    return RemoteConfig(
        api_url=api_url,
        api_token=api_token,
        request_timeout_seconds=timeout,
        page_size=page_size,
    )


def _parse_logging(data: dict[str, Any]) -> LoggingConfig:
    section = data.get("logging", {})
    if not isinstance(section, dict):
        raise ConfigError("[logging] must be a TOML table")
    level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {log_format!r}. Expected 'text' or 'json'.")
    log_file = section.get("file")
    if log_file is not None and not isinstance(log_file, str):
        raise ConfigError("logging.file must be a string when set")
    return LoggingConfig(level=level, format=log_format, file=log_file or None)


def parse_config(data: dict[str, Any]) -> BoardCalendarConfig:
    """Validate an already-parsed TOML document into a ``BoardCalendarConfig``."""
    data = resolve_env_vars(data)

    board_section = data.get("board")
    if not isinstance(board_section, dict):
        raise ConfigError("Missing [board] section in config")
    if board_section.get("id") is None:
        raise ConfigError("Missing required field: board.id")
    board_id = _require_str(board_section, "id", "board")

    return BoardCalendarConfig(
        board_id=board_id,
        fields=_parse_fields(board_section),
        temporal=_parse_temporal(data),
        remote=_parse_remote(data),
        logging=_parse_logging(data),
    )


def load_config(config_dir: Path) -> BoardCalendarConfig:
    """Load and validate ``boardcal.toml`` from *config_dir*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or lacks required fields.
    """
    toml_path = Path(config_dir) / CONFIG_FILENAME

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    raw_bytes = toml_path.read_bytes()
    try:
        data = tomllib.loads(raw_bytes.decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)

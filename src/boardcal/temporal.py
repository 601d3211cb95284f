"""Date/time normalization between board date fields and calendar instants.

Board date fields store a wall-clock literal split into a calendar date and an
optional time of day, JSON encoded as ``{"date": "2024-03-01", "time":
"09:00:00"}``. The calendar works with single timezone-aware instants.

Reference-frame policy
----------------------
One ``TemporalNormalizer`` owns the only zone conversion in the system:

- literals are interpreted in ``source_timezone`` (the frame the board stores
  them in, ``UTC`` by default);
- instants handed to the calendar are expressed in ``display_timezone``
  (defaults to the source frame);
- encoding applies the inverse of the same conversion, so
  ``encode(decode(x)) == x`` for canonical values.

Wall times skipped by a forward clock change in the source frame name no
instant and decode as unscheduled, as do literals that fall outside the
representable range once converted.

Values without a time of day are all-day: they decode to local midnight of the
calendar date in the display frame and are never shifted between zones.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, date, datetime, time, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from boardcal.models import DecodedDate, FieldValue

logger = logging.getLogger(__name__)

DATE_KEY = "date"
TIME_KEY = "time"
TIME_FORMAT = "%H:%M:%S"


def _zone(timezone: str) -> tzinfo:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"timezone must be a valid IANA timezone: {timezone}") from exc


def _load_date_payload(raw_encoded: str | None) -> dict[str, Any] | None:
    """Return the decoded JSON object, or None when the value is absent.

    Raises ``ValueError`` when the value is present but not a JSON object.
    """
    if raw_encoded is None or not raw_encoded.strip():
        return None
    payload = json.loads(raw_encoded)
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


def _time_component(payload: dict[str, Any]) -> str | None:
    value = payload.get(TIME_KEY)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _is_nonexistent(local: datetime) -> bool:
    """True for a wall time skipped by a forward clock change in its zone."""
    shifted = local.astimezone(UTC).astimezone(local.tzinfo)
    return shifted.replace(tzinfo=None) != local.replace(tzinfo=None)


class TemporalNormalizer:
    """Converts between board date encodings and calendar instants."""

    def __init__(self, source_timezone: str = "UTC", display_timezone: str | None = None) -> None:
        self.source_timezone = source_timezone.strip()
        self.display_timezone = (display_timezone or source_timezone).strip()
        self._source_tz = _zone(self.source_timezone)
        self._display_tz = _zone(self.display_timezone)

    def __repr__(self) -> str:
        return (
            f"TemporalNormalizer(source_timezone={self.source_timezone!r}, "
            f"display_timezone={self.display_timezone!r})"
        )

    def decode(self, raw_encoded: str | None, *, field_id: str = "") -> DecodedDate | None:
        """Decode a raw date encoding into an instant in the display frame.

        Returns None ("unscheduled") when the value or its date component is
        absent, and when the value cannot be parsed. Never raises.
        """
        try:
            payload = _load_date_payload(raw_encoded)
        except ValueError as exc:
            logger.warning("Unparseable date value for field %s: %s", field_id or "?", exc)
            return None
        if payload is None:
            return None

        date_raw = payload.get(DATE_KEY)
        if not isinstance(date_raw, str) or not date_raw.strip():
            return None

        try:
            day = date.fromisoformat(date_raw.strip())
        except ValueError:
            logger.warning("Invalid date literal for field %s: %r", field_id or "?", date_raw)
            return None

        time_raw = _time_component(payload)
        if time_raw is None:
            return DecodedDate(
                instant=datetime(day.year, day.month, day.day, tzinfo=self._display_tz),
                all_day=True,
            )

        try:
            clock = time.fromisoformat(time_raw)
        except ValueError:
            logger.warning("Invalid time literal for field %s: %r", field_id or "?", time_raw)
            return None

        local = datetime.combine(day, clock.replace(tzinfo=None), tzinfo=self._source_tz)
        try:
            if _is_nonexistent(local):
                logger.warning(
                    "Date value for field %s falls in a %s clock change gap: %s %s",
                    field_id or "?",
                    self.source_timezone,
                    date_raw,
                    time_raw,
                )
                return None
            instant = local.astimezone(self._display_tz)
        except OverflowError:
            logger.warning("Date value for field %s is out of range: %s", field_id or "?", date_raw)
            return None
        return DecodedDate(instant=instant, all_day=False)

    def decode_value(self, field_value: FieldValue | None) -> DecodedDate | None:
        if field_value is None:
            return None
        return self.decode(field_value.raw_encoded, field_id=field_value.field_id)

    def encode(self, instant: datetime | date, *, all_day: bool = False) -> dict[str, str]:
        """Encode an instant back into the board's ``{date, time}`` shape.

        All-day values carry only the calendar date as seen in the display frame.
        Raises ``ValueError`` when the instant cannot be expressed in the
        source frame.
        """
        if not isinstance(instant, datetime):
            return {DATE_KEY: instant.isoformat()}

        try:
            if all_day:
                day = instant.astimezone(self._display_tz).date() if instant.tzinfo else instant.date()
                return {DATE_KEY: day.isoformat()}

            aware = instant if instant.tzinfo is not None else instant.replace(tzinfo=self._display_tz)
            local = aware.astimezone(self._source_tz)
        except OverflowError as exc:
            raise ValueError(f"date/time value out of range: {instant.isoformat()}") from exc
        return {DATE_KEY: local.date().isoformat(), TIME_KEY: local.strftime(TIME_FORMAT)}

    def to_display(self, instant: datetime) -> datetime:
        """Express an instant in the display frame; naive values are taken as display-local.

        Raises ``ValueError`` when the instant falls outside the display frame's range.
        """
        if instant.tzinfo is None:
            return instant.replace(tzinfo=self._display_tz)
        try:
            return instant.astimezone(self._display_tz)
        except OverflowError as exc:
            raise ValueError(f"date/time value out of range: {instant.isoformat()}") from exc

    def parse_edit_value(self, value: datetime | date | str) -> tuple[datetime, bool]:
        """Parse an edit-surface value into ``(instant, is_date_only)``.

        Accepts datetimes, dates, ISO strings with or without an offset (a
        trailing ``Z`` means UTC) and date-only strings. Naive values are
        interpreted in the display frame.

        Raises ``ValueError`` for anything else.
        """
        if isinstance(value, datetime):
            return self.to_display(value), False
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=self._display_tz), True
        if not isinstance(value, str):
            raise ValueError(f"unsupported date/time value: {value!r}")

        normalized = value.strip()
        if not normalized:
            raise ValueError("date/time value must be a non-empty string")

        if "T" not in normalized and " " not in normalized:
            try:
                day = date.fromisoformat(normalized)
            except ValueError as exc:
                raise ValueError(f"invalid date value: {value}") from exc
            return datetime(day.year, day.month, day.day, tzinfo=self._display_tz), True

        if normalized.endswith("Z"):
            normalized = f"{normalized[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError as exc:
            raise ValueError(f"invalid date/time value: {value}") from exc
        return self.to_display(parsed), False

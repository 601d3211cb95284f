"""Pydantic models shared by the mapping engine, the orchestrator and data services."""

from __future__ import annotations

import json
from datetime import date, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator


class FieldKind(StrEnum):
    """Typed field kinds understood by the field registry."""

    text = "text"
    long_text = "long_text"
    numbers = "numbers"
    date = "date"
    status = "status"
    dropdown = "dropdown"
    people = "people"
    checkbox = "checkbox"
    unknown = "unknown"


SELECT_KINDS = frozenset({FieldKind.status, FieldKind.dropdown})


class FieldOption(BaseModel):
    """One labeled option of a select-like field."""

    model_config = ConfigDict(frozen=True)

    option_id: str
    label: str
    color: str | None = None


class FieldDefinition(BaseModel):
    """A typed slot in the board schema. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    field_id: str = Field(min_length=1)
    title: str = ""
    kind: FieldKind = FieldKind.unknown
    options: tuple[FieldOption, ...] = ()

    def option(self, option_id: str) -> FieldOption | None:
        for option in self.options:
            if option.option_id == option_id:
                return option
        return None


class RawFieldSchema(BaseModel):
    """Schema entry as returned by a data service, before settings are decoded."""

    field_id: str = Field(min_length=1)
    title: str = ""
    kind: str = ""
    settings_encoding: str | None = None


class FieldValue(BaseModel):
    """A record's value for one field, exactly as the source encodes it."""

    model_config = ConfigDict(frozen=True)

    field_id: str
    raw_encoded: str | None = None
    display_text: str | None = None


class Record(BaseModel):
    """A board item with its title and typed field values."""

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(min_length=1)
    title: str = ""
    field_values: tuple[FieldValue, ...] = ()

    @field_validator("record_id", mode="before")
    @classmethod
    def _coerce_record_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("field_values")
    @classmethod
    def _unique_field_ids(cls, value: tuple[FieldValue, ...]) -> tuple[FieldValue, ...]:
        seen: set[str] = set()
        for field_value in value:
            if field_value.field_id in seen:
                raise ValueError(f"duplicate field id in record: {field_value.field_id}")
            seen.add(field_value.field_id)
        return value

    def field(self, field_id: str) -> FieldValue | None:
        for field_value in self.field_values:
            if field_value.field_id == field_id:
                return field_value
        return None


class BoardUser(BaseModel):
    """A person that can be assigned in people fields."""

    user_id: str
    name: str = ""

    @field_validator("user_id", mode="before")
    @classmethod
    def _coerce_user_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class DecodedDate(BaseModel):
    """An instant decoded from a date field, in the display frame."""

    model_config = ConfigDict(frozen=True)

    instant: datetime
    all_day: bool


class CalendarEvent(BaseModel):
    """Calendar-ready view of a record. Never the system of record."""

    model_config = ConfigDict(frozen=True)

    event_id: str | None = None
    title: str = ""
    start: datetime
    end: datetime
    all_day: bool = False
    color: str | None = None
    status_label: str = ""
    source_fields: tuple[FieldValue, ...] = ()


class EventEdit(BaseModel):
    """A user-committed edit of an event, plus the auxiliary fields the user touched.

    ``field_changes`` holds only the fields the user edited; everything else is
    left untouched on the board.
    """

    event_id: str | None = None
    title: str | None = None
    start: datetime | date | str
    end: datetime | date | str | None = None
    all_day: bool | None = None
    field_changes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_id", mode="before")
    @classmethod
    def _normalize_event_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("start", "end", mode="before")
    @classmethod
    def _reject_blank(cls, value: Any, info: ValidationInfo) -> Any:
        if isinstance(value, str) and not value.strip():
            if info.field_name == "start":
                raise ValueError("start must be a non-empty value")
            return None
        return value


class EventDraft(BaseModel):
    """Values handed to an edit surface. Creating a draft never calls the backend."""

    event_id: str | None = None
    title: str = ""
    start: datetime
    end: datetime
    all_day: bool = False
    field_inputs: dict[str, Any] = Field(default_factory=dict)


WriteIntent = Literal["create", "update"]


class WritePayload(BaseModel):
    """Partial field update (or creation) to send to the data service."""

    intent: WriteIntent
    board_id: str
    record_id: str | None = None
    title: str | None = None
    field_values: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_intent(self) -> WritePayload:
        if self.intent == "update" and not self.record_id:
            raise ValueError("update payloads require a record_id")
        if self.intent == "create" and self.record_id is not None:
            raise ValueError("create payloads must not carry a record_id")
        return self

    def encoded_fields(self) -> str:
        """Serialize the field map as the JSON object string the board API expects."""
        return json.dumps(self.field_values, separators=(",", ":"))


SyncOperation = Literal["load_all", "save", "reschedule"]


class SyncResult(BaseModel):
    """Typed outcome of an orchestrator operation."""

    status: Literal["ok", "error"]
    operation: SyncOperation
    board_id: str
    event_count: int = 0
    record_id: str | None = None
    error: str | None = None
    error_type: str | None = None
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return self.status == "ok"

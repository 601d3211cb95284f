"""Record ↔ calendar event mapping.

Forward: a board ``Record`` becomes a ``CalendarEvent`` (or nothing, when it
has no decodable start). Reverse: a user ``EventEdit`` becomes a partial
``WritePayload`` carrying the title, the two designated date fields and only
the auxiliary fields the user touched.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from boardcal.config import DesignatedFields
from boardcal.errors import DecodeError
from boardcal.fields import FieldRegistry
from boardcal.models import (
    CalendarEvent,
    EventDraft,
    EventEdit,
    FieldKind,
    FieldOption,
    Record,
    WritePayload,
)
from boardcal.temporal import TemporalNormalizer

logger = logging.getLogger(__name__)


class RecordEventMapper:
    """Bidirectional mapping between board records and calendar events."""

    def __init__(
        self,
        registry: FieldRegistry,
        *,
        board_id: str,
        fields: DesignatedFields | None = None,
    ) -> None:
        self.registry = registry
        self.board_id = board_id
        self.fields = fields or DesignatedFields()

    @property
    def normalizer(self) -> TemporalNormalizer:
        return self.registry.normalizer

    # ------------------------------------------------------------------
    # Forward mapping
    # ------------------------------------------------------------------

    def to_event(self, record: Record) -> CalendarEvent | None:
        """Build the calendar event for *record*, or None when it is unscheduled."""
        start = self.normalizer.decode_value(record.field(self.fields.start))
        if start is None:
            logger.debug("Record %s has no decodable start; skipping", record.record_id)
            return None

        end = self.normalizer.decode_value(record.field(self.fields.end))
        option = self._resolve_status(record)

        return CalendarEvent(
            event_id=record.record_id,
            title=record.title,
            start=start.instant,
            end=end.instant if end is not None else start.instant,
            all_day=start.all_day,
            color=option.color if option is not None else None,
            status_label=option.label if option is not None else "",
            source_fields=record.field_values,
        )

    def to_events(self, records: Iterable[Record]) -> list[CalendarEvent]:
        """Map every record; a record that fails to map is dropped, not fatal."""
        events: list[CalendarEvent] = []
        for record in records:
            try:
                event = self.to_event(record)
            except Exception as exc:
                logger.warning("Dropping record %s from calendar: %s", record.record_id, exc)
                continue
            if event is not None:
                events.append(event)
        return events

    def _resolve_status(self, record: Record) -> FieldOption | None:
        status_field_id = self.fields.status
        if not status_field_id:
            return None
        field_value = record.field(status_field_id)
        if field_value is None:
            return None

        try:
            option_id = self.registry.selected_option_id(field_value)
        except DecodeError as exc:
            logger.warning("Ignoring status of record %s: %s", record.record_id, exc)
            return None

        option = self.registry.resolve_option(status_field_id, option_id)
        if option is None and option_id is not None:
            logger.debug(
                "Status option %s of record %s is not in the schema of field %s",
                option_id,
                record.record_id,
                status_field_id,
            )
        return option

    # ------------------------------------------------------------------
    # Reverse mapping
    # ------------------------------------------------------------------

    def to_write_payload(self, edit: EventEdit) -> WritePayload:
        """Encode a user edit as a partial write.

        Raises ``ValueError`` for unparseable dates and ``SchemaResolutionError``
        for edited fields or options the schema does not know.
        """
        start, start_is_date = self.normalizer.parse_edit_value(edit.start)
        if edit.end is None:
            end, end_is_date = start, start_is_date
        else:
            end, end_is_date = self.normalizer.parse_edit_value(edit.end)
        all_day = edit.all_day if edit.all_day is not None else (start_is_date and end_is_date)

        field_values: dict[str, Any] = {}
        for field_id, instant in ((self.fields.start, start), (self.fields.end, end)):
            if field_id not in self.registry:
                logger.warning("Date field %s is missing from the board schema; not written", field_id)
                continue
            field_values[field_id] = self.normalizer.encode(instant, all_day=all_day)

        designated_dates = {self.fields.start, self.fields.end}
        for field_id, value in edit.field_changes.items():
            if field_id in designated_dates:
                logger.debug("Ignoring field change for date field %s; start/end win", field_id)
                continue
            field_values[field_id] = self.registry.encode_value(field_id, value)

        if edit.event_id is None:
            return WritePayload(
                intent="create",
                board_id=self.board_id,
                title=edit.title or "",
                field_values=field_values,
            )
        return WritePayload(
            intent="update",
            board_id=self.board_id,
            record_id=edit.event_id,
            title=edit.title,
            field_values=field_values,
        )

    def reschedule_payload(
        self,
        event_id: str,
        start: datetime | date | str,
        end: datetime | date | str | None,
        *,
        all_day: bool | None = None,
    ) -> WritePayload:
        """Payload for a drag, drop or resize: dates only, title untouched."""
        return self.to_write_payload(
            EventEdit(event_id=event_id, start=start, end=end, all_day=all_day)
        )

    # ------------------------------------------------------------------
    # Edit surface drafts
    # ------------------------------------------------------------------

    def draft_from_event(self, event: CalendarEvent) -> EventDraft:
        """Draft for editing an existing event, pre-filled with its auxiliary inputs."""
        designated_dates = {self.fields.start, self.fields.end}
        field_inputs: dict[str, Any] = {}
        for field_value in event.source_fields:
            definition = self.registry.get(field_value.field_id)
            if field_value.field_id in designated_dates or definition is None:
                continue
            if definition.kind is FieldKind.date:
                continue
            try:
                field_inputs[field_value.field_id] = self.registry.decode_value(field_value)
            except DecodeError as exc:
                logger.warning("Leaving input for field %s empty: %s", field_value.field_id, exc)
        return EventDraft(
            event_id=event.event_id,
            title=event.title,
            start=event.start,
            end=event.end,
            all_day=event.all_day,
            field_inputs=field_inputs,
        )

    def draft_from_selection(self, selection: Mapping[str, Any]) -> EventDraft:
        """Draft for a new event from a calendar selection ``{start, end?, all_day?}``."""
        if selection.get("start") in (None, ""):
            raise ValueError("selection requires a start value")
        start, start_is_date = self.normalizer.parse_edit_value(selection["start"])
        end_raw = selection.get("end")
        if end_raw in (None, ""):
            end, end_is_date = start, start_is_date
        else:
            end, end_is_date = self.normalizer.parse_edit_value(end_raw)
        all_day = selection.get("all_day")
        return EventDraft(
            title=str(selection.get("title") or ""),
            start=start,
            end=end,
            all_day=bool(all_day) if all_day is not None else (start_is_date and end_is_date),
        )

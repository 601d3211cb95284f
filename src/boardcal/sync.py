"""Sync orchestrator: keeps the calendar's event set consistent with the board.

The board is the source of truth. Reads replace the event set wholesale;
writes are sent as partial payloads and always followed by a full re-read,
never by an optimistic local update. Every operation returns a
``SyncResult`` instead of raising, so a host can offer a retry.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from boardcal.config import BoardCalendarConfig
from boardcal.core.telemetry import mark_span_error, sync_span
from boardcal.errors import (
    BoardCalendarError,
    RemoteReadError,
    RemoteWriteError,
    SchemaResolutionError,
    build_structured_error,
)
from boardcal.fields import FieldRegistry
from boardcal.mapper import RecordEventMapper
from boardcal.models import (
    BoardUser,
    CalendarEvent,
    EventDraft,
    EventEdit,
    FieldOption,
    SyncOperation,
    SyncResult,
    WritePayload,
)
from boardcal.service import BoardDataService
from boardcal.temporal import TemporalNormalizer

logger = logging.getLogger(__name__)


class BoardCalendarSync:
    """Sequences reads, mapping, user edits and write-backs for one board."""

    def __init__(
        self,
        service: BoardDataService,
        config: BoardCalendarConfig,
        normalizer: TemporalNormalizer | None = None,
    ) -> None:
        self._service = service
        self._config = config
        self._normalizer = normalizer or TemporalNormalizer(
            source_timezone=config.temporal.source_timezone,
            display_timezone=config.temporal.display_timezone,
        )
        self._registry: FieldRegistry | None = None
        self._events: tuple[CalendarEvent, ...] = ()
        self._users: tuple[BoardUser, ...] = ()

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def board_id(self) -> str:
        return self._config.board_id

    @property
    def events(self) -> tuple[CalendarEvent, ...]:
        """The current event set. Replaced wholesale by every successful refresh."""
        return self._events

    @property
    def schema(self) -> FieldRegistry | None:
        """Registry built by the last successful refresh, or None before the first."""
        return self._registry

    @property
    def users(self) -> tuple[BoardUser, ...]:
        return self._users

    def status_options(self) -> list[FieldOption]:
        """Options of the designated status field, in schema order."""
        status_field_id = self._config.fields.status
        if self._registry is None or not status_field_id:
            return []
        return list(self._registry.options(status_field_id).values())

    def _mapper(self, registry: FieldRegistry) -> RecordEventMapper:
        return RecordEventMapper(registry, board_id=self.board_id, fields=self._config.fields)

    def _result(self, operation: SyncOperation, **kwargs: Any) -> SyncResult:
        return SyncResult(status="ok", operation=operation, board_id=self.board_id, **kwargs)

    def _error_result(
        self, exc: BaseException, operation: SyncOperation, *, record_id: str | None = None
    ) -> SyncResult:
        return SyncResult(
            **build_structured_error(exc, operation=operation, board_id=self.board_id),
            event_count=len(self._events),
            record_id=record_id,
        )

    @property
    def _timeout(self) -> float:
        return self._config.remote.request_timeout_seconds

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def load_all(self) -> SyncResult:
        """Re-read schema, records and users and rebuild the event set.

        On failure the previous event set is kept and an error result is
        returned.
        """
        with sync_span("load_all", board_id=self.board_id) as span:
            try:
                async with asyncio.timeout(self._timeout):
                    raw_schema, records = await asyncio.gather(
                        self._service.read_schema(self.board_id),
                        self._service.read_records(self.board_id),
                    )
            except Exception as exc:
                error = _wrap(exc, RemoteReadError, "Failed to read board")
                logger.error(
                    "Refresh of board %s failed; keeping %d stale events: %s",
                    self.board_id,
                    len(self._events),
                    error,
                )
                mark_span_error(span, str(error))
                return self._error_result(error, "load_all")

            registry = FieldRegistry.from_schema(raw_schema, normalizer=self._normalizer)
            events = self._mapper(registry).to_events(records)

            self._registry = registry
            self._events = tuple(events)
            span.set_attribute("sync.record_count", len(records))
            span.set_attribute("sync.event_count", len(events))
            logger.info(
                "Loaded %d events from %d records on board %s",
                len(events),
                len(records),
                self.board_id,
            )

            await self._refresh_users()
            return self._result("load_all", event_count=len(self._events))

    async def _refresh_users(self) -> None:
        try:
            async with asyncio.timeout(self._timeout):
                users = await self._service.read_users()
        except Exception as exc:
            logger.warning(
                "Could not read users for board %s; keeping %d known users: %s",
                self.board_id,
                len(self._users),
                exc,
            )
            return
        self._users = tuple(users)

    async def _ensure_registry(self) -> FieldRegistry:
        """Return the current registry, reading the schema once if never loaded."""
        if self._registry is not None:
            return self._registry
        try:
            async with asyncio.timeout(self._timeout):
                raw_schema = await self._service.read_schema(self.board_id)
        except RemoteReadError:
            raise
        except Exception as exc:
            raise _wrap(exc, RemoteReadError, "Failed to read board schema") from exc
        self._registry = FieldRegistry.from_schema(raw_schema, normalizer=self._normalizer)
        return self._registry

    # ------------------------------------------------------------------
    # Write-back
    # ------------------------------------------------------------------

    async def save(self, edit: EventEdit) -> SyncResult:
        """Write a user edit to the board, then reconcile with a full refresh.

        The event set is never changed locally; a failed write leaves it
        untouched and returns an error result.
        """
        with sync_span("save", board_id=self.board_id) as span:
            try:
                registry = await self._ensure_registry()
            except RemoteReadError as exc:
                logger.error("Cannot save edit on board %s: %s", self.board_id, exc)
                mark_span_error(span, str(exc))
                return self._error_result(exc, "save", record_id=edit.event_id)

            try:
                payload = self._mapper(registry).to_write_payload(edit)
            except (SchemaResolutionError, ValueError) as exc:
                error = (
                    exc
                    if isinstance(exc, SchemaResolutionError)
                    else SchemaResolutionError(f"Invalid edit: {exc}")
                )
                logger.warning("Rejected edit on board %s: %s", self.board_id, error)
                mark_span_error(span, str(error))
                return self._error_result(error, "save", record_id=edit.event_id)

            return await self._write_and_reconcile(payload, "save", span)

    async def reschedule(
        self,
        event_id: str,
        start: datetime | date | str,
        end: datetime | date | str | None = None,
        *,
        all_day: bool | None = None,
    ) -> SyncResult:
        """Move or resize an existing event. Only its two date fields are written."""
        with sync_span("reschedule", board_id=self.board_id) as span:
            try:
                registry = await self._ensure_registry()
                payload = self._mapper(registry).reschedule_payload(
                    event_id, start, end, all_day=all_day
                )
            except (BoardCalendarError, ValueError) as exc:
                logger.warning("Cannot reschedule event %s: %s", event_id, exc)
                mark_span_error(span, str(exc))
                return self._error_result(exc, "reschedule", record_id=event_id)

            return await self._write_and_reconcile(payload, "reschedule", span)

    async def _write_and_reconcile(
        self, payload: WritePayload, operation: SyncOperation, span: Any
    ) -> SyncResult:
        try:
            async with asyncio.timeout(self._timeout):
                record_id = await self._service.write_fields(payload)
        except Exception as exc:
            error = _wrap(exc, RemoteWriteError, f"Failed to {payload.intent} record")
            logger.error(
                "Write (%s) to board %s failed; calendar unchanged: %s",
                payload.intent,
                self.board_id,
                error,
            )
            mark_span_error(span, str(error))
            return self._error_result(error, operation, record_id=payload.record_id)

        logger.info(
            "Wrote %s of record %s on board %s (%d fields)",
            payload.intent,
            record_id,
            self.board_id,
            len(payload.field_values),
        )
        span.set_attribute("sync.record_id", record_id)

        refresh = await self.load_all()
        if not refresh.ok:
            # The write landed; only the reconcile read failed.
            return refresh.model_copy(update={"operation": operation, "record_id": record_id})
        return self._result(operation, record_id=record_id, event_count=refresh.event_count)

    # ------------------------------------------------------------------
    # UI boundary
    # ------------------------------------------------------------------

    async def on_user_edit_committed(self, edit: EventEdit) -> SyncResult:
        return await self.save(edit)

    def on_selection_or_drag(self, partial: CalendarEvent | Mapping[str, Any]) -> EventDraft:
        """Build an edit-surface draft without touching the board.

        Accepts an existing event (click) or a selection mapping
        ``{start, end?, all_day?}``. Raises ``ValueError`` for an unusable selection.
        """
        mapper = self._mapper(self._registry or FieldRegistry((), normalizer=self._normalizer))
        if isinstance(partial, CalendarEvent):
            return mapper.draft_from_event(partial)
        return mapper.draft_from_selection(partial)

    async def shutdown(self) -> None:
        await self._service.shutdown()


def _wrap(
    exc: BaseException, error_cls: type[BoardCalendarError], prefix: str
) -> BoardCalendarError:
    if isinstance(exc, error_cls):
        return exc
    if isinstance(exc, TimeoutError):
        return error_cls(f"{prefix}: timed out")
    error = error_cls(f"{prefix}: {exc}")
    error.__cause__ = exc
    return error

"""Unit tests for boardcal.sync: refresh, write-back and reconcile behaviour."""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import UTC, datetime

import pytest
from conftest import BOARD_ID, date_value, make_record

from boardcal.config import RemoteConfig, TemporalConfig
from boardcal.errors import RemoteRequestError
from boardcal.models import CalendarEvent, EventDraft, EventEdit
from boardcal.sync import BoardCalendarSync

pytestmark = pytest.mark.unit


@pytest.fixture
def sync(service, config) -> BoardCalendarSync:
    return BoardCalendarSync(service, config)


# ============================================================================
# load_all()
# ============================================================================


class TestLoadAll:
    async def test_builds_events_from_scheduled_records(self, sync):
        result = await sync.load_all()
        assert result.ok
        assert result.operation == "load_all"
        assert result.board_id == BOARD_ID
        assert result.event_count == 2
        assert [e.event_id for e in sync.events] == ["7", "8"]

    async def test_scenario_timed_event(self, sync):
        await sync.load_all()
        event = next(e for e in sync.events if e.event_id == "7")
        assert event.start == datetime(2024, 3, 1, 9, 0, tzinfo=UTC)
        assert event.end == datetime(2024, 3, 1, 10, 0, tzinfo=UTC)
        assert event.all_day is False
        assert event.color == "#00c875"

    async def test_scenario_all_day_event(self, sync):
        await sync.load_all()
        event = next(e for e in sync.events if e.event_id == "8")
        assert event.start == datetime(2024, 3, 4, tzinfo=UTC)
        assert event.end == event.start
        assert event.all_day is True

    async def test_events_replaced_wholesale(self, sync, service):
        await sync.load_all()
        before = sync.events
        del service.records["8"]
        await sync.load_all()
        assert sync.events is not before
        assert [e.event_id for e in sync.events] == ["7"]
        assert len(before) == 2

    async def test_read_failure_keeps_previous_events(self, sync, service):
        await sync.load_all()
        previous = sync.events
        service.fail_reads = RemoteRequestError(status_code=500, message="boom")

        result = await sync.load_all()

        assert not result.ok
        assert result.error_type == "RemoteReadError"
        assert result.retryable is True
        assert result.event_count == 2
        assert sync.events is previous

    async def test_read_failure_before_first_load(self, sync, service):
        service.fail_reads = ConnectionError("network down")
        result = await sync.load_all()
        assert not result.ok
        assert result.error_type == "RemoteReadError"
        assert "network down" in result.error
        assert sync.events == ()
        assert sync.schema is None

    async def test_read_timeout_is_error_result(self, sync, service):
        async def slow_read(board_id):
            await asyncio.sleep(5)
            return []

        service.read_records = slow_read
        result = await sync.load_all()
        assert not result.ok
        assert result.error_type == "RemoteReadError"
        assert "timed out" in result.error

    async def test_users_loaded(self, sync):
        await sync.load_all()
        assert [u.user_id for u in sync.users] == ["42"]

    async def test_user_failure_is_not_fatal(self, sync, service):
        await sync.load_all()
        service.fail_users = RemoteRequestError(status_code=503, message="busy")
        result = await sync.load_all()
        assert result.ok
        assert [u.name for u in sync.users] == ["Ada"]

    async def test_status_options(self, sync):
        assert sync.status_options() == []
        await sync.load_all()
        assert [o.label for o in sync.status_options()] == ["Working on it", "Done", "Stuck"]

    async def test_out_of_range_record_dropped_not_fatal(self, service, config):
        config = dataclasses.replace(config, temporal=TemporalConfig(display_timezone="Asia/Tokyo"))
        sync = BoardCalendarSync(service, config)
        service.records["11"] = make_record(
            "11", "Far future", date_value("date4", "9999-12-31", "23:00:00")
        )

        result = await sync.load_all()

        assert result.ok
        assert [e.event_id for e in sync.events] == ["7", "8"]

    async def test_clock_change_gap_record_is_unscheduled(self, service, config):
        config = dataclasses.replace(
            config, temporal=TemporalConfig(source_timezone="Europe/Berlin", display_timezone="UTC")
        )
        sync = BoardCalendarSync(service, config)
        service.records["12"] = make_record(
            "12", "Skipped hour", date_value("date4", "2024-03-31", "02:30:00")
        )

        result = await sync.load_all()

        assert result.ok
        assert "12" not in [e.event_id for e in sync.events]

    async def test_concurrent_loads_leave_consistent_set(self, sync):
        results = await asyncio.gather(sync.load_all(), sync.load_all())
        assert all(r.ok for r in results)
        assert [e.event_id for e in sync.events] == ["7", "8"]


# ============================================================================
# save() / reschedule()
# ============================================================================


class TestSave:
    async def test_update_writes_partial_payload_then_reconciles(self, sync, service):
        await sync.load_all()
        service.calls.clear()

        result = await sync.save(
            EventEdit(
                event_id="7",
                title="Sync (moved)",
                start="2024-03-01T11:00:00Z",
                end="2024-03-01T12:00:00Z",
            )
        )

        assert result.ok
        assert result.operation == "save"
        assert result.record_id == "7"
        assert service.calls[0] == "write_fields"
        assert "read_records" in service.calls[1:]
        payload = service.writes[-1]
        assert set(payload.field_values) == {"date4", "date__1"}
        assert payload.title == "Sync (moved)"

        event = next(e for e in sync.events if e.event_id == "7")
        assert event.title == "Sync (moved)"
        assert event.start == datetime(2024, 3, 1, 11, 0, tzinfo=UTC)
        # Status untouched by the partial write.
        assert event.status_label == "Done"

    async def test_create_adds_event_after_reconcile(self, sync, service):
        await sync.load_all()
        result = await sync.on_user_edit_committed(EventEdit(title="Planning", start="2024-03-06"))
        assert result.ok
        assert result.record_id == "1000"
        assert service.writes[-1].intent == "create"
        assert any(e.title == "Planning" and e.all_day for e in sync.events)
        assert result.event_count == 3

    async def test_write_failure_leaves_events_untouched(self, sync, service):
        await sync.load_all()
        previous = sync.events
        service.fail_writes = RemoteRequestError(status_code=500, message="server error")
        service.calls.clear()

        result = await sync.save(EventEdit(event_id="7", start="2024-03-02"))

        assert not result.ok
        assert result.error_type == "RemoteWriteError"
        assert result.retryable is True
        assert result.record_id == "7"
        assert sync.events is previous
        assert service.calls == ["write_fields"]

    async def test_write_timeout_is_error_result(self, sync, service):
        await sync.load_all()
        service.write_delay = 5
        result = await sync.save(EventEdit(event_id="7", start="2024-03-02"))
        assert not result.ok
        assert result.error_type == "RemoteWriteError"
        assert "timed out" in result.error

    async def test_invalid_edit_not_written(self, sync, service):
        await sync.load_all()
        result = await sync.save(
            EventEdit(event_id="7", start="2024-03-02", field_changes={"status__1": "99"})
        )
        assert not result.ok
        assert result.error_type == "SchemaResolutionError"
        assert result.retryable is False
        assert service.writes == []

    async def test_unparseable_date_not_written(self, sync, service):
        await sync.load_all()
        result = await sync.save(EventEdit(event_id="7", start="next tuesday"))
        assert not result.ok
        assert result.error_type == "SchemaResolutionError"
        assert service.writes == []

    async def test_out_of_range_edit_not_written(self, service, config):
        config = dataclasses.replace(config, temporal=TemporalConfig(display_timezone="Asia/Tokyo"))
        sync = BoardCalendarSync(service, config)
        await sync.load_all()

        result = await sync.save(EventEdit(event_id="7", start="9999-12-31T23:00:00+00:00"))

        assert not result.ok
        assert result.error_type == "SchemaResolutionError"
        assert "out of range" in result.error
        assert service.writes == []

    async def test_save_before_load_reads_schema_first(self, sync, service):
        result = await sync.save(EventEdit(event_id="8", start="2024-03-05"))
        assert result.ok
        assert service.calls[0] == "read_schema"
        assert service.writes[-1].field_values["date4"] == {"date": "2024-03-05"}

    async def test_failed_reconcile_reports_error_but_write_landed(self, sync, service):
        await sync.load_all()
        original_write = service.write_fields

        async def write_then_break_reads(payload):
            record_id = await original_write(payload)
            service.fail_reads = RemoteRequestError(status_code=502, message="bad gateway")
            return record_id

        service.write_fields = write_then_break_reads
        result = await sync.save(EventEdit(event_id="7", start="2024-03-02"))

        assert not result.ok
        assert result.operation == "save"
        assert result.record_id == "7"
        assert result.error_type == "RemoteReadError"
        assert len(service.writes) == 1


class TestReschedule:
    async def test_writes_dates_only(self, sync, service):
        await sync.load_all()
        result = await sync.reschedule("7", "2024-03-02T09:00:00Z", "2024-03-02T09:30:00Z")
        assert result.ok
        assert result.operation == "reschedule"
        payload = service.writes[-1]
        assert payload.title is None
        assert set(payload.field_values) == {"date4", "date__1"}
        event = next(e for e in sync.events if e.event_id == "7")
        assert event.title == "Sync"
        assert event.end == datetime(2024, 3, 2, 9, 30, tzinfo=UTC)

    async def test_invalid_date(self, sync, service):
        await sync.load_all()
        result = await sync.reschedule("7", "not-a-date")
        assert not result.ok
        assert result.operation == "reschedule"
        assert service.writes == []


# ============================================================================
# Edit surface
# ============================================================================


class TestOnSelectionOrDrag:
    async def test_existing_event_draft(self, sync, service):
        await sync.load_all()
        service.calls.clear()
        event = next(e for e in sync.events if e.event_id == "7")
        draft = sync.on_selection_or_drag(event)
        assert isinstance(draft, EventDraft)
        assert draft.event_id == "7"
        assert draft.field_inputs == {"status__1": "1"}
        assert service.calls == []

    def test_selection_before_load(self, sync, service):
        draft = sync.on_selection_or_drag({"start": "2024-03-04", "end": "2024-03-04"})
        assert draft.event_id is None
        assert draft.all_day is True
        assert service.calls == []

    def test_unsaved_event(self, sync):
        event = CalendarEvent(
            start=datetime(2024, 3, 4, 9, tzinfo=UTC), end=datetime(2024, 3, 4, 10, tzinfo=UTC)
        )
        draft = sync.on_selection_or_drag(event)
        assert draft.event_id is None
        assert draft.field_inputs == {}


async def test_custom_timeout_from_config(service, config):
    config = dataclasses.replace(
        config, remote=RemoteConfig(api_token="t", request_timeout_seconds=0.05)
    )
    sync = BoardCalendarSync(service, config)
    service.write_delay = 0.2
    result = await sync.save(EventEdit(event_id="7", start="2024-03-02"))
    assert not result.ok
    assert result.error_type == "RemoteWriteError"


async def test_shutdown_delegates_to_service(sync, service):
    await sync.shutdown()

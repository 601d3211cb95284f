"""Shared test fixtures for the boardcal test suite."""

from __future__ import annotations

import asyncio
import json

import pytest

from boardcal.config import BoardCalendarConfig, RemoteConfig
from boardcal.fields import FieldRegistry
from boardcal.mapper import RecordEventMapper
from boardcal.models import BoardUser, FieldValue, RawFieldSchema, Record, WritePayload
from boardcal.service import BoardDataService
from boardcal.temporal import TemporalNormalizer

BOARD_ID = "1234567890"

STATUS_SETTINGS = json.dumps(
    {
        "labels": {"0": "Working on it", "1": "Done", "2": "Stuck"},
        "labels_colors": {
            "0": {"color": "#fdab3d"},
            "1": {"color": "#00c875"},
            "2": {"color": "#e2445c"},
        },
    }
)

DROPDOWN_SETTINGS = json.dumps(
    {"labels": [{"id": 1, "name": "Backend"}, {"id": 2, "name": "Frontend"}]}
)


def date_value(field_id: str, day: str, clock: str | None = None) -> FieldValue:
    """Build a date field value the way the board encodes it."""
    payload: dict[str, str] = {"date": day}
    if clock is not None:
        payload["time"] = clock
    return FieldValue(field_id=field_id, raw_encoded=json.dumps(payload))


def status_value(index: int | None, field_id: str = "status__1") -> FieldValue:
    if index is None:
        return FieldValue(field_id=field_id, raw_encoded=None)
    return FieldValue(field_id=field_id, raw_encoded=json.dumps({"index": index}))


def make_record(record_id: str, title: str, *field_values: FieldValue) -> Record:
    return Record(record_id=record_id, title=title, field_values=field_values)


@pytest.fixture
def raw_schema() -> list[RawFieldSchema]:
    return [
        RawFieldSchema(field_id="name", title="Name", kind="name"),
        RawFieldSchema(field_id="date4", title="Start", kind="date"),
        RawFieldSchema(field_id="date__1", title="End", kind="date"),
        RawFieldSchema(
            field_id="status__1", title="Status", kind="status", settings_encoding=STATUS_SETTINGS
        ),
        RawFieldSchema(
            field_id="dropdown__1", title="Area", kind="dropdown", settings_encoding=DROPDOWN_SETTINGS
        ),
        RawFieldSchema(field_id="text__1", title="Notes", kind="text"),
        RawFieldSchema(field_id="people__1", title="Owner", kind="people"),
        RawFieldSchema(field_id="check__1", title="Billable", kind="checkbox"),
        RawFieldSchema(field_id="numbers__1", title="Hours", kind="numbers"),
    ]


@pytest.fixture
def normalizer() -> TemporalNormalizer:
    return TemporalNormalizer()


@pytest.fixture
def registry(raw_schema: list[RawFieldSchema], normalizer: TemporalNormalizer) -> FieldRegistry:
    return FieldRegistry.from_schema(raw_schema, normalizer=normalizer)


@pytest.fixture
def mapper(registry: FieldRegistry) -> RecordEventMapper:
    return RecordEventMapper(registry, board_id=BOARD_ID)


@pytest.fixture
def config() -> BoardCalendarConfig:
    return BoardCalendarConfig(
        board_id=BOARD_ID,
        remote=RemoteConfig(api_token="test-token", request_timeout_seconds=0.5),
    )


class InMemoryBoardService(BoardDataService):
    """Board data service double that keeps records in memory.

    Set ``fail_reads``/``fail_writes``/``fail_users`` to an exception to make
    the matching call raise it.
    """

    def __init__(
        self,
        schema: list[RawFieldSchema],
        records: list[Record] | None = None,
        users: list[BoardUser] | None = None,
    ) -> None:
        self.schema = list(schema)
        self.records: dict[str, Record] = {r.record_id: r for r in records or []}
        self.users = list(users or [])
        self.writes: list[WritePayload] = []
        self.calls: list[str] = []
        self.fail_reads: Exception | None = None
        self.fail_writes: Exception | None = None
        self.fail_users: Exception | None = None
        self.write_delay: float = 0.0
        self._next_id = 1000

    @property
    def name(self) -> str:
        return "memory"

    async def read_records(self, board_id: str) -> list[Record]:
        self.calls.append("read_records")
        if self.fail_reads is not None:
            raise self.fail_reads
        return list(self.records.values())

    async def read_schema(self, board_id: str) -> list[RawFieldSchema]:
        self.calls.append("read_schema")
        if self.fail_reads is not None:
            raise self.fail_reads
        return list(self.schema)

    async def read_users(self) -> list[BoardUser]:
        self.calls.append("read_users")
        if self.fail_users is not None:
            raise self.fail_users
        return list(self.users)

    async def write_fields(self, payload: WritePayload) -> str:
        self.calls.append("write_fields")
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if self.fail_writes is not None:
            raise self.fail_writes
        self.writes.append(payload)

        if payload.record_id is None:
            record_id = str(self._next_id)
            self._next_id += 1
            existing = Record(record_id=record_id, title=payload.title or "")
        else:
            record_id = payload.record_id
            existing = self.records[record_id]

        values: dict[str, FieldValue] = {fv.field_id: fv for fv in existing.field_values}
        for field_id, value in payload.field_values.items():
            values[field_id] = FieldValue(field_id=field_id, raw_encoded=json.dumps(value))
        title = existing.title if payload.title is None else payload.title
        self.records[record_id] = Record(
            record_id=record_id, title=title, field_values=tuple(values.values())
        )
        return record_id


@pytest.fixture
def service(raw_schema: list[RawFieldSchema]) -> InMemoryBoardService:
    return InMemoryBoardService(
        raw_schema,
        records=[
            make_record(
                "7",
                "Sync",
                date_value("date4", "2024-03-01", "09:00:00"),
                date_value("date__1", "2024-03-01", "10:00:00"),
                status_value(1),
            ),
            make_record("8", "Offsite", date_value("date4", "2024-03-04")),
            make_record("9", "Backlog idea"),
        ],
        users=[BoardUser(user_id=42, name="Ada")],
    )

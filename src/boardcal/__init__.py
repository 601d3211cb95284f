"""Two-way sync between a board of typed records and a calendar view."""

from boardcal.config import BoardCalendarConfig, ConfigError, load_config
from boardcal.fields import FieldRegistry
from boardcal.mapper import RecordEventMapper
from boardcal.models import CalendarEvent, EventDraft, EventEdit, SyncResult
from boardcal.service import BoardDataService, GraphQLBoardService
from boardcal.sync import BoardCalendarSync
from boardcal.temporal import TemporalNormalizer

__all__ = [
    "BoardCalendarConfig",
    "BoardCalendarSync",
    "BoardDataService",
    "CalendarEvent",
    "ConfigError",
    "EventDraft",
    "EventEdit",
    "FieldRegistry",
    "GraphQLBoardService",
    "RecordEventMapper",
    "SyncResult",
    "TemporalNormalizer",
    "load_config",
]

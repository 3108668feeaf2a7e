"""Schedule parsing, match resolution and persisted week state."""

from .models import (
    DeferredItem,
    Division,
    GlobalRegistry,
    MessageIdRecord,
    RegistryEntry,
    ScheduleAssertion,
    Week,
    WeekStore,
    match_key,
    utc_now_iso,
)
from .parser import ParseResult, parse_schedule
from .resolver import MatchResolver, MatchSlot, Resolution
from .storage import IngestLock, KeyValueStore, ScheduleRepository

__all__ = [
    "DeferredItem",
    "Division",
    "GlobalRegistry",
    "IngestLock",
    "KeyValueStore",
    "MatchResolver",
    "MatchSlot",
    "MessageIdRecord",
    "ParseResult",
    "RegistryEntry",
    "Resolution",
    "ScheduleAssertion",
    "ScheduleRepository",
    "Week",
    "WeekStore",
    "match_key",
    "parse_schedule",
    "utc_now_iso",
]

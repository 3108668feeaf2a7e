from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import ClassVar

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 format (ms precision)."""
    return datetime.now(UTC).strftime(ISO_FORMAT)


class Division(str, Enum):
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"
    PLATINUM = "Platinum"

    @classmethod
    def parse(cls, token: str | None) -> Division | None:
        if not token:
            return None
        lowered = re.sub(r"[^a-z]", "", token.lower())
        return _DIVISION_ALIASES.get(lowered)


_DIVISION_ALIASES: dict[str, Division] = {
    "bronze": Division.BRONZE,
    "brz": Division.BRONZE,
    "bz": Division.BRONZE,
    "silver": Division.SILVER,
    "slv": Division.SILVER,
    "silv": Division.SILVER,
    "gold": Division.GOLD,
    "gld": Division.GOLD,
    "platinum": Division.PLATINUM,
    "plat": Division.PLATINUM,
    "plt": Division.PLATINUM,
}


def normalize_map(map_name: str) -> str:
    return re.sub(r"\s+", "_", (map_name or "").strip().lower())


def match_key(division: Division | str, team_a: str, team_b: str) -> str:
    """Order-independent key for a pairing inside one division."""
    div = division.value if isinstance(division, Division) else str(division)
    first, second = sorted((team_a, team_b))
    return f"{div}:{first}|{second}"


@dataclass(frozen=True, slots=True)
class Week:
    day: date
    map_name: str

    SEPARATOR: ClassVar[str] = "|"

    @property
    def key(self) -> str:
        return f"{self.day.isoformat()}{self.SEPARATOR}{self.map_name}"

    @property
    def label(self) -> str:
        return f"Week of {self.day.strftime('%b')} {self.day.day} · {self.map_name}"

    @classmethod
    def from_key(cls, key: str) -> Week:
        day_text, _, map_name = key.partition(cls.SEPARATOR)
        return cls(day=date.fromisoformat(day_text), map_name=map_name)


@dataclass(slots=True)
class ScheduleAssertion:
    division: Division | None
    team_a: str
    team_b: str
    when_text: str
    epoch: int | None = None
    message_id: str | None = None
    author_id: str | None = None
    division_explicit: bool = False
    division_conflict: bool = False

    def match_key(self) -> str:
        if self.division is None:
            raise ValueError("Assertion has no division")
        return match_key(self.division, self.team_a, self.team_b)


def _str_map(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}


def _int_map(value: object) -> dict[str, int]:
    if not isinstance(value, dict):
        return {}
    result: dict[str, int] = {}
    for key, raw in value.items():
        try:
            result[str(key)] = int(raw)
        except (TypeError, ValueError):
            continue
    return result


@dataclass(slots=True)
class WeekStore:
    schedules: dict[str, str] = field(default_factory=dict)
    shoutcasters: dict[str, str] = field(default_factory=dict)
    epochs: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "schedules": dict(self.schedules),
            "shoutcasters": dict(self.shoutcasters),
            "epochs": dict(self.epochs),
        }

    @classmethod
    def from_dict(cls, data: object) -> WeekStore:
        if not isinstance(data, dict):
            return cls()
        return cls(
            schedules=_str_map(data.get("schedules")),
            shoutcasters=_str_map(data.get("shoutcasters")),
            epochs=_int_map(data.get("epochs")),
        )

    def apply_schedule(self, key: str, when_text: str, epoch: int | None) -> bool:
        changed = self.schedules.get(key) != when_text
        self.schedules[key] = when_text
        if epoch is None:
            changed = self.epochs.pop(key, None) is not None or changed
        else:
            changed = changed or self.epochs.get(key) != epoch
            self.epochs[key] = epoch
        return changed

    def apply_shoutcaster(self, key: str, tag: str) -> bool:
        if self.shoutcasters.get(key) == tag:
            return False
        self.shoutcasters[key] = tag
        return True


@dataclass(slots=True)
class RegistryEntry:
    division: Division
    team_a: str
    team_b: str
    map_name: str
    source_week_day: str
    source_week_name: str
    when_text: str = ""
    epoch: int | None = None
    shoutcaster: str | None = None

    def __post_init__(self) -> None:
        self.team_a, self.team_b = sorted((self.team_a, self.team_b))

    @staticmethod
    def make_key(
        division: Division, team_a: str, team_b: str, map_name: str, week_day: str
    ) -> str:
        first, second = sorted((team_a, team_b))
        return "|".join(
            (division.value, first, second, normalize_map(map_name), week_day)
        )

    @property
    def key(self) -> str:
        return self.make_key(
            self.division,
            self.team_a,
            self.team_b,
            self.map_name,
            self.source_week_day,
        )

    @property
    def match_key(self) -> str:
        return match_key(self.division, self.team_a, self.team_b)

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "division": self.division.value,
            "team_a": self.team_a,
            "team_b": self.team_b,
            "map_name": self.map_name,
            "source_week_day": self.source_week_day,
            "source_week_name": self.source_week_name,
            "when_text": self.when_text,
        }
        if self.epoch is not None:
            data["epoch"] = self.epoch
        if self.shoutcaster is not None:
            data["shoutcaster"] = self.shoutcaster
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> RegistryEntry:
        epoch_raw = data.get("epoch")
        caster = data.get("shoutcaster")
        return cls(
            division=Division(str(data["division"])),
            team_a=str(data["team_a"]),
            team_b=str(data["team_b"]),
            map_name=str(data.get("map_name", "")),
            source_week_day=str(data["source_week_day"]),
            source_week_name=str(data.get("source_week_name", "")),
            when_text=str(data.get("when_text", "")),
            epoch=int(epoch_raw) if epoch_raw is not None else None,
            shoutcaster=str(caster) if caster is not None else None,
        )


@dataclass(slots=True)
class GlobalRegistry:
    entries: dict[str, RegistryEntry] = field(default_factory=dict)

    def upsert(self, entry: RegistryEntry) -> bool:
        existing = self.entries.get(entry.key)
        if existing is not None:
            if entry.shoutcaster is None:
                entry.shoutcaster = existing.shoutcaster
            if existing == entry:
                return False
        self.entries[entry.key] = entry
        return True

    def get(self, key: str) -> RegistryEntry | None:
        return self.entries.get(key)

    def prune(self, map_name: str, week_day: str) -> int:
        target = normalize_map(map_name)
        doomed = [
            key
            for key, entry in self.entries.items()
            if normalize_map(entry.map_name) == target
            and entry.source_week_day == week_day
        ]
        for key in doomed:
            del self.entries[key]
        return len(doomed)

    def entries_before(self, week_day: str) -> list[RegistryEntry]:
        older = [
            entry
            for entry in self.entries.values()
            if entry.source_week_day < week_day
        ]
        older.sort(
            key=lambda entry: (
                entry.source_week_day,
                entry.division.value,
                entry.team_a,
                entry.team_b,
            )
        )
        return older

    def to_dict(self) -> dict[str, object]:
        return {key: entry.to_dict() for key, entry in self.entries.items()}

    @classmethod
    def from_dict(cls, data: object) -> GlobalRegistry:
        registry = cls()
        if not isinstance(data, dict):
            return registry
        for raw in data.values():
            if not isinstance(raw, dict):
                continue
            try:
                entry = RegistryEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                continue
            registry.entries[entry.key] = entry
        return registry


@dataclass(slots=True)
class MessageIdRecord:
    ids: dict[str, str] = field(default_factory=dict)
    hashes: dict[str, str] = field(default_factory=dict)

    def clear_part(self, part: str) -> None:
        self.ids.pop(part, None)
        self.hashes.pop(part, None)


@dataclass(slots=True)
class DeferredItem:
    week_key: str
    division: Division
    team_a: str
    team_b: str
    channel_id: str
    message_id: str
    enqueued_at: str

    def to_dict(self) -> dict[str, object]:
        return {
            "week_key": self.week_key,
            "division": self.division.value,
            "team_a": self.team_a,
            "team_b": self.team_b,
            "channel_id": self.channel_id,
            "message_id": self.message_id,
            "enqueued_at": self.enqueued_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> DeferredItem:
        return cls(
            week_key=str(data["week_key"]),
            division=Division(str(data["division"])),
            team_a=str(data["team_a"]),
            team_b=str(data["team_b"]),
            channel_id=str(data["channel_id"]),
            message_id=str(data["message_id"]),
            enqueued_at=str(data.get("enqueued_at", "")),
        )

    def enqueued_datetime(self) -> datetime | None:
        try:
            return datetime.strptime(self.enqueued_at, ISO_FORMAT).replace(tzinfo=UTC)
        except ValueError:
            return None


__all__ = [
    "DeferredItem",
    "Division",
    "GlobalRegistry",
    "MessageIdRecord",
    "RegistryEntry",
    "ScheduleAssertion",
    "Week",
    "WeekStore",
    "match_key",
    "normalize_map",
    "utc_now_iso",
]

"""Read-only access to the season schedule kept in a Google Sheet.

Each division has its own worksheet, named after the division. A week block
starts with a header row and runs until the next header or a blank row::

    Week     | 2025-01-10 | de_dust2
    Alpha    | Beta       |    |
    Gamma    | Delta      | 16 | 9
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime

import gspread
from gspread.exceptions import APIError, WorksheetNotFound

from .cache import TTLCache
from .models import Division, Week
from .nlp import canonical_team

log = logging.getLogger(__name__)

HEADER_MARKER = "week"
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y")


class GridUnavailableError(RuntimeError):
    """Raised when the schedule sheet cannot be read right now."""


@dataclass(slots=True)
class GridRow:
    row_index: int
    team_one: str
    team_two: str
    score_one: str = ""
    score_two: str = ""

    @property
    def pending(self) -> bool:
        return not (self.score_one.strip() or self.score_two.strip())

    @property
    def canonical_one(self) -> str:
        return canonical_team(self.team_one)

    @property
    def canonical_two(self) -> str:
        return canonical_team(self.team_two)


@dataclass(slots=True)
class WeekBlock:
    division: Division
    week: Week
    header_row: int
    rows: list[GridRow] = field(default_factory=list)

    def pending_rows(self) -> list[GridRow]:
        return [row for row in self.rows if row.pending]


def parse_sheet_date(raw: str) -> date | None:
    value = raw.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def _cell(row: Sequence[str], index: int) -> str:
    return str(row[index]).strip() if index < len(row) else ""


def parse_blocks(division: Division, values: Iterable[Sequence[str]]) -> list[WeekBlock]:
    """Split raw worksheet values into week blocks, in sheet order."""
    blocks: list[WeekBlock] = []
    current: WeekBlock | None = None
    for index, row in enumerate(values, start=1):
        first = _cell(row, 0)
        day = parse_sheet_date(_cell(row, 1))
        # "Weekend Warriors" is a team; "Week 3" is only a header with a date.
        if first.lower() == HEADER_MARKER or (
            first.lower().startswith(HEADER_MARKER) and day is not None
        ):
            map_name = _cell(row, 2)
            if day is None or not map_name:
                log.warning(
                    "Ignoring malformed week header in %s row %s: %s",
                    division.value,
                    index,
                    list(row),
                )
                continue
            current = WeekBlock(
                division=division, week=Week(day=day, map_name=map_name), header_row=index
            )
            blocks.append(current)
            continue
        if current is None:
            continue
        second = _cell(row, 1)
        if not first and not second:
            current = None
            continue
        if not first or not second:
            continue
        current.rows.append(
            GridRow(
                row_index=index,
                team_one=first,
                team_two=second,
                score_one=_cell(row, 2),
                score_two=_cell(row, 3),
            )
        )
    return blocks


class ScheduleSource:
    """Week block lookups over per-division row data."""

    def blocks(self, division: Division) -> list[WeekBlock]:
        raise NotImplementedError

    def weeks(self) -> list[Week]:
        seen: dict[date, Week] = {}
        for division in Division:
            for block in self.blocks(division):
                seen.setdefault(block.week.day, block.week)
        return [seen[day] for day in sorted(seen)]

    def aligned_week(self, today: date) -> Week | None:
        """Nearest current-or-future week, falling back to the latest one."""
        weeks = self.weeks()
        if not weeks:
            return None
        for week in weeks:
            if week.day >= today:
                return week
        return weeks[-1]

    def block_for(self, division: Division, week: Week) -> WeekBlock | None:
        for block in self.blocks(division):
            if block.week.day == week.day:
                return block
        return None

    def previous_block(self, division: Division, week: Week) -> WeekBlock | None:
        earlier = [block for block in self.blocks(division) if block.week.day < week.day]
        if not earlier:
            return None
        return max(earlier, key=lambda block: block.week.day)

    def refresh(self) -> None:
        """Drop any cached data."""


class StaticScheduleSource(ScheduleSource):
    """Schedule source over already-loaded worksheet values."""

    def __init__(self, values: dict[Division, Sequence[Sequence[str]]]) -> None:
        self._blocks = {
            division: parse_blocks(division, rows) for division, rows in values.items()
        }

    def blocks(self, division: Division) -> list[WeekBlock]:
        return list(self._blocks.get(division, []))


class SheetScheduleSource(ScheduleSource):
    def __init__(self, spreadsheet, cache: TTLCache[list[WeekBlock]]) -> None:
        self._spreadsheet = spreadsheet
        self._cache = cache

    def blocks(self, division: Division) -> list[WeekBlock]:
        return self._cache.get_or_load(
            f"blocks:{division.value}", lambda: self._load(division)
        )

    def _load(self, division: Division) -> list[WeekBlock]:
        try:
            worksheet = self._spreadsheet.worksheet(division.value)
        except WorksheetNotFound:
            log.info("No worksheet for division %s", division.value)
            return []
        except APIError as exc:
            raise GridUnavailableError(
                f"Cannot open worksheet {division.value}: {exc}"
            ) from exc
        try:
            values = worksheet.get_all_values()
        except APIError as exc:
            raise GridUnavailableError(
                f"Cannot read worksheet {division.value}: {exc}"
            ) from exc
        blocks = parse_blocks(division, values)
        log.debug("Loaded %s week blocks for %s", len(blocks), division.value)
        return blocks

    def refresh(self) -> None:
        self._cache.invalidate()


def open_spreadsheet(sheet_id: str, service_account_file: str):
    client = gspread.service_account(filename=service_account_file)
    return client.open_by_key(sheet_id)


__all__ = [
    "GridRow",
    "GridUnavailableError",
    "ScheduleSource",
    "SheetScheduleSource",
    "StaticScheduleSource",
    "WeekBlock",
    "open_spreadsheet",
    "parse_blocks",
    "parse_sheet_date",
]

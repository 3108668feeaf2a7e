"""Tests for the grid reader and its lookup cache."""

from datetime import date
from unittest import mock

import pytest
from gspread.exceptions import APIError, WorksheetNotFound

from schedule_bot.cache import TTLCache
from schedule_bot.grid import (
    GridUnavailableError,
    SheetScheduleSource,
    StaticScheduleSource,
    parse_blocks,
    parse_sheet_date,
)
from schedule_bot.models import Division, Week
from schedule_bot.resolver import MatchResolver

ROWS = [
    ["Week", "2025-01-03", "de_inferno"],
    ["Alpha", "Gamma", "", ""],
    ["Delta", "Epsilon", "16", "9"],
    [],
    ["Notes", "", ""],
    ["Week", "2025-01-10", "de_dust2"],
    ["Alpha", "Beta"],
    ["Gamma", "", "", ""],
    ["Week", "not a date", "de_nuke"],
    ["Lost", "Row", "", ""],
]


def api_error(status: int = 503) -> APIError:
    response = mock.MagicMock()
    response.status_code = status
    response.json.return_value = {
        "error": {"code": status, "message": "Backend Error", "status": "UNAVAILABLE"}
    }
    return APIError(response)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2025-01-10", date(2025, 1, 10)),
        ("1/10/2025", date(2025, 1, 10)),
        (" 1/10/25 ", date(2025, 1, 10)),
        ("Jan 10", None),
    ],
)
def test_parse_sheet_date(raw, expected):
    assert parse_sheet_date(raw) == expected


class TestParseBlocks:
    def test_blocks_and_rows(self):
        blocks = parse_blocks(Division.BRONZE, ROWS)

        assert [block.week.key for block in blocks] == [
            "2025-01-03|de_inferno",
            "2025-01-10|de_dust2",
        ]
        first, second = blocks
        assert first.header_row == 1
        assert [(row.row_index, row.team_one, row.team_two) for row in first.rows] == [
            (2, "Alpha", "Gamma"),
            (3, "Delta", "Epsilon"),
        ]
        assert [row.row_index for row in first.pending_rows()] == [2]
        # Incomplete rows and the malformed header are skipped.
        assert [(row.team_one, row.team_two) for row in second.rows] == [
            ("Alpha", "Beta"),
            ("Lost", "Row"),
        ]

    def test_team_named_like_a_header_stays_in_the_block(self):
        rows = [
            ["Week", "2025-01-10", "de_dust2"],
            ["Alpha", "Beta", "", ""],
            ["Weekend Warriors", "Gamma", "", ""],
            ["Delta", "Epsilon", "", ""],
        ]

        blocks = parse_blocks(Division.BRONZE, rows)

        assert len(blocks) == 1
        assert [(row.team_one, row.team_two) for row in blocks[0].rows] == [
            ("Alpha", "Beta"),
            ("Weekend Warriors", "Gamma"),
            ("Delta", "Epsilon"),
        ]
        resolver = MatchResolver(StaticScheduleSource({Division.BRONZE: rows}))
        resolution = resolver.resolve(
            Division.BRONZE, "DELTA", "EPSILON", blocks[0].week
        )
        assert resolution.found

    def test_numbered_header_with_date(self):
        blocks = parse_blocks(
            Division.GOLD, [["Week 3", "1/17/2025", "de_mirage"], ["A1", "B2", "", ""]]
        )

        assert [block.week.key for block in blocks] == ["2025-01-17|de_mirage"]
        assert blocks[0].rows[0].team_one == "A1"

    def test_canonical_names(self):
        blocks = parse_blocks(
            Division.SILVER, [["Week", "2025-01-10", "m"], ["team-x!", "Y  z", "", ""]]
        )

        row = blocks[0].rows[0]
        assert (row.canonical_one, row.canonical_two) == ("TEAM X", "Y Z")
        assert row.pending


class TestScheduleSource:
    def test_aligned_week_prefers_nearest_upcoming(self, source):
        assert source.aligned_week(date(2025, 1, 8)).key == "2025-01-10|de_dust2"
        assert source.aligned_week(date(2025, 1, 10)).key == "2025-01-10|de_dust2"
        assert source.aligned_week(date(2024, 12, 1)).key == "2025-01-03|de_inferno"

    def test_aligned_week_falls_back_to_latest(self, source):
        assert source.aligned_week(date(2025, 3, 1)).key == "2025-01-17|de_mirage"

    def test_weeks_are_merged_across_divisions(self, source):
        assert [week.day.isoformat() for week in source.weeks()] == [
            "2025-01-03",
            "2025-01-10",
            "2025-01-17",
        ]

    def test_block_lookup_and_previous(self, source):
        week = Week(day=date(2025, 1, 10), map_name="de_dust2")

        assert source.block_for(Division.SILVER, week).rows[0].team_one == "Red Dragons"
        assert source.block_for(Division.GOLD, week) is None
        assert source.previous_block(Division.BRONZE, week).week.day == date(2025, 1, 3)
        assert source.previous_block(Division.SILVER, week) is None


class TestSheetScheduleSource:
    def test_worksheets_are_cached_until_refresh(self):
        worksheet = mock.Mock()
        worksheet.get_all_values.return_value = ROWS
        spreadsheet = mock.Mock()
        spreadsheet.worksheet.return_value = worksheet
        source = SheetScheduleSource(spreadsheet, TTLCache(3600))

        first = source.blocks(Division.BRONZE)
        second = source.blocks(Division.BRONZE)

        assert first == second
        spreadsheet.worksheet.assert_called_once_with("Bronze")

        source.refresh()
        source.blocks(Division.BRONZE)
        assert spreadsheet.worksheet.call_count == 2

    def test_missing_worksheet_means_no_blocks(self):
        spreadsheet = mock.Mock()
        spreadsheet.worksheet.side_effect = WorksheetNotFound("Platinum")
        source = SheetScheduleSource(spreadsheet, TTLCache(3600))

        assert source.blocks(Division.PLATINUM) == []

    def test_api_errors_become_grid_unavailable(self):
        spreadsheet = mock.Mock()
        spreadsheet.worksheet.side_effect = api_error()
        source = SheetScheduleSource(spreadsheet, TTLCache(3600))

        with pytest.raises(GridUnavailableError):
            source.blocks(Division.BRONZE)

    def test_read_errors_become_grid_unavailable(self):
        worksheet = mock.Mock()
        worksheet.get_all_values.side_effect = api_error(500)
        spreadsheet = mock.Mock()
        spreadsheet.worksheet.return_value = worksheet
        source = SheetScheduleSource(spreadsheet, TTLCache(3600))

        with pytest.raises(GridUnavailableError):
            source.aligned_week(date(2025, 1, 8))


class TestTTLCache:
    def test_entries_expire(self):
        clock = FakeClock()
        cache = TTLCache(10, clock=clock)
        cache.set("a", 1)

        clock.now = 10
        assert cache.get("a") == 1
        clock.now = 10.5
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_get_or_load_calls_loader_once(self):
        cache = TTLCache(10, clock=FakeClock())
        loader = mock.Mock(return_value=["x"])

        assert cache.get_or_load("k", loader) == ["x"]
        assert cache.get_or_load("k", loader) == ["x"]
        loader.assert_called_once()

    def test_invalidate_single_key(self):
        cache = TTLCache(10, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")

        assert cache.get("a") is None
        assert cache.get("b") == 2

"""Deterministic extraction of schedule assertions from chat messages.

A schedule message names two teams around a separator ("vs", "v", "-", "@", "x")
and ends with a time spec: weekday, optional ``M/D`` date, optional clock
time, optional am/pm and an optional zone abbreviation::

    Bronze: Alpha vs Beta on Friday 8pm ET
    [gold] Red Team v. Blue Team - sat 1/11 9:30 CT

Nothing in this module performs I/O; the reference time is passed in so the
same text always produces the same assertion.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Literal
from zoneinfo import ZoneInfo

from .models import Division, ScheduleAssertion
from .nlp import canonical_team

DEFAULT_TIMEZONE = "America/New_York"

ZONES: dict[str, str] = {
    "ET": "America/New_York",
    "EST": "America/New_York",
    "EDT": "America/New_York",
    "CT": "America/Chicago",
    "CST": "America/Chicago",
    "CDT": "America/Chicago",
    "MT": "America/Denver",
    "MST": "America/Denver",
    "MDT": "America/Denver",
    "PT": "America/Los_Angeles",
    "PST": "America/Los_Angeles",
    "PDT": "America/Los_Angeles",
    "UTC": "UTC",
    "GMT": "UTC",
    "BST": "Europe/London",
    "CET": "Europe/Paris",
    "CEST": "Europe/Paris",
}

WEEKDAYS: dict[str, int] = {
    "mon": 0,
    "monday": 0,
    "tue": 1,
    "tues": 1,
    "tuesday": 1,
    "wed": 2,
    "weds": 2,
    "wednesday": 2,
    "thu": 3,
    "thur": 3,
    "thurs": 3,
    "thursday": 3,
    "fri": 4,
    "friday": 4,
    "sat": 5,
    "saturday": 5,
    "sun": 6,
    "sunday": 6,
}

_DECORATION = re.compile(r"<(?:@[!&]?|#)\d+>|<a?:\w+:\d+>|[*_`~|]")
_SPACES = re.compile(r"\s+")

_ZONE_ALT = "|".join(sorted(ZONES, key=len, reverse=True))
_WEEKDAY_ALT = "|".join(sorted(WEEKDAYS, key=len, reverse=True))
_AMPM = r"[ap]\.?m\.?(?![a-z])"

_DIVISION_PREFIX = re.compile(
    r"^\s*(?:[\[(]\s*(?P<bracketed>[a-z]+)\s*[\])]\s*[:\-–|]?"
    r"|(?P<plain>[a-z]+)\s*(?P<delim>[:|]|\s[-–]\s))\s*",
    re.IGNORECASE,
)

_SEPARATORS = (
    re.compile(r"\s+(?:vs\.?|versus|v\.?)\s+", re.IGNORECASE),
    re.compile(r"\s+[-–—@]\s+"),
    # Last, so "Team X vs Y" still splits on "vs".
    re.compile(r"\s+x\s+", re.IGNORECASE),
)

_TIME_SPEC = re.compile(
    rf"""
    \b(?P<weekday>{_WEEKDAY_ALT})\b\.?,?
    (?:\s*(?:the\s+)?(?P<month>\d{{1,2}})/(?P<day>\d{{1,2}})(?:/(?P<year>\d{{2,4}}))?\b)?
    (?:\s*(?:at\s+|@\s*)?(?P<hour>\d{{1,2}})(?::(?P<minute>\d{{2}}))?(?![\d/])
        (?:\s*(?P<ampm>{_AMPM}))?)?
    (?:\s*(?P<zone>{_ZONE_ALT})\b)?
    """,
    re.IGNORECASE | re.VERBOSE,
)

_CLOCK_ONLY = re.compile(
    rf"""
    (?<![\w/])(?P<hour>\d{{1,2}})
    (?:(?::(?P<minute>\d{{2}}))(?:\s*(?P<ampm>{_AMPM}))?|\s*(?P<ampm_only>{_AMPM}))
    (?:\s*(?P<zone>{_ZONE_ALT})\b)?
    """,
    re.IGNORECASE | re.VERBOSE,
)

_TRAILING_CONNECTORS = re.compile(
    r"(?:[\s,@\-–]+|\s+(?:on|at|this|next|for))+$", re.IGNORECASE
)

ParseStatus = Literal["parsed", "unparseable"]


@dataclass(slots=True)
class ParseResult:
    status: ParseStatus
    assertion: ScheduleAssertion | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "parsed"

    @classmethod
    def parsed(cls, assertion: ScheduleAssertion) -> ParseResult:
        return cls(status="parsed", assertion=assertion)

    @classmethod
    def unparseable(cls, reason: str) -> ParseResult:
        return cls(status="unparseable", reason=reason)


def clean_text(raw: str) -> str:
    without = _DECORATION.sub(" ", raw or "")
    return _SPACES.sub(" ", without).strip()


def _split_division(text: str) -> tuple[Division | None, str]:
    match = _DIVISION_PREFIX.match(text)
    if not match:
        return None, text
    token = match.group("bracketed") or match.group("plain")
    division = Division.parse(token)
    if division is None:
        return None, text
    rest = text[match.end() :]
    delim = (match.group("delim") or "").strip()
    if delim in {"-", "–"} and not _find_separator(rest):
        # "Gold - Silverbacks" is a pairing, not a division prefix.
        return None, text
    return division, rest


def _find_separator(text: str) -> re.Match[str] | None:
    for pattern in _SEPARATORS:
        match = pattern.search(text)
        if match:
            return match
    return None


def _clean_team(raw: str) -> str:
    return canonical_team(_TRAILING_CONNECTORS.sub("", raw))


def _pick_time_spec(text: str) -> re.Match[str] | None:
    # Weekday words can belong to a team name ("Sun Devils", "Red Sun"), so
    # a weekday with a clock wins, otherwise the last weekday does.
    candidates = [
        match
        for match in _TIME_SPEC.finditer(text)
        if _clean_team(text[: match.start()])
    ]
    if candidates:
        for match in candidates:
            if match.group("hour"):
                return match
        return candidates[-1]
    for match in _CLOCK_ONLY.finditer(text):
        if _clean_team(text[: match.start()]):
            return match
    return None


def parse_schedule(
    raw: str,
    *,
    division_hint: Division | None = None,
    reference: datetime | None = None,
    default_timezone: str = DEFAULT_TIMEZONE,
    message_id: str | None = None,
    author_id: str | None = None,
) -> ParseResult:
    """Parse one chat message into a schedule assertion.

    Returns an ``unparseable`` result instead of raising for anything that does
    not look like a schedule.
    """

    text = clean_text(raw)
    if not text:
        return ParseResult.unparseable("empty message")

    explicit, body = _split_division(text)
    separator = _find_separator(body)
    if separator is None:
        return ParseResult.unparseable("no team separator")

    left = body[: separator.start()]
    right = body[separator.end() :]

    time_match = _pick_time_spec(right)
    if time_match is None:
        return ParseResult.unparseable("no time spec")

    team_a = _clean_team(left)
    team_b = _clean_team(right[: time_match.start()])
    if not team_a or not team_b:
        return ParseResult.unparseable("missing team name")
    if team_a == team_b:
        return ParseResult.unparseable("team plays itself")

    when_text = time_match.group(0).strip().rstrip(",.;:!")
    epoch = resolve_epoch(
        time_match.groupdict(),
        reference=reference,
        default_timezone=default_timezone,
    )

    division = explicit or division_hint
    return ParseResult.parsed(
        ScheduleAssertion(
            division=division,
            team_a=team_a,
            team_b=team_b,
            when_text=when_text,
            epoch=epoch,
            message_id=message_id,
            author_id=author_id,
            division_explicit=explicit is not None,
            division_conflict=(
                explicit is not None
                and division_hint is not None
                and explicit != division_hint
            ),
        )
    )


def _clock(groups: dict[str, str | None]) -> tuple[int, int] | None:
    hour_raw = groups.get("hour")
    if not hour_raw:
        return None
    hour = int(hour_raw)
    minute = int(groups.get("minute") or 0)
    marker = (groups.get("ampm") or groups.get("ampm_only") or "").lower()
    if marker.startswith("p") and hour < 12:
        hour += 12
    elif marker.startswith("a") and hour == 12:
        hour = 0
    elif not marker and 1 <= hour <= 11:
        # Matches are almost never played before noon.
        hour += 12
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def _explicit_date(groups: dict[str, str | None], today: date) -> date | None:
    if not groups.get("month") or not groups.get("day"):
        return None
    year_raw = groups.get("year")
    year = today.year
    if year_raw:
        year = int(year_raw)
        if year < 100:
            year += 2000
    try:
        candidate = date(year, int(groups["month"]), int(groups["day"]))
    except ValueError:
        return None
    if not year_raw and candidate < today - timedelta(days=180):
        candidate = candidate.replace(year=year + 1)
    return candidate


def resolve_epoch(
    groups: dict[str, str | None],
    *,
    reference: datetime | None = None,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> int | None:
    """Turn matched time-spec groups into epoch seconds, or None without a clock."""
    clock = _clock(groups)
    if clock is None:
        return None
    zone_name = ZONES.get((groups.get("zone") or "").upper(), default_timezone)
    tz = ZoneInfo(zone_name)
    now = (reference or datetime.now(UTC)).astimezone(tz)
    hour, minute = clock

    day = _explicit_date(groups, now.date())
    weekday_raw = groups.get("weekday")
    if day is None and weekday_raw:
        target = WEEKDAYS[weekday_raw.lower()]
        ahead = (target - now.weekday()) % 7
        day = now.date() + timedelta(days=ahead)
        if ahead == 0 and (hour, minute) <= (now.hour, now.minute):
            day += timedelta(days=7)
    if day is None:
        return None
    scheduled = datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)
    return int(scheduled.timestamp())


__all__ = [
    "DEFAULT_TIMEZONE",
    "ParseResult",
    "clean_text",
    "parse_schedule",
    "resolve_epoch",
]

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Literal

from .grid import GridRow, ScheduleSource, WeekBlock
from .models import Division, Week
from .nlp import shares_token

log = logging.getLogger(__name__)

Origin = Literal["aligned", "history"]
MIN_SUBSTRING_LENGTH = 3


@dataclass(frozen=True, slots=True)
class RowHandle:
    division: Division
    week_key: str
    row_index: int


@dataclass(slots=True)
class MatchSlot:
    handle: RowHandle
    owning_week: Week
    origin: Origin
    row: GridRow
    strategy: str


@dataclass(slots=True)
class Resolution:
    slot: MatchSlot | None = None
    reason: str | None = None

    @property
    def found(self) -> bool:
        return self.slot is not None


@dataclass(slots=True)
class StrategyResult:
    row: GridRow | None
    detail: str = ""


Strategy = Callable[[Sequence[GridRow], str, str], StrategyResult]


def exact_strategy(rows: Sequence[GridRow], team_a: str, team_b: str) -> StrategyResult:
    """Canonical names equal in either order; first row wins."""
    wanted = {team_a, team_b}
    for row in rows:
        if {row.canonical_one, row.canonical_two} == wanted:
            return StrategyResult(row)
    return StrategyResult(None, "no exact pairing")


def _loosely_equal(asserted: str, listed: str) -> bool:
    shorter, longer = sorted((asserted, listed), key=len)
    if len(shorter) >= MIN_SUBSTRING_LENGTH and shorter in longer:
        return True
    return shares_token(asserted, listed)


def _loose_pair(row: GridRow, team_a: str, team_b: str) -> bool:
    one, two = row.canonical_one, row.canonical_two
    straight = _loosely_equal(team_a, one) and _loosely_equal(team_b, two)
    crossed = _loosely_equal(team_a, two) and _loosely_equal(team_b, one)
    return straight or crossed


def substring_strategy(
    rows: Sequence[GridRow], team_a: str, team_b: str
) -> StrategyResult:
    """Substring or shared-token match, accepted only when unambiguous."""
    candidates = [row for row in rows if _loose_pair(row, team_a, team_b)]
    if len(candidates) == 1:
        return StrategyResult(candidates[0])
    if not candidates:
        return StrategyResult(None, "no loose pairing")
    return StrategyResult(
        None,
        "ambiguous loose pairing in rows "
        + ", ".join(str(row.row_index) for row in candidates),
    )


DEFAULT_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("exact", exact_strategy),
    ("substring", substring_strategy),
)


class MatchResolver:
    def __init__(
        self,
        source: ScheduleSource,
        *,
        strategies: Sequence[tuple[str, Strategy]] = DEFAULT_STRATEGIES,
    ) -> None:
        self._source = source
        self._strategies = tuple(strategies)

    def _scan(
        self, block: WeekBlock, team_a: str, team_b: str
    ) -> tuple[GridRow | None, str, list[str]]:
        pending = block.pending_rows()
        notes: list[str] = []
        for name, strategy in self._strategies:
            result = strategy(pending, team_a, team_b)
            if result.row is not None:
                return result.row, name, notes
            notes.append(f"{name}: {result.detail}")
        return None, "", notes

    def resolve(
        self, division: Division, team_a: str, team_b: str, aligned: Week
    ) -> Resolution:
        """Locate the pending row for a pairing in the aligned block or one block back."""
        notes: list[str] = []
        aligned_block = self._source.block_for(division, aligned)
        candidates: list[tuple[WeekBlock | None, Origin]] = [
            (aligned_block, "aligned"),
            (self._source.previous_block(division, aligned), "history"),
        ]
        for block, origin in candidates:
            if block is None:
                notes.append(f"{origin}: no block")
                continue
            row, strategy, scan_notes = self._scan(block, team_a, team_b)
            if row is not None:
                handle = RowHandle(
                    division=division, week_key=block.week.key, row_index=row.row_index
                )
                return Resolution(
                    slot=MatchSlot(
                        handle=handle,
                        owning_week=block.week,
                        origin=origin,
                        row=row,
                        strategy=strategy,
                    )
                )
            notes.extend(f"{origin} {block.week.key}: {note}" for note in scan_notes)

        reason = "; ".join(notes) or "no candidate blocks"
        log.warning(
            "No pending %s match for %s vs %s around week %s (%s)",
            division.value,
            team_a,
            team_b,
            aligned.key,
            reason,
        )
        return Resolution(reason=reason)

    def is_pending(self, division: Division, week: Week, team_a: str, team_b: str) -> bool:
        block = self._source.block_for(division, week)
        if block is None:
            return False
        row, _strategy, _notes = self._scan(block, team_a, team_b)
        return row is not None


__all__ = [
    "DEFAULT_STRATEGIES",
    "MatchResolver",
    "MatchSlot",
    "Resolution",
    "RowHandle",
    "StrategyResult",
    "exact_strategy",
    "substring_strategy",
]

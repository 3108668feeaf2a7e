"""Idempotent publishing of the weekly board messages."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import date

from schedule_bot.grid import ScheduleSource
from schedule_bot.models import Division, Week, WeekStore, match_key
from schedule_bot.resolver import MatchResolver
from schedule_bot.storage import ScheduleRepository

from .transport import DiscordTransport

log = logging.getLogger(__name__)

BOARD_PARTS = ("header", "table", "makeups")
MESSAGE_LIMIT = 2000
TRUNCATED_SUFFIX = "\n… (truncated)"


class BoardSyncError(RuntimeError):
    def __init__(self, week_key: str, parts: list[str]) -> None:
        super().__init__(f"Board sync failed for {week_key}: {', '.join(parts)}")
        self.week_key = week_key
        self.parts = parts


@dataclass(slots=True)
class SyncReport:
    week_key: str
    created: list[str] = field(default_factory=list)
    edited: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def calls_made(self) -> bool:
        return bool(self.created or self.edited or self.failed)


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def fit_message(content: str, limit: int = MESSAGE_LIMIT) -> str:
    if len(content) <= limit:
        return content
    return content[: limit - len(TRUNCATED_SUFFIX)] + TRUNCATED_SUFFIX


def _when(store: WeekStore, key: str) -> str:
    text = store.schedules.get(key)
    if not text:
        return "TBD"
    epoch = store.epochs.get(key)
    if epoch is not None:
        return f"{text} (<t:{epoch}:f>)"
    return text


class BoardSynchronizer:
    def __init__(
        self,
        transport: DiscordTransport,
        repository: ScheduleRepository,
        source: ScheduleSource,
        resolver: MatchResolver,
        channel_id: str,
    ) -> None:
        self._transport = transport
        self._repo = repository
        self._source = source
        self._resolver = resolver
        self._channel_id = channel_id

    # ----- Rendering -----
    def render_header(self, week: Week) -> str:
        divisions = [
            division.value
            for division in Division
            if self._source.block_for(division, week) is not None
        ]
        listed = ", ".join(divisions) if divisions else "none yet"
        return (
            f"**📅 {week.label}**\n"
            f"Map: `{week.map_name}` · Divisions: {listed}\n"
            "Post `Division: Team A vs Team B on <day> <time>` to schedule a match."
        )

    def render_table(self, week: Week, store: WeekStore) -> str:
        sections: list[str] = []
        for division in Division:
            block = self._source.block_for(division, week)
            if block is None or not block.rows:
                continue
            lines = [f"__{division.value}__"]
            for row in block.rows:
                key = match_key(division, row.canonical_one, row.canonical_two)
                if not row.pending:
                    lines.append(
                        f"✔ {row.team_one} {row.score_one or '-'}"
                        f" : {row.score_two or '-'} {row.team_two}"
                    )
                    continue
                line = f"• {row.team_one} vs {row.team_two} — {_when(store, key)}"
                caster = store.shoutcasters.get(key)
                if caster:
                    line += f" 🎙️ {caster}"
                lines.append(line)
            sections.append("\n".join(lines))
        if not sections:
            return "No matches listed for this week yet."
        return fit_message("\n\n".join(sections))

    def render_makeups(self, week: Week) -> str:
        registry = self._repo.load_registry()
        lines: list[str] = []
        for entry in registry.entries_before(week.day.isoformat()):
            source_week = Week(
                day=date.fromisoformat(entry.source_week_day), map_name=entry.map_name
            )
            if not self._resolver.is_pending(
                entry.division, source_week, entry.team_a, entry.team_b
            ):
                continue
            when = entry.when_text or "TBD"
            if entry.epoch is not None:
                when += f" (<t:{entry.epoch}:f>)"
            line = (
                f"• {entry.division.value}: {entry.team_a} vs {entry.team_b}"
                f" — {when} (from {entry.source_week_name})"
            )
            if entry.shoutcaster:
                line += f" 🎙️ {entry.shoutcaster}"
            lines.append(line)
        if not lines:
            return "**Make-up matches**\nNo outstanding make-up matches."
        return fit_message("**Make-up matches**\n" + "\n".join(lines))

    def render(self, week: Week) -> dict[str, str]:
        store = self._repo.load_week(week.key)
        return {
            "header": self.render_header(week),
            "table": self.render_table(week, store),
            "makeups": self.render_makeups(week),
        }

    # ----- Publishing -----
    async def _create(self, part: str, content: str) -> str | None:
        result = await self._transport.post(self._channel_id, content)
        if not result.ok:
            log.error("Creating board %s failed: %s", part, result.error)
            return None
        return str(result.body)

    async def sync(self, week: Week) -> SyncReport:
        """Create or edit each board part whose rendered content changed.

        Parts with an unchanged hash make no network call. Raises
        ``BoardSyncError`` after all parts were attempted if any failed.
        """
        report = SyncReport(week_key=week.key)
        record = self._repo.load_message_record(week.key)
        for part, content in self.render(week).items():
            digest = content_hash(content)
            message_id = record.ids.get(part)
            if message_id and record.hashes.get(part) == digest:
                report.unchanged.append(part)
                continue

            if not message_id:
                new_id = await self._create(part, content)
                if new_id is None:
                    report.failed.append(part)
                    continue
                record.ids[part] = new_id
                record.hashes[part] = digest
                report.created.append(part)
                self._repo.save_message_record(week.key, record)
                continue

            result = await self._transport.edit(self._channel_id, message_id, content)
            if result.ok:
                record.hashes[part] = digest
                report.edited.append(part)
                self._repo.save_message_record(week.key, record)
                continue
            if result.status_class != "not_found":
                log.error(
                    "Editing board %s (%s) failed: %s", part, message_id, result.error
                )
                report.failed.append(part)
                continue

            log.warning(
                "Board %s message %s is gone; posting a replacement", part, message_id
            )
            record.clear_part(part)
            new_id = await self._create(part, content)
            if new_id is None:
                report.failed.append(part)
                self._repo.save_message_record(week.key, record)
                continue
            record.ids[part] = new_id
            record.hashes[part] = digest
            report.created.append(part)
            self._repo.save_message_record(week.key, record)

        log.info(
            "Board %s synced: created=%s edited=%s unchanged=%s failed=%s",
            week.key,
            report.created,
            report.edited,
            report.unchanged,
            report.failed,
        )
        if report.failed:
            raise BoardSyncError(week.key, report.failed)
        return report

    def reset_hashes(self, week: Week) -> None:
        record = self._repo.load_message_record(week.key)
        record.hashes.clear()
        self._repo.save_message_record(week.key, record)

    async def retire_week(self, week: Week) -> int:
        """Delete the week's board messages and forget their ids.

        Ids whose delete failed stay in the record so a later run can retry.
        """
        record = self._repo.load_message_record(week.key)
        removed = 0
        for part, message_id in list(record.ids.items()):
            result = await self._transport.delete(self._channel_id, message_id)
            if result.ok or result.status_class == "not_found":
                removed += 1
                record.clear_part(part)
            else:
                log.warning(
                    "Could not delete board %s message %s: %s",
                    part,
                    message_id,
                    result.error,
                )
        if record.ids:
            self._repo.save_message_record(week.key, record)
        else:
            self._repo.delete_message_record(week.key)
        return removed


__all__ = [
    "BOARD_PARTS",
    "BoardSyncError",
    "BoardSynchronizer",
    "SyncReport",
    "content_hash",
    "fit_message",
]

"""One ingestion pass: fetch, parse, resolve, persist, acknowledge, sync.

A pass moves through ``idle → fetching → processing → committing → idle``.
It stops early when the batch cap or the soft deadline is reached, persisting
the cursor at the last processed message so the next pass continues from
there. Only one pass runs at a time; a pass that cannot take the ingestion
lock returns without touching any state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Literal

from schedule_bot.grid import GridUnavailableError, ScheduleSource
from schedule_bot.models import (
    DeferredItem,
    RegistryEntry,
    Week,
    match_key,
    utc_now_iso,
)
from schedule_bot.parser import parse_schedule
from schedule_bot.resolver import MatchResolver, MatchSlot
from schedule_bot.snowflake import is_newer, snowflake_time, sort_snowflakes
from schedule_bot.storage import IngestLock, ScheduleRepository

from .board import BoardSynchronizer, BoardSyncError, SyncReport
from .commands import CommandRouter, is_command
from .config import BotSettings, ChannelSpec
from .deferred import lookup_shoutcaster, record_shoutcaster
from .notifier import OperatorNotifier
from .transport import ChatMessage, DiscordTransport

log = logging.getLogger(__name__)

PollState = Literal["idle", "fetching", "processing", "committing"]
PollStatus = Literal["locked", "drained", "batch_limit", "deadline", "grid_unavailable"]
MessageKind = Literal[
    "bot", "command", "unparseable", "mismatch", "unresolved", "scheduled"
]


@dataclass(slots=True)
class MessageOutcome:
    kind: MessageKind
    changed: bool = False


@dataclass(slots=True)
class PollReport:
    status: PollStatus
    processed: int = 0
    changed: bool = False
    scheduled: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cursors: dict[str, str] = field(default_factory=dict)
    sync: SyncReport | None = None
    board_error: str | None = None


class Poller:
    def __init__(
        self,
        *,
        transport: DiscordTransport,
        repository: ScheduleRepository,
        lock: IngestLock,
        source: ScheduleSource,
        resolver: MatchResolver,
        synchronizer: BoardSynchronizer,
        commands: CommandRouter,
        notifier: OperatorNotifier,
        settings: BotSettings,
        channels: Sequence[ChannelSpec],
        monotonic: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = lambda: datetime.now(UTC).date(),
    ) -> None:
        self._transport = transport
        self._repo = repository
        self._lock = lock
        self._source = source
        self._resolver = resolver
        self._synchronizer = synchronizer
        self._commands = commands
        self._notifier = notifier
        self._settings = settings
        self._channels = list(channels)
        self._monotonic = monotonic
        self._today = today
        self._resync_requested = False
        self.state: PollState = "idle"

    async def run(self) -> PollReport:
        if not await self._lock.acquire(self._settings.lock_timeout_seconds):
            log.info("Poll skipped; another ingestion pass holds the lock")
            return PollReport(status="locked")
        try:
            return await self._run_locked()
        finally:
            self.state = "idle"
            self._lock.release()

    async def _run_locked(self) -> PollReport:
        report = PollReport(status="drained")
        self._resync_requested = False
        try:
            aligned = self._source.aligned_week(self._today())
        except GridUnavailableError as exc:
            log.error("Schedule grid unavailable; skipping pass: %s", exc)
            report.status = "grid_unavailable"
            report.errors.append(str(exc))
            return report
        started = self._monotonic()
        stop: PollStatus | None = None

        for spec in self._channels:
            if stop is not None:
                break
            self.state = "fetching"
            cursor = self._repo.load_cursor(spec.channel_id)
            messages = await self._fetch(spec, cursor, report)

            self.state = "processing"
            last_id: str | None = None
            for message in messages:
                if report.processed >= self._settings.batch_size:
                    stop = "batch_limit"
                    break
                try:
                    outcome = await self._process(spec, message, aligned)
                except GridUnavailableError as exc:
                    log.error("Schedule grid unavailable; stopping pass: %s", exc)
                    report.errors.append(str(exc))
                    stop = "grid_unavailable"
                    break
                report.processed += 1
                last_id = message.id
                if outcome.kind == "scheduled":
                    report.scheduled.append(message.id)
                elif outcome.kind != "command":
                    report.skipped.append(message.id)
                report.changed = report.changed or outcome.changed
                if self._monotonic() - started >= self._settings.soft_deadline_seconds:
                    stop = "deadline"
                    break

            if last_id is not None:
                self.state = "committing"
                report.cursors[spec.channel_id] = self._repo.save_cursor(
                    spec.channel_id, last_id
                )

        report.status = stop or "drained"
        if aligned is not None and (report.changed or self._resync_requested):
            await self._sync(aligned, report)
        log.info(
            "Poll finished: status=%s processed=%d scheduled=%d skipped=%d",
            report.status,
            report.processed,
            len(report.scheduled),
            len(report.skipped),
        )
        return report

    async def _fetch(
        self, spec: ChannelSpec, cursor: str | None, report: PollReport
    ) -> list[ChatMessage]:
        if cursor is not None:
            confirm = await self._transport.fetch_one(spec.channel_id, cursor)
            if not confirm.ok and confirm.status_class == "not_found":
                log.warning(
                    "Cursor message %s in channel %s no longer exists",
                    cursor,
                    spec.channel_id,
                )
        result = await self._transport.fetch(spec.channel_id, cursor)
        if not result.ok:
            report.errors.append(f"fetch {spec.channel_id}: {result.error}")
            return []
        fresh = [
            message for message in result.body or [] if is_newer(message.id, cursor)
        ]
        return sort_snowflakes(fresh, key=lambda message: message.id)

    async def _sync(self, week: Week, report: PollReport) -> None:
        try:
            report.sync = await self._synchronizer.sync(week)
        except BoardSyncError as exc:
            log.error("Board sync failed: %s", exc)
            report.board_error = str(exc)
            await self._notifier.notify(f"⚠️ Board sync failed for {week.label}: {exc}")
        except GridUnavailableError as exc:
            log.error("Schedule grid unavailable during board sync: %s", exc)
            report.errors.append(f"sync {week.key}: {exc}")

    async def _process(
        self, spec: ChannelSpec, message: ChatMessage, aligned: Week | None
    ) -> MessageOutcome:
        if message.author_bot:
            return MessageOutcome(kind="bot")

        if is_command(message.content):
            outcome = await self._commands.handle(message, aligned)
            self._resync_requested = self._resync_requested or outcome.resync
            return MessageOutcome(kind="command")

        parsed = parse_schedule(
            message.content,
            division_hint=spec.division,
            reference=snowflake_time(message.id),
            default_timezone=self._settings.default_timezone,
            message_id=message.id,
            author_id=message.author_id,
        )
        if not parsed.ok or parsed.assertion is None:
            log.info(
                "Skipping message %s in %s: %s",
                message.id,
                spec.channel_id,
                parsed.reason,
            )
            return MessageOutcome(kind="unparseable")

        assertion = parsed.assertion
        if assertion.division is None:
            log.info("Skipping message %s: no division given or implied", message.id)
            return MessageOutcome(kind="unparseable")
        if assertion.division_conflict:
            log.info(
                "Skipping message %s: names %s in a %s channel",
                message.id,
                assertion.division.value,
                spec.division.value if spec.division else "general",
            )
            return MessageOutcome(kind="mismatch")
        if aligned is None:
            log.warning("Cannot resolve message %s: the grid lists no weeks", message.id)
            return MessageOutcome(kind="unresolved")

        resolution = self._resolver.resolve(
            assertion.division, assertion.team_a, assertion.team_b, aligned
        )
        if resolution.slot is None:
            log.warning(
                "Unresolved schedule message %s by %s in %s: %r (%s)",
                message.id,
                message.author_id,
                spec.channel_id,
                message.content,
                resolution.reason,
            )
            return MessageOutcome(kind="unresolved")

        changed = self._apply(resolution.slot, assertion.when_text, assertion.epoch)
        changed = await self._shoutcaster(resolution.slot, message) or changed

        ack = await self._transport.react(
            message.channel_id, message.id, self._settings.ack_emoji
        )
        if not ack.ok:
            log.warning("Could not acknowledge message %s: %s", message.id, ack.error)

        slot = resolution.slot
        origin = (
            ""
            if slot.origin == "aligned"
            else f" (make-up from {slot.owning_week.label})"
        )
        await self._notifier.notify(
            f"📅 {assertion.division.value}: {slot.row.team_one} vs {slot.row.team_two}"
            f" → {assertion.when_text}{origin}"
        )
        return MessageOutcome(kind="scheduled", changed=changed)

    def _apply(self, slot: MatchSlot, when_text: str, epoch: int | None) -> bool:
        division = slot.handle.division
        week = slot.owning_week
        one, two = slot.row.canonical_one, slot.row.canonical_two

        store = self._repo.load_week(week.key)
        changed = store.apply_schedule(match_key(division, one, two), when_text, epoch)
        if changed:
            self._repo.save_week(week.key, store)

        registry = self._repo.load_registry()
        entry = RegistryEntry(
            division=division,
            team_a=one,
            team_b=two,
            map_name=week.map_name,
            source_week_day=week.day.isoformat(),
            source_week_name=week.label,
            when_text=when_text,
            epoch=epoch,
        )
        if registry.upsert(entry):
            self._repo.save_registry(registry)
            changed = True
        return changed

    async def _shoutcaster(self, slot: MatchSlot, message: ChatMessage) -> bool:
        division = slot.handle.division
        one, two = slot.row.canonical_one, slot.row.canonical_two
        if self._settings.shoutcaster_mode == "immediate":
            lookup = await lookup_shoutcaster(
                self._transport, message.channel_id, message.id, self._settings
            )
            if lookup.tag is None:
                return False
            return record_shoutcaster(
                self._repo, slot.owning_week.key, division, one, two, lookup.tag
            )

        self._repo.enqueue(
            DeferredItem(
                week_key=slot.owning_week.key,
                division=division,
                team_a=one,
                team_b=two,
                channel_id=message.channel_id,
                message_id=message.id,
                enqueued_at=utc_now_iso(),
            )
        )
        return False


__all__ = ["MessageOutcome", "PollReport", "Poller"]

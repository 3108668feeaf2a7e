"""Shoutcaster detection that runs apart from the ingestion loop."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Literal

from schedule_bot.grid import GridUnavailableError, ScheduleSource
from schedule_bot.models import DeferredItem, Division, RegistryEntry, Week, match_key
from schedule_bot.storage import IngestLock, ScheduleRepository

from .board import BoardSynchronizer, BoardSyncError
from .config import BotSettings
from .transport import CallResult, DiscordTransport

log = logging.getLogger(__name__)


LookupStatus = Literal["found", "none", "gone", "error"]


@dataclass(slots=True)
class CasterLookup:
    status: LookupStatus
    tag: str | None = None


async def lookup_shoutcaster(
    transport: DiscordTransport,
    channel_id: str,
    message_id: str,
    settings: BotSettings,
) -> CasterLookup:
    """Return the first caster-role reactor on the source message, if any."""
    result: CallResult = await transport.list_reactors(
        channel_id, message_id, settings.caster_emoji
    )
    if not result.ok:
        if result.status_class == "not_found":
            return CasterLookup(status="gone")
        return CasterLookup(status="error")
    for user in result.body or []:
        if user.bot:
            continue
        if settings.caster_role_id and settings.caster_role_id not in user.roles:
            continue
        return CasterLookup(status="found", tag=f"<@{user.id}>")
    return CasterLookup(status="none")


def record_shoutcaster(
    repository: ScheduleRepository,
    week_key: str,
    division: Division,
    team_a: str,
    team_b: str,
    tag: str,
) -> bool:
    """Apply a caster tag to the week store and registry; True when anything changed."""
    store = repository.load_week(week_key)
    changed = store.apply_shoutcaster(match_key(division, team_a, team_b), tag)
    if changed:
        repository.save_week(week_key, store)

    week = Week.from_key(week_key)
    registry = repository.load_registry()
    entry = registry.get(
        RegistryEntry.make_key(
            division, team_a, team_b, week.map_name, week.day.isoformat()
        )
    )
    if entry is not None and entry.shoutcaster != tag:
        entry.shoutcaster = tag
        repository.save_registry(registry)
        changed = True
    return changed


@dataclass(slots=True)
class DeferredReport:
    status: Literal["locked", "done"]
    resolved: list[str] = field(default_factory=list)
    expired: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    changed: bool = False


class DeferredPass:
    """Replays the shoutcaster queue; safe to skip or re-run at any time."""

    def __init__(
        self,
        *,
        transport: DiscordTransport,
        repository: ScheduleRepository,
        lock: IngestLock,
        synchronizer: BoardSynchronizer,
        source: ScheduleSource,
        settings: BotSettings,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._transport = transport
        self._repo = repository
        self._lock = lock
        self._synchronizer = synchronizer
        self._source = source
        self._settings = settings
        self._clock = clock

    def _expired(self, item: DeferredItem, now: datetime) -> bool:
        enqueued = item.enqueued_datetime()
        if enqueued is None:
            return True
        return now - enqueued > timedelta(hours=self._settings.deferred_max_age_hours)

    async def run(self) -> DeferredReport:
        if not await self._lock.acquire(self._settings.lock_timeout_seconds):
            log.info("Deferred pass skipped; ingestion lock is busy")
            return DeferredReport(status="locked")
        try:
            return await self._drain()
        finally:
            self._lock.release()

    async def _drain(self) -> DeferredReport:
        report = DeferredReport(status="done")
        items = self._repo.load_queue()
        if not items:
            return report

        now = self._clock()
        remaining: list[DeferredItem] = []
        for item in items:
            lookup = await lookup_shoutcaster(
                self._transport, item.channel_id, item.message_id, self._settings
            )
            if lookup.status == "found" and lookup.tag:
                if record_shoutcaster(
                    self._repo,
                    item.week_key,
                    item.division,
                    item.team_a,
                    item.team_b,
                    lookup.tag,
                ):
                    report.changed = True
                report.resolved.append(item.message_id)
                continue
            # A deleted source message will never gain a caster.
            if lookup.status == "gone" or self._expired(item, now):
                report.expired.append(item.message_id)
                continue
            report.kept.append(item.message_id)
            remaining.append(item)

        self._repo.save_queue(remaining)

        if report.changed:
            try:
                week = self._source.aligned_week(now.date())
                if week is not None:
                    await self._synchronizer.sync(week)
            except (BoardSyncError, GridUnavailableError) as exc:
                log.error("Deferred pass board sync failed: %s", exc)
                report.errors.append(str(exc))
        log.info(
            "Deferred pass: resolved=%d expired=%d kept=%d",
            len(report.resolved),
            len(report.expired),
            len(report.kept),
        )
        return report


__all__ = [
    "CasterLookup",
    "DeferredPass",
    "DeferredReport",
    "lookup_shoutcaster",
    "record_shoutcaster",
]

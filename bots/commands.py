from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from schedule_bot.grid import GridUnavailableError, ScheduleSource, parse_sheet_date
from schedule_bot.models import Week, normalize_map
from schedule_bot.storage import ScheduleRepository

from .board import BoardSynchronizer
from .config import BotSettings
from .notifier import OperatorNotifier
from .transport import ChatMessage

log = logging.getLogger(__name__)

COMMAND_PREFIX = "!"
IDENTITY_COMMANDS = frozenset({"twitch", "link", "unlink"})

OutcomeKind = Literal["identity", "operator", "denied", "unknown", "invalid"]


@dataclass(slots=True)
class CommandOutcome:
    kind: OutcomeKind
    resync: bool = False
    note: str = ""


def is_command(text: str) -> bool:
    return text.lstrip().startswith(COMMAND_PREFIX)


class CommandRouter:
    """Handles ``!`` commands as soon as they are read, apart from scheduling."""

    def __init__(
        self,
        *,
        repository: ScheduleRepository,
        synchronizer: BoardSynchronizer,
        source: ScheduleSource,
        notifier: OperatorNotifier,
        settings: BotSettings,
    ) -> None:
        self._repo = repository
        self._synchronizer = synchronizer
        self._source = source
        self._notifier = notifier
        self._settings = settings

    async def handle(self, message: ChatMessage, aligned: Week | None) -> CommandOutcome:
        parts = message.content.strip()[len(COMMAND_PREFIX) :].split()
        if not parts:
            return CommandOutcome(kind="unknown")
        name, args = parts[0].lower(), parts[1:]

        if name in IDENTITY_COMMANDS:
            # Account linking lives in a separate service.
            log.info(
                "Identity command %s from %s left for the linker",
                name,
                message.author_id,
            )
            return CommandOutcome(kind="identity", note=name)

        handler = {"resync": self._resync, "clearweek": self._clear_week}.get(name)
        if handler is None:
            log.info("Ignoring unknown command %r from %s", name, message.author_id)
            return CommandOutcome(kind="unknown", note=name)

        if message.author_id not in self._settings.admin_user_ids:
            log.warning("User %s is not allowed to run !%s", message.author_id, name)
            return CommandOutcome(kind="denied", note=name)
        return await handler(args, aligned)

    async def _resync(self, args: list[str], aligned: Week | None) -> CommandOutcome:
        self._source.refresh()
        if aligned is None:
            return CommandOutcome(kind="invalid", note="no aligned week")
        if args and args[0].lower() == "force":
            self._synchronizer.reset_hashes(aligned)
        await self._notifier.notify(f"🔄 Board resync requested for {aligned.label}")
        return CommandOutcome(kind="operator", resync=True, note="resync")

    async def _clear_week(self, args: list[str], aligned: Week | None) -> CommandOutcome:
        if len(args) < 2:
            return CommandOutcome(kind="invalid", note="usage: !clearweek <date> <map>")
        day = parse_sheet_date(args[0])
        if day is None:
            return CommandOutcome(kind="invalid", note=f"bad date {args[0]!r}")
        week = self._sheet_week(Week(day=day, map_name=" ".join(args[1:])))

        removed = await self._synchronizer.retire_week(week)
        self._repo.delete_week(week.key)
        registry = self._repo.load_registry()
        pruned = registry.prune(week.map_name, week.day.isoformat())
        if pruned:
            self._repo.save_registry(registry)

        await self._notifier.notify(
            f"🧹 Cleared {week.label}: {removed} board messages removed, "
            f"{pruned} make-up entries pruned"
        )
        return CommandOutcome(
            kind="operator",
            resync=aligned is not None and pruned > 0,
            note="clearweek",
        )

    def _sheet_week(self, typed: Week) -> Week:
        """Swap a typed week for the sheet's spelling of the same date and map."""
        try:
            weeks = self._source.weeks()
        except GridUnavailableError as exc:
            log.warning("Clearing %s as typed; grid unavailable: %s", typed.key, exc)
            return typed
        target = normalize_map(typed.map_name)
        for week in weeks:
            if week.day == typed.day and normalize_map(week.map_name) == target:
                return week
        return typed


__all__ = ["CommandOutcome", "CommandRouter", "IDENTITY_COMMANDS", "is_command"]

"""Configuration helpers for the scheduling runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

from schedule_bot.models import Division
from schedule_bot.parser import DEFAULT_TIMEZONE

ShoutcasterMode = Literal["immediate", "deferred"]


def env_int(name: str, *, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, *, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def env_ids(name: str) -> frozenset[str]:
    raw = os.getenv(name) or ""
    return frozenset(part.strip() for part in raw.split(",") if part.strip().isdigit())


@dataclass(frozen=True)
class ChannelSpec:
    channel_id: str
    division: Division | None = None


def parse_channel_specs(raw: str | None) -> list[ChannelSpec]:
    """Parse ``"123=bronze,456=silver,789"`` into channel specs.

    Raises ``ValueError`` for non-numeric ids or unknown divisions.
    """

    specs: list[ChannelSpec] = []
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        channel_id, _, division_raw = part.partition("=")
        channel_id = channel_id.strip()
        if not channel_id.isdigit():
            raise ValueError(f"Invalid channel id: {channel_id!r}")
        division = None
        if division_raw.strip():
            division = Division.parse(division_raw)
            if division is None:
                raise ValueError(f"Unknown division: {division_raw!r}")
        specs.append(ChannelSpec(channel_id=channel_id, division=division))
    return specs


@dataclass(frozen=True)
class BotSettings:
    batch_size: int = 25
    soft_deadline_seconds: float = 240.0
    lock_timeout_seconds: float = 5.0
    lock_lease_seconds: int = 300
    shoutcaster_mode: ShoutcasterMode = "deferred"
    ack_emoji: str = "✅"
    caster_emoji: str = "🎙️"
    caster_role_id: str | None = None
    admin_user_ids: frozenset[str] = frozenset()
    default_timezone: str = DEFAULT_TIMEZONE
    deferred_max_age_hours: float = 72.0
    grid_cache_hours: float = 6.0


def read_bot_settings() -> BotSettings:
    mode = (os.getenv("SHOUTCASTER_MODE") or "deferred").strip().lower()
    caster_role = env_int("CASTER_ROLE_ID")
    return BotSettings(
        batch_size=env_int("POLL_BATCH_SIZE", default=25) or 25,
        soft_deadline_seconds=env_float("POLL_SOFT_DEADLINE_SECONDS", default=240.0),
        lock_timeout_seconds=env_float("LOCK_TIMEOUT_SECONDS", default=5.0),
        lock_lease_seconds=env_int("LOCK_LEASE_SECONDS", default=300) or 300,
        shoutcaster_mode="immediate" if mode == "immediate" else "deferred",
        ack_emoji=os.getenv("ACK_EMOJI") or "✅",
        caster_emoji=os.getenv("CASTER_EMOJI") or "🎙️",
        caster_role_id=str(caster_role) if caster_role else None,
        admin_user_ids=env_ids("ADMIN_USER_IDS"),
        default_timezone=os.getenv("DEFAULT_TIMEZONE") or DEFAULT_TIMEZONE,
        deferred_max_age_hours=env_float("DEFERRED_MAX_AGE_HOURS", default=72.0),
        grid_cache_hours=env_float("GRID_CACHE_HOURS", default=6.0),
    )


__all__ = [
    "BotSettings",
    "ChannelSpec",
    "env_float",
    "env_ids",
    "env_int",
    "parse_channel_specs",
    "read_bot_settings",
]

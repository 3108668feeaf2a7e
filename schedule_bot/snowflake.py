"""Ordering helpers for Discord snowflake identifiers."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import TypeVar

DISCORD_EPOCH_MS = 1420070400000

T = TypeVar("T")


def snowflake_key(value: int | str) -> int:
    """Return the integer ordering key for a snowflake id."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid snowflake: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Invalid snowflake: {value!r}")
        return value
    text = str(value).strip()
    if not text.isdigit():
        raise ValueError(f"Invalid snowflake: {value!r}")
    return int(text)


def is_newer(candidate: int | str, cursor: int | str | None) -> bool:
    if cursor is None:
        return True
    return snowflake_key(candidate) > snowflake_key(cursor)


def sort_snowflakes(
    items: Iterable[T], *, key: Callable[[T], int | str] | None = None
) -> list[T]:
    getter = key or (lambda item: item)  # type: ignore[assignment,return-value]
    return sorted(items, key=lambda item: snowflake_key(getter(item)))


def snowflake_time(value: int | str) -> datetime:
    milliseconds = (snowflake_key(value) >> 22) + DISCORD_EPOCH_MS
    return datetime.fromtimestamp(milliseconds / 1000, tz=UTC)


__all__ = [
    "DISCORD_EPOCH_MS",
    "is_newer",
    "snowflake_key",
    "snowflake_time",
    "sort_snowflakes",
]

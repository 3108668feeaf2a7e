"""Fire-and-forget status lines for the operator channel."""

from __future__ import annotations

import logging

import discord

log = logging.getLogger(__name__)


class OperatorNotifier:
    def __init__(self, bot: discord.Client, channel_id: int | None) -> None:
        self._bot = bot
        self._channel_id = channel_id

    @property
    def channel_id(self) -> int | None:
        return self._channel_id

    async def _resolve_channel(self) -> discord.abc.Messageable | None:
        channel = self._bot.get_channel(self._channel_id)
        if channel is None:
            try:
                channel = await self._bot.fetch_channel(self._channel_id)
            except discord.DiscordException as exc:
                log.warning(
                    "Unable to fetch operator channel %s: %s", self._channel_id, exc
                )
                return None
        if not isinstance(channel, discord.abc.Messageable):
            log.warning("Operator channel %s is not messageable", self._channel_id)
            return None
        return channel

    async def notify(self, message: str) -> None:
        """Post ``message``; failures are logged and never raised."""
        if self._channel_id is None:
            log.info("[operator] %s", message)
            return

        channel = await self._resolve_channel()
        if channel is None:
            log.info("[operator] %s", message)
            return

        try:
            await channel.send(content=message)
        except discord.DiscordException as exc:
            log.warning(
                "Failed to send operator notice to channel %s: %s",
                self._channel_id,
                exc,
            )


__all__ = ["OperatorNotifier"]

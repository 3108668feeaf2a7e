"""Discord transport with one retry/backoff policy for every outbound call."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

import aiohttp
import discord

log = logging.getLogger(__name__)

StatusClass = Literal["ok", "transient", "permanent", "not_found"]


@dataclass(slots=True)
class CallResult:
    ok: bool
    status_class: StatusClass
    body: Any = None
    error: str | None = None

    @classmethod
    def success(cls, body: Any = None) -> CallResult:
        return cls(ok=True, status_class="ok", body=body)

    @classmethod
    def failure(cls, status_class: StatusClass, error: str) -> CallResult:
        return cls(ok=False, status_class=status_class, error=error)


@dataclass(slots=True)
class ChatMessage:
    id: str
    content: str
    author_id: str
    channel_id: str
    author_bot: bool = False


@dataclass(slots=True)
class ChatUser:
    id: str
    name: str = ""
    roles: list[str] = field(default_factory=list)
    bot: bool = False


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    timeout: float = 15.0

    def backoff(self, attempt: int, hint: float | None = None) -> float:
        if hint is not None and hint > 0:
            return min(hint, self.max_delay)
        return min(self.base_delay * (2**attempt), self.max_delay)


def _retry_hint(exc: Exception) -> float | None:
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        try:
            return float(retry_after)
        except (TypeError, ValueError):
            return None
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) or {}
    raw = headers.get("Retry-After") if hasattr(headers, "get") else None
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def classify_exception(exc: Exception) -> StatusClass:
    if isinstance(exc, discord.NotFound):
        return "not_found"
    if isinstance(exc, discord.Forbidden):
        return "permanent"
    if isinstance(exc, discord.RateLimited):
        return "transient"
    if isinstance(exc, discord.HTTPException):
        status = getattr(exc, "status", None) or 0
        if status == 429 or status >= 500:
            return "transient"
        return "permanent"
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ClientError, ConnectionError)):
        return "transient"
    return "permanent"


class RetryingCaller:
    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def call(
        self, description: str, factory: Callable[[], Awaitable[Any]]
    ) -> CallResult:
        """Run ``factory`` with a timeout, retrying transient failures."""
        policy = self.policy
        last_error = ""
        for attempt in range(policy.max_attempts):
            try:
                body = await asyncio.wait_for(factory(), timeout=policy.timeout)
                return CallResult.success(body)
            except (
                discord.DiscordException,
                aiohttp.ClientError,
                asyncio.TimeoutError,
                ConnectionError,
            ) as exc:
                status_class = classify_exception(exc)
                last_error = f"{type(exc).__name__}: {exc}"
                if status_class != "transient":
                    log.warning(
                        "%s failed (%s): %s", description, status_class, last_error
                    )
                    return CallResult.failure(status_class, last_error)
                if attempt + 1 >= policy.max_attempts:
                    break
                delay = policy.backoff(attempt, _retry_hint(exc))
                log.info(
                    "%s hit a transient error (attempt %d/%d), retrying in %.1fs: %s",
                    description,
                    attempt + 1,
                    policy.max_attempts,
                    delay,
                    last_error,
                )
                await self._sleep(delay)
        log.error(
            "%s failed after %d attempts: %s",
            description,
            policy.max_attempts,
            last_error,
        )
        return CallResult.failure("transient", last_error)


def _to_chat_message(message: discord.Message) -> ChatMessage:
    return ChatMessage(
        id=str(message.id),
        content=message.content or "",
        author_id=str(message.author.id),
        channel_id=str(message.channel.id),
        author_bot=bool(getattr(message.author, "bot", False)),
    )


class DiscordTransport:
    """Chat operations used by the poller, synchronizer and deferred pass."""

    def __init__(
        self,
        client: discord.Client,
        caller: RetryingCaller | None = None,
        *,
        fetch_limit: int = 100,
    ) -> None:
        self._client = client
        self._caller = caller or RetryingCaller()
        self._fetch_limit = fetch_limit

    async def _channel(self, channel_id: str) -> discord.abc.Messageable:
        channel = self._client.get_channel(int(channel_id))
        if channel is None:
            channel = await self._client.fetch_channel(int(channel_id))
        if not isinstance(channel, discord.abc.Messageable):
            raise discord.InvalidData(f"Channel {channel_id} is not messageable")
        return channel

    async def fetch(self, channel_id: str, after: str | None) -> CallResult:
        async def run() -> list[ChatMessage]:
            channel = await self._channel(channel_id)
            marker = discord.Object(id=int(after)) if after else None
            return [
                _to_chat_message(message)
                async for message in channel.history(
                    limit=self._fetch_limit, after=marker, oldest_first=True
                )
            ]

        return await self._caller.call(f"fetch {channel_id} after {after}", run)

    async def fetch_one(self, channel_id: str, message_id: str) -> CallResult:
        async def run() -> ChatMessage:
            channel = await self._channel(channel_id)
            return _to_chat_message(await channel.fetch_message(int(message_id)))

        return await self._caller.call(f"fetch message {message_id}", run)

    async def post(self, channel_id: str, content: str) -> CallResult:
        async def run() -> str:
            channel = await self._channel(channel_id)
            sent = await channel.send(content=content)
            return str(sent.id)

        return await self._caller.call(f"post to {channel_id}", run)

    async def edit(self, channel_id: str, message_id: str, content: str) -> CallResult:
        async def run() -> str:
            channel = await self._channel(channel_id)
            await channel.get_partial_message(int(message_id)).edit(content=content)
            return message_id

        return await self._caller.call(f"edit message {message_id}", run)

    async def delete(self, channel_id: str, message_id: str) -> CallResult:
        async def run() -> None:
            channel = await self._channel(channel_id)
            await channel.get_partial_message(int(message_id)).delete()

        return await self._caller.call(f"delete message {message_id}", run)

    async def react(self, channel_id: str, message_id: str, emoji: str) -> CallResult:
        async def run() -> None:
            channel = await self._channel(channel_id)
            await channel.get_partial_message(int(message_id)).add_reaction(emoji)

        return await self._caller.call(f"react to {message_id}", run)

    async def list_reactors(
        self, channel_id: str, message_id: str, emoji: str
    ) -> CallResult:
        async def run() -> list[ChatUser]:
            channel = await self._channel(channel_id)
            message = await channel.fetch_message(int(message_id))
            reaction = next(
                (item for item in message.reactions if str(item.emoji) == emoji), None
            )
            if reaction is None:
                return []
            users: list[ChatUser] = []
            async for user in reaction.users():
                member = user
                if not hasattr(member, "roles") and message.guild is not None:
                    member = message.guild.get_member(user.id) or user
                users.append(
                    ChatUser(
                        id=str(user.id),
                        name=str(user),
                        roles=[str(role.id) for role in getattr(member, "roles", [])],
                        bot=bool(getattr(user, "bot", False)),
                    )
                )
            return users

        return await self._caller.call(f"list reactors on {message_id}", run)


__all__ = [
    "CallResult",
    "ChatMessage",
    "ChatUser",
    "DiscordTransport",
    "RetryPolicy",
    "RetryingCaller",
    "classify_exception",
]

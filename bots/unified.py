"""Discord runtime that wires the ingestion loop, board and deferred pass together."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import boto3
import discord
from botocore.config import Config
from discord.ext import tasks

from schedule_bot.cache import TTLCache
from schedule_bot.grid import SheetScheduleSource, open_spreadsheet
from schedule_bot.resolver import MatchResolver
from schedule_bot.storage import IngestLock, KeyValueStore, ScheduleRepository

from bots.board import BoardSynchronizer
from bots.commands import CommandRouter
from bots.config import (
    BotSettings,
    ChannelSpec,
    env_int,
    parse_channel_specs,
    read_bot_settings,
)
from bots.deferred import DeferredPass
from bots.notifier import OperatorNotifier
from bots.poller import Poller
from bots.transport import DiscordTransport, RetryingCaller

log = logging.getLogger("schedule-bot")


@dataclass(slots=True)
class EnvironmentConfig:
    discord_token: str
    table_name: str
    sheet_id: str
    schedule_channels: list[ChannelSpec]
    board_channel_id: str
    operator_channel_id: int | None
    service_account_file: str
    aws_region: str
    poll_interval_seconds: int
    deferred_interval_seconds: int

    @classmethod
    def load(cls) -> "EnvironmentConfig":
        missing: list[str] = []

        def need(name: str) -> str:
            value = os.getenv(name)
            if not value:
                missing.append(name)
                return ""
            return value

        discord_token = need("DISCORD_TOKEN")
        table_name = need("SCHEDULE_TABLE_NAME")
        sheet_id = need("GOOGLE_SHEET_ID")
        channels_raw = need("SCHEDULE_CHANNELS")
        board_channel_id = need("BOARD_CHANNEL_ID")

        if missing:
            raise RuntimeError("Missing env vars: " + ", ".join(sorted(set(missing))))

        try:
            schedule_channels = parse_channel_specs(channels_raw)
        except ValueError as exc:
            raise RuntimeError(f"Invalid SCHEDULE_CHANNELS: {exc}") from exc

        return cls(
            discord_token=discord_token,
            table_name=table_name,
            sheet_id=sheet_id,
            schedule_channels=schedule_channels,
            board_channel_id=board_channel_id,
            operator_channel_id=env_int("OPERATOR_CHANNEL_ID"),
            service_account_file=os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE")
            or "credentials.json",
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            poll_interval_seconds=env_int("POLL_INTERVAL_SECONDS", default=60) or 60,
            deferred_interval_seconds=env_int("DEFERRED_INTERVAL_SECONDS", default=300)
            or 300,
        )


class ScheduleRuntime:
    def __init__(self, config: EnvironmentConfig, settings: BotSettings) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.message_content = True
        intents.reactions = True

        self.config = config
        self.settings = settings
        self.bot = discord.Client(intents=intents)
        self.dynamodb = boto3.resource(
            "dynamodb",
            region_name=config.aws_region,
            config=Config(
                connect_timeout=5,
                read_timeout=10,
                retries={"max_attempts": 5, "mode": "standard"},
            ),
        )
        self.poller: Poller | None = None
        self.deferred: DeferredPass | None = None

    def configure(self) -> None:
        table = self.dynamodb.Table(self.config.table_name)
        repository = ScheduleRepository(KeyValueStore(table))
        lock = IngestLock(table, lease_seconds=self.settings.lock_lease_seconds)
        transport = DiscordTransport(self.bot, RetryingCaller())
        notifier = OperatorNotifier(self.bot, self.config.operator_channel_id)

        spreadsheet = open_spreadsheet(
            self.config.sheet_id, self.config.service_account_file
        )
        source = SheetScheduleSource(
            spreadsheet, TTLCache(self.settings.grid_cache_hours * 3600)
        )
        resolver = MatchResolver(source)
        synchronizer = BoardSynchronizer(
            transport, repository, source, resolver, self.config.board_channel_id
        )
        commands = CommandRouter(
            repository=repository,
            synchronizer=synchronizer,
            source=source,
            notifier=notifier,
            settings=self.settings,
        )
        self.poller = Poller(
            transport=transport,
            repository=repository,
            lock=lock,
            source=source,
            resolver=resolver,
            synchronizer=synchronizer,
            commands=commands,
            notifier=notifier,
            settings=self.settings,
            channels=self.config.schedule_channels,
        )
        self.deferred = DeferredPass(
            transport=transport,
            repository=repository,
            lock=IngestLock(table, lease_seconds=self.settings.lock_lease_seconds),
            synchronizer=synchronizer,
            source=source,
            settings=self.settings,
        )

        self.poll_loop = tasks.loop(seconds=self.config.poll_interval_seconds)(
            self._poll_tick
        )
        self.deferred_loop = tasks.loop(seconds=self.config.deferred_interval_seconds)(
            self._deferred_tick
        )
        self.bot.event(self.on_ready)

    async def _poll_tick(self) -> None:
        if self.poller is None:
            return
        try:
            await self.poller.run()
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Ingestion pass failed: %s", exc)

    async def _deferred_tick(self) -> None:
        if self.deferred is None:
            return
        try:
            await self.deferred.run()
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Deferred pass failed: %s", exc)

    async def on_ready(self) -> None:
        log.info("Logged in as %s", self.bot.user)
        if not self.poll_loop.is_running():
            self.poll_loop.start()
        if not self.deferred_loop.is_running():
            self.deferred_loop.start()

    async def run(self) -> None:
        self.configure()
        async with self.bot:
            await self.bot.start(self.config.discord_token)

    @classmethod
    def create(cls) -> "ScheduleRuntime":
        return cls(EnvironmentConfig.load(), read_bot_settings())


async def main() -> None:
    logging.basicConfig(level=logging.INFO)
    runtime = ScheduleRuntime.create()
    await runtime.run()


__all__ = ["EnvironmentConfig", "ScheduleRuntime", "main"]

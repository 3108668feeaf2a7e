"""Tests for the schedule bot runtime wiring."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bots.config import BotSettings, ChannelSpec
from bots.deferred import DeferredPass
from bots.poller import Poller
from bots.unified import EnvironmentConfig, ScheduleRuntime, main
from schedule_bot.models import Division


def make_config(**overrides):
    data = {
        "discord_token": "test_token",
        "table_name": "schedule",
        "sheet_id": "sheet",
        "schedule_channels": [ChannelSpec("100", Division.BRONZE)],
        "board_channel_id": "900",
        "operator_channel_id": None,
        "service_account_file": "credentials.json",
        "aws_region": "us-east-1",
        "poll_interval_seconds": 60,
        "deferred_interval_seconds": 300,
    }
    data.update(overrides)
    return EnvironmentConfig(**data)


class TestScheduleRuntime:
    """Test runtime wiring."""

    @patch("bots.unified.boto3.resource")
    def test_init(self, mock_boto3_resource):
        """Should build the client and the DynamoDB resource."""
        mock_boto3_resource.return_value = MagicMock()

        runtime = ScheduleRuntime(make_config(), BotSettings())

        assert runtime.bot is not None
        assert runtime.bot.intents.message_content
        assert runtime.bot.intents.reactions
        assert runtime.poller is None
        assert runtime.deferred is None
        _, kwargs = mock_boto3_resource.call_args
        assert kwargs["region_name"] == "us-east-1"

    @patch("bots.unified.open_spreadsheet")
    @patch("bots.unified.boto3.resource")
    def test_configure(self, mock_boto3_resource, mock_open_spreadsheet):
        """Should wire the poller, deferred pass and both loops."""
        mock_boto3_resource.return_value = MagicMock()

        runtime = ScheduleRuntime(
            make_config(poll_interval_seconds=30), BotSettings(grid_cache_hours=1)
        )
        runtime.configure()

        mock_open_spreadsheet.assert_called_once_with("sheet", "credentials.json")
        runtime.dynamodb.Table.assert_called_once_with("schedule")
        assert isinstance(runtime.poller, Poller)
        assert isinstance(runtime.deferred, DeferredPass)
        assert runtime.poll_loop.seconds == 30
        assert runtime.deferred_loop.seconds == 300

    @patch("bots.unified.boto3.resource")
    @pytest.mark.asyncio
    async def test_ticks_swallow_errors(self, mock_boto3_resource):
        """A failing pass is logged and the loop keeps running."""
        mock_boto3_resource.return_value = MagicMock()
        runtime = ScheduleRuntime(make_config(), BotSettings())
        runtime.poller = MagicMock(run=AsyncMock(side_effect=RuntimeError("boom")))
        runtime.deferred = MagicMock(run=AsyncMock(side_effect=RuntimeError("boom")))

        with patch("bots.unified.log") as mock_log:
            await runtime._poll_tick()
            await runtime._deferred_tick()

        assert mock_log.exception.call_count == 2

    @patch("bots.unified.open_spreadsheet")
    @patch("bots.unified.boto3.resource")
    @pytest.mark.asyncio
    async def test_on_ready_starts_loops(self, mock_boto3_resource, _mock_open):
        """Should start both loops once."""
        mock_boto3_resource.return_value = MagicMock()
        runtime = ScheduleRuntime(make_config(), BotSettings())
        runtime.configure()

        with (
            patch.object(runtime.poll_loop, "start") as poll_start,
            patch.object(runtime.deferred_loop, "start") as deferred_start,
        ):
            await runtime.on_ready()

        poll_start.assert_called_once()
        deferred_start.assert_called_once()

    @patch("bots.unified.boto3.resource")
    @pytest.mark.asyncio
    async def test_run(self, mock_boto3_resource):
        """Should configure and start the client with the token."""
        mock_boto3_resource.return_value = MagicMock()
        runtime = ScheduleRuntime(make_config(), BotSettings())

        runtime.bot = AsyncMock()
        runtime.bot.__aenter__ = AsyncMock(return_value=runtime.bot)
        runtime.bot.__aexit__ = AsyncMock(return_value=None)
        runtime.bot.start = AsyncMock()

        with patch.object(runtime, "configure") as mock_configure:
            await runtime.run()

        mock_configure.assert_called_once()
        runtime.bot.start.assert_called_once_with("test_token")

    @patch("bots.unified.read_bot_settings")
    @patch("bots.unified.EnvironmentConfig.load")
    @patch("bots.unified.boto3.resource")
    def test_create(self, mock_boto3_resource, mock_env_load, mock_settings):
        """Should create runtime from environment."""
        mock_boto3_resource.return_value = MagicMock()
        mock_env_load.return_value = make_config()
        mock_settings.return_value = BotSettings()

        runtime = ScheduleRuntime.create()

        assert runtime.config == mock_env_load.return_value
        mock_env_load.assert_called_once()
        mock_settings.assert_called_once()


@patch("bots.unified.ScheduleRuntime.create")
@patch("bots.unified.logging.basicConfig")
@pytest.mark.asyncio
async def test_main(mock_logging_config, mock_runtime_create):
    """Should create and run the runtime."""
    mock_runtime = AsyncMock()
    mock_runtime_create.return_value = mock_runtime

    await main()

    mock_logging_config.assert_called_once()
    mock_runtime_create.assert_called_once()
    mock_runtime.run.assert_called_once()

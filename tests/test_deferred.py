"""Tests for the deferred shoutcaster pass."""

from datetime import UTC, datetime
from unittest import mock

import pytest

from bots.board import BoardSynchronizer
from bots.deferred import DeferredPass, lookup_shoutcaster, record_shoutcaster
from bots.transport import ChatUser
from schedule_bot.grid import GridUnavailableError
from schedule_bot.models import (
    DeferredItem,
    Division,
    GlobalRegistry,
    RegistryEntry,
    match_key,
)
from schedule_bot.resolver import MatchResolver
from schedule_bot.storage import IngestLock

WEEK_KEY = "2025-01-10|de_dust2"
NOW = datetime(2025, 1, 8, 12, 0, tzinfo=UTC)
KEY = match_key(Division.BRONZE, "ALPHA", "BETA")


def item(message_id, enqueued_at="2025-01-08T11:00:00.000000Z"):
    return DeferredItem(
        week_key=WEEK_KEY,
        division=Division.BRONZE,
        team_a="ALPHA",
        team_b="BETA",
        channel_id="100",
        message_id=message_id,
        enqueued_at=enqueued_at,
    )


def seed_registry(repo):
    registry = GlobalRegistry()
    registry.upsert(
        RegistryEntry(
            division=Division.BRONZE,
            team_a="ALPHA",
            team_b="BETA",
            map_name="de_dust2",
            source_week_day="2025-01-10",
            source_week_name="Week of Jan 10 · de_dust2",
            when_text="fri 8pm",
        )
    )
    repo.save_registry(registry)


@pytest.fixture
def deferred_pass(transport, repo, table, source, settings):
    synchronizer = BoardSynchronizer(transport, repo, source, MatchResolver(source), "900")
    return DeferredPass(
        transport=transport,
        repository=repo,
        lock=IngestLock(table),
        synchronizer=synchronizer,
        source=source,
        settings=settings,
        clock=lambda: NOW,
    )


class TestLookupShoutcaster:
    @pytest.mark.asyncio
    async def test_first_reactor_with_role(self, transport, settings):
        transport.reactors["500"] = [
            ChatUser("5", roles=["77"], bot=True),
            ChatUser("6", roles=["1"]),
            ChatUser("7", roles=["1", "77"]),
            ChatUser("8", roles=["77"]),
        ]

        lookup = await lookup_shoutcaster(transport, "100", "500", settings)

        assert lookup.status == "found"
        assert lookup.tag == "<@7>"
        assert transport.calls_of("list_reactors") == [
            ("list_reactors", "100", "500", settings.caster_emoji)
        ]

    @pytest.mark.asyncio
    async def test_no_reactor(self, transport, settings):
        lookup = await lookup_shoutcaster(transport, "100", "500", settings)

        assert lookup.status == "none"
        assert lookup.tag is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("failure", "status"), [("not_found", "gone"), ("transient", "error")]
    )
    async def test_failures(self, transport, settings, failure, status):
        transport.reactor_failures["500"] = failure

        lookup = await lookup_shoutcaster(transport, "100", "500", settings)

        assert lookup.status == status


def test_record_shoutcaster_updates_store_and_registry(repo):
    seed_registry(repo)

    assert record_shoutcaster(repo, WEEK_KEY, Division.BRONZE, "BETA", "ALPHA", "<@7>")
    assert repo.load_week(WEEK_KEY).shoutcasters == {KEY: "<@7>"}
    entry = repo.load_registry().get(
        RegistryEntry.make_key(Division.BRONZE, "ALPHA", "BETA", "de_dust2", "2025-01-10")
    )
    assert entry.shoutcaster == "<@7>"

    assert not record_shoutcaster(repo, WEEK_KEY, Division.BRONZE, "ALPHA", "BETA", "<@7>")


class TestDeferredPass:
    @pytest.mark.asyncio
    async def test_empty_queue(self, deferred_pass, transport):
        report = await deferred_pass.run()

        assert report.status == "done"
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_resolves_expires_and_keeps(self, deferred_pass, repo, transport):
        seed_registry(repo)
        for queued in [
            item("500"),
            item("501", enqueued_at="2025-01-01T00:00:00.000000Z"),
            item("502"),
            item("503"),
        ]:
            repo.enqueue(queued)
        transport.reactors["500"] = [ChatUser("7", roles=["77"])]
        transport.reactor_failures["503"] = "not_found"

        report = await deferred_pass.run()

        assert report.resolved == ["500"]
        # 501 is too old, 503 was deleted.
        assert report.expired == ["501", "503"]
        assert report.kept == ["502"]
        assert report.changed
        assert [queued.message_id for queued in repo.load_queue()] == ["502"]
        assert repo.load_week(WEEK_KEY).shoutcasters == {KEY: "<@7>"}
        # The aligned board was published with the caster.
        assert any("<@7>" in call[2] for call in transport.calls_of("post"))

    @pytest.mark.asyncio
    async def test_skips_when_lock_is_held(self, deferred_pass, repo, table, transport):
        repo.enqueue(item("500"))
        holder = IngestLock(table)
        assert holder.try_acquire()

        report = await deferred_pass.run()

        assert report.status == "locked"
        assert transport.calls == []
        assert len(repo.load_queue()) == 1

    @pytest.mark.asyncio
    async def test_lock_is_released(self, deferred_pass, table):
        await deferred_pass.run()

        assert IngestLock(table).try_acquire()

    @pytest.mark.asyncio
    async def test_grid_outage_during_sync_is_reported(
        self, deferred_pass, repo, source, transport
    ):
        seed_registry(repo)
        repo.enqueue(item("500"))
        transport.reactors["500"] = [ChatUser("7", roles=["77"])]

        with mock.patch.object(
            source, "block_for", side_effect=GridUnavailableError("quota")
        ):
            report = await deferred_pass.run()

        assert report.resolved == ["500"]
        assert report.errors == ["quota"]
        assert repo.load_queue() == []
        assert repo.load_week(WEEK_KEY).shoutcasters == {KEY: "<@7>"}
        assert transport.calls_of("post") == []

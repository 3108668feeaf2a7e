from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from bots.config import BotSettings
from bots.transport import CallResult, ChatMessage, ChatUser
from schedule_bot.grid import StaticScheduleSource
from schedule_bot.models import Division
from schedule_bot.storage import KeyValueStore, ScheduleRepository

BRONZE_ROWS = [
    ["Week", "2025-01-03", "de_inferno"],
    ["Alpha", "Gamma", "", ""],
    ["Delta", "Epsilon", "16", "9"],
    [],
    ["Week", "2025-01-10", "de_dust2"],
    ["Alpha", "Beta", "", ""],
    ["Gamma", "Delta", "", ""],
    ["Epsilon", "Zeta", "13", "16"],
    ["Week", "2025-01-17", "de_mirage"],
    ["Beta", "Gamma", "", ""],
]

SILVER_ROWS = [
    ["Week", "1/10/2025", "de_dust2"],
    ["Red Dragons", "Blue Whales", "", ""],
    ["Green Giants", "Red Foxes", "", ""],
]


def _conditional_failure(operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {
                "Code": "ConditionalCheckFailedException",
                "Message": "The conditional request failed",
            }
        },
        operation,
    )


class FakeTable:
    """In-memory stand-in for a DynamoDB table keyed by ``pk``."""

    def __init__(self) -> None:
        self.items: dict[str, dict[str, object]] = {}

    def get_item(self, *, Key):
        item = self.items.get(Key["pk"])
        return {"Item": dict(item) if item else None}

    def put_item(self, *, Item, ConditionExpression=None, ExpressionAttributeValues=None):
        if ConditionExpression and "expires_at < :now" in ConditionExpression:
            existing = self.items.get(Item["pk"])
            now = ExpressionAttributeValues[":now"]
            if existing is not None and int(existing.get("expires_at", 0)) >= now:
                raise _conditional_failure("PutItem")
        self.items[Item["pk"]] = dict(Item)

    def delete_item(
        self,
        *,
        Key,
        ConditionExpression=None,
        ExpressionAttributeNames=None,
        ExpressionAttributeValues=None,
    ):
        del ExpressionAttributeNames
        if ConditionExpression and ExpressionAttributeValues:
            existing = self.items.get(Key["pk"])
            if existing is None or existing.get("owner") != ExpressionAttributeValues[":owner"]:
                raise _conditional_failure("DeleteItem")
        self.items.pop(Key["pk"], None)


class FakeTransport:
    """Records every chat call; behaves like a tiny Discord."""

    def __init__(self) -> None:
        self.messages: dict[str, list[ChatMessage]] = {}
        self.reactors: dict[str, list[ChatUser]] = {}
        self.calls: list[tuple] = []
        self.posted: dict[str, str] = {}
        self.missing: set[str] = set()
        self.undeletable: set[str] = set()
        self.fail_posts = False
        self.fail_fetch = False
        self.reactor_failures: dict[str, str] = {}
        self._next_id = 9000

    def add(self, message: ChatMessage) -> None:
        self.messages.setdefault(message.channel_id, []).append(message)

    def calls_of(self, operation: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == operation]

    async def fetch(self, channel_id, after):
        self.calls.append(("fetch", channel_id, after))
        if self.fail_fetch:
            return CallResult.failure("transient", "gateway timeout")
        fresh = [
            message
            for message in self.messages.get(channel_id, [])
            if after is None or int(message.id) > int(after)
        ]
        # Transport order is not trustworthy.
        return CallResult.success(list(reversed(fresh)))

    async def fetch_one(self, channel_id, message_id):
        self.calls.append(("fetch_one", channel_id, message_id))
        for message in self.messages.get(channel_id, []):
            if message.id == message_id:
                return CallResult.success(message)
        return CallResult.failure("not_found", "Unknown Message")

    async def post(self, channel_id, content):
        self.calls.append(("post", channel_id, content))
        if self.fail_posts:
            return CallResult.failure("permanent", "Missing Access")
        self._next_id += 1
        message_id = str(self._next_id)
        self.posted[message_id] = content
        return CallResult.success(message_id)

    async def edit(self, channel_id, message_id, content):
        self.calls.append(("edit", channel_id, message_id, content))
        if message_id in self.missing:
            return CallResult.failure("not_found", "Unknown Message")
        self.posted[message_id] = content
        return CallResult.success(message_id)

    async def delete(self, channel_id, message_id):
        self.calls.append(("delete", channel_id, message_id))
        if message_id in self.missing:
            return CallResult.failure("not_found", "Unknown Message")
        if message_id in self.undeletable:
            return CallResult.failure("permanent", "Missing Permissions")
        self.posted.pop(message_id, None)
        return CallResult.success()

    async def react(self, channel_id, message_id, emoji):
        self.calls.append(("react", channel_id, message_id, emoji))
        return CallResult.success()

    async def list_reactors(self, channel_id, message_id, emoji):
        self.calls.append(("list_reactors", channel_id, message_id, emoji))
        failure = self.reactor_failures.get(message_id)
        if failure:
            return CallResult.failure(failure, "lookup failed")
        return CallResult.success(list(self.reactors.get(message_id, [])))


@pytest.fixture
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def repo(table) -> ScheduleRepository:
    return ScheduleRepository(KeyValueStore(table))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def source() -> StaticScheduleSource:
    return StaticScheduleSource({Division.BRONZE: BRONZE_ROWS, Division.SILVER: SILVER_ROWS})


@pytest.fixture
def settings() -> BotSettings:
    return BotSettings(
        batch_size=25,
        soft_deadline_seconds=240.0,
        lock_timeout_seconds=0.0,
        caster_role_id="77",
        admin_user_ids=frozenset({"1"}),
    )


@pytest.fixture
def make_message():
    def factory(message_id: str, content: str, *, channel_id: str = "100", author_id: str = "111"):
        return ChatMessage(
            id=message_id,
            content=content,
            author_id=author_id,
            channel_id=channel_id,
        )

    return factory

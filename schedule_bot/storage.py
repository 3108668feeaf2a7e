from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable

from botocore.exceptions import ClientError

from .models import (
    DeferredItem,
    GlobalRegistry,
    MessageIdRecord,
    WeekStore,
)
from .snowflake import snowflake_key

log = logging.getLogger(__name__)

WEEK_STORE_KEY = "week-store:%s"
MESSAGE_IDS_KEY = "message-ids:%s"
MESSAGE_HASHES_KEY = "message-hashes:%s"
CURSOR_KEY = "cursor:%s"
REGISTRY_KEY = "global-registry"
QUEUE_KEY = "deferred-queue"
LOCK_KEY = "ingest-lock"


class KeyValueStore:
    """String key-value persistence on a DynamoDB table keyed by ``pk``."""

    def __init__(self, table) -> None:
        self._table = table

    def ensure_table(self) -> None:
        if self._table is None:
            raise RuntimeError("Schedule table is not configured")

    def get(self, key: str) -> str | None:
        self.ensure_table()
        resp = self._table.get_item(Key={"pk": key})
        item = resp.get("Item")
        if not item or item.get("value") is None:
            return None
        return str(item["value"])

    def set(self, key: str, value: str) -> None:
        self.ensure_table()
        self._table.put_item(Item={"pk": key, "value": value})

    def delete(self, key: str) -> None:
        self.ensure_table()
        self._table.delete_item(Key={"pk": key})


class ScheduleRepository:
    """Load/save contracts for week stores, the registry, cursors and the queue.

    Every write is a full overwrite (last writer wins). Callers are expected to
    hold the ingestion lock around a load-mutate-save sequence.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    def _load_json(self, key: str) -> object | None:
        raw = self._kv.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as exc:
            log.warning("Discarding corrupt value for %s: %s", key, exc)
            return None

    def _save_json(self, key: str, value: object) -> None:
        self._kv.set(key, json.dumps(value, sort_keys=True))

    # ----- Week stores -----
    def load_week(self, week_key: str) -> WeekStore:
        return WeekStore.from_dict(self._load_json(WEEK_STORE_KEY % week_key))

    def save_week(self, week_key: str, store: WeekStore) -> None:
        self._save_json(WEEK_STORE_KEY % week_key, store.to_dict())

    def delete_week(self, week_key: str) -> None:
        self._kv.delete(WEEK_STORE_KEY % week_key)

    # ----- Global registry -----
    def load_registry(self) -> GlobalRegistry:
        return GlobalRegistry.from_dict(self._load_json(REGISTRY_KEY))

    def save_registry(self, registry: GlobalRegistry) -> None:
        self._save_json(REGISTRY_KEY, registry.to_dict())

    # ----- Board message ids -----
    def load_message_record(self, week_key: str) -> MessageIdRecord:
        ids = self._load_json(MESSAGE_IDS_KEY % week_key)
        hashes = self._load_json(MESSAGE_HASHES_KEY % week_key)
        return MessageIdRecord(
            ids={str(k): str(v) for k, v in ids.items()} if isinstance(ids, dict) else {},
            hashes=(
                {str(k): str(v) for k, v in hashes.items()}
                if isinstance(hashes, dict)
                else {}
            ),
        )

    def save_message_record(self, week_key: str, record: MessageIdRecord) -> None:
        self._save_json(MESSAGE_IDS_KEY % week_key, record.ids)
        self._save_json(MESSAGE_HASHES_KEY % week_key, record.hashes)

    def delete_message_record(self, week_key: str) -> None:
        self._kv.delete(MESSAGE_IDS_KEY % week_key)
        self._kv.delete(MESSAGE_HASHES_KEY % week_key)

    # ----- Cursors -----
    def load_cursor(self, channel_id: str) -> str | None:
        raw = self._kv.get(CURSOR_KEY % channel_id)
        if raw is None:
            return None
        try:
            return str(snowflake_key(raw))
        except ValueError:
            log.warning("Ignoring corrupt cursor for channel %s: %r", channel_id, raw)
            return None

    def save_cursor(self, channel_id: str, message_id: str) -> str:
        """Persist the cursor unless it would move backwards; return the stored value."""
        current = self.load_cursor(channel_id)
        if current is not None and snowflake_key(message_id) <= snowflake_key(current):
            return current
        self._kv.set(CURSOR_KEY % channel_id, str(snowflake_key(message_id)))
        return str(snowflake_key(message_id))

    # ----- Deferred queue -----
    def load_queue(self) -> list[DeferredItem]:
        data = self._load_json(QUEUE_KEY)
        if not isinstance(data, list):
            return []
        items: list[DeferredItem] = []
        for raw in data:
            if not isinstance(raw, dict):
                continue
            try:
                items.append(DeferredItem.from_dict(raw))
            except (KeyError, ValueError) as exc:
                log.warning("Dropping malformed deferred item %s: %s", raw, exc)
        return items

    def save_queue(self, items: list[DeferredItem]) -> None:
        self._save_json(QUEUE_KEY, [item.to_dict() for item in items])

    def enqueue(self, item: DeferredItem) -> bool:
        items = self.load_queue()
        if any(existing.message_id == item.message_id for existing in items):
            return False
        items.append(item)
        self.save_queue(items)
        return True


class IngestLock:
    """Advisory lease lock stored as a conditional DynamoDB item."""

    def __init__(
        self,
        table,
        *,
        lease_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._table = table
        self._lease = lease_seconds
        self._clock = clock
        self._token: str | None = None

    @property
    def held(self) -> bool:
        return self._token is not None

    def try_acquire(self) -> bool:
        now = int(self._clock())
        token = uuid.uuid4().hex
        try:
            self._table.put_item(
                Item={"pk": LOCK_KEY, "owner": token, "expires_at": now + self._lease},
                ConditionExpression="attribute_not_exists(pk) OR expires_at < :now",
                ExpressionAttributeValues={":now": now},
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code == "ConditionalCheckFailedException":
                return False
            raise
        self._token = token
        return True

    async def acquire(self, timeout: float, *, poll_interval: float = 0.5) -> bool:
        deadline = time.monotonic() + timeout
        while True:
            if self.try_acquire():
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(poll_interval)

    def release(self) -> None:
        if self._token is None:
            return
        token, self._token = self._token, None
        try:
            self._table.delete_item(
                Key={"pk": LOCK_KEY},
                ConditionExpression="#owner = :owner",
                ExpressionAttributeNames={"#owner": "owner"},
                ExpressionAttributeValues={":owner": token},
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code != "ConditionalCheckFailedException":
                raise
            log.warning("Ingest lock lease expired before release")


__all__ = [
    "IngestLock",
    "KeyValueStore",
    "ScheduleRepository",
]

import asyncio
import json
from datetime import datetime, timezone

import pytest

from snapbot_core.domain.conversation import Message
from snapbot_core.infrastructure.storage.conversation_store import HISTORY_KEY, ConversationStore
from snapbot_core.infrastructure.storage.json_store import MemoryKeyValueStore


class CountingStore(MemoryKeyValueStore):
    def __init__(self):
        super().__init__()
        self.writes = 0

    async def set(self, key, value):
        self.writes += 1
        await super().set(key, value)


class FailingStore(MemoryKeyValueStore):
    async def get(self, key):
        raise OSError("unreadable")

    async def set(self, key, value):
        raise OSError("read-only")


def _msg(i: int, role="user") -> Message:
    return Message(id=f"m{i}", role=role, content=f"message {i}", created_at=datetime.now(timezone.utc))


def test_append_evicts_oldest_past_capacity():
    store = ConversationStore(MemoryKeyValueStore(), capacity=100)
    for i in range(101):
        store.append(_msg(i))
    assert len(store) == 100
    assert store.messages[0].id == "m1"
    assert store.messages[-1].id == "m100"


def test_update_remove_clear():
    store = ConversationStore(MemoryKeyValueStore(), capacity=10)
    store.append(_msg(1))
    store.append(_msg(2, role="assistant"))

    store.update("m2", content="updated", is_streaming=True)
    assert store.get("m2").content == "updated"
    assert store.get("m2").is_streaming

    store.update("missing", content="x")
    assert [m.content for m in store.messages] == ["message 1", "updated"]

    assert store.remove("m1")
    assert not store.remove("m1")
    assert [m.id for m in store.messages] == ["m2"]

    store.clear()
    assert store.messages == ()


def test_messages_view_is_read_only_copy():
    store = ConversationStore(MemoryKeyValueStore())
    store.append(_msg(1))
    view = store.messages
    view[0].content = "tampered"
    assert store.get("m1").content == "message 1"


def test_duplicate_ids_rejected():
    store = ConversationStore(MemoryKeyValueStore())
    store.append(_msg(1))
    with pytest.raises(ValueError):
        store.append(_msg(1))


@pytest.mark.asyncio
async def test_persist_and_load_round_trip_restores_datetimes():
    kv = MemoryKeyValueStore()
    store = ConversationStore(kv, save_delay=None)
    store.append(_msg(1))
    store.append(Message.create("assistant", "", is_streaming=True, error="Streaming interrupted"))
    await store.persist()

    restored = ConversationStore(kv, save_delay=None)
    await restored.load()
    assert [m.id for m in restored.messages] == [m.id for m in store.messages]
    assert isinstance(restored.messages[0].created_at, datetime)
    assert restored.messages[0].created_at == store.messages[0].created_at
    assert restored.messages[1].error == "Streaming interrupted"
    assert restored.messages[1].is_streaming is False


@pytest.mark.asyncio
async def test_load_failures_leave_log_empty():
    kv = MemoryKeyValueStore({HISTORY_KEY: "not json"})
    store = ConversationStore(kv)
    await store.load()
    assert store.messages == ()

    failing = ConversationStore(FailingStore())
    await failing.load()
    assert failing.messages == ()


@pytest.mark.asyncio
async def test_persist_failure_is_not_raised():
    store = ConversationStore(FailingStore(), save_delay=None)
    store.append(_msg(1))
    await store.persist()


@pytest.mark.asyncio
async def test_debounce_coalesces_bursts():
    kv = CountingStore()
    store = ConversationStore(kv, save_delay=0.05)
    for i in range(5):
        store.append(_msg(i))
        await asyncio.sleep(0.01)
    assert kv.writes == 0

    await asyncio.sleep(0.15)
    assert kv.writes == 1
    saved = json.loads(kv.data[HISTORY_KEY])
    assert [m["id"] for m in saved] == [f"m{i}" for i in range(5)]


@pytest.mark.asyncio
async def test_flush_writes_immediately():
    kv = CountingStore()
    store = ConversationStore(kv, save_delay=10)
    store.append(_msg(1))
    await store.flush()
    assert kv.writes == 1
    await asyncio.sleep(0)
    assert kv.writes == 1


class SlowFirstWriteStore(MemoryKeyValueStore):
    def __init__(self):
        super().__init__()
        self.delays = [0.05]

    async def set(self, key, value):
        await asyncio.sleep(self.delays.pop(0) if self.delays else 0)
        await super().set(key, value)


@pytest.mark.asyncio
async def test_slow_write_does_not_overwrite_newer_snapshot():
    kv = SlowFirstWriteStore()
    store = ConversationStore(kv, save_delay=None)
    store.append(_msg(1))
    first = asyncio.create_task(store.persist())
    await asyncio.sleep(0)
    store.append(_msg(2))

    await asyncio.gather(first, store.persist())

    saved = json.loads(kv.data[HISTORY_KEY])
    assert [m["id"] for m in saved] == ["m1", "m2"]

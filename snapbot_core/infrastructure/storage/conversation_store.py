"""会话日志存储。

内存中维护有序、定长的消息日志，所有变更同步完成，
并以尾沿防抖（trailing-edge debounce）的方式异步写入 KeyValueStore：
每次变更取消尚未触发的定时器并重新计时，触发时对当前日志做快照后整体写入。
"""

import asyncio
import json
from typing import Any, List, Optional, Tuple

from snapbot_core.domain.conversation import KeyValueStore, Message
from snapbot_core.infrastructure.logging.logger import logger

HISTORY_KEY = "chat_history"


class ConversationStore:
    def __init__(
        self,
        kv: KeyValueStore,
        capacity: int = 100,
        save_delay: Optional[float] = 1.0,
        key: str = HISTORY_KEY,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._kv = kv
        self._capacity = capacity
        self._save_delay = save_delay
        self._key = key
        self._messages: List[Message] = []
        self._save_handle: Optional[asyncio.TimerHandle] = None
        self._save_task: Optional[asyncio.Task] = None
        self._persist_lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def messages(self) -> Tuple[Message, ...]:
        """日志的只读快照（元素为副本）。"""
        return tuple(m.copy() for m in self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def get(self, message_id: str) -> Optional[Message]:
        idx = self._index(message_id)
        return self._messages[idx].copy() if idx is not None else None

    def append(self, message: Message) -> None:
        if self._index(message.id) is not None:
            raise ValueError(f"Duplicate message id: {message.id}")
        self._messages.append(message.copy())
        overflow = len(self._messages) - self._capacity
        if overflow > 0:
            evicted = self._messages[:overflow]
            del self._messages[:overflow]
            logger.info(
                "Evicted oldest messages",
                extra={"extra": {"evicted": [m.id for m in evicted], "capacity": self._capacity}},
            )
        self._schedule_save()

    def update(self, message_id: str, **fields: Any) -> None:
        idx = self._index(message_id)
        if idx is None:
            return
        self._messages[idx] = self._messages[idx].copy(**fields)
        self._schedule_save()

    def remove(self, message_id: str) -> bool:
        idx = self._index(message_id)
        if idx is None:
            return False
        del self._messages[idx]
        self._schedule_save()
        return True

    def clear(self) -> None:
        self._messages.clear()
        self._schedule_save()

    async def load(self) -> None:
        """从持久化存储恢复日志；失败时记录日志并保持空日志。"""
        try:
            stored = await self._kv.get(self._key)
            if not stored:
                return
            data = json.loads(stored)
            loaded = [Message.from_dict(item) for item in data]
        except Exception as e:
            self._messages = []
            logger.warning(
                "Failed to load chat history",
                extra={"extra": {"key": self._key, "error": str(e)}},
            )
            return
        # 进程重启后不存在进行中的流
        self._messages = [m.copy(is_streaming=False) for m in loaded[-self._capacity:]]
        logger.info("Loaded chat history", extra={"extra": {"count": len(self._messages)}})

    async def persist(self) -> None:
        """序列化完整日志并写入存储；失败时仅记录日志。

        写入串行执行，快照在持锁后才生成，较早的快照不会覆盖较新的。
        """
        async with self._persist_lock:
            snapshot = [m.to_dict() for m in self._messages]
            try:
                await self._kv.set(self._key, json.dumps(snapshot, ensure_ascii=False))
            except Exception as e:
                logger.warning(
                    "Failed to save chat history",
                    extra={"extra": {"key": self._key, "error": str(e)}},
                )

    async def flush(self) -> None:
        """取消待触发的防抖定时器并立即写入。"""
        self._cancel_timer()
        if self._save_task is not None and not self._save_task.done():
            await self._save_task
        await self.persist()

    def _schedule_save(self) -> None:
        if self._save_delay is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # 不在事件循环中：仅保留内存状态，等待显式 persist/flush
            return
        self._cancel_timer()
        self._save_handle = loop.call_later(self._save_delay, self._fire_save)

    def _fire_save(self) -> None:
        self._save_handle = None
        self._save_task = asyncio.ensure_future(self.persist())

    def _cancel_timer(self) -> None:
        if self._save_handle is not None:
            self._save_handle.cancel()
            self._save_handle = None

    def _index(self, message_id: str) -> Optional[int]:
        for i, m in enumerate(self._messages):
            if m.id == message_id:
                return i
        return None

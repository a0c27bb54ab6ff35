import asyncio

import pytest

from snapbot_core.config.settings import Settings
from snapbot_core.domain.models import (
    ChatChoice,
    ChatDelta,
    ChatMessage,
    ChatResult,
    ChatStreamChoice,
    ChatStreamChunk,
)
from snapbot_core.infrastructure.storage.json_store import MemoryKeyValueStore
from snapbot_core.security.context import SecurityContext

DEVICE = {
    "brand": "google",
    "model_name": "Pixel 8",
    "os_name": "Android",
    "os_version": "14",
    "application_id": "app.schoolsnap.snapbot",
    "application_name": "SnapBot",
    "application_version": "1.0.0",
}


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """按预设返回结果或抛出异常的 Provider，记录收到的请求。"""

    name = "fake"

    def __init__(self, result=None, chunks=None, error=None, gate=None):
        self.result = result
        self.chunks = chunks or []
        self.error = error
        self.gate = gate
        self.requests = []

    async def chat(self, req, signal=None):
        self.requests.append(req)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result

    async def chat_stream(self, req, signal=None):
        self.requests.append(req)
        for item in self.chunks:
            if self.gate is not None:
                await self.gate.wait()
            if isinstance(item, Exception):
                raise item
            yield item


def make_result(content: str, finish_reason: str = "stop") -> ChatResult:
    return ChatResult(
        provider="fake",
        model="snapbot-chat",
        choices=[ChatChoice(index=0, message=ChatMessage(role="assistant", content=content), finish_reason=finish_reason)],
    )


def make_chunk(content=None, finish_reason=None) -> ChatStreamChunk:
    return ChatStreamChunk(
        provider="fake",
        model="snapbot-chat",
        choices=[ChatStreamChoice(index=0, delta=ChatDelta(content=content), finish_reason=finish_reason)],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def cfg() -> Settings:
    return Settings(
        openrouter_api_key="sk-or-test-0123456789",
        app_secret="test-secret",
        auto_save_delay=0.01,
    )


@pytest.fixture
def security(kv, cfg, clock) -> SecurityContext:
    return SecurityContext(kv, cfg, device_attributes=lambda: DEVICE, clock=clock)


@pytest.fixture
def gate() -> asyncio.Event:
    return asyncio.Event()

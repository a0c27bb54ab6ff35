"""Provider 抽象接口。

上层 ChatEngine 不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 OpenRouterClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult / ChatStreamChunk。

AbortSignal 是协作式取消信号：run_abortable 让等待中的网络调用或下一帧与信号竞争，
信号先到时取消前者并抛出 RequestAborted。
"""

import asyncio
from typing import AsyncIterator, Awaitable, Optional, Protocol, TypeVar

from snapbot_core.domain.models import ChatRequest, ChatResult, ChatStreamChunk


class AbortSignal:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class RequestAborted(Exception):
    """进行中的调用被 AbortSignal 中止。"""


T = TypeVar("T")


async def run_abortable(aw: Awaitable[T], signal: Optional[AbortSignal]) -> T:
    """等待 aw 完成；signal 先触发时取消 aw 并抛出 RequestAborted。"""

    if signal is None:
        return await aw
    if signal.aborted:
        if asyncio.iscoroutine(aw):
            aw.close()
        raise RequestAborted()
    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
    if task.cancelled():
        raise RequestAborted()
    return task.result()


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - chat(req): 执行一次非流式对话调用，返回统一的 ChatResult。
    - chat_stream(req): 执行一次流式调用，逐帧产出 ChatStreamChunk。
    """

    name: str

    async def chat(self, req: ChatRequest, signal: Optional[AbortSignal] = None) -> ChatResult:
        ...

    def chat_stream(self, req: ChatRequest, signal: Optional[AbortSignal] = None) -> AsyncIterator[ChatStreamChunk]:
        ...

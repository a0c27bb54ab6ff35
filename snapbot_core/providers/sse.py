"""流式响应解码。

线上格式为按行分隔的 SSE 帧：

    data: {"choices": [{"index": 0, "delta": {"content": "Hel"}}]}
    data: [DONE]

解码规则：
1. 按换行拆分，忽略空行、注释行（以 ":" 开头，如 ": OPENROUTER PROCESSING"）以及非 data 字段。
2. 去掉 "data:" 前缀；"[DONE]" 表示正常结束，不是错误。
3. 其余帧各自解析为一个 ChatStreamChunk；无法解析的帧立即以 DecodeError 终止序列。
"""

import json
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional

from snapbot_core.domain.exceptions import ApiError, DecodeError
from snapbot_core.domain.models import ChatDelta, ChatStreamChoice, ChatStreamChunk, ChatUsage
from snapbot_core.providers.base import AbortSignal, RequestAborted, run_abortable

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


def parse_usage(raw: Optional[Dict[str, Any]]) -> Optional[ChatUsage]:
    if not raw:
        return None
    return ChatUsage(
        prompt_tokens=raw.get("prompt_tokens", 0),
        completion_tokens=raw.get("completion_tokens", 0),
        total_tokens=raw.get("total_tokens", 0),
    )


def parse_stream_chunk(data: Dict[str, Any], provider: str, model: str) -> ChatStreamChunk:
    """解析流式响应中的单条增量。"""

    choices: List[ChatStreamChoice] = []
    for i, ch in enumerate(data.get("choices") or []):
        delta_payload = ch.get("delta") or {}
        choices.append(
            ChatStreamChoice(
                index=ch.get("index", i),
                delta=ChatDelta(content=delta_payload.get("content"), role=delta_payload.get("role")),
                finish_reason=ch.get("finish_reason"),
            )
        )
    return ChatStreamChunk(
        provider=provider,
        model=model,
        choices=choices,
        usage=parse_usage(data.get("usage")),
        raw=data,
    )


def _decode_frame(data_str: str, provider: str, model: str) -> ChatStreamChunk:
    try:
        payload = json.loads(data_str)
    except json.JSONDecodeError as e:
        raise DecodeError(
            code="STREAM_DECODE_ERROR",
            message=f"Malformed stream frame: {e.msg}",
            frame=data_str[:200],
        )
    if not isinstance(payload, dict):
        raise DecodeError(code="STREAM_DECODE_ERROR", message="Stream frame is not a JSON object", frame=data_str[:200])

    # OpenRouter 在流中途出错时会下发 {"error": {...}} 帧
    error = payload.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        status = error.get("code") if isinstance(error, dict) else None
        raise ApiError(
            code="API_ERROR",
            message=message or "Upstream stream error",
            http_status=status if isinstance(status, int) else 502,
        )
    try:
        return parse_stream_chunk(payload, provider, model)
    except (AttributeError, TypeError) as e:
        raise DecodeError(code="STREAM_DECODE_ERROR", message=f"Unexpected frame shape: {e}", frame=data_str[:200])


async def iter_stream_chunks(
    lines: AsyncIterable[str],
    provider: str,
    model: str,
    signal: Optional[AbortSignal] = None,
) -> AsyncIterator[ChatStreamChunk]:
    """把传输层的文本行解码为 ChatStreamChunk 序列。"""

    iterator = lines.__aiter__()
    while True:
        # 等待下一行时与中止信号竞争
        try:
            block = await run_abortable(anext(iterator, None), signal)
        except RequestAborted:
            return
        if block is None:
            return
        for line in block.split("\n"):
            line = line.strip()
            if not line or line.startswith(":") or not line.startswith(DATA_PREFIX):
                continue
            data_str = line[len(DATA_PREFIX):].strip()
            if not data_str:
                continue
            if data_str == DONE_MARKER:
                return
            yield _decode_frame(data_str, provider, model)

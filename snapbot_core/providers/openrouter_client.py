"""OpenRouter Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 OpenAI 兼容的 chat/completions 请求，并附带签名头（X-Timestamp / X-Nonce / X-Signature）。
3. 调用 HTTP 接口并把网络/API 异常映射为统一的业务异常。
4. 将响应 JSON 解析为 ChatResult，或把流式响应解码为 ChatStreamChunk 序列。

错误映射：401 -> AuthError，429 -> RateLimitError，5xx -> ServerError，
未收到响应 -> NetworkError，其余 >= 400 -> ApiError（携带上游 message）。
AbortSignal 触发时抛出 RequestAborted。
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import httpx

from snapbot_core.domain.exceptions import (
    ApiError,
    AuthError,
    BusinessError,
    NetworkError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from snapbot_core.domain.models import (
    ChatChoice,
    ChatMessage,
    ChatRequest,
    ChatResult,
    ChatStreamChunk,
    CompletionOptions,
)
from snapbot_core.infrastructure.logging.logger import logger
from snapbot_core.providers.base import AbortSignal, RequestAborted, run_abortable
from snapbot_core.providers.registry import OPENROUTER_CONFIG, ModelConfig
from snapbot_core.providers.sse import iter_stream_chunks, parse_usage
from snapbot_core.security.signing import RequestSecurity


class OpenRouterClient:
    """OpenRouter 客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - chat / chat_stream: 非流式与流式调用入口。
    - fetch_response: 按 CompletionOptions.stream 选择两者之一。
    """

    name = "openrouter"

    def __init__(self, settings, signer: RequestSecurity):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = settings
        self._signer = signer

    async def fetch_response(
        self,
        messages: List[ChatMessage],
        options: Optional[CompletionOptions] = None,
        signal: Optional[AbortSignal] = None,
    ) -> Union[ChatResult, AsyncIterator[ChatStreamChunk]]:
        options = options or CompletionOptions()
        req = ChatRequest(
            provider=self.name,
            model=options.model or self._settings.default_model,
            messages=messages,
            stream=options.stream,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
        )
        if options.stream:
            return self.chat_stream(req, signal=signal)
        return await self.chat(req, signal=signal)

    async def chat(self, req: ChatRequest, signal: Optional[AbortSignal] = None) -> ChatResult:
        """执行一次非流式对话调用。"""

        _raise_if_aborted(signal)
        body, headers, url = self._prepare(req, stream=False)
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await run_abortable(client.post(url, content=body, headers=headers), signal)
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=f"Network error: {e}")
        if resp.status_code >= 400:
            raise self._error_for_status(resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(code="API_ERROR", message=f"Invalid JSON response: {e}", http_status=resp.status_code)
        return self._parse_response(data, req)

    async def chat_stream(self, req: ChatRequest, signal: Optional[AbortSignal] = None) -> AsyncIterator[ChatStreamChunk]:
        """执行一次流式对话调用，逐步 yield ChatStreamChunk。"""

        _raise_if_aborted(signal)
        body, headers, url = self._prepare(req, stream=True)
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                async with client.stream("POST", url, content=body, headers=headers) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise self._error_for_status(resp.status_code, resp.text)
                    async for chunk in iter_stream_chunks(resp.aiter_lines(), self.name, req.model, signal):
                        yield chunk
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=f"Network error: {e}")

    async def check_health(self) -> bool:
        """发送一次 1 token 的探测请求，判断上游是否可用。"""

        req = ChatRequest(
            provider=self.name,
            model=self._settings.default_model,
            messages=[ChatMessage(role="user", content="Hello")],
            max_tokens=1,
        )
        try:
            await self.chat(req)
            return True
        except BusinessError as e:
            logger.warning("Health check failed", extra={"extra": {"code": e.code, "error": e.message}})
            return False

    def obfuscated_api_key(self) -> str:
        key = self._settings.openrouter_api_key or ""
        if len(key) <= 12:
            return "*" * len(key)
        return key[:6] + "*" * (len(key) - 12) + key[-6:]

    def _prepare(self, req: ChatRequest, stream: bool) -> tuple[bytes, Dict[str, str], str]:
        if not getattr(self._settings, "openrouter_api_key", None):
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="OPENROUTER_API_KEY not set")
        model_cfg = OPENROUTER_CONFIG.resolve(
            req.model,
            default_max_tokens=self._settings.max_tokens,
            default_temperature=self._settings.temperature,
        )
        payload = self._build_payload(req, model_cfg, stream)
        # 签名必须覆盖实际发送的字节
        body = json.dumps(payload, ensure_ascii=False)
        base = getattr(self._settings, "openrouter_base_url", None) or OPENROUTER_CONFIG.base_url
        headers = {
            "Authorization": f"Bearer {self._settings.openrouter_api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self._settings.site_url,
            "X-Title": self._settings.site_name,
            **self._signer.signature_headers(body),
        }
        return body.encode("utf-8"), headers, f"{base.rstrip('/')}/chat/completions"

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig, stream: bool) -> dict:
        """将 ChatRequest 转成 chat/completions 请求 JSON。"""

        return {
            "model": model_cfg.provider_model,
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
            "stream": stream,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
        }

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        """将原始响应 JSON 解析为统一的 ChatResult。"""

        choices: list[ChatChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            msg = ch.get("message") or {}
            choices.append(
                ChatChoice(
                    index=ch.get("index", i),
                    message=ChatMessage(role=msg.get("role") or "assistant", content=msg.get("content") or ""),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        return ChatResult(
            provider=self.name,
            model=req.model,
            choices=choices,
            usage=parse_usage(data.get("usage")),
            raw=data,
        )

    @staticmethod
    def _error_for_status(status: int, text: str) -> BusinessError:
        if status == 401:
            return AuthError(code="UNAUTHORIZED", message="Invalid API key", http_status=status)
        if status == 429:
            # 上游限流，与本地 EnhancedRateLimiter 区分
            return RateLimitError(code="RATE_LIMITED", message="Rate limit exceeded", http_status=status, upstream=True)
        if status >= 500:
            return ServerError(code="SERVER_ERROR", message="Server error", http_status=status)
        return ApiError(code="API_ERROR", message=_upstream_message(text) or f"HTTP {status}", http_status=status)


def _raise_if_aborted(signal: Optional[AbortSignal]) -> None:
    if signal is not None and signal.aborted:
        raise RequestAborted()


def _upstream_message(text: str) -> str:
    """从上游错误体中提取 error.message，取不到则返回原文。"""

    try:
        data: Any = json.loads(text)
    except (TypeError, ValueError):
        return text
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if data.get("message"):
            return str(data["message"])
    return text

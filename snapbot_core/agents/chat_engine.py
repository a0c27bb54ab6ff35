"""聊天引擎核心模块。

驱动一次请求的完整生命周期：安全策略校验（会话 / 内容 / 限流）、追加用户消息、
选择流式或非流式调用 Provider、把增量结果同步到 ConversationStore，
并提供重试 / 清空 / 删除等操作。

同一会话同一时刻最多只有一个进行中的请求：第二次 send_message 会直接返回。
"""

from contextlib import aclosing
from typing import Optional, Dict, Any, Tuple
from uuid import uuid4
import time
import logging

from snapbot_core.domain.conversation import Message
from snapbot_core.domain.exceptions import ApiError, BusinessError, RateLimitError, ValidationError
from snapbot_core.domain.models import ChatMessage, ChatRequest, ChatResult
from snapbot_core.infrastructure.storage.conversation_store import ConversationStore
from snapbot_core.infrastructure.logging.logger import logger
from snapbot_core.providers.base import AbortSignal, ProviderClient, RequestAborted, run_abortable
from snapbot_core.security.context import SecurityContext


class ChatEngine:
    def __init__(
        self,
        store: ConversationStore,
        provider_client: ProviderClient,
        security: SecurityContext,
        model: Optional[str] = None,
        max_context_messages: Optional[int] = None,
        sanitize_responses: Optional[bool] = None,
    ):
        cfg = security.settings
        self._store = store
        self._provider_client = provider_client
        self._security = security
        self._model = model or cfg.default_model
        self._max_context = max_context_messages or cfg.max_context_messages
        self._sanitize_responses = cfg.sanitize_responses if sanitize_responses is None else sanitize_responses

        self.is_loading = False
        self.is_streaming = False
        self.error: Optional[BusinessError] = None
        self._in_flight = False
        self._signal: Optional[AbortSignal] = None
        self.session_id: Optional[str] = None

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self._store.messages

    async def start(self) -> None:
        """初始化：校验或新建会话，并加载历史记录。"""
        self.session_id = await self._security.sessions.ensure_session()
        await self.load_history()

    async def send_message(self, content: str, use_streaming: bool = True) -> Optional[Message]:
        """发送一条用户消息，返回最终的助手消息；被拒绝、跳过或在收到内容前被中止时返回 None。"""

        if self._in_flight:
            logger.info("Skipping send, a request is already in flight")
            return None
        # 守卫必须在第一个 await 之前置位
        self._in_flight = True
        self.is_loading = True
        self.error = None
        signal = AbortSignal()
        self._signal = signal

        start_time = time.time()
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}", "streaming": use_streaming}
        try:
            try:
                text = await self._admit(content, log_ctx)
            except BusinessError as e:
                self.error = e
                self._log(logging.WARNING, "Message rejected", log_ctx, code=e.code, kind=e.kind)
                return None

            user_msg = Message.create("user", text)
            self._store.append(user_msg)
            placeholder = Message.create("assistant", "", is_streaming=use_streaming)
            context = self._build_context()
            self._store.append(placeholder)
            self._log(
                logging.INFO,
                "Stored user message",
                log_ctx,
                message_id=user_msg.id,
                assistant_message_id=placeholder.id,
                context_size=len(context),
            )

            req = ChatRequest(
                provider=self._provider_client.name,
                model=self._model,
                messages=context,
                stream=use_streaming,
            )
            try:
                if use_streaming:
                    self.is_loading = False
                    self.is_streaming = True
                    await self._run_stream(req, placeholder.id, signal, log_ctx)
                else:
                    result: ChatResult = await run_abortable(self._provider_client.chat(req, signal=signal), signal)
                    self._apply_result(result, placeholder.id, log_ctx)
            except RequestAborted:
                self._discard_placeholder(placeholder.id, log_ctx)
            except BusinessError as e:
                self._fail(placeholder.id, e, log_ctx)
            except Exception as e:
                logger.exception("Unexpected error while sending message")
                self._fail(
                    placeholder.id,
                    BusinessError(code="UNKNOWN_ERROR", message=str(e) or "Unknown error"),
                    log_ctx,
                )

            self._log(
                logging.INFO,
                "Completed chat step",
                log_ctx,
                elapsed_seconds=round(time.time() - start_time, 2),
                ok=self.error is None,
            )
            return self._store.get(placeholder.id)
        finally:
            self.is_loading = False
            self.is_streaming = False
            self._in_flight = False
            self._signal = None

    async def retry_message(self, message_id: str, use_streaming: bool = True) -> Optional[Message]:
        """删除失败的助手消息，并用其前一条用户消息的原始内容重新发送。"""

        if self._in_flight:
            return None
        msgs = self._store.messages
        idx = next((i for i, m in enumerate(msgs) if m.id == message_id), None)
        if idx is None or not msgs[idx].error:
            return None
        if idx == 0 or msgs[idx - 1].role != "user":
            return None
        origin = msgs[idx - 1]
        self._store.remove(message_id)
        self._log(logging.INFO, "Retrying message", {}, failed_message_id=message_id, user_message_id=origin.id)
        return await self.send_message(origin.content, use_streaming)

    def abort(self) -> bool:
        """请求中止进行中的调用；没有进行中的调用时返回 False。"""
        if self._signal is None or self._signal.aborted:
            return False
        self._signal.abort()
        return True

    def add_message(self, message: Message) -> None:
        self._store.append(message)

    def delete_message(self, message_id: str) -> None:
        self._store.remove(message_id)

    def clear_chat(self) -> None:
        self.abort()
        self._store.clear()
        self.error = None
        self.is_loading = False
        self.is_streaming = False

    async def load_history(self) -> None:
        await self._store.load()

    async def save_history(self) -> None:
        await self._store.flush()

    async def _admit(self, content: str, log_ctx: Dict[str, Any]) -> str:
        """会话 → 内容校验 → 清洗 → 限流；任一环节失败抛出业务异常。"""

        sec = self._security
        self.session_id = await sec.sessions.ensure_session()
        log_ctx["session_id"] = self.session_id

        check = sec.validator.validate_message_content(content)
        if not check.valid:
            raise ValidationError(code="INVALID_CONTENT", message=check.error or "Invalid message")
        text = sec.sanitizer.sanitize_input(content)
        if not text:
            raise ValidationError(code="EMPTY_CONTENT", message="Message is empty.")

        decision = await sec.rate_limiter.check_limit()
        if not decision.allowed:
            raise RateLimitError(
                code="LOCAL_RATE_LIMIT",
                message=decision.reason or "Please wait before sending another message.",
                http_status=429,
                reset_time=decision.reset_time,
            )
        log_ctx["rate_remaining"] = decision.remaining
        return text

    def _build_context(self) -> list[ChatMessage]:
        """取最近 N 条有效消息（有内容且无错误）作为上下文。"""
        usable = [m for m in self._store.messages if m.content and not m.error]
        return [ChatMessage(role=m.role, content=m.content) for m in usable[-self._max_context:]]

    async def _run_stream(
        self,
        req: ChatRequest,
        message_id: str,
        signal: AbortSignal,
        log_ctx: Dict[str, Any],
    ) -> None:
        accumulated = ""
        finish_reason = None
        chunks = 0
        # 出错时异常直接上抛；已收到的部分内容已写入消息，错误由 send_message 统一挂上
        async with aclosing(self._provider_client.chat_stream(req, signal=signal)) as stream:
            while True:
                try:
                    chunk = await run_abortable(anext(stream, None), signal)
                except RequestAborted:
                    break
                if chunk is None or signal.aborted:
                    break
                chunks += 1
                if chunk.content:
                    accumulated += chunk.content
                    self._store.update(message_id, content=accumulated, is_streaming=True)
                if chunk.finish_reason:
                    finish_reason = chunk.finish_reason
                    break

        if signal.aborted and not accumulated:
            self._discard_placeholder(message_id, log_ctx)
            return
        self._store.update(message_id, content=self._finalize(accumulated), is_streaming=False)
        self._log(
            logging.INFO,
            "Stream finished",
            log_ctx,
            chunks=chunks,
            finish_reason=finish_reason,
            aborted=signal.aborted,
        )

    def _apply_result(self, result: ChatResult, message_id: str, log_ctx: Dict[str, Any]) -> None:
        if not result.choices:
            raise ApiError(code="EMPTY_COMPLETION", message="No completion returned", http_status=502)
        choice = result.choices[0]
        if result.usage:
            self._log(
                logging.INFO,
                "Token usage",
                log_ctx,
                prompt_tokens=result.usage.prompt_tokens,
                completion_tokens=result.usage.completion_tokens,
                total_tokens=result.usage.total_tokens,
            )
        self._store.update(
            message_id,
            content=self._finalize(choice.message.content),
            is_streaming=False,
        )
        self._log(logging.INFO, "Stored assistant message", log_ctx, finish_reason=choice.finish_reason)

    def _discard_placeholder(self, message_id: str, log_ctx: Dict[str, Any]) -> None:
        # 中止前没有收到任何内容：移除空的助手占位消息
        self._store.remove(message_id)
        self._log(logging.INFO, "Request aborted", log_ctx, assistant_message_id=message_id)

    def _fail(self, message_id: str, error: BusinessError, log_ctx: Dict[str, Any]) -> None:
        self.error = error
        self._store.update(message_id, error=error.message, is_streaming=False)
        self._log(logging.WARNING, "Chat request failed", log_ctx, code=error.code, kind=error.kind)

    def _finalize(self, content: str) -> str:
        if self._sanitize_responses:
            return self._security.sanitizer.sanitize_output(content)
        return content

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})

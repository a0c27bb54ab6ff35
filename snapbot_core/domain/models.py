"""统一的对话请求/响应数据模型。

本模块定义了与 Completion 服务交互时使用的标准数据结构：

- ChatMessage: 发往 Provider 的一条上下文消息（system/user/assistant）。
- ChatRequest: 发给底层 LLM Provider 的完整请求。
- ChatResult: 非流式调用解析后的统一响应结果。
- ChatStreamChunk: 流式调用中的一条增量帧。

Provider 适配器（如 OpenRouterClient）只依赖这些模型，
并负责在 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass
from typing import Literal, Optional, List


# 消息角色类型（与 OpenAI 兼容接口的 role 字段对应）
Role = Literal["system", "user", "assistant"]

# 候选回答的结束原因；None 表示尚未结束
FinishReason = Optional[Literal["stop", "length", "content_filter"]]


@dataclass
class ChatMessage:
    """一条上下文消息。

    - role: 消息角色。
    - content: 纯文本内容。
    """

    role: Role
    content: str


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    ChatEngine 会将会话日志裁剪为上下文后生成 ChatRequest，再交给 ProviderClient。
    """

    provider: str  # 逻辑 Provider 名，如 "openrouter"
    model: str  # 逻辑模型名（由 registry 映射），或直接是厂商模型 ID
    messages: List[ChatMessage]
    stream: bool = False
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前通常只用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: FinishReason = None


@dataclass
class ChatResult:
    """一次非流式调用的最终结果。

    - provider: 逻辑 Provider 名。
    - model: 请求时使用的模型名。
    - choices: 一个或多个候选回答。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None


@dataclass
class ChatDelta:
    """流式增量内容：可能只有 role，也可能只有一段 content。"""

    content: Optional[str] = None
    role: Optional[str] = None


@dataclass
class ChatStreamChoice:
    """流式返回中的单个候选增量。"""

    index: int
    delta: ChatDelta
    finish_reason: FinishReason = None


@dataclass
class ChatStreamChunk:
    """流式对话的一帧增量，结构与 ChatResult 类似。"""

    provider: str
    model: str
    choices: List[ChatStreamChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    @property
    def content(self) -> str:
        """首个候选的内容片段（没有则为空串）。"""
        if not self.choices:
            return ""
        return self.choices[0].delta.content or ""

    @property
    def finish_reason(self) -> FinishReason:
        if not self.choices:
            return None
        return self.choices[0].finish_reason


@dataclass
class CompletionOptions:
    """fetch_response 的生成参数。"""

    stream: bool = False
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None

"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口与取消信号 (base)。
- 维护 Provider 与模型配置 (registry)。
- 流式响应解码 (sse)。
- 提供具体实现 (openrouter_client)。
"""

from typing import Optional

from snapbot_core.config.settings import settings
from snapbot_core.providers.base import AbortSignal, ProviderClient
from snapbot_core.providers.openrouter_client import OpenRouterClient
from snapbot_core.security.signing import RequestSecurity


def create_provider(signer: RequestSecurity, name: Optional[str] = None, cfg=None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    cfg = cfg or settings
    provider_name = (name or getattr(cfg, "default_provider", "openrouter")).lower()
    if provider_name != "openrouter":
        raise KeyError(f"Unknown provider: {provider_name!r}")
    return OpenRouterClient(cfg, signer)

__all__ = ["AbortSignal", "ProviderClient", "OpenRouterClient", "create_provider"]

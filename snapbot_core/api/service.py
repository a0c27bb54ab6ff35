"""对外 API 服务模块。

提供组装好的 ChatEngine 供上层应用（界面层）调用。
"""

import time
from typing import Callable, Optional

from snapbot_core.agents.chat_engine import ChatEngine
from snapbot_core.config.settings import Settings, settings, validate_settings
from snapbot_core.domain.conversation import KeyValueStore
from snapbot_core.infrastructure.storage.conversation_store import ConversationStore
from snapbot_core.infrastructure.storage.json_store import JsonFileKeyValueStore
from snapbot_core.providers import ProviderClient, create_provider
from snapbot_core.security.context import SecurityContext
from snapbot_core.security.fingerprint import AttributesProvider


_engine: Optional[ChatEngine] = None


def build_chat_engine(
    cfg: Optional[Settings] = None,
    kv: Optional[KeyValueStore] = None,
    provider_client: Optional[ProviderClient] = None,
    device_attributes: Optional[AttributesProvider] = None,
    clock: Callable[[], float] = time.time,
) -> ChatEngine:
    """按配置组装一个全新的 ChatEngine（每次调用都是独立实例）。"""

    cfg = cfg or settings
    kv = kv or JsonFileKeyValueStore(root=cfg.storage_root)
    security = SecurityContext(kv, cfg, device_attributes=device_attributes, clock=clock)
    store = ConversationStore(kv, capacity=cfg.max_messages, save_delay=cfg.auto_save_delay)
    client = provider_client or create_provider(security.signer, cfg=cfg)
    return ChatEngine(store=store, provider_client=client, security=security)


def get_default_engine() -> ChatEngine:
    """获取默认的 ChatEngine 实例（单例）。"""
    global _engine
    if _engine is None:
        validate_settings(settings)
        _engine = build_chat_engine()
    return _engine

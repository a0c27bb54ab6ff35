"""SnapBot Core 顶层包。

该包提供学校管理应用中聊天助手的核心实现，
包括配置加载、领域模型、安全策略、Provider 适配、
会话日志持久化与对话编排等能力。
"""

from snapbot_core.api.service import build_chat_engine, get_default_engine

__all__ = ["build_chat_engine", "get_default_engine"]

"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
优先级：构造参数 > 环境变量 > .env > config.yaml。
"""

import warnings
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("SNAPBOT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """SnapBot 配置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(default="openrouter", description="默认 Provider 名称")
    default_model: str = Field(
        default="snapbot-chat",
        description="逻辑模型名，由 registry 映射为具体厂商模型；未登记的名称原样透传",
    )
    openrouter_api_key: Optional[str] = Field(default=None, description="OpenRouter API 密钥")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenRouter API 基础URL",
    )
    site_url: str = Field(default="https://schoolsnap.app", description="HTTP-Referer 头")
    site_name: str = Field(default="SchoolSnap SnapBot", description="X-Title 头")
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")
    max_tokens: int = Field(default=4000, ge=1, description="单次生成的最大 token 数")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="生成温度")

    # ---- 安全策略 ----
    app_secret: str = Field(default="", description="请求签名使用的应用密钥")
    app_id: str = Field(default="app.schoolsnap.snapbot", description="应用标识，参与设备指纹")
    app_name: str = Field(default="SnapBot", description="应用名称，参与设备指纹")
    app_version: str = Field(default="1.0.0", description="应用版本，参与设备指纹")
    max_message_length: int = Field(default=10000, ge=1, description="单条消息最大字符数")
    rate_limit_requests: int = Field(default=10, ge=1, description="滑动窗口内最大请求数")
    rate_limit_window: float = Field(default=60.0, gt=0, description="滑动窗口长度（秒）")
    rate_limit_block_seconds: float = Field(default=300.0, ge=0, description="超限后封禁时长（秒）")
    rate_limit_fail_open: bool = Field(
        default=True,
        description="存储读写失败时是否放行请求（False 则拒绝）",
    )
    session_timeout: float = Field(default=1800.0, gt=0, description="会话空闲超时（秒）")
    sanitize_responses: bool = Field(default=True, description="是否对模型输出做清洗")

    # ---- 会话与持久化 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    max_messages: int = Field(default=100, ge=1, description="会话日志最大消息数")
    max_context_messages: int = Field(default=10, ge=1, le=100, description="最大上下文消息数")
    auto_save_delay: float = Field(default=1.0, ge=0, description="自动保存的防抖延迟（秒）")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openrouter_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


def validate_settings(cfg: "Settings") -> list[str]:
    """检查必需配置项，缺失时发出警告并返回缺失字段名列表。"""

    required = ["openrouter_api_key", "openrouter_base_url", "default_model", "app_secret"]
    missing = [name for name in required if not getattr(cfg, name, None)]
    if missing:
        warnings.warn(f"Missing required settings: {', '.join(missing)}")
    return missing


settings = Settings()

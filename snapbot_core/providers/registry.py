"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "snapbot-chat"。
- provider_model：厂商实际提供的模型 ID，例如 "deepseek/deepseek-r1-0528"。

上层只关心逻辑名；未登记的名称视为厂商模型 ID 原样使用。"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]

    def resolve(self, model: str, default_max_tokens: int = 4000, default_temperature: float = 0.7) -> ModelConfig:
        """把逻辑名解析为 ModelConfig；未登记时按原样透传。"""

        cfg = self.models.get(model)
        if cfg is None:
            cfg = ModelConfig(
                logical_name=model,
                provider_model=model,
                max_tokens=default_max_tokens,
                default_temperature=default_temperature,
            )
        return cfg


# OpenRouter 配置（SnapBot 默认通过 OpenRouter 调用 DeepSeek）
OPENROUTER_CONFIG = ProviderConfig(
    name="openrouter",
    base_url="https://openrouter.ai/api/v1",
    models={
        "snapbot-chat": ModelConfig(
            logical_name="snapbot-chat",
            provider_model="deepseek/deepseek-r1-0528",
            max_tokens=4000,
            default_temperature=0.7,
        ),
        "snapbot-fast": ModelConfig(
            logical_name="snapbot-fast",
            provider_model="deepseek/deepseek-chat",
            max_tokens=2000,
            default_temperature=0.7,
        ),
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openrouter": OPENROUTER_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")

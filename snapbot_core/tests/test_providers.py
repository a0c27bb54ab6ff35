import pytest

from snapbot_core.providers import create_provider
from snapbot_core.providers.openrouter_client import OpenRouterClient
from snapbot_core.providers.registry import OPENROUTER_CONFIG, get_provider_config


def test_create_provider_default(monkeypatch, security):
    class DummySettings:
        default_provider = "openrouter"
        openrouter_api_key = "sk-or-dummy-0123456789"
        http_timeout = 1.0

    monkeypatch.setattr("snapbot_core.providers.settings", DummySettings())
    provider = create_provider(security.signer)
    assert isinstance(provider, OpenRouterClient)
    assert provider.name == "openrouter"


def test_create_provider_explicit(cfg, security):
    provider = create_provider(security.signer, "OpenRouter", cfg=cfg)
    assert isinstance(provider, OpenRouterClient)


def test_create_provider_unknown(cfg, security):
    with pytest.raises(KeyError):
        create_provider(security.signer, "kimi", cfg=cfg)


def test_registry_resolves_logical_models():
    chat = OPENROUTER_CONFIG.resolve("snapbot-chat")
    assert chat.provider_model == "deepseek/deepseek-r1-0528"
    assert chat.max_tokens == 4000

    fast = OPENROUTER_CONFIG.resolve("snapbot-fast")
    assert fast.provider_model == "deepseek/deepseek-chat"
    assert fast.max_tokens == 2000

    passthrough = OPENROUTER_CONFIG.resolve("openai/gpt-4o-mini", default_max_tokens=123, default_temperature=0.2)
    assert passthrough.provider_model == "openai/gpt-4o-mini"
    assert passthrough.max_tokens == 123
    assert passthrough.default_temperature == 0.2

    assert get_provider_config("openrouter") is OPENROUTER_CONFIG

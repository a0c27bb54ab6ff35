import json

import pytest

from conftest import DEVICE, FakeProvider, make_result
from test_openrouter_client import StreamResp, fake_client

from snapbot_core.api import service
from snapbot_core.api.service import build_chat_engine
from snapbot_core.infrastructure.storage.conversation_store import HISTORY_KEY
from snapbot_core.infrastructure.storage.json_store import JsonFileKeyValueStore


def test_build_chat_engine_returns_fresh_instances(cfg, kv, clock):
    provider = FakeProvider(result=make_result("ok"))
    a = build_chat_engine(cfg, kv=kv, provider_client=provider, device_attributes=lambda: DEVICE, clock=clock)
    b = build_chat_engine(cfg, kv=kv, provider_client=provider, device_attributes=lambda: DEVICE, clock=clock)
    assert a is not b
    assert a.messages == ()


@pytest.mark.asyncio
async def test_streaming_send_through_openrouter(monkeypatch, cfg, kv, clock):
    captured = {}
    lines = [
        ": OPENROUTER PROCESSING",
        'data: {"choices": [{"index": 0, "delta": {"role": "assistant", "content": "Hel"}}]}',
        'data: {"choices": [{"index": 0, "delta": {"content": "lo"}}]}',
        'data: {"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]}',
        "data: [DONE]",
    ]
    monkeypatch.setattr(
        "snapbot_core.providers.openrouter_client.httpx.AsyncClient",
        fake_client(captured, stream_response=StreamResp(lines)),
    )
    engine = build_chat_engine(cfg, kv=kv, device_attributes=lambda: DEVICE, clock=clock)

    final = await engine.send_message("Hi")
    await engine.save_history()

    assert final.content == "Hello"
    assert not final.is_streaming
    body = json.loads(captured["content"])
    assert body["stream"] is True
    assert body["model"] == "deepseek/deepseek-r1-0528"
    assert body["messages"] == [{"role": "user", "content": "Hi"}]
    assert captured["headers"]["X-Signature"].startswith("sig_")

    saved = json.loads(kv.data[HISTORY_KEY])
    assert [m["content"] for m in saved] == ["Hi", "Hello"]


@pytest.mark.asyncio
async def test_history_survives_restart_on_disk(tmp_path, cfg, clock):
    kv = JsonFileKeyValueStore(root=tmp_path)
    engine = build_chat_engine(
        cfg,
        kv=kv,
        provider_client=FakeProvider(result=make_result("Hi there!")),
        device_attributes=lambda: DEVICE,
        clock=clock,
    )
    await engine.send_message("Hello", use_streaming=False)
    await engine.save_history()

    restarted = build_chat_engine(
        cfg,
        kv=JsonFileKeyValueStore(root=tmp_path),
        provider_client=FakeProvider(),
        device_attributes=lambda: DEVICE,
        clock=clock,
    )
    await restarted.start()
    assert [(m.role, m.content) for m in restarted.messages] == [("user", "Hello"), ("assistant", "Hi there!")]


def test_default_engine_is_cached(monkeypatch, tmp_path, cfg):
    monkeypatch.setattr(service, "_engine", None)
    monkeypatch.setattr(service, "settings", cfg.model_copy(update={"storage_root": str(tmp_path)}))
    first = service.get_default_engine()
    assert service.get_default_engine() is first

from __future__ import annotations

from types import SimpleNamespace

import litellm

from quillstream.infrastructure.llm.litellm_client import LiteLLMClient, LiteLLMImageClient


def _completion_response(content: str):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=5),
        model="openai/gpt-4o",
    )


def test_completion_forwards_request_timeout(monkeypatch) -> None:
    calls: list[dict] = []

    def _completion(**kwargs):
        calls.append(kwargs)
        return _completion_response("Hello there")

    monkeypatch.setattr(litellm, "completion", _completion)

    completion = LiteLLMClient(model="openai/gpt-4o", timeout=30.0).complete([{"role": "user", "content": "hi"}])

    assert completion.content == "Hello there"
    assert completion.usage.input_tokens == 12
    assert calls[0]["timeout"] == 30.0


def test_completion_without_timeout_leaves_provider_default(monkeypatch) -> None:
    calls: list[dict] = []

    def _completion(**kwargs):
        calls.append(kwargs)
        return _completion_response("ok")

    monkeypatch.setattr(litellm, "completion", _completion)

    LiteLLMClient(model="openai/gpt-4o").complete([{"role": "user", "content": "hi"}])

    assert "timeout" not in calls[0]


def test_image_generation_forwards_request_timeout(monkeypatch) -> None:
    calls: list[dict] = []

    def _image_generation(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(data=[{"url": "https://images.example.com/1.png"}])

    monkeypatch.setattr(litellm, "image_generation", _image_generation)

    image = LiteLLMImageClient(timeout=45.0).generate("A quiet harbour at dawn")

    assert image.url == "https://images.example.com/1.png"
    assert calls[0]["timeout"] == 45.0

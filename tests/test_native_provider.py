from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest

from bubble.agent.turns import Attachment
from bubble.providers import native_provider
from bubble.providers.base import ChatMessage, StreamRequest
from bubble.providers.native_provider import NativeProvider, is_native_model, supports_reasoning


def _chunk(text: str | None, grounding: Any = None) -> SimpleNamespace:
    chunk = SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])
    if grounding is not None:
        chunk.vertex_ai_grounding_metadata = grounding
    return chunk


class FakeCompletion:
    def __init__(self, chunks: list[SimpleNamespace]):
        self.chunks = chunks
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, **kwargs: Any):
        self.calls.append(kwargs)
        if not kwargs.get("stream"):
            return SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content='{"files": []}'))]
            )
        return self._stream()

    async def _stream(self):
        for chunk in self.chunks:
            yield chunk


def test_native_model_predicate() -> None:
    assert is_native_model("")
    assert is_native_model("gemini-2.5-flash")
    assert is_native_model("veo-3")
    assert is_native_model("google/gemini-2.0-flash-001")
    assert not is_native_model("anthropic/claude-3.5-sonnet")


def test_reasoning_support() -> None:
    assert supports_reasoning("gemini-2.5-flash")
    assert supports_reasoning("gemini-3-pro-preview")
    assert not supports_reasoning("gemini-2.0-flash")


@pytest.mark.asyncio
async def test_open_builds_litellm_request(monkeypatch) -> None:
    fake = FakeCompletion([_chunk("Hi"), _chunk(None), _chunk(" there")])
    monkeypatch.setattr(native_provider, "acompletion", fake)
    provider = NativeProvider(api_key="g-key")

    request = StreamRequest(
        model="gemini-2.5-flash",
        messages=[
            ChatMessage(role="assistant", text="earlier answer"),
            ChatMessage(
                role="user",
                text="what is this?",
                attachments=[Attachment(name="cat.png", mime_type="image/png", data=b"\x89PNG")],
            ),
        ],
        system_instruction="system rules",
        reasoning_budget=2048,
        enable_search_tool=True,
    )
    events = await provider.open(request)
    texts = [event.text async for event in events]

    assert texts == ["Hi", " there"]
    kwargs = fake.calls[0]
    assert kwargs["model"] == "gemini/gemini-2.5-flash"
    assert kwargs["api_key"] == "g-key"
    assert kwargs["stream"] is True
    assert kwargs["thinking"] == {"type": "enabled", "budget_tokens": 2048}
    assert kwargs["tools"] == [{"googleSearch": {}}]
    assert kwargs["messages"][0] == {"role": "system", "content": "system rules"}
    assert kwargs["messages"][1] == {"role": "assistant", "content": "earlier answer"}
    parts = kwargs["messages"][2]["content"]
    assert parts[0]["type"] == "image_url"
    assert parts[0]["image_url"]["url"].startswith("data:image/png;base64,")
    assert parts[-1] == {"type": "text", "text": "what is this?"}


@pytest.mark.asyncio
async def test_zero_budget_omits_thinking(monkeypatch) -> None:
    fake = FakeCompletion([_chunk("ok")])
    monkeypatch.setattr(native_provider, "acompletion", fake)

    events = await NativeProvider().open(
        StreamRequest(model="google/gemini-2.0-flash", messages=[ChatMessage("user", "hey")])
    )
    _ = [event async for event in events]

    assert "thinking" not in fake.calls[0]
    assert "tools" not in fake.calls[0]
    assert fake.calls[0]["model"] == "gemini/gemini-2.0-flash"


@pytest.mark.asyncio
async def test_grounding_chunks_become_citation_fragments(monkeypatch) -> None:
    grounding = [{"groundingChunks": [{"web": {"uri": "https://example.com/a", "title": "example.com"}}]}]
    fake = FakeCompletion([_chunk("Sourced.", grounding=grounding)])
    monkeypatch.setattr(native_provider, "acompletion", fake)

    events = await NativeProvider().open(
        StreamRequest(model="gemini-2.5-flash", messages=[ChatMessage("user", "news?")])
    )
    collected = [event async for event in events]

    assert collected[0].citations == [{"web": {"uri": "https://example.com/a", "title": "example.com"}}]


@pytest.mark.asyncio
async def test_cancellation_stops_stream_quietly(monkeypatch) -> None:
    fake = FakeCompletion([_chunk("a"), _chunk("b"), _chunk("c")])
    monkeypatch.setattr(native_provider, "acompletion", fake)
    signal = asyncio.Event()

    events = await NativeProvider().open(
        StreamRequest(model="gemini-2.5-flash", messages=[ChatMessage("user", "go")], signal=signal)
    )
    seen = []
    async for event in events:
        seen.append(event.text)
        signal.set()

    assert seen == ["a"]


@pytest.mark.asyncio
async def test_complete_requests_json_when_asked(monkeypatch) -> None:
    fake = FakeCompletion([])
    monkeypatch.setattr(native_provider, "acompletion", fake)

    text = await NativeProvider().complete(
        StreamRequest(model="gemini-2.5-flash", messages=[ChatMessage("user", "plan")], json_output=True)
    )

    assert text == '{"files": []}'
    assert fake.calls[0]["stream"] is False
    assert fake.calls[0]["response_format"] == {"type": "json_object"}

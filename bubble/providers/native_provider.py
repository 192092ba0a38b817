"""Native (Gemini) streaming provider, driven through LiteLLM."""

from __future__ import annotations

import contextlib
from typing import Any, AsyncIterator

import litellm
from litellm import acompletion
from loguru import logger

from bubble.providers.base import (
    ChatMessage,
    StreamEvent,
    StreamProvider,
    StreamRequest,
    is_cancelled,
    next_or_stop,
)

# Models that accept a reasoning budget
_REASONING_FAMILIES = ("gemini-2.5", "gemini-3")


def is_native_model(model: str | None) -> bool:
    """Whether ``model`` is served by the native provider (empty means baseline)."""
    if not model:
        return True
    return model.startswith("gemini") or model.startswith("veo") or "google" in model


def supports_reasoning(model: str) -> bool:
    return any(family in model for family in _REASONING_FAMILIES)


def _litellm_model(model: str) -> str:
    """Map a bare or vendor-prefixed Gemini id onto LiteLLM's ``gemini/`` route."""
    for prefix in ("gemini/", "google/"):
        if model.startswith(prefix):
            model = model[len(prefix):]
    return f"gemini/{model}"


def _message_content(message: ChatMessage) -> str | list[dict[str, Any]]:
    """Plain text, or inline parts when the message carries attachments."""
    if not message.attachments:
        return message.text
    parts: list[dict[str, Any]] = []
    for attachment in message.attachments:
        data_url = f"data:{attachment.mime_type};base64,{attachment.as_base64()}"
        if attachment.is_image:
            parts.append({"type": "image_url", "image_url": {"url": data_url}})
        else:
            parts.append({"type": "file", "file": {"file_data": data_url}})
    parts.append({"type": "text", "text": message.text})
    return parts


def _chunk_text(chunk: Any) -> str:
    try:
        return chunk.choices[0].delta.content or ""
    except (IndexError, AttributeError):
        return ""


def _grounding_chunks(chunk: Any) -> list[dict[str, Any]]:
    """Citation fragments from Gemini search grounding, when LiteLLM surfaces them."""
    metadata = getattr(chunk, "vertex_ai_grounding_metadata", None)
    if metadata is None:
        hidden = getattr(chunk, "_hidden_params", None) or {}
        metadata = hidden.get("vertex_ai_grounding_metadata")
    if not metadata:
        return []
    if isinstance(metadata, dict):
        metadata = [metadata]
    fragments: list[dict[str, Any]] = []
    for entry in metadata:
        if isinstance(entry, dict):
            fragments.extend(c for c in entry.get("groundingChunks") or [] if isinstance(c, dict))
    return fragments


class NativeProvider(StreamProvider):
    """
    Streaming provider for the native model family.

    Supports inline binary attachments, a reasoning budget, and the
    search-grounding tool. Retries are left to the caller
    (see ``bubble.providers.retry``).
    """

    supports_attachments = True

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "gemini-2.5-flash",
        timeout: float = 120.0,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.timeout = timeout
        litellm.suppress_debug_info = True

    def get_default_model(self) -> str:
        return self.default_model

    def _build_kwargs(self, request: StreamRequest, stream: bool) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})
        for message in request.messages:
            messages.append({"role": message.role, "content": _message_content(message)})

        kwargs: dict[str, Any] = {
            "model": _litellm_model(request.model or self.default_model),
            "messages": messages,
            "stream": stream,
            "timeout": self.timeout,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if request.reasoning_budget > 0:
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": request.reasoning_budget}
        if request.enable_search_tool:
            kwargs["tools"] = [{"googleSearch": {}}]
        if request.json_output:
            kwargs["response_format"] = {"type": "json_object"}
        return kwargs

    async def open(self, request: StreamRequest) -> AsyncIterator[StreamEvent]:
        response = await acompletion(**self._build_kwargs(request, stream=True))
        return self._iterate(response, request)

    async def _iterate(self, response: Any, request: StreamRequest) -> AsyncIterator[StreamEvent]:
        chunks = aiter(response)
        try:
            while True:
                chunk = await next_or_stop(chunks, request.signal)
                if chunk is None:
                    if is_cancelled(request.signal):
                        logger.debug("Native stream cancelled ({})", request.model)
                    break
                text = _chunk_text(chunk)
                citations = _grounding_chunks(chunk)
                if text or citations:
                    yield StreamEvent(text=text, citations=citations)
        finally:
            close = getattr(response, "aclose", None)
            if close is not None:
                with contextlib.suppress(Exception):
                    await close()

    async def complete(self, request: StreamRequest) -> str:
        response = await acompletion(**self._build_kwargs(request, stream=False))
        try:
            return response.choices[0].message.content or ""
        except (IndexError, AttributeError):
            logger.warning("Native response has no choices ({})", request.model)
            return ""

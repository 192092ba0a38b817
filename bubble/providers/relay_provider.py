"""Relay provider speaking the OpenRouter chat-completions protocol over SSE.

Attachments are never forwarded; relay models get text only.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator

import httpx
from loguru import logger

from bubble.providers.base import (
    StreamEvent,
    StreamProvider,
    StreamRequest,
    is_cancelled,
    next_or_stop,
)
from bubble.providers.errors import ModelUnavailableError, RelayError

SSE_PREFIX = "data: "
SSE_DONE = "data: [DONE]"
NO_PROVIDERS_MARKER = "No allowed providers"


def _normalize_api_key(value: str | None) -> str:
    """Drop a pasted ``Bearer `` prefix; the header adds its own."""
    token = (value or "").strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return token


def parse_sse_line(line: str) -> str | None:
    """Return the text delta carried by one SSE line, if any.

    Comment lines, the ``[DONE]`` sentinel, events without content and
    malformed JSON all yield ``None``.
    """
    line = line.rstrip("\r")
    if not line.startswith(SSE_PREFIX) or line == SSE_DONE:
        return None
    try:
        payload = json.loads(line[len(SSE_PREFIX):])
        content = payload["choices"][0]["delta"].get("content")
    except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
        return None
    return content if isinstance(content, str) and content else None


class RelayProvider(StreamProvider):
    """Streaming provider for third-party models behind an HTTP relay."""

    supports_attachments = False

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str = "https://openrouter.ai/api/v1",
        default_model: str = "meta-llama/llama-3.3-70b-instruct:free",
        referer: str = "https://bubble.ai",
        title: str = "Bubble AI",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(_normalize_api_key(api_key), api_base.rstrip("/"))
        self.default_model = default_model
        self.referer = referer
        self.title = title
        self.timeout = timeout
        self._transport = transport

    def get_default_model(self) -> str:
        return self.default_model

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.referer,
            "X-Title": self.title,
        }

    def _body(self, request: StreamRequest, stream: bool) -> dict[str, Any]:
        messages: list[dict[str, str]] = [
            {"role": "system", "content": request.system_instruction},
        ]
        messages.extend({"role": m.role, "content": m.text} for m in request.messages)
        return {
            "model": request.model or self.default_model,
            "messages": messages,
            "stream": stream,
        }

    async def _raise_for_status(self, response: httpx.Response, model: str) -> None:
        """Translate a non-2xx relay response into a typed error."""
        status = response.status_code
        body = (await response.aread()).decode("utf-8", errors="replace")
        message = f"OpenRouter Error ({status})"
        try:
            error = json.loads(body).get("error") or {}
        except (json.JSONDecodeError, AttributeError):
            if body:
                message += f": {body}"
            raise RelayError(message, status_code=status)

        error_message = error.get("message") if isinstance(error, dict) else None
        error_code = error.get("code") if isinstance(error, dict) else None
        if status == 404 and (
            (error_message and NO_PROVIDERS_MARKER in error_message) or error_code == 404
        ):
            raise ModelUnavailableError(
                f'The model "{model}" is currently unavailable via OpenRouter '
                "(No providers). Please select a different model.",
                status_code=status,
            )
        raise RelayError(error_message or message, status_code=status)

    async def open(self, request: StreamRequest) -> AsyncIterator[StreamEvent]:
        client = self._client()
        try:
            http_request = client.build_request(
                "POST",
                f"{self.api_base}/chat/completions",
                headers=self._headers(),
                json=self._body(request, stream=True),
            )
            response = await client.send(http_request, stream=True)
        except BaseException:
            await client.aclose()
            raise

        if not response.is_success:
            try:
                await self._raise_for_status(response, request.model)
            finally:
                await response.aclose()
                await client.aclose()

        return self._iterate(client, response, request)

    async def _iterate(
        self,
        client: httpx.AsyncClient,
        response: httpx.Response,
        request: StreamRequest,
    ) -> AsyncIterator[StreamEvent]:
        buffer = ""
        pieces = response.aiter_text()
        try:
            while True:
                # Returns None as soon as the stop signal fires, even mid-read
                piece = await next_or_stop(pieces, request.signal)
                if piece is None:
                    break
                buffer += piece
                *lines, buffer = buffer.split("\n")
                for line in lines:
                    if line.rstrip("\r") == SSE_DONE:
                        return
                    text = parse_sse_line(line)
                    if text:
                        yield StreamEvent(text=text)
            if is_cancelled(request.signal):
                logger.debug("Relay stream cancelled ({})", request.model)
                return
            # A final event may arrive without a trailing newline
            text = parse_sse_line(buffer)
            if text:
                yield StreamEvent(text=text)
        finally:
            await pieces.aclose()
            await response.aclose()
            await client.aclose()

    async def complete(self, request: StreamRequest) -> str:
        async with self._client() as client:
            response = await client.post(
                f"{self.api_base}/chat/completions",
                headers=self._headers(),
                json=self._body(request, stream=False),
            )
            if not response.is_success:
                await self._raise_for_status(response, request.model)
            try:
                return response.json()["choices"][0]["message"]["content"] or ""
            except (ValueError, KeyError, IndexError, TypeError):
                logger.warning("Relay response has no choices ({})", request.model)
                return ""

"""Base interface for streaming LLM providers."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator

if TYPE_CHECKING:
    from bubble.agent.turns import Attachment


@dataclass
class ChatMessage:
    """One prior or current turn, in provider-neutral form."""
    role: str  # "user" | "assistant"
    text: str
    attachments: list[Attachment] = field(default_factory=list)


@dataclass
class StreamRequest:
    """Everything an adapter needs to run one generation."""
    model: str
    messages: list[ChatMessage]
    system_instruction: str = ""
    reasoning_budget: int = 0  # 0 disables extended reasoning
    enable_search_tool: bool = False
    json_output: bool = False
    signal: asyncio.Event | None = None


@dataclass
class StreamEvent:
    """A text delta plus any citation fragments that arrived with it."""
    text: str = ""
    citations: list[dict[str, Any]] = field(default_factory=list)


def is_cancelled(signal: asyncio.Event | None) -> bool:
    return signal is not None and signal.is_set()


async def next_or_stop(iterator: AsyncIterator[Any], signal: asyncio.Event | None) -> Any | None:
    """
    Read the next item from ``iterator``, giving up as soon as ``signal`` is set.

    Returns None when the iterator is exhausted or the stop signal won the
    race; a stalled connection therefore cannot hold a stop.
    """
    if is_cancelled(signal):
        return None
    if signal is None:
        try:
            return await iterator.__anext__()
        except StopAsyncIteration:
            return None

    read = asyncio.ensure_future(iterator.__anext__())
    stop = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({read, stop}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        read.cancel()
        raise
    finally:
        stop.cancel()

    if not read.done():
        read.cancel()
        await asyncio.wait({read})
        return None
    try:
        return read.result()
    except StopAsyncIteration:
        return None


class StreamProvider(ABC):
    """
    Abstract base class for streaming providers.

    Implementations normalize their backend into a lazy, single-pass sequence
    of ``StreamEvent`` values. ``open`` performs the network round-trip before
    returning, so request-level failures (quota, unavailable model) surface
    before the first token is read and can be retried or routed around.
    """

    supports_attachments: bool = False

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def open(self, request: StreamRequest) -> AsyncIterator[StreamEvent]:
        """Start a generation and return its event sequence.

        Cancellation (``request.signal``) ends the sequence without raising.
        """
        pass

    @abstractmethod
    async def complete(self, request: StreamRequest) -> str:
        """Run a single non-streaming generation and return its text."""
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        """Get the default model for this provider."""
        pass


async def stream(provider: StreamProvider, request: StreamRequest) -> AsyncIterator[StreamEvent]:
    """Open a generation on ``provider`` and yield its events."""
    events = await provider.open(request)
    async for event in events:
        yield event

"""Contracts for the services the orchestrator delegates to.

Classification, research, image synthesis, canvas builds and memory are
owned elsewhere; the orchestrator only depends on these shapes. The
default implementations below let the CLI run without any of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, Sequence

from bubble.agent.errors import CapabilityUnavailable
from bubble.agent.routing import Action, RoutingDecision
from bubble.agent.turns import Attachment, ConversationContext, Credentials, Turn

if TYPE_CHECKING:
    from bubble.agent.orchestrator import ChunkSink

ProgressCallback = Callable[[str], Awaitable[None]]


@dataclass
class ResearchResult:
    answer: str
    sources: list[str] = field(default_factory=list)


@dataclass
class GeneratedImage:
    image_data: str  # base64


class Router(Protocol):
    async def route(
        self,
        prompt: str,
        user_id: str,
        credentials: Credentials,
        attachment_count: int,
    ) -> RoutingDecision | str: ...


class ResearchService(Protocol):
    async def deep_research(
        self,
        prompt: str,
        credentials: Credentials,
        on_progress: ProgressCallback,
    ) -> ResearchResult: ...


class ImageGenerator(Protocol):
    async def generate(
        self,
        prompt: str,
        credentials: Credentials,
        model_preference: str | None = None,
    ) -> GeneratedImage: ...


class CanvasAgent(Protocol):
    async def run(
        self,
        prompt: str,
        context: ConversationContext,
        attachments: Sequence[Attachment] = (),
        on_chunk: ChunkSink | None = None,
    ) -> Turn: ...


class MemoryStore(Protocol):
    async def get_context(self, categories: list[str]) -> Any: ...


class StaticRouter:
    """Routes every prompt to one fixed action."""

    def __init__(self, action: Action = Action.SIMPLE):
        self.action = action

    async def route(
        self,
        prompt: str,
        user_id: str,
        credentials: Credentials,
        attachment_count: int,
    ) -> RoutingDecision:
        return RoutingDecision(action=self.action)


class EmptyMemory:
    async def get_context(self, categories: list[str]) -> dict[str, Any]:
        return {}


class UnavailableResearch:
    async def deep_research(
        self,
        prompt: str,
        credentials: Credentials,
        on_progress: ProgressCallback,
    ) -> ResearchResult:
        raise CapabilityUnavailable("Web research is not configured")


class UnavailableImages:
    async def generate(
        self,
        prompt: str,
        credentials: Credentials,
        model_preference: str | None = None,
    ) -> GeneratedImage:
        raise CapabilityUnavailable("Image generation is not configured")


class UnavailableCanvas:
    async def run(
        self,
        prompt: str,
        context: ConversationContext,
        attachments: Sequence[Attachment] = (),
        on_chunk: ChunkSink | None = None,
    ) -> Turn:
        raise CapabilityUnavailable("The canvas builder is not configured")

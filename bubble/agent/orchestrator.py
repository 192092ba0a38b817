"""
Orchestrator: turns one user message into one assistant turn.

Key principles:
1. Bounded control loop - every invocation ends within ``max_loops`` steps
2. The model may redirect itself with directive tags; one is honored per step
3. Graceful degradation - quota waits, relay fallback, inline failure notes
4. Guaranteed delivery - always returns a Turn, never raises

    prompt → route → [SEARCH → SIMPLE] → directive? → ... → Turn
"""

import asyncio
import contextlib
import inspect
import re
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

from loguru import logger

from bubble.agent.collaborators import (
    CanvasAgent,
    EmptyMemory,
    ImageGenerator,
    MemoryStore,
    ResearchService,
    Router,
    StaticRouter,
    UnavailableCanvas,
    UnavailableImages,
    UnavailableResearch,
)
from bubble.agent.context import INSTANT_INSTRUCTION, ContextBuilder
from bubble.agent.directives import decision_from_text, scan_directives
from bubble.agent.errors import user_friendly_error
from bubble.agent.routing import Action, LoopState, RoutingDecision, StepResult
from bubble.agent.turns import (
    Attachment,
    Citation,
    ConversationContext,
    Credentials,
    Sender,
    ThinkingMode,
    Turn,
)
from bubble.config.schema import Config
from bubble.providers.base import ChatMessage, StreamEvent, StreamProvider, StreamRequest
from bubble.providers.errors import ModelUnavailableError, RelayError
from bubble.providers.native_provider import NativeProvider, is_native_model, supports_reasoning
from bubble.providers.relay_provider import RelayProvider
from bubble.providers.retry import resolve_model, with_quota_retry
from bubble.utils.helpers import friendly_model_name, source_title

ChunkSink = Callable[[str], Awaitable[None] | None]

STOPPED_TEXT = "(Generation stopped by user)"
INSTANT_UNAVAILABLE_TEXT = "Instant mode service unavailable."

_YOUTUBE_RE = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?)/|.*[?&]v=)|youtu\.be/)([^\"&?/\s]{11})"
)
_YOUTUBE_SHORT_RE = re.compile(r"youtube\.com/shorts/([^\"&?/\s]{11})")


def youtube_search_prompt(prompt: str) -> str | None:
    """A research prompt for a YouTube link in ``prompt``, if it contains one."""
    short = _YOUTUBE_SHORT_RE.search(prompt)
    match = short or _YOUTUBE_RE.search(prompt)
    if not match:
        return None
    kind = "Short" if short else "Video"
    return (
        f"Find details for YouTube {kind} ID: {match.group(1)}. "
        f"Title, Channel, and Summary. URL: {match.group(0)}"
    )


def synthesis_prompt(query: str, context: str) -> str:
    return (
        f"USER QUERY: {query}\n\nSEARCH CONTEXT:\n{context}\n\n"
        "INSTRUCTIONS: Synthesize a comprehensive answer to the user's query based ONLY "
        "on the provided search context. Cite sources using [1], [2] format where appropriate."
    )


def _citations_from_sources(sources: Sequence[str]) -> list[Citation]:
    return [Citation(uri=url, title=source_title(url)) for url in sources]


def _citations_from_grounding(fragments: Sequence[dict[str, Any]]) -> list[Citation]:
    citations = []
    for fragment in fragments:
        web = fragment.get("web") or {}
        uri = web.get("uri")
        if uri:
            citations.append(Citation(uri=uri, title=web.get("title") or source_title(uri)))
    return citations


def _is_unavailable(exc: RelayError) -> bool:
    if isinstance(exc, ModelUnavailableError) or exc.status_code == 404:
        return True
    message = str(exc).lower()
    return "unavailable" in message or "404" in message


@dataclass
class _Invocation:
    """Per-call constants shared by the handlers of one ``run``."""
    prompt: str  # User prompt, used as the fallback THINK payload
    context: ConversationContext
    attachments: tuple[Attachment, ...]
    sink: ChunkSink | None
    native: StreamProvider
    relay: StreamProvider | None
    builder: ContextBuilder
    routing: RoutingDecision
    reasoning_budget: int = 0

    @property
    def cancelled(self) -> bool:
        return self.context.cancelled

    @property
    def credentials(self) -> Credentials:
        return self.context.credentials

    async def emit(self, text: str) -> None:
        if self.sink is None or not text:
            return
        result = self.sink(text)
        if inspect.isawaitable(result):
            await result


class Orchestrator:
    """
    Routes one user turn through the available capabilities.

    Each call to ``run`` owns its own loop state; one Orchestrator can
    serve concurrent invocations.

    Args:
        config: Root configuration (models, loop bound, budgets, keys).
        native: Native provider override; built from credentials when None.
        relay: Relay provider override; built from credentials when None.
        router: Initial intent classifier.
        research: Web research service for SEARCH / DEEP_SEARCH.
        images: Image synthesis service for IMAGE.
        canvas: Build agent for CANVAS.
        memory: Long-term memory injected into the system instruction.
        sleep: Backoff delay override; by default the wait ends early on stop.
    """

    def __init__(
        self,
        config: Config | None = None,
        native: StreamProvider | None = None,
        relay: StreamProvider | None = None,
        router: Router | None = None,
        research: ResearchService | None = None,
        images: ImageGenerator | None = None,
        canvas: CanvasAgent | None = None,
        memory: MemoryStore | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.config = config or Config()
        self.defaults = self.config.agents.defaults
        self._native = native
        self._relay = relay
        self.router = router or StaticRouter()
        self.research = research or UnavailableResearch()
        self.images = images or UnavailableImages()
        self.canvas = canvas or UnavailableCanvas()
        self.memory = memory or EmptyMemory()
        self._sleep = sleep

        self._handlers: dict[Action, Callable[[_Invocation, LoopState], Awaitable[StepResult]]] = {
            Action.SIMPLE: self._handle_simple,
            Action.SEARCH: self._handle_search,
            Action.DEEP_SEARCH: self._handle_search,
            Action.THINK: self._handle_think,
            Action.IMAGE: self._handle_image,
            Action.PROJECT: self._handle_project,
            Action.STUDY: self._handle_study,
            Action.CANVAS: self._handle_canvas,
        }

    @property
    def baseline_model(self) -> str:
        return self.defaults.baseline_model

    # ── Public API ──────────────────────────────────────────────────

    async def run(
        self,
        prompt: str,
        context: ConversationContext,
        attachments: Sequence[Attachment] = (),
        on_chunk: ChunkSink | None = None,
    ) -> Turn:
        """
        Produce the assistant turn answering ``prompt``.

        Tokens and short progress notices are pushed to ``on_chunk`` as they
        arrive. Errors never escape: they come back as the turn's text.
        """
        attachments = tuple(attachments)
        logger.info(
            "Orchestrator run (model={}, mode={}, attachments={})",
            context.model or "<default>", context.thinking_mode.value, len(attachments),
        )

        if context.thinking_mode == ThinkingMode.INSTANT:
            return await self._run_instant(prompt, context, attachments, on_chunk)

        state: LoopState | None = None
        try:
            inv, model = await self._prepare(prompt, context, attachments, on_chunk)
            state = LoopState(action=inv.routing.action, prompt=inv.prompt, model=model)
            image_hint = inv.routing.parameters.get("prompt")
            if isinstance(image_hint, str) and image_hint:
                state = state.advance(image_prompt=image_hint)

            while state.iteration < self.defaults.max_loops:
                if inv.cancelled:
                    break
                state = state.advance(iteration=state.iteration + 1)
                logger.debug("Step {}: {}", state.iteration, state.action.value)
                step = await self._handlers[state.action](inv, state)
                state = step.state
                if step.done:
                    break
            else:
                logger.warning(
                    "Loop bound ({}) reached; returning accumulated text", self.defaults.max_loops
                )

            return self._build_turn(state, stopped=context.cancelled)
        except Exception as e:
            if context.cancelled:
                return self._build_turn(state, stopped=True)
            logger.exception("Orchestrator run failed")
            return Turn(sender=Sender.ASSISTANT, text=f"An error occurred: {user_friendly_error(e)}")

    # ── Setup ───────────────────────────────────────────────────────

    def _native_for(self, credentials: Credentials) -> StreamProvider:
        if self._native is not None:
            return self._native
        return NativeProvider(
            api_key=credentials.native_api_key or self.config.get_native_api_key(),
            api_base=self.config.providers.gemini.api_base,
            default_model=self.baseline_model,
            timeout=self.defaults.request_timeout,
        )

    def _relay_for(self, credentials: Credentials) -> StreamProvider | None:
        if self._relay is not None:
            return self._relay
        api_key = credentials.relay_api_key or self.config.get_relay_api_key()
        if not api_key:
            return None
        relay = self.config.providers.openrouter
        return RelayProvider(
            api_key=api_key,
            api_base=relay.api_base,
            default_model=self.defaults.instant_model,
            referer=relay.referer,
            title=relay.title,
            timeout=self.defaults.request_timeout,
        )

    async def _prepare(
        self,
        prompt: str,
        context: ConversationContext,
        attachments: tuple[Attachment, ...],
        sink: ChunkSink | None,
    ) -> tuple[_Invocation, str]:
        """Resolve the model and reasoning budget, classify, and load memory."""
        inv = _Invocation(
            prompt=prompt,
            context=context,
            attachments=attachments,
            sink=sink,
            native=self._native_for(context.credentials),
            relay=self._relay_for(context.credentials),
            builder=ContextBuilder(timezone=context.timezone),
            routing=RoutingDecision(),
        )

        model = (context.model or "").strip() or self.baseline_model
        budget = 0
        if context.thinking_mode == ThinkingMode.DEEP:
            model = context.preferred_deep_model or self.defaults.deep_model
            budget = self.defaults.deep_think_budget
        elif context.thinking_mode == ThinkingMode.THINK:
            model = self.baseline_model
            budget = self.defaults.think_budget

        if budget > 0 and not supports_reasoning(model):
            await inv.emit(
                f"\n*(Switched to {friendly_model_name(self.baseline_model)} "
                "for Thinking mode compatibility)*\n"
            )
            model = self.baseline_model

        if not is_native_model(model) and inv.relay is None:
            logger.warning("No relay key for {}; using {}", model, self.baseline_model)
            await inv.emit("\n*(OpenRouter key missing, falling back to Gemini...)*\n")
            model = self.baseline_model

        youtube_prompt = youtube_search_prompt(prompt)
        if youtube_prompt:
            prompt = youtube_prompt

        routing = await self._route(prompt, context.credentials, len(attachments))
        if youtube_prompt:
            routing = RoutingDecision(action=Action.SEARCH)

        memory = await self._load_memory()
        inv = replace(
            inv,
            prompt=prompt,
            routing=routing,
            reasoning_budget=budget,
            builder=ContextBuilder(memory, timezone=context.timezone),
        )
        return inv, model

    async def _route(self, prompt: str, credentials: Credentials, attachment_count: int) -> RoutingDecision:
        try:
            raw = await self.router.route(prompt, credentials.user_id, credentials, attachment_count)
        except Exception as e:
            logger.warning("Router failed, defaulting to SIMPLE: {}", e)
            return RoutingDecision()
        if isinstance(raw, str):
            return decision_from_text(raw, prompt)
        return RoutingDecision.parse(raw)

    async def _load_memory(self) -> Any:
        try:
            return await self.memory.get_context(list(self.config.memory.categories))
        except Exception as e:
            logger.warning("Memory lookup failed: {}", e)
            return {}

    # ── Streaming helpers ───────────────────────────────────────────

    async def _open_native(self, inv: _Invocation, request: StreamRequest) -> AsyncIterator[StreamEvent]:
        request = replace(request, model=resolve_model(request.model, self.baseline_model))
        return await with_quota_retry(
            lambda: inv.native.open(request),
            retries=self.defaults.max_quota_retries,
            on_notice=inv.emit,
            sleep=self._sleep,
            signal=request.signal,
        )

    async def _complete_native(self, inv: _Invocation, request: StreamRequest) -> str:
        request = replace(request, model=resolve_model(request.model, self.baseline_model))
        return await with_quota_retry(
            lambda: inv.native.complete(request),
            retries=self.defaults.max_quota_retries,
            on_notice=inv.emit,
            sleep=self._sleep,
            signal=request.signal,
        )

    async def _consume(
        self,
        inv: _Invocation,
        events: AsyncIterator[StreamEvent],
        state: LoopState,
    ) -> tuple[LoopState, str]:
        """Forward a stream to the sink in arrival order; return the new state and this step's text."""
        generated: list[str] = []
        citations: list[Citation] = []
        async with contextlib.aclosing(events):
            async for event in events:
                if inv.cancelled:
                    break
                if event.text:
                    generated.append(event.text)
                    await inv.emit(event.text)
                citations.extend(_citations_from_grounding(event.citations))
        text = "".join(generated)
        return state.append_text(text).merge_citations(citations), text

    async def _note(self, inv: _Invocation, state: LoopState, note: str) -> LoopState:
        await inv.emit(note)
        return state.append_text(note)

    # ── Handlers ────────────────────────────────────────────────────

    async def _handle_search(self, inv: _Invocation, state: LoopState) -> StepResult:
        """Retrieve, then hand a synthesis prompt to SIMPLE."""
        await inv.emit("\nSearching sources...\n")

        async def _progress(message: str) -> None:
            if not inv.cancelled:
                await inv.emit(f"\n*{message}*")

        try:
            result = await self.research.deep_research(state.prompt, inv.credentials, _progress)
        except Exception as e:
            logger.warning("Research failed for {!r}: {}", state.prompt, e)
            state = await self._note(inv, state, f"\n*(Search unavailable: {e})*\n")
            return StepResult(state.advance(action=Action.SIMPLE))

        state = state.merge_citations(_citations_from_sources(result.sources or []))
        return StepResult(state.advance(
            action=Action.SIMPLE,
            prompt=synthesis_prompt(state.prompt, result.answer),
            search_context=result.answer,
        ))

    async def _handle_think(self, inv: _Invocation, state: LoopState) -> StepResult:
        """Stream one reasoning pass. Terminal: its output is not scanned."""
        budget = inv.reasoning_budget if inv.reasoning_budget > 0 else self.defaults.think_budget
        model = state.model or self.baseline_model
        if not (is_native_model(model) and supports_reasoning(model)):
            model = self.baseline_model

        await inv.emit("\nThinking deeply...\n")
        messages = ContextBuilder.shape_history(inv.context.history, drop_trailing_user=False)
        messages.append(ChatMessage(
            role="user",
            text=inv.builder.build_task_block(model, budget, state.prompt),
        ))
        request = StreamRequest(
            model=model,
            messages=messages,
            reasoning_budget=budget,
            signal=inv.context.signal,
        )
        events = await self._open_native(inv, request)
        state, _ = await self._consume(inv, events, state.advance(model=model))
        return StepResult(state, done=True)

    async def _handle_image(self, inv: _Invocation, state: LoopState) -> StepResult:
        """Generate an image; failure becomes a note, never an error."""
        image_prompt = state.image_prompt or state.prompt
        await inv.emit("\n*(Generating image...)*\n")
        try:
            image = await self.images.generate(
                image_prompt, inv.credentials, inv.context.preferred_image_model or self.defaults.image_model
            )
        except Exception as e:
            logger.warning("Image generation failed: {}", e)
            state = await self._note(
                inv, state, f"\n\n(Image generation failed: {str(e) or 'Unknown error'})"
            )
            return StepResult(state, done=True)
        return StepResult(state.advance(image_data=image.image_data), done=True)

    async def _handle_project(self, inv: _Invocation, state: LoopState) -> StepResult:
        if not is_native_model(state.model):
            return StepResult(state.advance(action=Action.SIMPLE))
        await inv.emit("\nBuilding project structure...\n")
        request = StreamRequest(
            model=self.baseline_model,
            messages=[ChatMessage(
                role="user",
                text=(
                    f"Build a complete file structure for a project: {state.prompt}. "
                    "Return a JSON object with filenames and brief content descriptions."
                ),
            )],
            json_output=True,
            signal=inv.context.signal,
        )
        manifest = await self._complete_native(inv, request)
        state = await self._note(
            inv,
            state,
            f"\nI've designed the project structure based on your request.\n\n{manifest}\n\n"
            "(Switch to Co-Creator mode to fully hydrate and edit these files.)",
        )
        return StepResult(state, done=True)

    async def _handle_study(self, inv: _Invocation, state: LoopState) -> StepResult:
        if not is_native_model(state.model):
            return StepResult(state.advance(action=Action.SIMPLE))
        await inv.emit("\nCreating study plan...\n")
        request = StreamRequest(
            model=self.baseline_model,
            messages=[ChatMessage(
                role="user",
                text=(
                    f"Create a structured study plan for: {state.prompt}. "
                    "Include learning objectives and key concepts."
                ),
            )],
            signal=inv.context.signal,
        )
        plan = await self._complete_native(inv, request)
        state = await self._note(inv, state, plan)
        return StepResult(state, done=True)

    async def _handle_canvas(self, inv: _Invocation, state: LoopState) -> StepResult:
        """Delegate to the build agent and adopt its text."""
        try:
            result = await self.canvas.run(state.prompt, inv.context, inv.attachments, inv.sink)
        except Exception as e:
            logger.warning("Canvas build failed: {}", e)
            state = await self._note(inv, state, f"\n\n(Canvas build failed: {e})")
            return StepResult(state, done=True)
        state = state.advance(final_text=result.text or "").merge_citations(result.citations)
        return StepResult(state, done=True)

    async def _handle_simple(self, inv: _Invocation, state: LoopState) -> StepResult:
        """Stream an answer, then look for a directive in what was just produced."""
        model = state.model or self.baseline_model
        native_path = is_native_model(model)
        provider = inv.native if native_path else inv.relay

        messages = ContextBuilder.shape_history(inv.context.history)
        messages.append(ChatMessage(
            role="user",
            text=state.prompt,
            attachments=list(inv.attachments) if provider.supports_attachments else [],
        ))
        request = StreamRequest(
            model=model,
            messages=messages,
            system_instruction=inv.builder.build_system_instruction(model, inv.reasoning_budget),
            reasoning_budget=inv.reasoning_budget,
            enable_search_tool=True,
            signal=inv.context.signal,
        )

        if native_path:
            events = await self._open_native(inv, request)
        else:
            try:
                events = await provider.open(request)
            except RelayError as e:
                if not _is_unavailable(e):
                    raise
                logger.warning("Relay model {} unavailable, falling back to {}: {}", model, self.baseline_model, e)
                await inv.emit(f"\n*(Model {model} unavailable, switching to Gemini...)*\n")
                model = self.baseline_model
                request = replace(
                    request,
                    model=model,
                    reasoning_budget=0,
                    system_instruction=inv.builder.build_system_instruction(model, 0),
                )
                events = await self._open_native(inv, request)
                state = state.advance(model=model)

        state, generated = await self._consume(inv, events, state)

        directive = scan_directives(generated, inv.prompt)
        if directive is not None:
            logger.debug("Directive {} -> {!r}", directive.kind.value, directive.payload)
            return StepResult(state.advance(
                action=directive.kind,
                prompt=directive.payload,
                image_prompt=directive.payload if directive.kind is Action.IMAGE else state.image_prompt,
            ))

        if not state.final_text.strip() and state.search_context:
            logger.debug("Empty completion; using research answer as final text")
            await inv.emit(state.search_context)
            state = state.advance(final_text=state.search_context)

        return StepResult(state, done=True)

    # ── Instant mode ────────────────────────────────────────────────

    async def _run_instant(
        self,
        prompt: str,
        context: ConversationContext,
        attachments: tuple[Attachment, ...],
        sink: ChunkSink | None,
    ) -> Turn:
        """Bypass routing: one relay pass on the free model, attachments folded into text."""
        model = self.defaults.instant_model
        state = LoopState(action=Action.SIMPLE, prompt=prompt, model=model)
        try:
            relay = self._relay_for(context.credentials)
            if relay is None:
                raise RuntimeError("No relay credentials for instant mode")
            inv = _Invocation(
                prompt=prompt,
                context=context,
                attachments=attachments,
                sink=sink,
                native=self._native_for(context.credentials),
                relay=relay,
                builder=ContextBuilder(timezone=context.timezone),
                routing=RoutingDecision(),
            )
            messages = ContextBuilder.shape_history(context.history)
            messages.append(ChatMessage(
                role="user", text=ContextBuilder.inline_attachments(prompt, attachments)
            ))
            request = StreamRequest(
                model=model,
                messages=messages,
                system_instruction=INSTANT_INSTRUCTION,
                signal=context.signal,
            )
            if not inv.cancelled:
                events = await relay.open(request)
                state, _ = await self._consume(inv, events, state)
        except Exception as e:
            if context.cancelled:
                return self._build_turn(state, stopped=True)
            logger.exception("Instant mode failed: {}", e)
            return Turn(sender=Sender.ASSISTANT, text=INSTANT_UNAVAILABLE_TEXT, model=model)
        return self._build_turn(state, stopped=context.cancelled)

    # ── Result ──────────────────────────────────────────────────────

    @staticmethod
    def _build_turn(state: LoopState | None, stopped: bool) -> Turn:
        if state is None:
            return Turn(sender=Sender.ASSISTANT, text=STOPPED_TEXT if stopped else "", stopped=stopped)
        text = state.final_text
        if stopped and not text:
            text = STOPPED_TEXT
        return Turn(
            sender=Sender.ASSISTANT,
            text=text,
            citations=state.citations,
            image_data=state.image_data,
            model=state.model,
            stopped=stopped,
        )

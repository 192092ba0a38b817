"""
Routing schema: which capability handles the current step of a turn.

The external classifier proposes the first action; directives the model
emits mid-stream can redirect later steps.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from bubble.agent.turns import Citation


class Action(str, Enum):
    """Capabilities the orchestrator can dispatch to."""
    SIMPLE = "SIMPLE"  # Plain streamed answer; also the fallback state
    SEARCH = "SEARCH"
    DEEP_SEARCH = "DEEP_SEARCH"
    THINK = "THINK"
    IMAGE = "IMAGE"
    PROJECT = "PROJECT"
    STUDY = "STUDY"
    CANVAS = "CANVAS"


class RoutingDecision(BaseModel):
    """Classifier output for the raw user prompt."""
    action: Action = Field(
        default=Action.SIMPLE,
        description="Which capability should handle the first step",
    )
    parameters: dict[str, Any] = Field(
        default_factory=dict,
        description="Action-specific hints, e.g. {'prompt': ...} for IMAGE",
    )

    @classmethod
    def parse(cls, raw: Any) -> "RoutingDecision":
        """Accept a RoutingDecision or a loose dict; unknown actions become SIMPLE."""
        if isinstance(raw, RoutingDecision):
            return raw
        if not isinstance(raw, dict):
            return cls()
        action_raw = raw.get("action", Action.SIMPLE.value)
        if isinstance(action_raw, str):
            action_raw = action_raw.strip().upper()
        try:
            action = Action(action_raw)
        except ValueError:
            action = Action.SIMPLE
        parameters = raw.get("parameters")
        return cls(action=action, parameters=parameters if isinstance(parameters, dict) else {})


@dataclass(frozen=True)
class Directive:
    """A capability switch parsed out of one iteration's model output."""
    kind: Action
    payload: str


@dataclass(frozen=True)
class LoopState:
    """
    Everything the control loop carries between iterations.

    Handlers receive the current state and return the next one; nothing
    is mutated in place.
    """
    action: Action
    prompt: str
    final_text: str = ""
    citations: tuple[Citation, ...] = ()
    iteration: int = 0
    search_context: str = ""  # Research answer kept for the empty-output safety net
    image_prompt: str | None = None
    image_data: str | None = None
    model: str | None = None

    def advance(self, **changes: Any) -> "LoopState":
        return replace(self, **changes)

    def append_text(self, text: str) -> "LoopState":
        return replace(self, final_text=self.final_text + text)

    def merge_citations(self, citations: list[Citation] | tuple[Citation, ...]) -> "LoopState":
        if not citations:
            return self
        return replace(self, citations=self.citations + tuple(citations))


@dataclass
class StepResult:
    """What a handler hands back: the next state, and whether the turn is finished."""
    state: LoopState
    done: bool = False

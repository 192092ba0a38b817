"""Agent core module."""

from bubble.agent.orchestrator import Orchestrator
from bubble.agent.routing import Action, Directive, LoopState, RoutingDecision
from bubble.agent.directives import scan_directives, strip_directives, extract_thinking
from bubble.agent.context import ContextBuilder
from bubble.agent.turns import (
    Attachment,
    Citation,
    ConversationContext,
    Credentials,
    Sender,
    ThinkingMode,
    Turn,
)

__all__ = [
    "Orchestrator",
    "Action",
    "Directive",
    "LoopState",
    "RoutingDecision",
    "scan_directives",
    "strip_directives",
    "extract_thinking",
    "ContextBuilder",
    "Attachment",
    "Citation",
    "ConversationContext",
    "Credentials",
    "Sender",
    "ThinkingMode",
    "Turn",
]

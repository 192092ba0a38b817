"""Directive tags embedded in model output.

Models request a capability switch by emitting ``<TAG>payload</TAG>``.
Only the text produced by the current loop iteration is scanned, so a
directive that was already acted on is never seen twice.
"""

import re

from bubble.agent.routing import Action, Directive, RoutingDecision

_DEEP_RE = re.compile(r"<DEEP>(.*?)</DEEP>")
_SEARCH_DEEP_RE = re.compile(r"<SEARCH>deep\s+(.*?)</SEARCH>", re.IGNORECASE)
_SEARCH_RE = re.compile(r"<SEARCH>(.*?)</SEARCH>")
_THINK_RE = re.compile(r"<THINK>(.*?)</THINK>")
_THINK_OPEN_RE = re.compile(r"<THINK>")
_IMAGE_RE = re.compile(r"<IMAGE>(.*?)</IMAGE>")
_PROJECT_RE = re.compile(r"<PROJECT>(.*?)</PROJECT>")
_CANVAS_RE = re.compile(r"<CANVAS>(.*?)</CANVAS>")
_STUDY_RE = re.compile(r"<STUDY>(.*?)</STUDY>")

# Precedence when several directives appear in one iteration; first match wins.
_PRECEDENCE: tuple[tuple[Action, re.Pattern[str]], ...] = (
    (Action.IMAGE, _IMAGE_RE),
    (Action.PROJECT, _PROJECT_RE),
    (Action.CANVAS, _CANVAS_RE),
    (Action.STUDY, _STUDY_RE),
)

# Opening tag → action, for the first classification step (closing tag optional)
_INITIAL_TAGS = {
    "DEEP": Action.DEEP_SEARCH,
    "SEARCH": Action.SEARCH,
    "THINK": Action.THINK,
    "IMAGE": Action.IMAGE,
    "PROJECT": Action.PROJECT,
    "CANVAS": Action.CANVAS,
    "STUDY": Action.STUDY,
}
_INITIAL_RE = re.compile(
    r"<(DEEP|SEARCH|THINK|IMAGE|PROJECT|CANVAS|STUDY)>(.*?)(?:</\1>|$)",
    re.DOTALL,
)

_DISPLAY_STRIP = (
    re.compile(r"<THINK>[\s\S]*?(?:</THINK>|$)", re.IGNORECASE),
    re.compile(r"<CANVAS>[\s\S]*?(?:</CANVAS>|$)", re.IGNORECASE),
    re.compile(r"<MEMORY>[\s\S]*?</MEMORY>", re.IGNORECASE),
    re.compile(r"<IMAGE>[\s\S]*?</IMAGE>", re.IGNORECASE),
    re.compile(r"<SEARCH>[\s\S]*?</SEARCH>", re.IGNORECASE),
    re.compile(r"<PROJECT>[\s\S]*?</PROJECT>", re.IGNORECASE),
    re.compile(r"<STUDY>[\s\S]*?</STUDY>", re.IGNORECASE),
    re.compile(r"<DEEP>[\s\S]*?</DEEP>", re.IGNORECASE),
)
_THINKING_RE = re.compile(r"<THINK>([\s\S]*?)(?:</THINK>|$)", re.IGNORECASE)


def scan_directives(text: str, original_prompt: str) -> Directive | None:
    """
    Find the directive to act on in one iteration's output.

    Order: DEEP_SEARCH, SEARCH, THINK, IMAGE, PROJECT, CANVAS, STUDY.
    Re-routing needs a closed tag, except for ``<THINK>``: a bare opening
    tag (or an empty block) routes to THINK with ``original_prompt``.

    Returns:
        The directive, or None when the output carries no directive.
    """
    if not text:
        return None

    deep = _DEEP_RE.search(text) or _SEARCH_DEEP_RE.search(text)
    if deep:
        return Directive(Action.DEEP_SEARCH, deep.group(1))

    search = _SEARCH_RE.search(text)
    if search:
        return Directive(Action.SEARCH, search.group(1))

    think = _THINK_RE.search(text) or _THINK_OPEN_RE.search(text)
    if think:
        payload = think.group(1).strip() if think.groups() else ""
        return Directive(Action.THINK, payload or original_prompt)

    for action, pattern in _PRECEDENCE:
        match = pattern.search(text)
        if match:
            return Directive(action, match.group(1))

    return None


def decision_from_text(text: str, prompt: str) -> RoutingDecision:
    """
    Build the initial routing decision from a classifier's raw text reply.

    The first step tolerates a missing closing tag (``<SEARCH>cats``);
    anything without a tag routes to SIMPLE.
    """
    match = _INITIAL_RE.search(text or "")
    if not match:
        return RoutingDecision(action=Action.SIMPLE)
    tag, payload = match.group(1), match.group(2).strip()
    action = _INITIAL_TAGS[tag]
    if action is Action.SEARCH and payload.lower().startswith("deep "):
        action, payload = Action.DEEP_SEARCH, payload[5:].strip()
    return RoutingDecision(action=action, parameters={"prompt": payload or prompt})


def strip_directives(text: str) -> str:
    """Remove directive blocks so only user-facing prose remains."""
    for pattern in _DISPLAY_STRIP:
        text = pattern.sub("", text)
    return text.strip()


def extract_thinking(text: str) -> str | None:
    """Return the reasoning inside the first ``<THINK>`` block (may be unterminated)."""
    match = _THINKING_RE.search(text or "")
    if not match:
        return None
    return match.group(1).strip()

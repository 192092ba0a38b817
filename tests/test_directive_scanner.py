from bubble.agent.directives import (
    decision_from_text,
    extract_thinking,
    scan_directives,
    strip_directives,
)
from bubble.agent.routing import Action, Directive


def test_no_directive_in_plain_text() -> None:
    assert scan_directives("Cats are wonderful companions.", "cats") is None
    assert scan_directives("", "cats") is None


def test_search_directive_extracts_payload() -> None:
    assert scan_directives("One sec. <SEARCH>cats</SEARCH>", "q") == Directive(Action.SEARCH, "cats")


def test_deep_tag_and_deep_prefixed_search_route_to_deep_search() -> None:
    assert scan_directives("<DEEP>fusion reactors</DEEP>", "q") == Directive(
        Action.DEEP_SEARCH, "fusion reactors"
    )
    assert scan_directives("<SEARCH>Deep fusion reactors</SEARCH>", "q") == Directive(
        Action.DEEP_SEARCH, "fusion reactors"
    )


def test_unterminated_tags_do_not_reroute() -> None:
    assert scan_directives("<SEARCH>cats", "q") is None
    assert scan_directives("<IMAGE>a fox", "q") is None


def test_bare_think_falls_back_to_original_prompt() -> None:
    assert scan_directives("<THINK>", "why is the sky blue?") == Directive(
        Action.THINK, "why is the sky blue?"
    )
    assert scan_directives("<THINK>  </THINK>", "original") == Directive(Action.THINK, "original")


def test_think_payload_is_trimmed() -> None:
    assert scan_directives("<THINK>  orbital math </THINK>", "q") == Directive(
        Action.THINK, "orbital math"
    )


def test_precedence_is_fixed() -> None:
    text = (
        "<STUDY>s</STUDY><CANVAS>c</CANVAS><PROJECT>p</PROJECT>"
        "<IMAGE>i</IMAGE><THINK>t</THINK><SEARCH>q</SEARCH><DEEP>d</DEEP>"
    )
    assert scan_directives(text, "x").kind is Action.DEEP_SEARCH

    ordered = [
        ("<SEARCH>q</SEARCH>", Action.SEARCH),
        ("<THINK>t</THINK>", Action.THINK),
        ("<IMAGE>i</IMAGE>", Action.IMAGE),
        ("<PROJECT>p</PROJECT>", Action.PROJECT),
        ("<CANVAS>c</CANVAS>", Action.CANVAS),
        ("<STUDY>s</STUDY>", Action.STUDY),
    ]
    for i, (_, expected) in enumerate(ordered):
        remaining = "".join(tag for tag, _ in reversed(ordered[i:]))
        assert scan_directives(remaining, "x").kind is expected


def test_text_without_tags_terminates_idempotently() -> None:
    final_text = "Here is a summary of the sources [1], [2]."
    assert scan_directives(final_text, "q") is None
    assert scan_directives(strip_directives(final_text), "q") is None


def test_initial_decision_accepts_unterminated_tag() -> None:
    decision = decision_from_text("<SEARCH>cats", "tell me about cats")
    assert decision.action is Action.SEARCH
    assert decision.parameters == {"prompt": "cats"}


def test_initial_decision_handles_deep_prefix_and_plain_text() -> None:
    assert decision_from_text("<SEARCH>deep quantum dots</SEARCH>", "q").action is Action.DEEP_SEARCH
    assert decision_from_text("just chat", "q").action is Action.SIMPLE


def test_initial_decision_empty_payload_uses_prompt() -> None:
    decision = decision_from_text("<IMAGE>", "a lighthouse at dusk")
    assert decision.action is Action.IMAGE
    assert decision.parameters["prompt"] == "a lighthouse at dusk"


def test_strip_directives_removes_blocks_for_display() -> None:
    raw = "<THINK>plan it</THINK>Answer. <SEARCH>x</SEARCH><MEMORY>likes tea</MEMORY> Done. <CANVAS>partial"
    assert strip_directives(raw) == "Answer.  Done."


def test_extract_thinking_handles_unterminated_block() -> None:
    assert extract_thinking("<THINK>step one</THINK>answer") == "step one"
    assert extract_thinking("<THINK>still going") == "still going"
    assert extract_thinking("no reasoning") is None

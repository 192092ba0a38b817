from __future__ import annotations

from bubble.agent.context import ContextBuilder
from bubble.agent.turns import Attachment
from bubble.utils.helpers import current_datetime_str, friendly_model_name, source_title


def test_identity_block_names_model_and_thinking_requirement() -> None:
    builder = ContextBuilder()

    plain = builder.base_instruction("google/gemini-2.5-flash", 0)
    thinking = builder.base_instruction("gemini-3-pro-preview", 8192)

    assert "**Gemini 2.5 Flash**" in plain
    assert "[MODEL_IDENTITY_BLOCK]" not in plain
    assert "[THINKING ENABLED]" not in plain
    assert "Budget: 8192 tokens" in thinking
    assert "<THINK>" in thinking


def test_system_instruction_carries_memory_and_datetime() -> None:
    builder = ContextBuilder({"preferences": ["short answers"]}, timezone="UTC")

    instruction = builder.build_system_instruction("gemini-2.5-flash", 0)

    assert '[MEMORY]\n{"preferences": ["short answers"]}' in instruction
    assert "[CURRENT DATE & TIME]\n" in instruction


def test_task_block_ends_with_task() -> None:
    block = ContextBuilder().build_task_block("gemini-2.5-flash", 2048, "integrate x^2")

    assert block.endswith("[TASK]\nintegrate x^2")
    assert block.index("[CURRENT DATE & TIME]") < block.index("[MEMORY]") < block.index("[TASK]")


def test_unserializable_memory_is_omitted() -> None:
    builder = ContextBuilder({"cycle": None})
    builder.memory["cycle"] = builder.memory

    assert builder.memory_block() == "[MEMORY]\n{}"


def test_inline_attachments_folds_files_into_prompt() -> None:
    attachments = [
        Attachment(name="photo.jpg", mime_type="image/jpeg", data=b"\xff\xd8"),
        Attachment(name="app.tsx", mime_type="application/octet-stream", data=b"export {}"),
        Attachment(name="report.pdf", mime_type="application/pdf", data=b"%PDF"),
        Attachment(name="broken.txt", mime_type="text/plain", data=b"\xff\xfe\xfa"),
    ]

    text = ContextBuilder.inline_attachments("look at these", attachments)

    assert text.startswith("look at these\n[User attached an image: \"photo.jpg\".")
    assert "--- FILE CONTENT: app.tsx ---\nexport {}\n--- END FILE ---" in text
    assert "[Attached file: report.pdf (Binary/Unsupported for read)]" in text
    assert "[Error reading file: broken.txt]" in text


def test_friendly_model_name() -> None:
    assert friendly_model_name("google/gemini-2.5-flash") == "Gemini 2.5 Flash"
    assert friendly_model_name("gemini-3-pro-preview") == "Gemini 3 Pro Preview"


def test_source_title() -> None:
    assert source_title("https://www.example.com/a/b") == "example.com"
    assert source_title("https://docs.python.org/3/") == "docs.python.org"
    assert source_title("not a url") == "Source"
    assert source_title("http://[::1") == "Source"


def test_invalid_timezone_falls_back_to_local_time() -> None:
    assert "(Not/AZone)" not in current_datetime_str("Not/AZone")

"""Context builder for assembling system instructions and message history."""

import json
from typing import Any, Sequence

from loguru import logger

from bubble.agent.turns import Attachment, Sender, Turn
from bubble.providers.base import ChatMessage
from bubble.utils.helpers import current_datetime_str, friendly_model_name

BASE_INSTRUCTION = """You are Bubble, a helpful, candid and concise assistant.

[MODEL_IDENTITY_BLOCK]

# Capabilities

You can hand work to specialised tools by emitting a single directive tag on
its own line. Emit at most one directive per reply and nothing after it.

- <SEARCH>query</SEARCH> look up current information on the web.
- <DEEP>query</DEEP> run a multi-source deep research pass.
- <THINK>problem</THINK> reason carefully about a hard problem first.
- <IMAGE>description</IMAGE> create an image.
- <PROJECT>description</PROJECT> design a software project's file structure.
- <CANVAS>description</CANVAS> build an interactive canvas app.
- <STUDY>topic</STUDY> create a structured study plan.

Answer directly whenever you can; only use a directive when it clearly helps.
When you are given search context, cite sources as [1], [2]."""

INSTANT_INSTRUCTION = (
    "You are Bubble, a helpful assistant running in Instant Mode. "
    "Answer quickly and concisely. You cannot search, think at length or create images."
)

THINKING_BLOCK = """[THINKING ENABLED]
You have extended reasoning capabilities (Budget: {budget} tokens).

**CRITICAL MANDATORY REQUIREMENT:**
You MUST output your internal thought process wrapped inside <THINK> tags at the very beginning of your response.
Example: <THINK>I need to calculate the trajectory...</THINK> Here is the answer...

Failure to include the <THINK> block will be considered a system error. YOU MUST THINK FIRST."""


class ContextBuilder:
    """
    Builds the system instruction and message list for one invocation.

    Assembles the model identity, reasoning requirements, memory and the
    current date/time into the instruction, and normalizes history into
    provider-neutral ``ChatMessage`` values.
    """

    def __init__(self, memory: Any = None, timezone: str | None = None):
        self.memory = memory if memory is not None else {}
        self.timezone = timezone

    def identity_block(self, model: str, reasoning_budget: int) -> str:
        name = friendly_model_name(model)
        block = (
            f"You are currently running on the model: **{name}**.\n"
            f'If the user asks "Which AI model are you?", reply that you are Bubble, running on {name}.'
        )
        if reasoning_budget > 0:
            block += "\n\n" + THINKING_BLOCK.format(budget=reasoning_budget)
        return block

    def base_instruction(self, model: str, reasoning_budget: int) -> str:
        return BASE_INSTRUCTION.replace(
            "[MODEL_IDENTITY_BLOCK]", self.identity_block(model, reasoning_budget)
        )

    def datetime_block(self) -> str:
        return f"[CURRENT DATE & TIME]\n{current_datetime_str(self.timezone)}\n"

    def memory_block(self) -> str:
        try:
            rendered = json.dumps(self.memory, default=str)
        except (TypeError, ValueError):
            logger.warning("Memory context is not JSON serializable; omitting it")
            rendered = "{}"
        return f"[MEMORY]\n{rendered}"

    def build_system_instruction(self, model: str, reasoning_budget: int) -> str:
        """Instruction for plain streamed answers."""
        return "\n\n".join([
            self.base_instruction(model, reasoning_budget),
            self.memory_block(),
            self.datetime_block(),
        ])

    def build_task_block(self, model: str, reasoning_budget: int, task: str) -> str:
        """Single user message carrying instruction, memory and task for THINK steps."""
        return "\n\n".join([
            self.base_instruction(model, reasoning_budget),
            self.datetime_block(),
            self.memory_block(),
            f"[TASK]\n{task}",
        ])

    @staticmethod
    def shape_history(history: Sequence[Turn], drop_trailing_user: bool = True) -> list[ChatMessage]:
        """
        Convert prior turns into chat messages.

        The caller's history usually already ends with the user turn being
        answered; that turn is dropped because the current prompt is sent
        separately. Blank turns are skipped.
        """
        turns = list(history)
        if drop_trailing_user and turns and turns[-1].sender == Sender.USER:
            turns = turns[:-1]
        return [
            ChatMessage(
                role="user" if turn.sender == Sender.USER else "assistant",
                text=turn.text,
            )
            for turn in turns
            if turn.text.strip()
        ]

    @staticmethod
    def inline_attachments(prompt: str, attachments: Sequence[Attachment]) -> str:
        """Fold attachments into the prompt for text-only models."""
        image_notes = ""
        file_context = ""
        for attachment in attachments:
            if attachment.is_image:
                image_notes += (
                    f'\n[User attached an image: "{attachment.name}". Note: I cannot see images '
                    "in Instant Mode, so I should ask the user to describe it if needed.]"
                )
            elif attachment.is_text:
                try:
                    content = attachment.read_text()
                except UnicodeDecodeError:
                    logger.warning("Failed to read attachment {}", attachment.name)
                    file_context += f"\n[Error reading file: {attachment.name}]"
                    continue
                file_context += (
                    f"\n\n--- FILE CONTENT: {attachment.name} ---\n{content}\n--- END FILE ---\n"
                )
            else:
                file_context += f"\n[Attached file: {attachment.name} (Binary/Unsupported for read)]"
        return f"{prompt}{image_notes}{file_context}"

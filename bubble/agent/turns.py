"""Conversation turns and the per-invocation context."""

import asyncio
import base64
import uuid
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Non-text/* files that are still read as text in instant mode
TEXT_EXTENSIONS = (".js", ".ts", ".tsx", ".jsx", ".py", ".json", ".md", ".html", ".css", ".lua")


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ThinkingMode(str, Enum):
    """How much deliberation the user asked for."""
    FAST = "fast"
    THINK = "think"
    DEEP = "deep"
    INSTANT = "instant"  # Bypass routing; free relay model, text only


class Attachment(BaseModel):
    """A file the user attached to the current turn."""
    model_config = ConfigDict(frozen=True)

    name: str
    mime_type: str = "application/octet-stream"
    data: bytes = b""

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_text(self) -> bool:
        return self.mime_type.startswith("text/") or self.name.lower().endswith(TEXT_EXTENSIONS)

    def as_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def read_text(self) -> str:
        return self.data.decode("utf-8")


class Citation(BaseModel):
    """A source the answer drew on."""
    model_config = ConfigDict(frozen=True)

    uri: str
    title: str = "Source"


class Turn(BaseModel):
    """One persisted conversation message. Never mutated once built."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    sender: Sender
    text: str = ""
    attachments: tuple[Attachment, ...] = ()
    citations: tuple[Citation, ...] = ()
    image_data: str | None = None  # base64
    model: str | None = None
    stopped: bool = False  # Partial output after a user stop


class Credentials(BaseModel):
    """Per-user provider credentials."""
    native_api_key: str = ""
    relay_api_key: str | None = None
    user_id: str = "local"


@dataclass
class ConversationContext:
    """
    Caller-owned state for one invocation.

    The orchestrator reads it and never writes back; the new assistant
    turn is returned instead.
    """
    history: list[Turn] = field(default_factory=list)
    credentials: Credentials = field(default_factory=Credentials)
    model: str = ""
    thinking_mode: ThinkingMode = ThinkingMode.FAST
    signal: asyncio.Event = field(default_factory=asyncio.Event)
    preferred_deep_model: str | None = None
    preferred_image_model: str | None = None
    timezone: str | None = None

    @property
    def cancelled(self) -> bool:
        return self.signal.is_set()

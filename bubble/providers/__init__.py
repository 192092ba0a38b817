"""Streaming provider abstraction module."""

from bubble.providers.base import ChatMessage, StreamEvent, StreamProvider, StreamRequest
from bubble.providers.errors import (
    ModelUnavailableError,
    ProviderError,
    QuotaExhaustedError,
    GenerationStopped,
    RelayError,
)
from bubble.providers.native_provider import NativeProvider, is_native_model
from bubble.providers.relay_provider import RelayProvider

__all__ = [
    "ChatMessage",
    "StreamEvent",
    "StreamProvider",
    "StreamRequest",
    "ProviderError",
    "RelayError",
    "ModelUnavailableError",
    "QuotaExhaustedError",
    "GenerationStopped",
    "NativeProvider",
    "RelayProvider",
    "is_native_model",
]

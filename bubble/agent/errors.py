"""Failures that become assistant text instead of exceptions."""

import httpx
import litellm

from bubble.providers.errors import ProviderError, QuotaExhaustedError, RelayError
from bubble.providers.retry import is_quota_error


class CapabilityUnavailable(RuntimeError):
    """A collaborator (research, image, canvas) is not available in this deployment."""


def user_friendly_error(exc: BaseException) -> str:
    """Map an exception onto a short message a user can act on."""
    # Relay messages already name the model and the fix
    if isinstance(exc, RelayError):
        return str(exc)
    if isinstance(exc, QuotaExhaustedError) or is_quota_error(exc):
        return "The AI service is busy right now (rate limit reached). Please wait a moment and try again."
    if isinstance(exc, litellm.AuthenticationError):
        return "The API key was rejected. Check your provider credentials in settings."
    if isinstance(exc, litellm.ContentPolicyViolationError):
        return "The request was blocked by the provider's safety filters. Try rephrasing it."
    if isinstance(exc, (litellm.Timeout, httpx.TimeoutException)):
        return "The AI service took too long to respond. Please try again."
    if isinstance(exc, (litellm.APIConnectionError, httpx.TransportError)):
        return "Couldn't reach the AI service. Check your connection and try again."
    if isinstance(exc, ProviderError):
        return str(exc)

    message = str(exc).strip()
    lowered = message.lower()
    if "api key" in lowered or "api_key" in lowered:
        return "The API key was rejected. Check your provider credentials in settings."
    return message or "Something went wrong while generating a response."

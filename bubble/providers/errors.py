"""Provider errors.

Adapters raise these so the orchestrator can decide whether to retry,
fall back to another model, or give up.
"""


class ProviderError(RuntimeError):
    """Base class for provider failures."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RelayError(ProviderError):
    """The relay answered with a non-2xx status."""


class ModelUnavailableError(RelayError):
    """The relay has no provider serving the requested model. Fall back."""


class QuotaExhaustedError(ProviderError):
    """Quota/rate-limit retries ran out."""


class GenerationStopped(ProviderError):
    """The caller's stop signal fired before a provider call could be (re)issued."""

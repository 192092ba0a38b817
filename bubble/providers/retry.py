"""Quota-aware retry for native provider calls."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import litellm
from loguru import logger

from bubble.providers.base import is_cancelled
from bubble.providers.errors import GenerationStopped, QuotaExhaustedError

T = TypeVar("T")

DEFAULT_RETRIES = 3
QUOTA_MARKERS = ("429", "quota")


def is_quota_error(exc: BaseException) -> bool:
    """True for rate-limit/quota failures (HTTP 429 or a quota marker in the message)."""
    if isinstance(exc, litellm.RateLimitError):
        return True
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if status == 429:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in QUOTA_MARKERS)


def backoff_seconds(attempt: int) -> float:
    """Delay before retrying after ``attempt`` (0-based): 3s, 5s, 9s, ..."""
    return (2 ** attempt * 2000 + 1000) / 1000


def resolve_model(model: str | None, baseline: str) -> str:
    """Fall back to the baseline model when none was selected."""
    if model and model.strip():
        return model
    logger.warning("Model undefined for native call, defaulting to {}", baseline)
    return baseline


async def _wait(delay: float, signal: asyncio.Event | None) -> None:
    """Sleep for ``delay`` seconds, waking early if ``signal`` is set."""
    if signal is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(signal.wait(), delay)
    except asyncio.TimeoutError:
        pass


async def with_quota_retry(
    call: Callable[[], Awaitable[T]],
    *,
    retries: int = DEFAULT_RETRIES,
    on_notice: Callable[[str], Awaitable[None]] | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    signal: asyncio.Event | None = None,
) -> T:
    """
    Await ``call()`` and retry it with exponential backoff on quota errors.

    Args:
        call: Zero-argument coroutine factory; invoked once per attempt.
        retries: Retries after the first attempt (``retries + 1`` attempts total).
        on_notice: Awaited with a short user-visible message before each wait.
        sleep: Delay function overriding the signal-aware wait.
        signal: Stop signal; ends a backoff wait early and prevents further calls.

    Raises:
        GenerationStopped: ``signal`` was set before an attempt.
        QuotaExhaustedError: Every attempt hit a quota error.
        Exception: Any non-quota error, re-raised on the first occurrence.
    """
    for attempt in range(retries + 1):
        if is_cancelled(signal):
            raise GenerationStopped("Stopped before the provider call")
        try:
            return await call()
        except Exception as e:
            if not is_quota_error(e):
                raise
            if attempt >= retries:
                raise QuotaExhaustedError("Max retries exceeded", status_code=429) from e
            delay = backoff_seconds(attempt)
            logger.warning(
                "Quota limit hit (attempt {}/{}), retrying in {}s: {}",
                attempt + 1, retries + 1, delay, e,
            )
            if on_notice is not None:
                await on_notice(f"(Rate limit hit. Retrying in {round(delay)}s...)")
            if sleep is not None:
                await sleep(delay)
            else:
                await _wait(delay, signal)

    raise QuotaExhaustedError("Max retries exceeded", status_code=429)

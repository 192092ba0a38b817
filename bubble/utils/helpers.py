"""Utility functions for bubble."""

import re
from datetime import datetime
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def current_datetime_str(timezone: str | None = None) -> str:
    """Current date and time for the system instruction.

    Returns something like: "Sunday, 2026-02-08 14:35:02 (America/New_York)".
    An unknown timezone falls back to the local clock.
    """
    if timezone:
        try:
            return datetime.now(ZoneInfo(timezone)).strftime(f"%A, %Y-%m-%d %H:%M:%S ({timezone})")
        except (ZoneInfoNotFoundError, ValueError):
            pass

    now = datetime.now().astimezone()
    return now.strftime(f"%A, %Y-%m-%d %H:%M:%S ({now.strftime('%Z') or 'local'})")


def friendly_model_name(model: str) -> str:
    """Turn "google/gemini-2.5-flash" into "Gemini 2.5 Flash"."""
    raw = model.split("/")[-1] or model
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), raw.replace("-", " "))


def source_title(url: str) -> str:
    """Derive a citation title from a URL's hostname ("Source" when unparseable)."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return "Source"
    if not hostname:
        return "Source"
    return hostname.replace("www.", "", 1)

"""Utility functions for bubble."""

from bubble.utils.helpers import current_datetime_str, friendly_model_name, source_title

__all__ = ["current_datetime_str", "friendly_model_name", "source_title"]

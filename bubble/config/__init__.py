"""Configuration module for bubble."""

from bubble.config.loader import load_config, get_config_path
from bubble.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]

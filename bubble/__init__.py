"""
bubble - A streaming conversational assistant with directive-driven routing
"""

import warnings
from importlib.metadata import PackageNotFoundError, version

# LiteLLM warns on every call for models missing from its pricing database.
warnings.filterwarnings(
    "ignore",
    message="Cost calculation failed.*",
    category=UserWarning,
)

try:
    __version__ = version("bubble-chat")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
__logo__ = "🫧"

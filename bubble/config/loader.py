"""Reading and writing ~/.bubble/config.json and its secrets file."""

import json
import os
import re
import stat
from pathlib import Path
from typing import Any

from loguru import logger

from bubble.config.schema import Config

# Provider API keys live in the .env file, never in config.json.
SECRET_ENV_VARS: dict[str, str] = {
    "gemini": "BUBBLE_PROVIDERS__GEMINI__API_KEY",
    "openrouter": "BUBBLE_PROVIDERS__OPENROUTER__API_KEY",
}

_ENV_LINE_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")
_CAMEL_BOUNDARY_RE = re.compile(r"(?<!^)(?=[A-Z])")


def get_config_path() -> Path:
    return Path.home() / ".bubble" / "config.json"


def get_env_path() -> Path:
    return Path.home() / ".bubble" / ".env"


def _owner_only(path: Path) -> None:
    try:
        path.chmod(stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        logger.debug("Could not restrict permissions on {}", path)


def read_env_file(env_path: Path) -> dict[str, str]:
    """Parse KEY=value lines; comments, blanks and anything else are ignored."""
    if not env_path.exists():
        return {}
    values: dict[str, str] = {}
    for raw in env_path.read_text(encoding="utf-8").splitlines():
        match = _ENV_LINE_RE.match(raw.strip())
        if not match:
            continue
        key, value = match.group(1), match.group(2).strip()
        if value[:1] in ('"', "'") and len(value) > 1 and value[-1] == value[0]:
            value = value[1:-1]
        values[key] = value
    return values


def write_env_file(env_path: Path, values: dict[str, str]) -> None:
    env_path.parent.mkdir(parents=True, exist_ok=True)
    lines = ["# Bubble provider keys. Keep this file private.", ""]
    for key, value in sorted(values.items()):
        if re.search(r"[\s\"'#]", value):
            value = json.dumps(value)
        lines.append(f"{key}={value}")
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    _owner_only(env_path)


def load_config(config_path: Path | None = None, env_path: Path | None = None) -> Config:
    """
    Load configuration with secrets overlaid.

    Precedence for provider keys: process environment, then the .env file,
    then config.json. A malformed config file is logged and ignored.
    """
    path = config_path or get_config_path()
    for key, value in read_env_file(env_path or get_env_path()).items():
        os.environ.setdefault(key, value)

    config = Config()
    if path.exists():
        try:
            config = Config.model_validate(convert_keys(json.loads(path.read_text(encoding="utf-8"))))
        except ValueError as e:
            logger.warning("Ignoring unreadable config {}: {}", path, e)

    for provider, env_var in SECRET_ENV_VARS.items():
        value = os.environ.get(env_var)
        if value:
            getattr(config.providers, provider).api_key = value
    return config


def save_config(
    config: Config,
    config_path: Path | None = None,
    env_path: Path | None = None,
) -> None:
    """Write config.json with keys blanked, moving any keys into the .env file."""
    path = config_path or get_config_path()
    env_path = env_path or get_env_path()

    data = config.model_dump()
    secrets = read_env_file(env_path)
    for provider, env_var in SECRET_ENV_VARS.items():
        section = data["providers"][provider]
        if section.get("api_key"):
            secrets[env_var] = section["api_key"]
        section["api_key"] = ""
    write_env_file(env_path, secrets)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(convert_to_camel(data), indent=2), encoding="utf-8")
    _owner_only(path)


def convert_keys(data: Any) -> Any:
    """Recursively rename camelCase keys to snake_case."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(v) for v in data]
    return data


def convert_to_camel(data: Any) -> Any:
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(v) for v in data]
    return data


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY_RE.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)

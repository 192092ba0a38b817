from __future__ import annotations

import json
import os
import stat
import sys
from pathlib import Path

import pytest

from bubble.config.loader import (
    camel_to_snake,
    load_config,
    read_env_file,
    save_config,
    snake_to_camel,
)
from bubble.config.schema import Config

GEMINI_ENV = "BUBBLE_PROVIDERS__GEMINI__API_KEY"
RELAY_ENV = "BUBBLE_PROVIDERS__OPENROUTER__API_KEY"


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> None:
    # setenv first so monkeypatch removes anything load_config injects
    for name in (GEMINI_ENV, RELAY_ENV):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_camel_case_file_is_loaded(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({
        "agents": {"defaults": {"baselineModel": "gemini-2.0-flash", "maxLoops": 4}},
        "providers": {"openrouter": {"apiBase": "https://relay.test/v1"}},
        "userId": "u-42",
    }))

    config = load_config(config_path, env_path=tmp_path / ".env")

    assert config.agents.defaults.baseline_model == "gemini-2.0-flash"
    assert config.agents.defaults.max_loops == 4
    assert config.providers.openrouter.api_base == "https://relay.test/v1"
    assert config.user_id == "u-42"
    assert config.get_relay_api_key() is None


def test_broken_file_falls_back_to_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not json")

    config = load_config(config_path, env_path=tmp_path / ".env")

    assert config.agents.defaults.max_loops == 6
    assert config.get_model() == "gemini-2.5-flash"


def test_dotenv_secrets_are_applied(tmp_path: Path) -> None:
    env_path = tmp_path / ".env"
    env_path.write_text(
        "# secrets\n"
        f'{GEMINI_ENV}="g key"\n'
        f"{RELAY_ENV}=sk-or-v1-abc\n"
        "garbage line\n"
    )

    config = load_config(tmp_path / "missing.json", env_path=env_path)

    assert config.get_native_api_key() == "g key"
    assert config.get_relay_api_key() == "sk-or-v1-abc"


def test_real_environment_wins_over_dotenv(tmp_path: Path, monkeypatch) -> None:
    env_path = tmp_path / ".env"
    env_path.write_text(f"{GEMINI_ENV}=from-file\n")
    monkeypatch.setenv(GEMINI_ENV, "from-shell")

    config = load_config(tmp_path / "missing.json", env_path=env_path)

    assert config.get_native_api_key() == "from-shell"


def test_read_env_file_parses_quotes_and_skips_noise(tmp_path: Path) -> None:
    env_path = tmp_path / ".env"
    env_path.write_text("A=1\n\n# comment\nB='two words'\nnot-an-assignment\n")

    assert read_env_file(env_path) == {"A": "1", "B": "two words"}
    assert read_env_file(tmp_path / "absent.env") == {}


def test_save_config_moves_secrets_to_env_file(tmp_path: Path) -> None:
    config = Config()
    config.providers.gemini.api_key = "g-secret"
    config.providers.openrouter.api_key = "sk-or-secret"
    config.agents.defaults.max_loops = 8
    config_path = tmp_path / "config.json"
    env_path = tmp_path / ".env"

    save_config(config, config_path, env_path)

    data = json.loads(config_path.read_text())
    assert data["providers"]["gemini"]["apiKey"] == ""
    assert data["providers"]["openrouter"]["apiKey"] == ""
    assert data["agents"]["defaults"]["maxLoops"] == 8

    secrets = read_env_file(env_path)
    assert secrets[GEMINI_ENV] == "g-secret"
    assert secrets[RELAY_ENV] == "sk-or-secret"
    if sys.platform != "win32":
        assert stat.S_IMODE(os.stat(env_path).st_mode) == 0o600

    reloaded = load_config(config_path, env_path)
    assert reloaded.get_native_api_key() == "g-secret"
    assert reloaded.agents.defaults.max_loops == 8


def test_key_case_conversion() -> None:
    assert camel_to_snake("deepThinkBudget") == "deep_think_budget"
    assert snake_to_camel("deep_think_budget") == "deepThinkBudget"

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from bubble import __version__
from bubble.agent import orchestrator as orchestrator_module
from bubble.agent.turns import Sender, ThinkingMode, Turn
from bubble.cli.commands import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in ("BUBBLE_PROVIDERS__GEMINI__API_KEY", "BUBBLE_PROVIDERS__OPENROUTER__API_KEY"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return tmp_path


def _write_config(home: Path, defaults: dict) -> None:
    config_dir = home / ".bubble"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "config.json").write_text(json.dumps({"agents": {"defaults": defaults}}))


class RecordingOrchestrator:
    contexts: list = []

    def __init__(self, config):
        self.config = config

    async def run(self, prompt, context, attachments=(), on_chunk=None) -> Turn:
        RecordingOrchestrator.contexts.append(context)
        if on_chunk is not None:
            on_chunk("ok")
        return Turn(sender=Sender.ASSISTANT, text="ok")


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert f"bubble v{__version__}" in result.output


def test_unknown_mode_is_rejected() -> None:
    result = runner.invoke(app, ["chat", "-m", "hi", "--mode", "turbo"])

    assert result.exit_code == 1
    assert "Unknown mode: turbo" in result.output


def test_mode_defaults_to_configured_thinking_mode(_isolated_home: Path, monkeypatch) -> None:
    _write_config(_isolated_home, {"thinkingMode": "think"})
    monkeypatch.setattr(orchestrator_module, "Orchestrator", RecordingOrchestrator)
    RecordingOrchestrator.contexts = []

    result = runner.invoke(app, ["chat", "-m", "hi"])

    assert result.exit_code == 0
    assert RecordingOrchestrator.contexts[0].thinking_mode is ThinkingMode.THINK


def test_mode_flag_overrides_config(_isolated_home: Path, monkeypatch) -> None:
    _write_config(_isolated_home, {"thinkingMode": "think"})
    monkeypatch.setattr(orchestrator_module, "Orchestrator", RecordingOrchestrator)
    RecordingOrchestrator.contexts = []

    result = runner.invoke(app, ["chat", "-m", "hi", "--mode", "deep"])

    assert result.exit_code == 0
    assert RecordingOrchestrator.contexts[0].thinking_mode is ThinkingMode.DEEP


def test_invalid_configured_mode_is_reported(_isolated_home: Path) -> None:
    _write_config(_isolated_home, {"thinkingMode": "turbo"})

    result = runner.invoke(app, ["chat", "-m", "hi"])

    assert result.exit_code == 1
    assert "Unknown mode: turbo" in result.output

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from cloud_workers_mcp.codex import CodexNotFoundError, CodexRunner, CodexTimeoutError, extract_json
from cloud_workers_mcp.codex.utils import sanitize_environment


def _script(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "codex"
    script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    script.chmod(0o755)
    return script


def test_codex_runner_executes_script(tmp_path: Path) -> None:
    runner = CodexRunner(_script(tmp_path, "echo 'Codex CLI 0.0.1'"))
    result = asyncio.run(runner.version())

    assert result.ok
    assert "Codex CLI 0.0.1" in result.stdout


def test_run_prompt_is_read_only_and_passes_model(tmp_path: Path) -> None:
    runner = CodexRunner(_script(tmp_path, 'echo "$@"'), default_model="gpt-5")
    result = asyncio.run(runner.run_prompt("review this"))

    assert result.ok
    assert result.stdout.strip() == (
        "exec --skip-git-repo-check --sandbox read-only --model gpt-5 review this"
    )


def test_run_prompt_timeout(tmp_path: Path) -> None:
    runner = CodexRunner(_script(tmp_path, "sleep 5"), timeout=0.2)

    with pytest.raises(CodexTimeoutError):
        asyncio.run(runner.run_prompt("slow"))


def test_codex_not_found(tmp_path: Path) -> None:
    with pytest.raises(CodexNotFoundError):
        CodexRunner(tmp_path / "missing")


def test_sanitize_environment_strips_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONPATH", "value")
    monkeypatch.setenv("GITHUB_TOKEN", "secret")
    env = sanitize_environment({"EXTRA": "1"})

    assert "PYTHONPATH" not in env
    assert "GITHUB_TOKEN" not in env
    assert env["EXTRA"] == "1"


def test_extract_json_prefers_last_value() -> None:
    text = 'Thinking {"draft": true}\nFinal: {"approved": true, "issues": 0}'

    assert extract_json(text) == {"approved": True, "issues": 0}
    assert extract_json('noise ["a", "b"] trailing', expect=list) == ["a", "b"]
    assert extract_json("nothing") is None

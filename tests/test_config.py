from __future__ import annotations

import json
from pathlib import Path

import pytest

from cloud_workers_mcp.config import (
    CloudWorkersSettings,
    ConfigLoadError,
    deep_merge,
    interpolate_env,
    load_config,
)


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> CloudWorkersSettings:
    for name in ("JULES_API_KEY", "GITHUB_TOKEN", "JULES_BASE_URL", "JULES_API_VERSION"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CLOUD_WORKERS_WORKSPACE", str(tmp_path / "project"))
    monkeypatch.setenv("CLOUD_WORKERS_GLOBAL_CONFIG", str(tmp_path / "global.json"))
    (tmp_path / "project").mkdir()
    return CloudWorkersSettings()


def test_defaults_without_files(settings: CloudWorkersSettings) -> None:
    config = load_config(settings=settings)

    assert config.default_provider == "jules"
    assert config.auto_review is True
    assert config.max_review_rounds == 3
    assert config.polling_interval_ms == 30_000
    assert config.providers.jules.api_key == ""


def test_project_overrides_global(tmp_path: Path, settings: CloudWorkersSettings) -> None:
    (tmp_path / "global.json").write_text(
        json.dumps(
            {
                "defaults": {"max_review_rounds": 5, "auto_review": False},
                "providers": {"jules": {"api_key": "global-key"}},
            }
        ),
        encoding="utf-8",
    )
    (tmp_path / "project" / "opencode.json").write_text(
        json.dumps({"cloud_workers": {"max_review_rounds": 2, "polling_interval_ms": 10_000}}),
        encoding="utf-8",
    )

    config = load_config(settings=settings)

    assert config.max_review_rounds == 2
    assert config.auto_review is False
    assert config.polling_interval_ms == 10_000
    assert config.providers.jules.api_key == "global-key"


def test_env_fills_missing_credentials(
    tmp_path: Path, settings: CloudWorkersSettings, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("JULES_API_KEY", "env-key")
    monkeypatch.setenv("GITHUB_TOKEN", "env-token")

    config = load_config(settings=CloudWorkersSettings())

    assert config.providers.jules.api_key == "env-key"
    assert config.providers.github.token == "env-token"


def test_interpolates_env_references(
    tmp_path: Path, settings: CloudWorkersSettings, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("MY_JULES_KEY", "from-env")
    (tmp_path / "project" / "opencode.json").write_text(
        json.dumps({"cloud_workers": {"providers": {"jules": {"api_key": "${MY_JULES_KEY}"}}}}),
        encoding="utf-8",
    )

    config = load_config(settings=settings)

    assert config.providers.jules.api_key == "from-env"


def test_out_of_range_rounds_rejected(tmp_path: Path, settings: CloudWorkersSettings) -> None:
    (tmp_path / "project" / "opencode.json").write_text(
        json.dumps({"cloud_workers": {"max_review_rounds": 11}}), encoding="utf-8"
    )

    with pytest.raises(ConfigLoadError):
        load_config(settings=settings)


def test_fast_polling_rejected(tmp_path: Path, settings: CloudWorkersSettings) -> None:
    (tmp_path / "project" / "opencode.json").write_text(
        json.dumps({"cloud_workers": {"polling_interval_ms": 1000}}), encoding="utf-8"
    )

    with pytest.raises(ConfigLoadError):
        load_config(settings=settings)


def test_malformed_global_file_is_ignored(tmp_path: Path, settings: CloudWorkersSettings) -> None:
    (tmp_path / "global.json").write_text("{ this is : [ not valid", encoding="utf-8")

    config = load_config(settings=settings)

    assert config.max_review_rounds == 3


def test_log_level_is_validated(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLOUD_WORKERS_LOG_LEVEL", "debug")
    assert CloudWorkersSettings().log_level == "DEBUG"

    monkeypatch.setenv("CLOUD_WORKERS_LOG_LEVEL", "chatty")
    with pytest.raises(ValueError):
        CloudWorkersSettings()


def test_helpers() -> None:
    merged = deep_merge({"a": {"b": 1, "c": 2}, "d": 1}, {"a": {"b": 3}, "d": None})
    assert merged == {"a": {"b": 3, "c": 2}, "d": 1}
    assert interpolate_env(["${__CLOUD_WORKERS_UNSET__}x"]) == ["x"]

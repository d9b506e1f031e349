"""Configuration management for Cloud Workers MCP."""

from __future__ import annotations

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_GLOBAL_CONFIG_PATH = Path("~/.config/opencode/cloud-workers.json")
PROJECT_CONFIG_FILENAME = "opencode.json"
PROJECT_CONFIG_SECTION = "cloud_workers"

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


class ConfigLoadError(RuntimeError):
    """Raised when a configuration file violates the configuration schema."""


class CloudWorkersSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    workspace: Path = Field(default=Path("."), validation_alias="CLOUD_WORKERS_WORKSPACE")
    jules_api_key: str = Field(default="", validation_alias="JULES_API_KEY")
    jules_base_url: str = Field(
        default="https://jules.googleapis.com", validation_alias="JULES_BASE_URL"
    )
    jules_api_version: str = Field(default="v1alpha", validation_alias="JULES_API_VERSION")
    github_token: str = Field(default="", validation_alias="GITHUB_TOKEN")
    codex_path: str | None = Field(default=None, validation_alias="CODEX_PATH")
    codex_default_model: str | None = Field(default=None, validation_alias="CODEX_DEFAULT_MODEL")
    codex_timeout_seconds: float = Field(default=300.0, validation_alias="CODEX_TIMEOUT_SECONDS")
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    global_config_path: Path = Field(
        default=DEFAULT_GLOBAL_CONFIG_PATH, validation_alias="CLOUD_WORKERS_GLOBAL_CONFIG"
    )
    log_level: str = Field(default="INFO", validation_alias="CLOUD_WORKERS_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CLOUD_WORKERS_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("codex_timeout_seconds")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("CODEX_TIMEOUT_SECONDS must be > 0")
        return value


class JulesProviderConfig(BaseModel):
    api_key: str = ""
    base_url: str = "https://jules.googleapis.com"
    api_version: str = "v1alpha"


class GitHubProviderConfig(BaseModel):
    token: str = ""


class ProvidersConfig(BaseModel):
    jules: JulesProviderConfig = Field(default_factory=JulesProviderConfig)
    github: GitHubProviderConfig = Field(default_factory=GitHubProviderConfig)


class CloudWorkersConfig(BaseModel):
    """Effective configuration after merging defaults, global and project files."""

    default_provider: str = "jules"
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    auto_review: bool = True
    max_review_rounds: int = Field(default=3, ge=1, le=10)
    polling_interval_ms: int = Field(default=30_000, ge=5_000)


_BEHAVIOUR_KEYS = ("default_provider", "auto_review", "max_review_rounds", "polling_interval_ms")


def interpolate_env(value: Any) -> Any:
    """Replace ``${VAR}`` references with environment values, recursively."""

    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda match: os.environ.get(match.group(1), ""), value)
    if isinstance(value, list):
        return [interpolate_env(item) for item in value]
    if isinstance(value, dict):
        return {key: interpolate_env(item) for key, item in value.items()}
    return value


def deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """Merge ``source`` into a copy of ``target``; nested mappings merge, other values replace."""

    result = dict(target)
    for key, value in source.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value
    return result


def _read_document(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    document = yaml.safe_load(path.read_text(encoding="utf-8"))
    if document is None:
        return None
    if not isinstance(document, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")
    return document


def _overlay(merged: dict[str, Any], layer: dict[str, Any], origin: Path) -> dict[str, Any]:
    overrides = {key: layer[key] for key in _BEHAVIOUR_KEYS if layer.get(key) is not None}
    providers = layer.get("providers")
    if providers is not None and not isinstance(providers, dict):
        raise ConfigLoadError(f"'providers' in {origin} must be a mapping")
    if providers:
        overrides["providers"] = providers
    return deep_merge(merged, interpolate_env(overrides))


def load_config(
    workspace: Path | None = None,
    settings: CloudWorkersSettings | None = None,
) -> CloudWorkersConfig:
    """Load configuration from all sources.

    Precedence, lowest first: built-in defaults, the global file (``defaults``
    and ``providers`` sections), the project ``opencode.json`` (``cloud_workers``
    section), then environment credentials for any key still empty. Both files
    are optional.
    """

    settings = settings or get_settings()
    workspace = Path(workspace or settings.workspace)
    merged: dict[str, Any] = CloudWorkersConfig().model_dump()

    global_path = settings.global_config_path.expanduser()
    try:
        global_doc = _read_document(global_path)
    except (yaml.YAMLError, ValueError, OSError) as exc:
        logger.warning("Failed to parse global config", extra={"path": str(global_path), "error": str(exc)})
        global_doc = None
    if global_doc:
        layer = dict(global_doc.get("defaults") or {})
        if "providers" in global_doc:
            layer["providers"] = global_doc["providers"]
        merged = _overlay(merged, layer, global_path)

    project_path = workspace / PROJECT_CONFIG_FILENAME
    try:
        project_doc = _read_document(project_path)
    except (yaml.YAMLError, ValueError, OSError):
        project_doc = None
    if project_doc and isinstance(project_doc.get(PROJECT_CONFIG_SECTION), dict):
        merged = _overlay(merged, project_doc[PROJECT_CONFIG_SECTION], project_path)

    try:
        config = CloudWorkersConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigLoadError(f"Invalid cloud workers configuration: {exc}") from exc

    jules = config.providers.jules
    if not jules.api_key:
        jules.api_key = settings.jules_api_key
    if jules.base_url == JulesProviderConfig().base_url and settings.jules_base_url:
        jules.base_url = settings.jules_base_url
    if jules.api_version == JulesProviderConfig().api_version and settings.jules_api_version:
        jules.api_version = settings.jules_api_version
    if not config.providers.github.token:
        config.providers.github.token = settings.github_token
    return config


@lru_cache(maxsize=1)
def get_settings() -> CloudWorkersSettings:
    """Return cached settings instance."""

    settings = CloudWorkersSettings()
    settings.workspace = settings.workspace.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    return settings


__all__ = [
    "CloudWorkersConfig",
    "CloudWorkersSettings",
    "ConfigLoadError",
    "deep_merge",
    "get_settings",
    "interpolate_env",
    "load_config",
]

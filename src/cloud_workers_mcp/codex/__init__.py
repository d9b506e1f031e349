"""Codex CLI backend for reviews and outcome extraction."""

from .runner import (
    CodexExecutionResult,
    CodexNotFoundError,
    CodexRunner,
    CodexRunnerError,
    CodexTimeoutError,
)
from .utils import extract_json

__all__ = [
    "CodexExecutionResult",
    "CodexNotFoundError",
    "CodexRunner",
    "CodexRunnerError",
    "CodexTimeoutError",
    "extract_json",
]

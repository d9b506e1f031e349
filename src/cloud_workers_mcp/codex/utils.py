"""Helpers for running Codex and reading its replies."""

from __future__ import annotations

import json
import os
import re
from typing import Any, Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
    "JULES_API_KEY",
    "GITHUB_TOKEN",
}

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the process environment minus interpreter and credential variables."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def extract_json(text: str, *, expect: type = dict) -> Any | None:
    """Return the last JSON value of type ``expect`` found in model output.

    Markdown code fences are ignored. Returns ``None`` when nothing parses.
    """

    cleaned = _FENCE.sub("", text).strip()
    try:
        value = json.loads(cleaned)
    except ValueError:
        value = None
    if isinstance(value, expect):
        return value

    opener = "{" if expect is dict else "["
    decoder = json.JSONDecoder()
    position = cleaned.rfind(opener)
    while position != -1:
        try:
            value, _ = decoder.raw_decode(cleaned, position)
        except ValueError:
            value = None
        if isinstance(value, expect):
            return value
        position = cleaned.rfind(opener, 0, position)
    return None


__all__ = ["extract_json", "sanitize_environment"]

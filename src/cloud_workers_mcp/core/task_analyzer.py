"""Heuristics for spotting tasks worth offloading to a cloud worker."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal

Complexity = Literal["low", "medium", "high"]

SCOPE_KEYWORDS = (
    "all files",
    "entire module",
    "every file",
    "across the codebase",
    "comprehensive",
    "full coverage",
    "project-wide",
    "all services",
    "all components",
    "refactor all",
    "update all",
    "migrate all",
)

COMPLEXITY_KEYWORDS = (
    "refactor",
    "migrate",
    "rewrite",
    "restructure",
    "overhaul",
    "comprehensive tests",
    "integration tests",
    "end-to-end",
    "set up infrastructure",
    "configure ci/cd",
    "database migration",
)

INDEPENDENCE_KEYWORDS = (
    "add tests",
    "write tests",
    "fix linting",
    "format code",
    "update dependencies",
    "add documentation",
    "create api endpoints",
    "implement feature",
)

_FILE_COUNT = re.compile(r"(\d+)\s*(files?|components?|services?|modules?)")


@dataclass(slots=True)
class TaskAnalysis:
    should_offload: bool
    reason: str
    estimated_minutes: int
    complexity: Complexity
    signals: list[str] = field(default_factory=list)


def analyze_task(prompt: str) -> TaskAnalysis:
    lowered = prompt.lower()
    signals: list[str] = []
    score = 0.0

    for keyword in SCOPE_KEYWORDS:
        if keyword in lowered:
            signals.append(f'scope: "{keyword}"')
            score += 3
    for keyword in COMPLEXITY_KEYWORDS:
        if keyword in lowered:
            signals.append(f'complexity: "{keyword}"')
            score += 2

    independent = False
    for keyword in INDEPENDENCE_KEYWORDS:
        if keyword in lowered:
            independent = True
            signals.append(f'independent: "{keyword}"')
            break

    match = _FILE_COUNT.search(lowered)
    if match:
        count = int(match.group(1))
        if count >= 5:
            signals.append(f"file-count: {count}")
            score += min(count / 2, 5)

    complexity: Complexity
    if score >= 8:
        complexity, minutes = "high", 60
    elif score >= 4:
        complexity, minutes = "medium", 30
    else:
        complexity, minutes = "low", 10

    should_offload = complexity == "high" or (
        complexity == "medium" and (independent or len(signals) >= 2)
    )

    if should_offload:
        detail = f" ({', '.join(signals[:2])})" if signals else ""
        reason = (
            f"This appears to be a {complexity}-complexity task{detail}. "
            f"Estimated {minutes}+ minutes."
        )
    else:
        reason = "Task appears manageable locally."

    return TaskAnalysis(
        should_offload=should_offload,
        reason=reason,
        estimated_minutes=minutes,
        complexity=complexity,
        signals=signals,
    )


def suggestion_message(prompt: str) -> str | None:
    """Return an offload suggestion for the prompt, or ``None`` if it is small."""

    analysis = analyze_task(prompt)
    if not analysis.should_offload:
        return None
    return (
        "This looks like a good candidate for cloud offloading:\n\n"
        f"- Complexity: {analysis.complexity.upper()}\n"
        f"- Estimated time: {analysis.estimated_minutes}+ minutes\n"
        f"- Signals: {', '.join(analysis.signals[:3])}\n\n"
        "Would you like to offload this to a cloud worker?"
    )


__all__ = ["TaskAnalysis", "analyze_task", "suggestion_message"]

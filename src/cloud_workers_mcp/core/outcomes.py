"""Extract verifiable expected outcomes from a task prompt."""

from __future__ import annotations

import logging
import textwrap

from ..codex import CodexRunner, CodexRunnerError, extract_json

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = textwrap.dedent(
    """\
    Analyze this task and extract 3-5 specific, verifiable outcomes that can be checked in a code review.

    TASK:
    "{prompt}"

    Return ONLY a JSON array of strings. Each outcome should be:
    - Specific and measurable
    - Checkable by reviewing code/diff
    - Written in past tense (e.g., "Tests added for X")

    Example output:
    ["Tests added for all service methods", "Error handling implemented", "Coverage above 80%"]

    Return ONLY the JSON array, no markdown, no explanation.
    """
)

_KEYWORD_OUTCOMES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("test",), "Tests implemented and passing"),
    (("refactor",), "Code refactored without breaking changes"),
    (("fix", "bug"), "Bug fixed and verified"),
    (("add", "implement"), "Feature implemented as requested"),
    (("update", "change"), "Changes applied correctly"),
)


def fallback_outcomes(prompt: str) -> list[str]:
    """Keyword-based outcomes used when the model is unavailable."""

    lowered = prompt.lower()
    outcomes = [
        outcome
        for keywords, outcome in _KEYWORD_OUTCOMES
        if any(keyword in lowered for keyword in keywords)
    ]
    if not outcomes:
        outcomes.append("Task completed as described")
    outcomes.append("No breaking changes introduced")
    return outcomes


class OutcomeExtractor:
    """Ask Codex for expected outcomes, falling back to keyword rules."""

    def __init__(self, runner: CodexRunner | None) -> None:
        self._runner = runner

    async def extract(self, prompt: str) -> list[str]:
        if self._runner is None:
            return fallback_outcomes(prompt)

        try:
            result = await self._runner.run_prompt(EXTRACTION_PROMPT.format(prompt=prompt))
        except CodexRunnerError as exc:
            logger.warning("Outcome extraction failed, using fallback", extra={"error": str(exc)})
            return fallback_outcomes(prompt)

        if not result.ok:
            logger.warning(
                "Outcome extraction exited non-zero, using fallback",
                extra={"returncode": result.returncode},
            )
            return fallback_outcomes(prompt)

        outcomes = extract_json(result.stdout, expect=list)
        if not outcomes:
            logger.warning("Outcome extraction returned no JSON array, using fallback")
            return fallback_outcomes(prompt)
        return [str(outcome) for outcome in outcomes]


__all__ = ["EXTRACTION_PROMPT", "OutcomeExtractor", "fallback_outcomes"]

from __future__ import annotations

import asyncio

from cloud_workers_mcp.codex import CodexExecutionResult, CodexTimeoutError
from cloud_workers_mcp.core.outcomes import OutcomeExtractor, fallback_outcomes


class StubRunner:
    def __init__(self, stdout: str = "", returncode: int = 0, error: Exception | None = None) -> None:
        self.stdout = stdout
        self.returncode = returncode
        self.error = error
        self.prompts: list[str] = []

    async def run_prompt(self, prompt: str, **_) -> CodexExecutionResult:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return CodexExecutionResult(
            args=("codex", "exec"), returncode=self.returncode, stdout=self.stdout, stderr=""
        )


def test_fallback_outcomes_from_keywords() -> None:
    outcomes = fallback_outcomes("Fix the login bug and add tests")

    assert outcomes == [
        "Tests implemented and passing",
        "Bug fixed and verified",
        "Feature implemented as requested",
        "No breaking changes introduced",
    ]


def test_fallback_outcomes_default() -> None:
    assert fallback_outcomes("Tidy the README") == [
        "Task completed as described",
        "No breaking changes introduced",
    ]


def test_extractor_parses_json_array() -> None:
    runner = StubRunner('```json\n["Tests added for parser", "Errors logged"]\n```')

    outcomes = asyncio.run(OutcomeExtractor(runner).extract("Add parser tests"))

    assert outcomes == ["Tests added for parser", "Errors logged"]
    assert '"Add parser tests"' in runner.prompts[0]


def test_extractor_falls_back_on_failure() -> None:
    prompt = "Refactor the billing module"
    expected = fallback_outcomes(prompt)

    assert asyncio.run(OutcomeExtractor(None).extract(prompt)) == expected
    assert asyncio.run(OutcomeExtractor(StubRunner("no json here")).extract(prompt)) == expected
    assert asyncio.run(OutcomeExtractor(StubRunner("[]", returncode=2)).extract(prompt)) == expected
    assert (
        asyncio.run(OutcomeExtractor(StubRunner(error=CodexTimeoutError("slow"))).extract(prompt))
        == expected
    )

"""Async runner for one-shot Codex CLI prompts."""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .utils import sanitize_environment


class CodexRunnerError(RuntimeError):
    """Base class for Codex runner errors."""


class CodexNotFoundError(CodexRunnerError):
    """Raised when the Codex CLI executable cannot be located."""


class CodexTimeoutError(CodexRunnerError):
    """Raised when a Codex invocation exceeds its time budget."""


@dataclass(slots=True)
class CodexExecutionResult:
    """Holds the outcome of a Codex CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CodexRunner:
    """Execute non-interactive Codex prompts (``codex exec``) asynchronously."""

    def __init__(
        self,
        executable: Path | None = None,
        *,
        default_model: str | None = None,
        timeout: float = 300.0,
        workdir: Path | None = None,
    ) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._default_model = default_model
        self._timeout = timeout
        self._workdir = workdir

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise CodexNotFoundError(f"Codex executable not found at {candidate}")

        binary = shutil.which("codex")
        if binary is None:
            raise CodexNotFoundError("Codex CLI executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> CodexExecutionResult:
        return await self._invoke("--version")

    async def run_prompt(
        self,
        prompt: str,
        *,
        model: str | None = None,
        flags: Sequence[str] | None = None,
    ) -> CodexExecutionResult:
        """Run a single prompt read-only and return the CLI output."""

        args: list[str] = ["exec", "--skip-git-repo-check", "--sandbox", "read-only"]
        chosen_model = model or self._default_model
        if chosen_model:
            args.extend(["--model", chosen_model])
        args.extend(flags or [])
        args.append(prompt)
        return await self._invoke(*args)

    async def _invoke(self, *args: str) -> CodexExecutionResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
            cwd=str(self._workdir) if self._workdir else None,
        )
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise CodexTimeoutError(
                f"Codex did not finish within {self._timeout:.0f}s"
            ) from exc
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return CodexExecutionResult(
            args=tuple(cmd), returncode=process.returncode or 0, stdout=stdout, stderr=stderr
        )


__all__ = [
    "CodexExecutionResult",
    "CodexNotFoundError",
    "CodexRunner",
    "CodexRunnerError",
    "CodexTimeoutError",
]

"""Generate, execute, diagnose, regenerate."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Literal

from loguru import logger

from testsmith.errors import ArtifactFailure
from testsmith.protocol.envelope import STATUS_NOTICE, response_envelope, tool_call_envelope
from testsmith.protocol.framing import Emit
from testsmith.tools.testgen.diagnosis import RunOutcome, classify_failure, failure_summary, is_passing
from testsmith.tools.testgen.runner import GoTestRunner
from testsmith.tools.testgen.writer import Draft, GenerationRequest, TestWriter

DEFAULT_MAX_ATTEMPTS = 3
NOTICE_ERROR_MAX_LEN = 500


@dataclass(frozen=True)
class RetryAttempt:
    attempt_number: int
    artifact: str
    outcome: Literal["pass", "fail"]
    prior_error_summary: str | None = None
    error: str | None = None
    output: str = ""


@dataclass(frozen=True)
class LoopResult:
    success: bool
    attempts: list[RetryAttempt] = field(default_factory=list)
    final_error: str | None = None
    output: str = ""

    @property
    def attempt_number(self) -> int:
        return len(self.attempts)

    @property
    def artifact(self) -> str:
        return self.attempts[-1].artifact if self.attempts else ""

    def to_payload(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "attemptNumber": self.attempt_number, "output": self.output}
        return {
            "success": False,
            "attempts": self.attempt_number,
            "finalError": self.final_error or "unknown error",
            "output": self.output,
        }


def _clip(text: str, limit: int = NOTICE_ERROR_MAX_LEN) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class GenerateVerifyRetryLoop:
    """Draft a test file, run it, and regenerate with diagnostics until it passes or attempts run out."""

    def __init__(
        self,
        *,
        writer: TestWriter,
        runner: GoTestRunner,
        emit: Emit,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._writer = writer
        self._runner = runner
        self._emit = emit
        self._max_attempts = max_attempts

    def _notice(self, message: str) -> None:
        self._emit(response_envelope(status=STATUS_NOTICE, message=message))

    async def run(self, request: GenerationRequest, test_path: Path) -> LoopResult:
        attempts: list[RetryAttempt] = []
        prior_error: str | None = None
        last_error = "unknown error"
        last_output = ""

        for attempt_number in range(1, self._max_attempts + 1):
            draft = await self._writer.draft(replace(request, prior_error=prior_error, attempt_number=attempt_number))
            self._persist(test_path, draft.artifact)
            logger.info("testgen.attempt.written attempt={} path={} fallback={}", attempt_number, test_path, draft.fallback)

            if draft.fallback:
                last_error = f"test generation failed: {draft.error}"
                last_output = ""
                attempts.append(self._failed(attempt_number, draft, prior_error, last_error, last_output))
            else:
                try:
                    output = await self._verify(test_path)
                except ArtifactFailure as exc:
                    last_error = str(exc)
                    last_output = exc.output
                    attempts.append(self._failed(attempt_number, draft, prior_error, last_error, last_output))
                else:
                    attempts.append(
                        RetryAttempt(
                            attempt_number=attempt_number,
                            artifact=draft.artifact,
                            outcome="pass",
                            prior_error_summary=prior_error,
                            output=output,
                        )
                    )
                    self._notice(f"Tests passed on attempt {attempt_number}")
                    logger.info("testgen.attempt.passed attempt={}", attempt_number)
                    return LoopResult(success=True, attempts=attempts, output=output)

            category = classify_failure(last_error)
            logger.warning("testgen.attempt.failed attempt={} category={}", attempt_number, category)
            self._notice(f"Test attempt {attempt_number} failed: {_clip(last_error)}")
            prior_error = last_error
            if attempt_number < self._max_attempts:
                self._notice(f"Regenerating tests (attempt {attempt_number + 1}/{self._max_attempts})...")

        self._notice(f"All {self._max_attempts} test attempts failed")
        return LoopResult(success=False, attempts=attempts, final_error=last_error, output=last_output)

    @staticmethod
    def _persist(test_path: Path, artifact: str) -> None:
        try:
            test_path.write_text(artifact, encoding="utf-8")
        except OSError as exc:
            raise ArtifactFailure(f"cannot write test file {test_path}: {exc}") from exc

    async def _verify(self, test_path: Path) -> str:
        outcome = await self._execute(test_path)
        if not is_passing(outcome):
            raise ArtifactFailure(failure_summary(outcome), output=outcome.stdout)
        return outcome.stdout

    async def _execute(self, test_path: Path) -> RunOutcome:
        command = " ".join(self._runner.command_for(test_path))
        self._emit(
            tool_call_envelope("run_command", {"command": command, "timeout_seconds": self._runner.timeout_seconds})
        )
        return await self._runner.run(test_path)

    @staticmethod
    def _failed(
        attempt_number: int, draft: Draft, prior_error: str | None, error: str, output: str
    ) -> RetryAttempt:
        return RetryAttempt(
            attempt_number=attempt_number,
            artifact=draft.artifact,
            outcome="fail",
            prior_error_summary=prior_error,
            error=error,
            output=output,
        )

"""Run ``go test`` for a generated test file."""

from __future__ import annotations

import asyncio
from pathlib import Path

from loguru import logger

from testsmith.config import Settings
from testsmith.tools.testgen.diagnosis import RunOutcome

STREAM_LIMIT_BYTES = 16 * 1024 * 1024


class GoTestRunner:
    """Execute the package containing a test file with a bounded timeout."""

    def __init__(self, work_dir: Path, *, go_binary: str = "go", timeout_seconds: int = 30) -> None:
        self._work_dir = work_dir
        self._go_binary = go_binary
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings, work_dir: Path | None = None) -> GoTestRunner:
        return cls(
            work_dir or settings.resolved_work_dir,
            go_binary=settings.go_binary,
            timeout_seconds=settings.command_timeout_seconds,
        )

    @property
    def timeout_seconds(self) -> int:
        return self._timeout_seconds

    def package_target(self, test_path: Path) -> str:
        try:
            relative = test_path.parent.resolve().relative_to(self._work_dir.resolve())
        except ValueError:
            return str(test_path.parent)
        return "./" + relative.as_posix() if relative.parts else "."

    def command_for(self, test_path: Path) -> list[str]:
        return [self._go_binary, "test", "-v", self.package_target(test_path)]

    async def run(self, test_path: Path) -> RunOutcome:
        argv = self.command_for(test_path)
        command = " ".join(argv)
        logger.info("go.test.start command={} cwd={}", command, self._work_dir)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self._work_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT_BYTES,
            )
        except OSError as exc:
            logger.warning("go.test.spawn_failed command={} error={}", command, exc)
            return RunOutcome(command=command, returncode=127, stdout="", stderr=str(exc))

        try:
            async with asyncio.timeout(self._timeout_seconds):
                stdout_bytes, stderr_bytes = await process.communicate()
        except TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("go.test.timeout command={} after={}s", command, self._timeout_seconds)
            return RunOutcome(command=command, returncode=-1, stdout="", stderr="", timed_out=True)

        outcome = RunOutcome(
            command=command,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=(stdout_bytes or b"").decode("utf-8", errors="replace"),
            stderr=(stderr_bytes or b"").decode("utf-8", errors="replace"),
        )
        logger.info("go.test.end command={} exit={}", command, outcome.returncode)
        return outcome

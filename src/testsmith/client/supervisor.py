"""Spawn the worker process and speak the envelope protocol over its pipes."""

from __future__ import annotations

import asyncio
import os
import shutil
from collections.abc import AsyncIterator
from pathlib import Path
from types import TracebackType
from typing import IO, Self

from loguru import logger

from testsmith.config import Settings
from testsmith.errors import SpawnError, StreamError
from testsmith.protocol.envelope import Envelope, encode, init_envelope
from testsmith.protocol.framing import read_envelope

STREAM_LIMIT_BYTES = 16 * 1024 * 1024
WORKER_ERROR_LOG = "worker-error.log"


class WorkerSupervisor:
    """Own exactly one worker process for the lifetime of a session."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_file: IO[bytes] | None = None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def _resolve_argv(self) -> list[str]:
        argv = self._settings.worker_argv()
        if not argv:
            raise SpawnError("worker command is empty")
        executable = argv[0]
        resolved = shutil.which(executable)
        if resolved is None and not Path(executable).is_file():
            raise SpawnError(f"worker entry point not found: {executable}")
        return argv

    def _open_stderr_log(self) -> IO[bytes] | int:
        home = self._settings.resolve_home()
        try:
            home.mkdir(parents=True, exist_ok=True)
            return (home / WORKER_ERROR_LOG).open("ab")
        except OSError as exc:
            logger.warning("supervisor.stderr_log.unavailable error={}", exc)
            return asyncio.subprocess.DEVNULL

    async def start(self, api_key: str) -> None:
        """Spawn the worker and send the ``init`` handshake."""
        if self._process is not None:
            raise SpawnError("worker already started")
        worker_dir = self._settings.resolved_worker_dir
        if not worker_dir.is_dir():
            raise SpawnError(f"worker directory not found: {worker_dir}")
        argv = self._resolve_argv()

        env = dict(os.environ)
        env["TESTSMITH_WORK_DIR"] = str(self._settings.resolved_work_dir)
        stderr = self._open_stderr_log()
        if not isinstance(stderr, int):
            self._stderr_file = stderr

        try:
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(worker_dir),
                env=env,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=stderr,
                limit=STREAM_LIMIT_BYTES,
            )
        except OSError as exc:
            self._close_stderr_log()
            raise SpawnError(f"failed to start worker: {exc}") from exc

        logger.info("supervisor.started pid={} argv={}", self._process.pid, argv)
        await self.send(init_envelope(api_key))

    async def send(self, envelope: Envelope) -> None:
        """Write one envelope; no acknowledgement is awaited."""
        process = self._process
        if process is None or process.stdin is None:
            raise StreamError("worker is not running")
        try:
            process.stdin.write((encode(envelope) + "\n").encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise StreamError(f"worker input closed: {exc}") from exc
        logger.debug("supervisor.sent type={}", envelope.type)

    async def next_envelope(self) -> Envelope:
        """Read exactly one well-formed envelope from the worker."""
        process = self._process
        if process is None or process.stdout is None:
            raise StreamError("worker is not running")
        try:
            envelope = await read_envelope(process.stdout)
        except (OSError, ValueError) as exc:
            raise StreamError(f"worker stream error: {exc}") from exc
        if envelope is None:
            raise StreamError("worker stream closed unexpectedly")
        return envelope

    async def envelopes(self) -> AsyncIterator[Envelope]:
        while True:
            yield await self.next_envelope()

    async def kill(self) -> None:
        """Terminate the worker immediately, without draining."""
        process = self._process
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            logger.info("supervisor.killed pid={} returncode={}", process.pid, process.returncode)
        self._close_stderr_log()

    def _close_stderr_log(self) -> None:
        if self._stderr_file is not None:
            self._stderr_file.close()
            self._stderr_file = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.kill()

"""Runtime logging helpers."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Literal

from loguru import logger

LogProfile = Literal["client", "worker"]

_PROFILE_FORMATS: dict[LogProfile, str] = {
    "client": "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {message}",
    "worker": "{time:HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {message}",
}
_CONFIGURED_PROFILE: LogProfile | None = None


def configure_logging(*, profile: LogProfile, level: str | None = None, log_file: Path | None = None) -> None:
    """Configure process-level logging once.

    The worker logs to stderr only: its stdout carries the envelope protocol.
    The client logs to ``log_file`` and falls back to stderr when the file
    cannot be opened.
    """

    global _CONFIGURED_PROFILE
    if profile == _CONFIGURED_PROFILE:
        return

    resolved_level = (level or os.getenv("TESTSMITH_LOG_LEVEL", "INFO")).upper()
    logger.remove()
    sink: object = sys.stderr
    if profile == "client" and log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_file.touch(exist_ok=True)
        except OSError:
            sink = sys.stderr
        else:
            sink = log_file
    logger.add(
        sink,
        level=resolved_level,
        format=_PROFILE_FORMATS[profile],
        backtrace=False,
        diagnose=False,
    )
    _CONFIGURED_PROFILE = profile

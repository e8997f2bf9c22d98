"""Republic integration helpers."""

from __future__ import annotations

import asyncio
from pathlib import Path

from loguru import logger
from republic import LLM
from republic.tape import InMemoryTapeStore

from testsmith.config import Settings
from testsmith.errors import ServiceError

AGENTS_FILE = "AGENTS.md"
MAX_AGENTS_PROMPT_CHARS = 12_000


def build_llm(settings: Settings, *, api_key: str | None = None) -> LLM:
    """Build Republic LLM client for one worker session."""

    return LLM(
        settings.model,
        api_key=api_key or settings.require_api_key(),
        api_base=settings.api_base,
        tape_store=InMemoryTapeStore(),
    )


class RepublicTextBackend:
    """Single-shot text completion used by the test writer."""

    def __init__(self, llm: LLM, *, max_tokens: int, timeout_seconds: int | None) -> None:
        self._llm = llm
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds

    async def complete(self, *, system_prompt: str, prompt: str) -> str:
        try:
            async with asyncio.timeout(self._timeout_seconds):
                output = await self._llm.chat_async(
                    prompt=prompt,
                    system_prompt=system_prompt,
                    max_tokens=self._max_tokens,
                )
        except TimeoutError as exc:
            raise ServiceError(f"model_timeout: no response within {self._timeout_seconds}s") from exc
        except Exception as exc:
            logger.warning("model.complete.error error={}", exc)
            raise ServiceError(f"model_call_error: {exc!s}") from exc
        return str(output or "")


def read_workspace_agents_prompt(workspace: Path) -> str:
    """Read workspace AGENTS.md if present."""

    prompt_file = workspace / AGENTS_FILE
    if not prompt_file.is_file():
        return ""
    try:
        content = prompt_file.read_text(encoding="utf-8").strip()
    except OSError:
        return ""

    if len(content) <= MAX_AGENTS_PROMPT_CHARS:
        return content

    marker = "\n\n[AGENTS.md truncated: middle content removed]\n\n"
    head_len = (MAX_AGENTS_PROMPT_CHARS - len(marker)) // 2
    tail_len = MAX_AGENTS_PROMPT_CHARS - len(marker) - head_len
    return f"{content[:head_len]}{marker}{content[-tail_len:]}"

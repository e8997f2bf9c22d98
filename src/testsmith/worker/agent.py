"""Model-driven chat turns over a republic tape."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from loguru import logger
from republic import Tool, ToolAutoResult

from testsmith.integrations.republic_client import read_workspace_agents_prompt

CONTINUE_PROMPT = "Continue the task."
SESSION_TAPE = "testsmith:session"
DEFAULT_SYSTEM_PROMPT = (
    "You are testsmith, a coding assistant for Go projects. Use tools for file reads and edits, "
    "shell commands, web lookups and unit-test generation. Return concise natural language when done."
)


class _TapeRunner(Protocol):
    async def run_tools_async(self, **kwargs: object) -> ToolAutoResult: ...


@dataclass(frozen=True)
class _ToolAutoOutcome:
    kind: str
    text: str = ""
    error: str = ""


def resolve_tool_auto_result(output: ToolAutoResult) -> _ToolAutoOutcome:
    if output.kind == "text":
        return _ToolAutoOutcome(kind="text", text=output.text or "")
    if output.kind == "tools" or output.tool_calls or output.tool_results:
        return _ToolAutoOutcome(kind="continue")
    if output.error is None:
        return _ToolAutoOutcome(kind="error", error="tool_auto_error: unknown")
    error_kind = getattr(output.error.kind, "value", str(output.error.kind))
    return _ToolAutoOutcome(kind="error", error=f"{error_kind}: {output.error.message}")


@dataclass(frozen=True)
class TurnResult:
    text: str
    steps: int
    error: str | None = None


class ChatAgent:
    """Drive the model through tool rounds until it answers in text."""

    def __init__(
        self,
        *,
        tape: _TapeRunner,
        tools: list[Tool],
        workspace: Path,
        max_steps: int,
        max_tokens: int,
        timeout_seconds: int | None,
    ) -> None:
        self._tape = tape
        self._tools = tools
        self._workspace = workspace
        self._max_steps = max_steps
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds

    def _system_prompt(self) -> str:
        workspace_prompt = read_workspace_agents_prompt(self._workspace)
        parts = [DEFAULT_SYSTEM_PROMPT, f"Working directory: {self._workspace}"]
        if workspace_prompt:
            parts.append(workspace_prompt)
        return "\n\n".join(parts)

    async def run(self, prompt: str) -> TurnResult:
        next_prompt = prompt
        for step in range(1, self._max_steps + 1):
            start = time.monotonic()
            logger.info("agent.step.start step={}", step)
            try:
                output = await self._run_tools_once(next_prompt)
            except TimeoutError:
                return TurnResult(text="", steps=step, error=f"model_timeout: no response within {self._timeout_seconds}s")

            outcome = resolve_tool_auto_result(output)
            logger.info(
                "agent.step.end step={} kind={} elapsed_ms={}", step, outcome.kind, int((time.monotonic() - start) * 1000)
            )
            if outcome.kind == "text":
                return TurnResult(text=outcome.text, steps=step)
            if outcome.kind == "continue":
                next_prompt = CONTINUE_PROMPT
                continue
            return TurnResult(text="", steps=step, error=outcome.error)

        return TurnResult(text="", steps=self._max_steps, error=f"max_steps_reached={self._max_steps}")

    async def _run_tools_once(self, prompt: str) -> ToolAutoResult:
        async with asyncio.timeout(self._timeout_seconds):
            return await self._tape.run_tools_async(
                prompt=prompt,
                system_prompt=self._system_prompt(),
                max_tokens=self._max_tokens,
                tools=self._tools,
            )

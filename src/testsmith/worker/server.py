"""Worker request loop: one envelope at a time, in arrival order."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import AsyncIterator, Callable
from typing import Protocol, TextIO

from loguru import logger

from testsmith.config import Settings, load_settings
from testsmith.errors import TestsmithError
from testsmith.integrations.republic_client import RepublicTextBackend, build_llm
from testsmith.logging_utils import configure_logging
from testsmith.protocol.envelope import (
    STATUS_INITIALIZED,
    STATUS_THINKING,
    ChatPayload,
    Envelope,
    InitPayload,
    MessageType,
    error_envelope,
    payload_of,
    response_envelope,
    stream_chunk_envelope,
)
from testsmith.protocol.framing import Emit, Outbox, iter_envelopes
from testsmith.tools.builtin import register_builtin_tools
from testsmith.tools.registry import ToolRegistry
from testsmith.tools.testgen.tool import register_test_generation_tool
from testsmith.worker.agent import SESSION_TAPE, ChatAgent, TurnResult


class Agent(Protocol):
    async def run(self, prompt: str) -> TurnResult: ...


AgentFactory = Callable[[Settings, str, Emit], Agent]


def build_chat_agent(settings: Settings, api_key: str, emit: Emit) -> ChatAgent:
    """Wire the LLM, the tool registry and every tool for one session."""
    workspace = settings.resolved_work_dir
    llm = build_llm(settings, api_key=api_key)
    registry = ToolRegistry(emit)
    register_builtin_tools(registry, workspace=workspace, settings=settings)
    register_test_generation_tool(
        registry,
        workspace=workspace,
        settings=settings,
        emit=emit,
        backend_factory=lambda: RepublicTextBackend(
            llm, max_tokens=settings.max_tokens, timeout_seconds=settings.model_timeout_seconds
        ),
    )
    logger.info("worker.tools.ready tools={}", ",".join(d.name for d in registry.descriptors()))
    return ChatAgent(
        tape=llm.tape(SESSION_TAPE),
        tools=registry.model_tools(),
        workspace=workspace,
        max_steps=settings.max_steps,
        max_tokens=settings.max_tokens,
        timeout_seconds=settings.model_timeout_seconds,
    )


class WorkerServer:
    """Fold incoming envelopes into agent turns and write results back."""

    def __init__(self, settings: Settings, emit: Emit, agent_factory: AgentFactory = build_chat_agent) -> None:
        self._settings = settings
        self._emit = emit
        self._agent_factory = agent_factory
        self._agent: Agent | None = None

    @property
    def initialized(self) -> bool:
        return self._agent is not None

    async def serve(self, envelopes: AsyncIterator[Envelope]) -> None:
        async for envelope in envelopes:
            await self.handle(envelope)
        logger.info("worker.stdin.closed")

    async def handle(self, envelope: Envelope) -> None:
        try:
            if envelope.type is MessageType.INIT:
                self._handle_init(envelope)
            elif envelope.type is MessageType.CHAT:
                await self._handle_chat(envelope)
            else:
                logger.debug("worker.skip type={}", envelope.type)
        except Exception as exc:
            logger.exception("worker.handle.error type={}", envelope.type)
            self._emit(error_envelope("Worker failed to handle request", details=f"{type(exc).__name__}: {exc}"))

    def _handle_init(self, envelope: Envelope) -> None:
        payload = payload_of(envelope, InitPayload)
        if payload is None or not payload.api_key.strip():
            self._emit(error_envelope("Initialization failed", details="missing apiKey"))
            return
        try:
            self._agent = self._agent_factory(self._settings, payload.api_key.strip(), self._emit)
        except TestsmithError as exc:
            logger.warning("worker.init.failed error={}", exc)
            self._emit(error_envelope("Initialization failed", details=str(exc)))
            return
        logger.info("worker.init.ok model={}", self._settings.model)
        self._emit(response_envelope(status=STATUS_INITIALIZED, message="Agent initialized"))

    async def _handle_chat(self, envelope: Envelope) -> None:
        if self._agent is None:
            self._emit(error_envelope("Agent not initialized"))
            return
        payload = payload_of(envelope, ChatPayload)
        if payload is None or not payload.message.strip():
            self._emit(error_envelope("Invalid chat message", details="message must be a non-empty string"))
            return

        self._emit(stream_chunk_envelope(status=STATUS_THINKING))
        result = await self._agent.run(payload.message)
        if result.error:
            logger.warning("worker.chat.failed steps={} error={}", result.steps, result.error)
            self._emit(error_envelope("Chat request failed", details=result.error))
            return
        text = result.text.strip() or "(no response)"
        self._emit(stream_chunk_envelope(content=text))
        self._emit(response_envelope(content=text))


async def _stdin_envelopes(stream: TextIO) -> AsyncIterator[Envelope]:
    while True:
        line = await asyncio.to_thread(stream.readline)
        if not line:
            return
        for envelope in iter_envelopes([line]):
            yield envelope


async def serve_stdio(settings: Settings, agent_factory: AgentFactory = build_chat_agent) -> None:
    server = WorkerServer(settings, Outbox(sys.stdout), agent_factory)
    await server.serve(_stdin_envelopes(sys.stdin))


def main() -> None:
    settings = load_settings()
    configure_logging(profile="worker", level=settings.log_level)
    logger.info("worker.start work_dir={}", settings.resolved_work_dir)
    try:
        asyncio.run(serve_stdio(settings))
    except KeyboardInterrupt:
        pass

"""Interactive session: one dispatch loop over worker and keyboard events."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Literal

from loguru import logger

from testsmith.cli.render import Renderer
from testsmith.client.conversation import Conversation
from testsmith.client.supervisor import WorkerSupervisor
from testsmith.errors import StreamError
from testsmith.protocol.envelope import Envelope

QUEUE_SIZE = 64
QUIT_COMMANDS = frozenset({"/quit", "/exit", ",quit"})


@dataclass(frozen=True)
class _Event:
    kind: Literal["envelope", "input", "quit", "stream_error"]
    envelope: Envelope | None = None
    text: str = ""


class ChatController:
    """Feed worker envelopes and user lines through a single queue, strictly in order."""

    def __init__(self, supervisor: WorkerSupervisor, renderer: Renderer, conversation: Conversation | None = None) -> None:
        self._supervisor = supervisor
        self._renderer = renderer
        self._conversation = conversation or Conversation()
        self._queue: asyncio.Queue[_Event] = asyncio.Queue(maxsize=QUEUE_SIZE)

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    async def run(self, api_key: str) -> int:
        """Start the worker and run until the user quits (0) or the worker stream ends (1)."""
        self._conversation.begin_handshake()
        self._renderer.flush(self._conversation)
        tasks: list[asyncio.Task[None]] = []
        try:
            await self._supervisor.start(api_key)
            tasks.append(asyncio.create_task(self._read_worker(), name="testsmith.reader"))
            tasks.append(asyncio.create_task(self._read_input(), name="testsmith.input"))
            return await self._dispatch()
        finally:
            for task in tasks:
                task.cancel()
            for task in tasks:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            await self._supervisor.kill()

    async def _dispatch(self) -> int:
        while True:
            event = await self._queue.get()
            if event.kind == "envelope" and event.envelope is not None:
                self._conversation.fold(event.envelope)
            elif event.kind == "input":
                if event.text.strip() in QUIT_COMMANDS:
                    self._renderer.info("Goodbye!")
                    return 0
                await self._submit(event.text)
            elif event.kind == "quit":
                self._renderer.info("Goodbye!")
                return 0
            elif event.kind == "stream_error":
                self._conversation.fail(event.text)
                self._renderer.flush(self._conversation)
                return 1
            self._renderer.flush(self._conversation)

    async def _submit(self, text: str) -> None:
        if not text.strip():
            return
        envelope = self._conversation.submit_chat(text)
        if envelope is None:
            self._renderer.info("Still working on the previous request; please wait.")
            return
        try:
            await self._supervisor.send(envelope)
        except StreamError as exc:
            await self._queue.put(_Event(kind="stream_error", text=str(exc)))

    async def _read_worker(self) -> None:
        try:
            async for envelope in self._supervisor.envelopes():
                await self._queue.put(_Event(kind="envelope", envelope=envelope))
        except StreamError as exc:
            logger.warning("controller.stream.closed error={}", exc)
            await self._queue.put(_Event(kind="stream_error", text=str(exc)))
        except Exception as exc:
            logger.exception("controller.reader.failed")
            await self._queue.put(_Event(kind="stream_error", text=f"worker reader failed: {exc}"))

    async def _read_input(self) -> None:
        while True:
            try:
                line = await self._renderer.read_line()
            except (KeyboardInterrupt, EOFError):
                await self._queue.put(_Event(kind="quit"))
                return
            await self._queue.put(_Event(kind="input", text=line))

"""Client-side conversation state machine.

Folds worker envelopes, one at a time, into an ordered transcript and an
``is_processing`` flag. Nothing here performs I/O: callers send the
envelopes it hands back and render the transcript it keeps.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum

from loguru import logger

from testsmith.client.summary import summarize_tool_call
from testsmith.protocol.envelope import (
    STATUS_INITIALIZED,
    STATUS_NOTICE,
    STATUS_THINKING,
    STATUS_TOOL_ERROR,
    Envelope,
    ErrorPayload,
    MessageType,
    ResponsePayload,
    StreamChunkPayload,
    ToolCallPayload,
    chat_envelope,
    payload_of,
)
from testsmith.tools.catalog import ToolCatalog, build_tool_catalog


class Phase(StrEnum):
    AWAITING_CREDENTIAL = "awaiting_credential"
    ACTIVE = "active"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


@dataclass(frozen=True)
class TranscriptEntry:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    is_error: bool = False


class Conversation:
    """Transcript plus the single-flight processing flag."""

    def __init__(self, catalog: ToolCatalog | None = None) -> None:
        self._catalog = catalog or build_tool_catalog()
        self._entries: list[TranscriptEntry] = []
        self._phase = Phase.AWAITING_CREDENTIAL
        self._processing = False

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def transcript(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    def _append(self, role: Role, content: str, *, is_error: bool = False) -> None:
        self._entries.append(TranscriptEntry(role=role, content=content, is_error=is_error))

    def begin_handshake(self) -> None:
        self._processing = True
        self._append(Role.SYSTEM, "Starting worker...")

    def submit_chat(self, text: str) -> Envelope | None:
        """Record a user message and return the envelope to send, or ``None`` when refused."""
        message = text.strip()
        if not message or self._phase is not Phase.ACTIVE or self._processing:
            logger.debug("conversation.chat.refused phase={} processing={}", self._phase, self._processing)
            return None
        self._append(Role.USER, message)
        self._processing = True
        return chat_envelope(message)

    def fail(self, reason: str) -> None:
        self._append(Role.SYSTEM, reason, is_error=True)
        self._processing = False

    def upsert_last_assistant(self, content: str) -> None:
        if self._entries and self._entries[-1].role is Role.ASSISTANT:
            self._entries[-1] = replace(self._entries[-1], content=content, timestamp=datetime.now(UTC))
            return
        self._append(Role.ASSISTANT, content)

    def fold(self, envelope: Envelope) -> None:
        """Apply one worker envelope to the transcript."""
        match envelope.type:
            case MessageType.RESPONSE:
                self._fold_response(envelope)
            case MessageType.STREAM_CHUNK:
                self._fold_stream_chunk(envelope)
            case MessageType.TOOL_CALL:
                payload = payload_of(envelope, ToolCallPayload)
                if payload is not None:
                    self._append(Role.TOOL, summarize_tool_call(payload, self._catalog))
            case MessageType.ERROR:
                payload = payload_of(envelope, ErrorPayload)
                message = payload.message if payload is not None else "Unknown worker error"
                if payload is not None and payload.details:
                    message = f"{message}: {payload.details}"
                self._append(Role.SYSTEM, message, is_error=True)
                self._processing = False
            case _:
                logger.debug("conversation.skip type={}", envelope.type)

    def _fold_response(self, envelope: Envelope) -> None:
        payload = payload_of(envelope, ResponsePayload)
        if payload is None:
            return
        if payload.status == STATUS_INITIALIZED:
            self._phase = Phase.ACTIVE
            self._processing = False
            self._append(Role.SYSTEM, payload.message or "Worker ready")
            return
        if payload.content:
            last = self._entries[-1] if self._entries else None
            if last is None or last.role is not Role.ASSISTANT:
                self._append(Role.ASSISTANT, payload.content)
            self._processing = False
            return
        if payload.status == STATUS_NOTICE and payload.message:
            self._append(Role.SYSTEM, payload.message)
        elif payload.status == STATUS_TOOL_ERROR and payload.message:
            self._append(Role.TOOL, payload.message, is_error=True)

    def _fold_stream_chunk(self, envelope: Envelope) -> None:
        payload = payload_of(envelope, StreamChunkPayload)
        if payload is None:
            return
        if payload.status == STATUS_THINKING:
            self._append(Role.SYSTEM, "Thinking...")
        elif payload.content:
            self.upsert_last_assistant(payload.content)

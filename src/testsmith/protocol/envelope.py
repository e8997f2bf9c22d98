"""Envelope types and the one-line JSON codec shared by front-end and worker."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

STATUS_INITIALIZED = "initialized"
STATUS_THINKING = "thinking"
STATUS_NOTICE = "notice"
STATUS_TOOL_RESULT = "tool_result"
STATUS_TOOL_ERROR = "tool_error"


class MessageType(StrEnum):
    INIT = "init"
    CHAT = "chat"
    RESPONSE = "response"
    ERROR = "error"
    TOOL_CALL = "tool_call"
    STREAM_CHUNK = "stream_chunk"


@dataclass(frozen=True)
class Envelope:
    """One typed message unit; ``data`` is the type-specific payload."""

    type: MessageType
    data: dict[str, Any] | None = None


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class InitPayload(_Payload):
    api_key: str = Field(alias="apiKey")


class ChatPayload(_Payload):
    message: str


class ResponsePayload(_Payload):
    status: str | None = None
    message: str | None = None
    content: str | None = None


class ToolCallPayload(_Payload):
    tool_name: str = Field(alias="toolName")
    args: dict[str, Any] = Field(default_factory=dict)


class StreamChunkPayload(_Payload):
    content: str | None = None
    status: str | None = None


class ErrorPayload(_Payload):
    message: str
    details: str | None = None


PayloadT = TypeVar("PayloadT", bound=_Payload)


def make_envelope(message_type: MessageType, payload: _Payload) -> Envelope:
    """Build an envelope from a payload model using wire field names."""

    return Envelope(type=message_type, data=payload.model_dump(by_alias=True, exclude_none=True))


def payload_of(envelope: Envelope, model: type[PayloadT]) -> PayloadT | None:
    """Parse the envelope payload, returning ``None`` when it does not fit ``model``."""

    try:
        return model.model_validate(envelope.data or {})
    except PydanticValidationError:
        return None


def encode(envelope: Envelope) -> str:
    """Serialize an envelope to a single line without the trailing newline."""

    obj: dict[str, Any] = {"type": envelope.type.value}
    if envelope.data is not None:
        obj["data"] = envelope.data
    # ASCII output escapes every character that could act as a line separator.
    return json.dumps(obj, ensure_ascii=True, separators=(",", ":"))


def decode(line: str | bytes) -> Envelope | None:
    """Parse one line; malformed or unknown lines yield ``None``."""

    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    stripped = line.strip()
    if not stripped:
        return None
    try:
        obj = json.loads(stripped)
    except (json.JSONDecodeError, RecursionError):
        return None
    if not isinstance(obj, Mapping):
        return None
    try:
        message_type = MessageType(obj.get("type"))
    except ValueError:
        return None
    data = obj.get("data")
    if data is not None and not isinstance(data, dict):
        return None
    return Envelope(type=message_type, data=data)


def init_envelope(api_key: str) -> Envelope:
    return make_envelope(MessageType.INIT, InitPayload(api_key=api_key))


def chat_envelope(message: str) -> Envelope:
    return make_envelope(MessageType.CHAT, ChatPayload(message=message))


def response_envelope(
    *, status: str | None = None, message: str | None = None, content: str | None = None, **extra: Any
) -> Envelope:
    return make_envelope(MessageType.RESPONSE, ResponsePayload(status=status, message=message, content=content, **extra))


def tool_call_envelope(tool_name: str, args: Mapping[str, Any]) -> Envelope:
    return make_envelope(MessageType.TOOL_CALL, ToolCallPayload(tool_name=tool_name, args=dict(args)))


def stream_chunk_envelope(*, content: str | None = None, status: str | None = None) -> Envelope:
    return make_envelope(MessageType.STREAM_CHUNK, StreamChunkPayload(content=content, status=status))


def error_envelope(message: str, details: str | None = None) -> Envelope:
    return make_envelope(MessageType.ERROR, ErrorPayload(message=message, details=details))

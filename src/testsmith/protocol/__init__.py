"""Line-delimited envelope protocol between the front-end and the worker."""

from testsmith.protocol.envelope import (
    ChatPayload,
    Envelope,
    ErrorPayload,
    InitPayload,
    MessageType,
    ResponsePayload,
    StreamChunkPayload,
    ToolCallPayload,
    decode,
    encode,
)
from testsmith.protocol.framing import Emit, Outbox, iter_envelopes, read_envelope

__all__ = [
    "ChatPayload",
    "Emit",
    "Envelope",
    "ErrorPayload",
    "InitPayload",
    "MessageType",
    "Outbox",
    "ResponsePayload",
    "StreamChunkPayload",
    "ToolCallPayload",
    "decode",
    "encode",
    "iter_envelopes",
    "read_envelope",
]

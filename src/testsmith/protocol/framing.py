"""Newline framing for envelopes: tolerant readers and a serialized writer."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterable, Iterator
from typing import Protocol, TextIO

from loguru import logger

from testsmith.protocol.envelope import Envelope, decode, encode


class Emit(Protocol):
    def __call__(self, envelope: Envelope) -> None: ...


def iter_envelopes(lines: Iterable[str | bytes]) -> Iterator[Envelope]:
    """Yield the well-formed envelopes of ``lines``, skipping everything else."""

    for line in lines:
        envelope = decode(line)
        if envelope is None:
            if line.strip():
                logger.debug("protocol.skip malformed line={!r}", line[:120])
            continue
        yield envelope


async def read_envelope(reader: asyncio.StreamReader) -> Envelope | None:
    """Read lines until one well-formed envelope arrives; ``None`` at end of stream."""

    while True:
        line = await reader.readline()
        if not line:
            return None
        envelope = decode(line)
        if envelope is not None:
            return envelope
        if line.strip():
            logger.debug("protocol.skip malformed line={!r}", line[:120])


class Outbox:
    """Write one envelope per line to a text stream."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    def __call__(self, envelope: Envelope) -> None:
        self.send(envelope)

    def send(self, envelope: Envelope) -> None:
        line = encode(envelope)
        with self._lock:
            self._stream.write(line + "\n")
            self._stream.flush()

from __future__ import annotations

from pathlib import Path

import pytest

from testsmith.config import Settings
from testsmith.protocol.envelope import Envelope, MessageType


class EnvelopeRecorder:
    """In-memory emit target that keeps every envelope in order."""

    def __init__(self) -> None:
        self.envelopes: list[Envelope] = []

    def __call__(self, envelope: Envelope) -> None:
        self.envelopes.append(envelope)

    def of_type(self, message_type: MessageType) -> list[Envelope]:
        return [envelope for envelope in self.envelopes if envelope.type is message_type]

    def statuses(self) -> list[str | None]:
        return [(envelope.data or {}).get("status") for envelope in self.of_type(MessageType.RESPONSE)]

    def messages(self, status: str) -> list[str]:
        return [
            str((envelope.data or {}).get("message"))
            for envelope in self.of_type(MessageType.RESPONSE)
            if (envelope.data or {}).get("status") == status
        ]


@pytest.fixture
def recorder() -> EnvelopeRecorder:
    return EnvelopeRecorder()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(_env_file=None, model="openrouter:test", work_dir=tmp_path, home=tmp_path / ".home")

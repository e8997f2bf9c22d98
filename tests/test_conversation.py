from testsmith.client.conversation import Conversation, Phase, Role
from testsmith.protocol.envelope import (
    Envelope,
    MessageType,
    chat_envelope,
    error_envelope,
    response_envelope,
    stream_chunk_envelope,
    tool_call_envelope,
)


def _active() -> Conversation:
    conversation = Conversation()
    conversation.begin_handshake()
    conversation.fold(response_envelope(status="initialized", message="Agent initialized"))
    return conversation


def test_handshake_activates_and_clears_processing() -> None:
    conversation = Conversation()
    conversation.begin_handshake()
    assert conversation.phase is Phase.AWAITING_CREDENTIAL
    assert conversation.is_processing

    conversation.fold(response_envelope(status="initialized", message="Agent initialized"))

    assert conversation.phase is Phase.ACTIVE
    assert not conversation.is_processing
    assert conversation.transcript[-1].role is Role.SYSTEM


def test_chat_before_activation_is_refused() -> None:
    conversation = Conversation()
    assert conversation.submit_chat("hello") is None
    assert conversation.transcript == ()


def test_single_flight_chat() -> None:
    conversation = _active()

    assert conversation.submit_chat("  first  ") == chat_envelope("first")
    assert conversation.is_processing
    assert conversation.submit_chat("second") is None
    assert [entry.content for entry in conversation.transcript if entry.role is Role.USER] == ["first"]


def test_blank_chat_is_refused() -> None:
    conversation = _active()
    assert conversation.submit_chat("   ") is None
    assert not conversation.is_processing


def test_streaming_refinement_keeps_one_assistant_entry() -> None:
    conversation = _active()
    conversation.submit_chat("hi")

    conversation.fold(stream_chunk_envelope(content="Hel"))
    conversation.fold(stream_chunk_envelope(content="Hello"))

    assistants = [entry for entry in conversation.transcript if entry.role is Role.ASSISTANT]
    assert [entry.content for entry in assistants] == ["Hello"]
    assert conversation.transcript[-1].content == "Hello"


def test_final_response_after_stream_is_deduplicated() -> None:
    conversation = _active()
    conversation.submit_chat("hi")
    conversation.fold(stream_chunk_envelope(content="X"))

    conversation.fold(response_envelope(content="X"))

    assistants = [entry for entry in conversation.transcript if entry.role is Role.ASSISTANT]
    assert [entry.content for entry in assistants] == ["X"]
    assert not conversation.is_processing


def test_final_response_with_different_text_after_stream_does_not_append() -> None:
    conversation = _active()
    conversation.submit_chat("hi")
    conversation.fold(stream_chunk_envelope(content="draft"))

    conversation.fold(response_envelope(content="final"))

    assistants = [entry for entry in conversation.transcript if entry.role is Role.ASSISTANT]
    assert [entry.content for entry in assistants] == ["draft"]
    assert not conversation.is_processing


def test_response_without_stream_appends_assistant() -> None:
    conversation = _active()
    conversation.submit_chat("hi")
    conversation.fold(stream_chunk_envelope(status="thinking"))

    conversation.fold(response_envelope(content="answer"))

    assert conversation.transcript[-1].role is Role.ASSISTANT
    assert conversation.transcript[-1].content == "answer"
    assert not conversation.is_processing


def test_thinking_chunks_accumulate() -> None:
    conversation = _active()
    before = len(conversation.transcript)

    conversation.fold(stream_chunk_envelope(status="thinking"))
    conversation.fold(stream_chunk_envelope(status="thinking"))

    assert len(conversation.transcript) == before + 2
    assert all(entry.role is Role.SYSTEM for entry in conversation.transcript[-2:])


def test_tool_calls_always_append_and_break_streaming() -> None:
    conversation = _active()
    conversation.submit_chat("hi")
    conversation.fold(stream_chunk_envelope(content="Looking"))
    conversation.fold(tool_call_envelope("read_file", {"file_path": "main.go"}))
    conversation.fold(tool_call_envelope("read_file", {"file_path": "main.go"}))
    conversation.fold(stream_chunk_envelope(content="Done"))

    roles = [entry.role for entry in conversation.transcript[-4:]]
    assert roles == [Role.ASSISTANT, Role.TOOL, Role.TOOL, Role.ASSISTANT]
    assert conversation.transcript[-3].content == "Tool: read_file | file: main.go"
    assert conversation.transcript[-4].content == "Looking"


def test_error_clears_processing_and_flags_entry() -> None:
    conversation = _active()
    conversation.submit_chat("hi")

    conversation.fold(error_envelope("Chat request failed", details="boom"))

    assert not conversation.is_processing
    assert conversation.transcript[-1].is_error
    assert conversation.transcript[-1].content == "Chat request failed: boom"


def test_notices_and_tool_errors_do_not_touch_processing() -> None:
    conversation = _active()
    conversation.submit_chat("hi")

    conversation.fold(response_envelope(status="notice", message="Regenerating tests (attempt 2/3)..."))
    conversation.fold(response_envelope(status="tool_error", message="old text not found", tool="edit_file"))
    conversation.fold(response_envelope(status="tool_result", message="ok", tool="read_file"))

    assert conversation.is_processing
    assert conversation.transcript[-2].role is Role.SYSTEM
    assert conversation.transcript[-1].role is Role.TOOL
    assert conversation.transcript[-1].is_error


def test_unknown_and_malformed_envelopes_are_ignored() -> None:
    conversation = _active()
    before = conversation.transcript

    conversation.fold(Envelope(type=MessageType.INIT, data={"apiKey": "x"}))
    conversation.fold(Envelope(type=MessageType.TOOL_CALL, data={"args": {}}))
    conversation.fold(Envelope(type=MessageType.ERROR, data={"details": 3}))

    assert conversation.transcript[: len(before)] == before
    assert conversation.transcript[-1].content == "Unknown worker error"


def test_fail_records_error_and_clears_processing() -> None:
    conversation = _active()
    conversation.submit_chat("hi")

    conversation.fail("worker stream closed unexpectedly")

    assert not conversation.is_processing
    assert conversation.transcript[-1].is_error

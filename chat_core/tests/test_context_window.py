import pytest

from chat_core.domain.conversation import MessageRecord, utcnow
from chat_core.domain.exceptions import ContextPreconditionError, GenerationError
from chat_core.pipeline.context_window import ContextWindowBuilder
from chat_core.prompts import load_system_prompt


def _msg(i: int, role: str = "user", status: str = "delivered") -> MessageRecord:
    now = utcnow()
    return MessageRecord(
        id=f"m{i}",
        conversation_id="c1",
        user_id="u1",
        role=role,
        content=f"message {i}",
        status=status,
        created_at=now,
        updated_at=now,
    )


def test_window_keeps_last_ten_with_preamble():
    transcript = [_msg(i, "user" if i % 2 == 0 else "assistant") for i in range(14)] + [_msg(14)]
    window = ContextWindowBuilder(max_messages=10).build(transcript)

    assert window.system_prompt == load_system_prompt()
    assert len(window.turns) == 10
    assert [t.content for t in window.turns] == [f"message {i}" for i in range(5, 15)]
    assert [t.role for t in window.turns][:2] == ["assistant", "user"]
    assert window.last_user_turn.content == "message 14"


def test_window_is_deterministic():
    transcript = [_msg(0), _msg(1, "assistant"), _msg(2)]
    builder = ContextWindowBuilder(max_messages=10, system_prompt="Be brief.")
    assert builder.build(transcript) == builder.build(transcript)


def test_empty_transcript_is_precondition_failure():
    with pytest.raises(ContextPreconditionError) as exc:
        ContextWindowBuilder().build([])
    assert isinstance(exc.value, GenerationError)
    assert exc.value.code == "EMPTY_CONTEXT"


def test_trailing_assistant_is_precondition_failure():
    with pytest.raises(ContextPreconditionError) as exc:
        ContextWindowBuilder().build([_msg(0), _msg(1, "assistant")])
    assert exc.value.code == "NO_TRAILING_USER_MESSAGE"


def test_soft_deleted_messages_are_skipped():
    transcript = [_msg(0), _msg(1, "assistant"), _msg(2, status="deleted"), _msg(3)]
    window = ContextWindowBuilder().build(transcript)
    assert [t.meta["message_id"] for t in window.turns] == ["m0", "m1", "m3"]

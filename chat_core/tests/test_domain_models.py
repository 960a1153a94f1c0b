from datetime import datetime, timezone

import pytest

from chat_core.domain.conversation import (
    Conversation,
    EditHistory,
    MessageMetadata,
    MessageRecord,
    utcnow,
)
from chat_core.domain.exceptions import InvalidInputError
from chat_core.domain.models import ChatChoice, ChatMessage, ChatResult


def test_models_roundtrip_document():
    now = datetime.now(timezone.utc)
    conv = Conversation(id="c1", user_id="u1", title="t", created_at=now, updated_at=now)
    assert Conversation.from_document(conv.to_document()) == conv

    mr = MessageRecord(
        id="m1",
        conversation_id="c1",
        user_id="u1",
        role="user",
        content="x",
        created_at=now,
        updated_at=now,
        metadata=MessageMetadata(type="code", language="python"),
    )
    doc = mr.to_document()
    assert doc["metadata"] == {"type": "code", "language": "python"}
    assert doc["edit_history"] == []
    back = MessageRecord.from_document(doc)
    assert back.created_at == now
    assert back.metadata.language == "python"
    assert not back.is_deleted


def test_metadata_validation():
    assert MessageMetadata.from_input(None).type == "text"
    assert MessageMetadata.from_input({"type": "image", "url": "https://x/y.png"}).url == "https://x/y.png"
    with pytest.raises(InvalidInputError):
        MessageMetadata.from_input({"type": "link"})
    with pytest.raises(InvalidInputError):
        MessageMetadata.from_input({"type": "deleted"})
    with pytest.raises(InvalidInputError):
        MessageMetadata.from_input("text")


def test_edit_history_evicts_oldest_first():
    history = EditHistory(limit=10)
    for i in range(13):
        history.push(f"v{i}", utcnow())
    assert len(history) == 10
    assert history.contents() == [f"v{i}" for i in range(3, 13)]


def test_edit_history_loaded_over_capacity_keeps_latest():
    items = [{"content": f"v{i}", "edited_at": "2024-01-01T00:00:00.000000Z"} for i in range(12)]
    history = EditHistory.from_document(items, limit=10)
    assert history.contents()[0] == "v2"


def test_utcnow_strictly_increasing():
    stamps = [utcnow() for _ in range(200)]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


def test_chat_result_text():
    res = ChatResult(provider="fake", model="chat-reply", choices=[ChatChoice(index=0, message=ChatMessage(role="assistant", content="hi"))])
    assert res.text == "hi"
    assert ChatResult(provider="fake", model="chat-reply", choices=[]).text == ""

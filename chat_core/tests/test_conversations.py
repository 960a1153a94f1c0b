from pathlib import Path

import pytest

from chat_core.domain.exceptions import InvalidInputError, NotFoundError
from chat_core.infrastructure.storage.json_store import JsonDocumentStore
from chat_core.services.conversations import ConversationManager
from chat_core.services.messages import MessageLedger


def _manager(tmp_path: Path):
    store = JsonDocumentStore(root=tmp_path / ".storage")
    return store, ConversationManager(store)


def test_create_uses_default_title(tmp_path):
    _, manager = _manager(tmp_path)
    conv = manager.create("u1")
    assert conv.title == "New Chat"
    assert conv.user_id == "u1"
    assert manager.create("u1", "  ").title == "New Chat"
    assert manager.create("u1", "Trip plans").title == "Trip plans"


def test_get_enforces_ownership(tmp_path):
    _, manager = _manager(tmp_path)
    conv = manager.create("u1")
    assert manager.get("u1", conv.id).id == conv.id
    with pytest.raises(NotFoundError) as exc:
        manager.get("u2", conv.id)
    assert exc.value.code == "CONVERSATION_NOT_FOUND"
    with pytest.raises(NotFoundError) as missing:
        manager.get("u1", "c-missing")
    # 不存在与不属于调用方返回同样的错误
    assert missing.value.to_dict() == exc.value.to_dict()


def test_list_orders_by_recent_activity(tmp_path):
    _, manager = _manager(tmp_path)
    first = manager.create("u1", "first")
    second = manager.create("u1", "second")
    manager.create("u2", "other")
    assert [c.id for c in manager.list("u1")] == [second.id, first.id]

    assert manager.touch(first.id) is True
    assert [c.id for c in manager.list("u1")] == [first.id, second.id]


def test_rename(tmp_path):
    _, manager = _manager(tmp_path)
    conv = manager.create("u1")
    renamed = manager.rename("u1", conv.id, "Renamed")
    assert renamed.title == "Renamed"
    assert manager.get("u1", conv.id).title == "Renamed"
    with pytest.raises(InvalidInputError):
        manager.rename("u1", conv.id, "")
    with pytest.raises(NotFoundError):
        manager.rename("u2", conv.id, "Hijacked")
    assert manager.get("u1", conv.id).title == "Renamed"


def test_delete_cascades_messages(tmp_path):
    store, manager = _manager(tmp_path)
    ledger = MessageLedger(store, manager)
    conv = manager.create("u1")
    keep = manager.create("u1")
    ledger.append("u1", conv.id, "one")
    ledger.append("u1", conv.id, "two")
    ledger.append("u1", keep.id, "stay")

    with pytest.raises(NotFoundError):
        manager.delete("u2", conv.id)
    assert manager.delete("u1", conv.id) == 2
    assert store.find_many("messages", {"conversation_id": conv.id}) == []
    with pytest.raises(NotFoundError):
        ledger.list("u1", conv.id)
    assert len(ledger.list("u1", keep.id)) == 1


def test_clear_all_only_touches_owner(tmp_path):
    store, manager = _manager(tmp_path)
    ledger = MessageLedger(store, manager)
    for _ in range(3):
        conv = manager.create("u1")
        ledger.append("u1", conv.id, "hi")
    other = manager.create("u2")
    ledger.append("u2", other.id, "mine")

    assert manager.clear_all("u1") == 3
    assert manager.list("u1") == []
    assert manager.clear_all("u1") == 0
    assert [m.content for m in ledger.list("u2", other.id)] == ["mine"]


def test_touch_missing_conversation(tmp_path):
    _, manager = _manager(tmp_path)
    assert manager.touch("c-missing") is False

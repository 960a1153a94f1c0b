import tempfile
from pathlib import Path

import pytest

from chat_core.domain.exceptions import StorageError
from chat_core.infrastructure.storage.json_store import JsonDocumentStore


def test_json_store_create_and_find():
    with tempfile.TemporaryDirectory() as d:
        store = JsonDocumentStore(root=Path(d) / ".storage")
        store.create("messages", {"id": "m1", "conversation_id": "c1", "created_at": "2"})
        store.create("messages", {"id": "m2", "conversation_id": "c1", "created_at": "1"})
        store.create("messages", {"id": "m3", "conversation_id": "c2", "created_at": "3"})

        assert store.find_one("messages", {"id": "m1"})["conversation_id"] == "c1"
        assert store.find_one("messages", {"id": "m1", "conversation_id": "c2"}) is None
        ids = [d["id"] for d in store.find_many("messages", {"conversation_id": "c1"}, sort=[("created_at", 1)])]
        assert ids == ["m2", "m1"]
        ids = [d["id"] for d in store.find_many("messages", {"conversation_id": {"$in": ["c1", "c2"]}}, sort=[("created_at", -1)])]
        assert ids == ["m3", "m1", "m2"]


def test_json_store_update_nested_and_return_mode():
    with tempfile.TemporaryDirectory() as d:
        store = JsonDocumentStore(root=Path(d))
        store.create("messages", {"id": "m1", "metadata": {"type": "text"}, "content": "a"})
        before = store.update_one("messages", {"id": "m1"}, {"content": "b"}, return_updated=False)
        assert before["content"] == "a"
        after = store.update_one("messages", {"id": "m1"}, {"metadata.type": "deleted"})
        assert after["metadata"] == {"type": "deleted"}
        assert after["content"] == "b"
        assert store.update_one("messages", {"id": "missing"}, {"content": "x"}) is None


def test_json_store_delete():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d)
        store = JsonDocumentStore(root=root)
        for i in range(3):
            store.create("messages", {"id": f"m{i}", "conversation_id": "c1"})
        store.create("conversations", {"id": "c1"})
        assert store.delete_many("messages", {"conversation_id": "c1"}) == 3
        assert store.delete_one("conversations", {"id": "c1"}) is True
        assert store.delete_one("conversations", {"id": "c1"}) is False
        assert not (root / "conversations" / "c1.json").exists()


def test_json_store_rejects_duplicates_and_unsafe_ids():
    with tempfile.TemporaryDirectory() as d:
        store = JsonDocumentStore(root=Path(d))
        store.create("conversations", {"id": "c1"})
        with pytest.raises(StorageError):
            store.create("conversations", {"id": "c1"})
        with pytest.raises(StorageError):
            store.create("conversations", {"id": "../escape"})
        assert store.find_one("conversations", {"id": "../c1"}) is None


def test_json_store_skips_corrupt_documents():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d)
        store = JsonDocumentStore(root=root)
        store.create("conversations", {"id": "c1", "user_id": "u1"})
        (root / "conversations" / "broken.json").write_text("{not json", encoding="utf-8")
        assert [c["id"] for c in store.find_many("conversations", {"user_id": "u1"})] == ["c1"]

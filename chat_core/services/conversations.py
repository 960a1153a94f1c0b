"""会话管理。

负责会话的创建、查询、改名与（级联）删除，以及消息追加后刷新
会话的 updated_at。归属校验总是写在查询条件里（id + user_id），
不存在与不属于调用方一律返回 NotFoundError。
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import (
    CONVERSATIONS,
    MESSAGES,
    Conversation,
    DocumentStore,
    format_ts,
    utcnow,
)
from chat_core.domain.exceptions import InvalidInputError, NotFoundError, StorageError
from chat_core.infrastructure.logging.logger import log_event


class ConversationManager:
    def __init__(self, store: DocumentStore, default_title: Optional[str] = None):
        self._store = store
        self._default_title = default_title or settings.default_conversation_title

    def create(self, owner_id: Optional[str], title: Optional[str] = None) -> Conversation:
        now = utcnow()
        conv = Conversation(
            id=f"c-{uuid4().hex}",
            user_id=owner_id,
            title=(title or "").strip() or self._default_title,
            created_at=now,
            updated_at=now,
        )
        self._store.create(CONVERSATIONS, conv.to_document())
        log_event(logging.INFO, "Created conversation", {"conversation_id": conv.id, "user_id": owner_id})
        return conv

    def list(self, owner_id: Optional[str]) -> List[Conversation]:
        """按最近活跃（updated_at 倒序）列出调用方的全部会话。"""

        docs = self._store.find_many(CONVERSATIONS, {"user_id": owner_id}, sort=[("updated_at", -1)])
        return [Conversation.from_document(d) for d in docs]

    def get(self, owner_id: Optional[str], conversation_id: str) -> Conversation:
        doc = self._store.find_one(CONVERSATIONS, self._owned(owner_id, conversation_id))
        if doc is None:
            raise NotFoundError(code="CONVERSATION_NOT_FOUND", message="Conversation not found")
        return Conversation.from_document(doc)

    def rename(self, owner_id: Optional[str], conversation_id: str, new_title: str) -> Conversation:
        title = (new_title or "").strip()
        if not title:
            raise InvalidInputError(code="EMPTY_TITLE", message="Title is required")
        doc = self._store.update_one(
            CONVERSATIONS,
            self._owned(owner_id, conversation_id),
            {"title": title},
            return_updated=True,
        )
        if doc is None:
            raise NotFoundError(code="CONVERSATION_NOT_FOUND", message="Conversation not found")
        return Conversation.from_document(doc)

    def delete(self, owner_id: Optional[str], conversation_id: str) -> int:
        """校验归属后先删消息、再删会话，返回删除的消息数。"""

        conv = self.get(owner_id, conversation_id)
        removed = self._store.delete_many(MESSAGES, {"conversation_id": conv.id})
        self._store.delete_one(CONVERSATIONS, {"id": conv.id})
        log_event(
            logging.INFO,
            "Deleted conversation",
            {"conversation_id": conv.id, "user_id": owner_id},
            deleted_messages=removed,
        )
        return removed

    def clear_all(self, owner_id: Optional[str]) -> int:
        """删除调用方的全部会话及其消息，返回删除的会话数。"""

        docs = self._store.find_many(CONVERSATIONS, {"user_id": owner_id})
        ids = [d["id"] for d in docs]
        if not ids:
            return 0
        removed_messages = self._store.delete_many(MESSAGES, {"conversation_id": {"$in": ids}})
        removed = self._store.delete_many(CONVERSATIONS, {"id": {"$in": ids}, "user_id": owner_id})
        log_event(
            logging.INFO,
            "Cleared conversations",
            {"user_id": owner_id},
            deleted_conversations=removed,
            deleted_messages=removed_messages,
        )
        return removed

    def touch(self, conversation_id: str) -> bool:
        """尽力刷新 updated_at；存储失败只记日志，不影响调用方。"""

        try:
            updated = self._store.update_one(
                CONVERSATIONS,
                {"id": conversation_id},
                {"updated_at": format_ts(utcnow())},
                return_updated=False,
            )
        except StorageError as e:
            log_event(
                logging.WARNING,
                "Failed to refresh conversation timestamp",
                {"conversation_id": conversation_id},
                error_code=e.code,
                error=e.message,
            )
            return False
        return updated is not None

    @staticmethod
    def _owned(owner_id: Optional[str], conversation_id: str) -> Dict[str, Any]:
        return {"id": conversation_id, "user_id": owner_id}

"""消息台账。

消息只追加不物理删除：
- append: 写入用户消息 → 刷新会话时间 → 触发后台回复生成。
- edit: 旧内容进入定长编辑历史，再覆盖内容。
- soft_delete: 原地改写为「已删除」状态，记录保留。

流水线通过 transcript / append_assistant 读写，不经过归属校验。
"""

import logging
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import (
    CONVERSATIONS,
    DELETED_CONTENT,
    LIVE_STATUSES,
    MESSAGES,
    DocumentStore,
    MessageMetadata,
    MessageRecord,
    format_ts,
    utcnow,
)
from chat_core.domain.exceptions import GenerationError, InvalidInputError, NotFoundError, StorageError
from chat_core.infrastructure.logging.logger import log_event
from chat_core.services.conversations import ConversationManager


# 新用户消息落库后的回调，一般是 CompletionPipeline.schedule
Trigger = Callable[[MessageRecord], Any]

# 条件写入失败（消息被并发修改）后的最多尝试次数
_EDIT_ATTEMPTS = 5


class MessageLedger:
    def __init__(
        self,
        store: DocumentStore,
        conversations: ConversationManager,
        trigger: Optional[Trigger] = None,
        history_limit: Optional[int] = None,
    ):
        self._store = store
        self._conversations = conversations
        self.trigger = trigger
        self._history_limit = history_limit or settings.edit_history_limit

    def append(
        self,
        owner_id: Optional[str],
        conversation_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MessageRecord:
        if not (content or "").strip():
            raise InvalidInputError(code="EMPTY_CONTENT", message="Message content is required")
        meta = MessageMetadata.from_input(metadata)
        conv = self._conversations.get(owner_id, conversation_id)

        now = utcnow()
        message = MessageRecord(
            id=f"m-{uuid4().hex}",
            conversation_id=conv.id,
            user_id=owner_id,
            role="user",
            content=content,
            status="delivered",
            metadata=meta,
            created_at=now,
            updated_at=now,
        )
        self._store.create(MESSAGES, message.to_document())
        log_ctx = {"conversation_id": conv.id, "message_id": message.id}
        log_event(logging.INFO, "Stored user message", log_ctx, metadata_type=meta.type)

        self._conversations.touch(conv.id)
        self._schedule(message, log_ctx)
        return message

    def edit(self, owner_id: Optional[str], message_id: str, new_content: str) -> MessageRecord:
        """覆盖消息内容，旧内容进入编辑历史。

        写入条件是「未删除且 updated_at 与读取时一致」。读写之间若有并发的
        编辑或软删除，条件不成立，重新读取后再试。
        """

        if not (new_content or "").strip():
            raise InvalidInputError(code="EMPTY_CONTENT", message="Message content cannot be empty")

        for _ in range(_EDIT_ATTEMPTS):
            message = self._get_owned(owner_id, message_id)
            if message.is_deleted:
                raise InvalidInputError(code="MESSAGE_DELETED", message="Deleted messages cannot be edited")

            expected_updated_at = format_ts(message.updated_at)
            now = utcnow()
            message.edit_history.push(message.content, now)
            doc = self._store.update_one(
                MESSAGES,
                {
                    "id": message.id,
                    "user_id": owner_id,
                    "status": {"$in": LIVE_STATUSES},
                    "updated_at": expected_updated_at,
                },
                {
                    "content": new_content,
                    "edit_history": message.edit_history.to_document(),
                    "edited_at": format_ts(now),
                    "updated_at": format_ts(now),
                },
            )
            log_ctx = {"conversation_id": message.conversation_id, "message_id": message.id}
            if doc is not None:
                log_event(logging.INFO, "Edited message", log_ctx, history_size=len(message.edit_history))
                return self._to_record(doc)
            log_event(logging.DEBUG, "Message changed during edit, retrying", log_ctx)

        raise StorageError(code="EDIT_CONFLICT", message="Message kept changing during edit", http_status=409)

    def list(self, owner_id: Optional[str], conversation_id: str) -> List[MessageRecord]:
        conv = self._conversations.get(owner_id, conversation_id)
        return self.transcript(conv.id)

    def soft_delete(self, owner_id: Optional[str], message_id: str) -> MessageRecord:
        message = self._get_owned(owner_id, message_id)
        if message.is_deleted:
            return message

        now = utcnow()
        doc = self._store.update_one(
            MESSAGES,
            {"id": message.id, "user_id": owner_id, "status": {"$in": LIVE_STATUSES}},
            {
                "content": DELETED_CONTENT,
                "metadata.type": "deleted",
                "status": "deleted",
                "deleted_at": format_ts(now),
                "updated_at": format_ts(now),
            },
        )
        if doc is None:
            # 并发的软删除先完成了
            return self._get_owned(owner_id, message_id)
        log_event(
            logging.INFO,
            "Soft-deleted message",
            {"conversation_id": message.conversation_id, "message_id": message.id},
        )
        return self._to_record(doc)

    # ---- 流水线使用的内部接口 ----

    def transcript(self, conversation_id: str) -> List[MessageRecord]:
        """按创建时间升序返回会话全部消息（不做归属校验）。"""

        docs = self._store.find_many(MESSAGES, {"conversation_id": conversation_id}, sort=[("created_at", 1)])
        return [self._to_record(d) for d in docs]

    def append_assistant(self, conversation_id: str, user_id: Optional[str], content: str) -> MessageRecord:
        """写入 assistant 回复；会话已被删除时拒绝写入，避免留下孤儿消息。"""

        if self._store.find_one(CONVERSATIONS, {"id": conversation_id}) is None:
            raise GenerationError(code="CONVERSATION_GONE", message="Conversation was deleted before the reply arrived")
        now = utcnow()
        message = MessageRecord(
            id=f"m-{uuid4().hex}",
            conversation_id=conversation_id,
            user_id=user_id,
            role="assistant",
            content=content,
            status="delivered",
            metadata=MessageMetadata(type="text"),
            created_at=now,
            updated_at=now,
        )
        self._store.create(MESSAGES, message.to_document())
        return message

    # ---- 辅助方法 ----

    def _get_owned(self, owner_id: Optional[str], message_id: str) -> MessageRecord:
        doc = self._store.find_one(MESSAGES, {"id": message_id, "user_id": owner_id})
        if doc is None:
            raise NotFoundError(code="MESSAGE_NOT_FOUND", message="Message not found")
        return self._to_record(doc)

    def _to_record(self, doc: Dict[str, Any]) -> MessageRecord:
        return MessageRecord.from_document(doc, history_limit=self._history_limit)

    def _schedule(self, message: MessageRecord, log_ctx: Dict[str, Any]) -> None:
        if self.trigger is None:
            return
        try:
            self.trigger(message)
        except Exception as e:  # noqa: BLE001 - 调度失败不影响已落库的用户消息
            log_event(
                logging.ERROR,
                "Failed to schedule reply generation",
                log_ctx,
                error=str(e),
                error_type=type(e).__name__,
            )

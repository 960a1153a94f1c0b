"""对外 API 服务模块。

提供简化的函数接口供外层（HTTP 路由、鉴权中间件等）调用：
调用方负责认证，并把认证后的 owner_id 传进来；这里返回普通 dict，
失败时抛出 chat_core.domain.exceptions 中的业务异常，可用
BusinessError.to_dict() 得到结构化错误。
"""

from typing import Any, Dict, List, Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation, DocumentStore, MessageRecord
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import JsonDocumentStore
from chat_core.pipeline import BackgroundScheduler, CompletionPipeline, RunRecorder
from chat_core.providers import create_provider
from chat_core.providers.base import ProviderClient
from chat_core.services.conversations import ConversationManager
from chat_core.services.messages import MessageLedger


class ChatService:
    """把存储、会话管理、消息台账与回复流水线组装在一起。

    provider_client 在构造时创建一次，之后被所有请求共享（只读）。
    """

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        provider_client: Optional[ProviderClient] = None,
        scheduler: Optional[BackgroundScheduler] = None,
        recorder: Optional[RunRecorder] = None,
    ):
        self.store = store or JsonDocumentStore(root=settings.storage_root)
        self.provider_client = provider_client or create_provider()
        self.scheduler = scheduler or BackgroundScheduler()
        self.conversations = ConversationManager(self.store)
        self.messages = MessageLedger(self.store, self.conversations)
        self.pipeline = CompletionPipeline(
            ledger=self.messages,
            provider_client=self.provider_client,
            scheduler=self.scheduler,
            conversations=self.conversations,
            recorder=recorder,
        )
        self.messages.trigger = self.pipeline.schedule

    def shutdown(self, wait: bool = True) -> None:
        self.scheduler.shutdown(wait=wait)


_service: Optional[ChatService] = None


def get_default_service() -> ChatService:
    """获取默认的 ChatService 实例（单例）。"""
    global _service
    if _service is None:
        _service = ChatService()
        logger.info(
            "Chat service initialized",
            extra={"extra": {"provider": getattr(_service.provider_client, "name", None)}},
        )
    return _service


def create_conversation(owner_id: Optional[str], title: Optional[str] = None) -> Dict[str, Any]:
    conv = get_default_service().conversations.create(owner_id, title)
    return _conversation_dict(conv)


def list_conversations(owner_id: Optional[str]) -> List[Dict[str, Any]]:
    """列出会话，最近活跃的在前。"""
    return [_conversation_dict(c) for c in get_default_service().conversations.list(owner_id)]


def get_conversation(owner_id: Optional[str], conversation_id: str) -> Dict[str, Any]:
    return _conversation_dict(get_default_service().conversations.get(owner_id, conversation_id))


def rename_conversation(owner_id: Optional[str], conversation_id: str, title: str) -> Dict[str, Any]:
    return _conversation_dict(get_default_service().conversations.rename(owner_id, conversation_id, title))


def delete_conversation(owner_id: Optional[str], conversation_id: str) -> Dict[str, Any]:
    removed = get_default_service().conversations.delete(owner_id, conversation_id)
    return {"conversation_id": conversation_id, "deleted_messages": removed}


def clear_conversations(owner_id: Optional[str]) -> Dict[str, Any]:
    removed = get_default_service().conversations.clear_all(owner_id)
    return {"deleted_conversations": removed}


def send_message(
    owner_id: Optional[str],
    conversation_id: str,
    content: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """保存用户消息并在后台生成回复；返回的只是用户消息本身。

    Args:
        owner_id: 已认证的用户 ID
        conversation_id: 会话ID
        content: 消息内容（去掉首尾空白后不能为空）
        metadata: 消息元数据（可选），如 {"type": "code", "language": "python"}

    Returns:
        用户消息的 dict 表示
    """
    message = get_default_service().messages.append(owner_id, conversation_id, content, metadata)
    return _message_dict(message)


def edit_message(owner_id: Optional[str], message_id: str, new_content: str) -> Dict[str, Any]:
    return _message_dict(get_default_service().messages.edit(owner_id, message_id, new_content))


def list_messages(owner_id: Optional[str], conversation_id: str) -> List[Dict[str, Any]]:
    return [_message_dict(m) for m in get_default_service().messages.list(owner_id, conversation_id)]


def delete_message(owner_id: Optional[str], message_id: str) -> Dict[str, Any]:
    return _message_dict(get_default_service().messages.soft_delete(owner_id, message_id))


def _conversation_dict(conv: Conversation) -> Dict[str, Any]:
    return conv.to_document()


def _message_dict(message: MessageRecord) -> Dict[str, Any]:
    return message.to_document()

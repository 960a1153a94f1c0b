"""会话与消息的存储模型及 DocumentStore 抽象。

记录只在存储中长期存在，服务层每次操作都重新读取，不缓存副本；
因此这里的 dataclass 只负责「文档 ⇄ 对象」的转换与不变量维护。
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, Iterable, Iterator, List, Literal, Optional, Protocol, Sequence, Tuple

from .exceptions import InvalidInputError
from .models import Role


CONVERSATIONS = "conversations"
MESSAGES = "messages"

DEFAULT_TITLE = "New Chat"
DELETED_CONTENT = "[Message deleted]"
EDIT_HISTORY_LIMIT = 10

MessageStatus = Literal["sending", "delivered", "read", "failed", "deleted"]

# 未被软删除的状态，可以编辑或删除
LIVE_STATUSES = ["sending", "delivered", "read", "failed"]

MetadataType = Literal["text", "image", "link", "code", "deleted"]

# 调用方可以提交的元数据类型（deleted 只由软删除写入）
INPUT_METADATA_TYPES = ("text", "image", "link", "code")

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_clock_lock = threading.Lock()
_last_ts: Optional[datetime] = None


def utcnow() -> datetime:
    """进程内严格递增的 UTC 时间。

    同一微秒内的两次调用会被错开 1 微秒，保证按 created_at 排序是全序。
    """

    global _last_ts
    with _clock_lock:
        now = datetime.now(timezone.utc)
        if _last_ts is not None and now <= _last_ts:
            now = _last_ts + timedelta(microseconds=1)
        _last_ts = now
        return now


def format_ts(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass
class Conversation:
    id: str
    user_id: Optional[str]
    title: str
    created_at: datetime
    updated_at: datetime

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Conversation":
        return cls(
            id=data["id"],
            user_id=data.get("user_id"),
            title=data.get("title") or DEFAULT_TITLE,
            created_at=parse_ts(data["created_at"]),
            updated_at=parse_ts(data["updated_at"]),
        )


@dataclass
class MessageMetadata:
    """消息元数据：text / image{url} / link{url} / code{language} / deleted。"""

    type: MetadataType = "text"
    url: Optional[str] = None
    language: Optional[str] = None

    @classmethod
    def from_input(cls, raw: Optional[Dict[str, Any]]) -> "MessageMetadata":
        """校验调用方提交的元数据，未提供时默认为 text。"""

        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise InvalidInputError(code="INVALID_METADATA", message="Metadata must be an object")
        kind = raw.get("type") or "text"
        if kind not in INPUT_METADATA_TYPES:
            raise InvalidInputError(code="INVALID_METADATA", message=f"Unsupported metadata type: {kind!r}")
        url = raw.get("url")
        language = raw.get("language")
        if kind in ("image", "link") and not (isinstance(url, str) and url.strip()):
            raise InvalidInputError(code="INVALID_METADATA", message=f"Metadata of type {kind!r} requires a url")
        return cls(
            type=kind,
            url=url if kind in ("image", "link") else None,
            language=language if kind == "code" else None,
        )

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"type": self.type}
        if self.url:
            doc["url"] = self.url
        if self.language:
            doc["language"] = self.language
        return doc

    @classmethod
    def from_document(cls, data: Optional[Dict[str, Any]]) -> "MessageMetadata":
        data = data or {}
        return cls(type=data.get("type") or "text", url=data.get("url"), language=data.get("language"))


@dataclass
class EditEntry:
    content: str
    edited_at: datetime


class EditHistory:
    """定长编辑历史，满了之后先淘汰最早的一条（FIFO 环形缓冲）。"""

    def __init__(self, entries: Iterable[EditEntry] = (), limit: int = EDIT_HISTORY_LIMIT):
        self._entries: Deque[EditEntry] = deque(entries, maxlen=limit)

    @property
    def limit(self) -> int:
        return self._entries.maxlen or EDIT_HISTORY_LIMIT

    def push(self, content: str, edited_at: datetime) -> None:
        self._entries.append(EditEntry(content=content, edited_at=edited_at))

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[EditEntry]:
        return iter(self._entries)

    def contents(self) -> List[str]:
        return [e.content for e in self._entries]

    def to_document(self) -> List[Dict[str, Any]]:
        return [{"content": e.content, "edited_at": format_ts(e.edited_at)} for e in self._entries]

    @classmethod
    def from_document(cls, items: Optional[Sequence[Dict[str, Any]]], limit: int = EDIT_HISTORY_LIMIT) -> "EditHistory":
        entries = [
            EditEntry(content=item.get("content") or "", edited_at=parse_ts(item.get("edited_at")))
            for item in (items or [])
        ]
        return cls(entries, limit=limit)


@dataclass
class MessageRecord:
    id: str
    conversation_id: str
    user_id: Optional[str]
    role: Role
    content: str
    created_at: datetime
    updated_at: datetime
    status: MessageStatus = "delivered"
    metadata: MessageMetadata = field(default_factory=MessageMetadata)
    edit_history: EditHistory = field(default_factory=EditHistory)
    edited_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.status == "deleted"

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
            "role": self.role,
            "content": self.content,
            "status": self.status,
            "metadata": self.metadata.to_document(),
            "edit_history": self.edit_history.to_document(),
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
            "edited_at": format_ts(self.edited_at),
            "deleted_at": format_ts(self.deleted_at),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any], history_limit: int = EDIT_HISTORY_LIMIT) -> "MessageRecord":
        return cls(
            id=data["id"],
            conversation_id=data["conversation_id"],
            user_id=data.get("user_id"),
            role=data["role"],
            content=data.get("content") or "",
            status=data.get("status") or "delivered",
            metadata=MessageMetadata.from_document(data.get("metadata")),
            edit_history=EditHistory.from_document(data.get("edit_history"), limit=history_limit),
            created_at=parse_ts(data["created_at"]),
            updated_at=parse_ts(data.get("updated_at") or data["created_at"]),
            edited_at=parse_ts(data.get("edited_at")),
            deleted_at=parse_ts(data.get("deleted_at")),
        )


# 排序规则：[(字段, 1 升序 / -1 降序), ...]
SortSpec = Sequence[Tuple[str, int]]


class DocumentStore(Protocol):
    """文档存储协议。

    每个操作只作用于单个集合；单文档操作（create / update_one /
    delete_one）必须是原子的，不假设跨文档事务。filter 为字段等值匹配，
    值也可以是 {"$in": [...]}。
    """

    def create(self, collection: str, document: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def find_one(self, collection: str, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    def find_many(
        self,
        collection: str,
        filter: Dict[str, Any],
        sort: Optional[SortSpec] = None,
    ) -> List[Dict[str, Any]]:
        ...

    def update_one(
        self,
        collection: str,
        filter: Dict[str, Any],
        patch: Dict[str, Any],
        return_updated: bool = True,
    ) -> Optional[Dict[str, Any]]:
        ...

    def delete_one(self, collection: str, filter: Dict[str, Any]) -> bool:
        ...

    def delete_many(self, collection: str, filter: Dict[str, Any]) -> int:
        ...

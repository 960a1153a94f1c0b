"""上下文窗口构建。

纯函数式、无副作用：同样的消息记录总是得到同样的窗口。
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from chat_core.config.settings import settings
from chat_core.domain.conversation import MessageRecord
from chat_core.domain.exceptions import ContextPreconditionError
from chat_core.domain.models import ChatMessage
from chat_core.prompts import load_system_prompt


@dataclass(frozen=True)
class ContextWindow:
    system_prompt: str
    turns: List[ChatMessage]

    @property
    def last_user_turn(self) -> ChatMessage:
        return self.turns[-1]


class ContextWindowBuilder:
    """取最近 k 条消息、统一角色名并加上固定系统前导语。"""

    def __init__(self, max_messages: Optional[int] = None, system_prompt: Optional[str] = None):
        self._max_messages = max_messages or settings.context_window_size
        self._system_prompt = system_prompt if system_prompt is not None else load_system_prompt()

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def build(self, transcript: Sequence[MessageRecord]) -> ContextWindow:
        visible = [m for m in transcript if not m.is_deleted]
        recent = visible[-self._max_messages:]
        if not recent:
            raise ContextPreconditionError(code="EMPTY_CONTEXT", message="No messages to send to the model")
        if recent[-1].role != "user":
            raise ContextPreconditionError(
                code="NO_TRAILING_USER_MESSAGE",
                message="No valid user message to send to the model",
                message_id=recent[-1].id,
            )
        turns = [
            ChatMessage(
                role="assistant" if m.role == "assistant" else "user",
                content=m.content,
                meta={"message_id": m.id},
            )
            for m in recent
        ]
        return ContextWindow(system_prompt=self._system_prompt, turns=turns)

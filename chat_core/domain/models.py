"""统一的模型调用数据结构。

本模块定义了流水线与不同 Provider 之间共享的标准数据结构：

- ChatMessage: 发给模型的一轮对话（user/assistant）。
- ChatRequest: 发给底层 LLM Provider 的完整请求（含系统前导语）。
- ChatResult: 从 Provider 解析后的统一响应结果。

所有 Provider 适配器（如 GeminiClient）都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换，例如 Gemini 把
assistant 角色写成 "model"。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Any, Dict, List


# 与 Provider 交互时使用的两方角色
Role = Literal["user", "assistant"]


@dataclass
class ChatMessage:
    """一轮对话消息。

    - role: user 或 assistant。
    - content: 纯文本内容。
    - meta: 附加元数据（来源消息 ID 等），不直接发给 Provider。
    """

    role: Role
    content: str
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatRequest:
    """一次完整的生成请求。

    流水线把上下文窗口转成 ChatRequest，再交给具体 ProviderClient。
    system_prompt 单独存放，由 Provider 决定放进 system 消息还是
    systemInstruction 字段。
    """

    provider: str  # 逻辑 Provider 名，如 "gemini"
    model: str  # 逻辑模型名，如 "chat-reply"（再由 registry 映射为真实模型名）
    system_prompt: str
    messages: List[ChatMessage]
    temperature: float = 0.7
    max_tokens: Optional[int] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前只用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次生成调用的最终结果。"""

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    @property
    def text(self) -> str:
        """首个候选的文本内容，没有候选时为空串。"""

        if not self.choices:
            return ""
        return self.choices[0].message.content or ""

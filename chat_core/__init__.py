"""Chat Core 顶层包。

该包提供会话式消息后端的核心实现：会话与消息的生命周期管理、
定长编辑历史与软删除、上下文窗口构建，以及在后台调用 LLM Provider
生成回复的流水线。认证、HTTP 路由等由外层负责。
"""

from chat_core.api.service import ChatService, get_default_service

__all__ = ["ChatService", "get_default_service"]

"""领域层模型与协议。

包含：
- models: 与 Provider 交互的 ChatMessage / ChatRequest / ChatResult 模型。
- conversation: 会话与消息的存储模型及 DocumentStore 抽象。
- exceptions: 业务异常类型定义。
"""

"""Provider 抽象接口。

回复流水线不直接依赖具体厂商的 HTTP SDK，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 GeminiClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。
- 失败时只抛出 QuotaExceededError 或 GenerationError 的子类。

这样可以在不改流水线代码的前提下接入更多厂商。
"""

from typing import Protocol

from chat_core.domain.exceptions import QuotaExceededError
from chat_core.domain.models import ChatRequest, ChatResult


QUOTA_MARKERS = ("quota", "billing", "resource_exhausted", "rate limit")


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - chat(req): 执行一次非流式生成调用，返回统一的 ChatResult。
    """

    name: str

    def chat(self, req: ChatRequest) -> ChatResult:
        ...


def raise_for_quota(provider: str, status_code: int, body: str) -> None:
    """429 或报文里出现额度/计费字样时抛 QuotaExceededError。"""

    lowered = (body or "").lower()
    if status_code == 429 or (status_code >= 400 and any(m in lowered for m in QUOTA_MARKERS)):
        raise QuotaExceededError(
            code="QUOTA_EXCEEDED",
            message=f"{provider} quota exceeded or billing issue",
            provider=provider,
            status_code=status_code,
        )

"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供各厂商的具体实现 (gemini_client、glm_client)。
"""

from typing import Literal, Optional

from chat_core.config.settings import settings
from chat_core.providers.base import ProviderClient
from chat_core.providers.gemini_client import GeminiClient
from chat_core.providers.glm_client import GlmClient


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "gemini")).lower()
    if provider_name == "glm":
        return GlmClient(settings)
    if provider_name == "gemini":
        return GeminiClient(settings)
    raise KeyError(f"Unknown provider: {provider_name!r}")


DefaultProviderName = Literal["gemini", "glm"]

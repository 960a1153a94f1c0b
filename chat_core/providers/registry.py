"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "chat-reply"。
- provider_model：厂商实际提供的模型 ID，例如 "gemini-1.5-flash"。

上层只关心逻辑名，具体用哪个底层模型由这里集中配置，便于后续升级或切换。"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]


# Gemini 配置（REST generateContent 接口）
GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    models={
        "chat-reply": ModelConfig(
            logical_name="chat-reply",
            provider_model="gemini-1.5-flash",
            max_tokens=200,
            default_temperature=0.7,
        )
    },
)

# GLM / BigModel 配置（OpenAI 兼容 chat/completions 接口）
GLM_CONFIG = ProviderConfig(
    name="glm",
    base_url="https://open.bigmodel.cn/api/paas/v4",
    models={
        "chat-reply": ModelConfig(
            logical_name="chat-reply",
            provider_model="glm-4-flash",
            max_tokens=200,
            default_temperature=0.7,
        )
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "gemini": GEMINI_CONFIG,
    "glm": GLM_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def get_model_config(provider: str, model: str) -> ModelConfig:
    """取逻辑模型配置；未登记的逻辑名按原样作为厂商模型 ID 使用。"""

    cfg = get_provider_config(provider)
    if model in cfg.models:
        return cfg.models[model]
    default = next(iter(cfg.models.values()))
    return ModelConfig(
        logical_name=model,
        provider_model=model,
        max_tokens=default.max_tokens,
        default_temperature=default.default_temperature,
    )

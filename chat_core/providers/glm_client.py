"""GLM / BigModel Provider 适配器。

接口风格与 OpenAI 类似，使用 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

本实现只依赖公共字段：model/messages/temperature/max_tokens/stream。
系统前导语以第一条 role="system" 的消息发送。
"""

from typing import Any, Dict, List

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ApiError, ConfigurationError, NetworkError
from chat_core.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from chat_core.providers.base import raise_for_quota
from chat_core.providers.registry import GLM_CONFIG, ModelConfig, get_model_config


class GlmClient:
    """GLM / BigModel Provider 客户端实现。"""

    name = "glm"

    def __init__(self, cfg=settings):
        self._settings = cfg

    def chat(self, req: ChatRequest) -> ChatResult:
        if not getattr(self._settings, "glm_api_key", None):
            raise ConfigurationError(code="MISSING_API_KEY", message="GLM_API_KEY not set")
        model_cfg = get_model_config(self.name, req.model)
        payload = self._build_payload(req, model_cfg)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                base = getattr(self._settings, "glm_base_url", None) or GLM_CONFIG.base_url
                resp = client.post(
                    f"{base}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._settings.glm_api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            # 超时也属于 RequestError
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        raise_for_quota(self.name, resp.status_code, resp.text if resp.status_code >= 400 else "")
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        data = resp.json()
        return self._parse_response(data, req)

    # ---- 辅助方法 ----

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> dict:
        msgs: List[Dict[str, Any]] = []
        if req.system_prompt:
            msgs.append({"role": "system", "content": req.system_prompt})
        msgs.extend({"role": m.role, "content": m.content} for m in req.messages)
        return {
            "model": model_cfg.provider_model,
            "messages": msgs,
            "temperature": req.temperature,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "stream": False,
        }

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        choices: list[ChatChoice] = []
        for i, ch in enumerate(data.get("choices", [])):
            msg = ch.get("message") or {}
            cm = ChatMessage(role="assistant", content=msg.get("content") or "")
            choices.append(ChatChoice(index=i, message=cm, finish_reason=ch.get("finish_reason")))
        usage_raw = data.get("usage") or {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)

"""Gemini Provider 适配器。

使用 Generative Language REST 接口：
- URL: {base_url}/models/{model}:generateContent
- 认证: x-goog-api-key 请求头

与 OpenAI 风格的差异：
1. assistant 角色在 Gemini 中叫 "model"。
2. 系统前导语放在 systemInstruction 字段，而不是消息列表。
3. 采样参数放在 generationConfig{temperature, maxOutputTokens}。
4. 额度问题返回 429 + RESOURCE_EXHAUSTED。
"""

from typing import Any, Dict, List

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ApiError, ConfigurationError, NetworkError
from chat_core.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from chat_core.providers.base import raise_for_quota
from chat_core.providers.registry import GEMINI_CONFIG, ModelConfig, get_model_config


ROLE_MAP = {"user": "user", "assistant": "model"}


class GeminiClient:
    """Gemini Provider 客户端实现。"""

    name = "gemini"

    def __init__(self, cfg=settings):
        self._settings = cfg

    def chat(self, req: ChatRequest) -> ChatResult:
        if not getattr(self._settings, "gemini_api_key", None):
            raise ConfigurationError(code="MISSING_API_KEY", message="GEMINI_API_KEY not set")
        model_cfg = get_model_config(self.name, req.model)
        payload = self._build_payload(req, model_cfg)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
                resp = client.post(
                    f"{base}/models/{model_cfg.provider_model}:generateContent",
                    json=payload,
                    headers={
                        "x-goog-api-key": self._settings.gemini_api_key,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        raise_for_quota(self.name, resp.status_code, resp.text if resp.status_code >= 400 else "")
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        data = resp.json()
        return self._parse_response(data, req)

    # ---- 辅助方法 ----

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> Dict[str, Any]:
        contents: List[Dict[str, Any]] = [
            {"role": ROLE_MAP.get(m.role, "user"), "parts": [{"text": m.content}]}
            for m in req.messages
        ]
        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": req.temperature,
                "maxOutputTokens": req.max_tokens or model_cfg.max_tokens,
            },
        }
        if req.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": req.system_prompt}]}
        return payload

    def _parse_response(self, data: Dict[str, Any], req: ChatRequest) -> ChatResult:
        choices: List[ChatChoice] = []
        for i, cand in enumerate(data.get("candidates") or []):
            parts = (cand.get("content") or {}).get("parts") or []
            text = "".join(p.get("text") or "" for p in parts)
            choices.append(
                ChatChoice(
                    index=cand.get("index", i),
                    message=ChatMessage(role="assistant", content=text),
                    finish_reason=cand.get("finishReason"),
                )
            )
        usage_raw = data.get("usageMetadata") or {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("promptTokenCount", 0),
            completion_tokens=usage_raw.get("candidatesTokenCount", 0),
            total_tokens=usage_raw.get("totalTokenCount", 0),
        )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)

import pytest

from chat_core.domain.exceptions import ApiError, QuotaExceededError
from chat_core.domain.models import ChatMessage, ChatRequest
from chat_core.providers.gemini_client import GeminiClient


class SettingsStub:
    gemini_api_key = "gemini-test-key"
    http_timeout = 1.0
    gemini_base_url = "https://generativelanguage.googleapis.com/v1beta"


def _request():
    return ChatRequest(
        provider="gemini",
        model="chat-reply",
        system_prompt="You are a helpful assistant.",
        messages=[
            ChatMessage(role="user", content="Hello"),
            ChatMessage(role="assistant", content="Hi"),
            ChatMessage(role="user", content="How are you?"),
        ],
        temperature=0.7,
        max_tokens=200,
    )


class Resp:
    def __init__(self, status_code=200, data=None, text=""):
        self.status_code = status_code
        self._data = data or {}
        self.text = text

    def json(self):
        return self._data


def _patch_client(monkeypatch, resp, captured):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None):
            captured.update(url=url, json=json, headers=headers)
            return resp

    monkeypatch.setattr("httpx.Client", Client)


def test_gemini_client_payload_and_parse(monkeypatch):
    captured = {}
    data = {
        "candidates": [
            {"content": {"role": "model", "parts": [{"text": "Doing "}, {"text": "well."}]}, "finishReason": "STOP"}
        ],
        "usageMetadata": {"promptTokenCount": 7, "candidatesTokenCount": 3, "totalTokenCount": 10},
    }
    _patch_client(monkeypatch, Resp(data=data), captured)
    res = GeminiClient(SettingsStub()).chat(_request())

    assert res.text == "Doing well."
    assert res.usage.total_tokens == 10
    assert captured["url"].endswith("/models/gemini-1.5-flash:generateContent")
    assert captured["headers"]["x-goog-api-key"] == "gemini-test-key"
    body = captured["json"]
    assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
    assert body["systemInstruction"]["parts"][0]["text"] == "You are a helpful assistant."
    assert body["generationConfig"] == {"temperature": 0.7, "maxOutputTokens": 200}


def test_gemini_client_no_candidates_gives_empty_text(monkeypatch):
    _patch_client(monkeypatch, Resp(data={"promptFeedback": {"blockReason": "SAFETY"}}), {})
    assert GeminiClient(SettingsStub()).chat(_request()).text == ""


def test_gemini_client_quota_classification(monkeypatch):
    body = '{"error": {"code": 429, "status": "RESOURCE_EXHAUSTED"}}'
    _patch_client(monkeypatch, Resp(429, text=body), {})
    with pytest.raises(QuotaExceededError):
        GeminiClient(SettingsStub()).chat(_request())

    _patch_client(monkeypatch, Resp(403, text="Billing account is disabled"), {})
    with pytest.raises(QuotaExceededError):
        GeminiClient(SettingsStub()).chat(_request())

    _patch_client(monkeypatch, Resp(400, text="API key not valid"), {})
    with pytest.raises(ApiError):
        GeminiClient(SettingsStub()).chat(_request())

import pytest

from chat_core.providers import create_provider
from chat_core.providers.gemini_client import GeminiClient
from chat_core.providers.glm_client import GlmClient
from chat_core.providers.registry import get_model_config, get_provider_config


def test_create_provider_default(monkeypatch):
    class DummySettings:
        default_provider = "gemini"
        gemini_api_key = "gemini-test-key"
        http_timeout = 1.0
        gemini_base_url = "https://generativelanguage.googleapis.com/v1beta"
        glm_api_key = None

    monkeypatch.setattr("chat_core.providers.settings", DummySettings())
    provider = create_provider()
    assert isinstance(provider, GeminiClient)


def test_create_provider_explicit(monkeypatch):
    class DummySettings:
        default_provider = "gemini"
        glm_api_key = "g"
        http_timeout = 1.0
        glm_base_url = "https://open.bigmodel.cn/api/paas/v4"
        gemini_api_key = None

    monkeypatch.setattr("chat_core.providers.settings", DummySettings())
    assert isinstance(create_provider("GLM"), GlmClient)
    with pytest.raises(KeyError):
        create_provider("unknown")


def test_registry_lookup():
    assert get_provider_config("Gemini").name == "gemini"
    assert get_model_config("gemini", "chat-reply").provider_model == "gemini-1.5-flash"
    assert get_model_config("gemini", "gemini-2.0-flash").provider_model == "gemini-2.0-flash"
    with pytest.raises(KeyError):
        get_provider_config("kimi")

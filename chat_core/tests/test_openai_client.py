import pytest

from chat_core.domain.exceptions import ApiError, RateLimitError, ValidationError
from chat_core.domain.models import ChatMessage, ChatRequest
from chat_core.providers.openai_client import OpenAICompatibleClient
from chat_core.providers.registry import GLM_CONFIG, KIMI_CONFIG


class SettingsStub:
    kimi_api_key = "k" * 16
    kimi_base_url = "https://api.moonshot.cn/v1"
    glm_api_key = "g" * 16
    glm_base_url = None
    http_timeout = 1.0


class Resp:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        return self._body


def patch_client(monkeypatch, resp, captured=None):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, **_):
            if captured is not None:
                captured["url"] = url
                captured["payload"] = json
            return resp

    monkeypatch.setattr("httpx.Client", Client)


def make_req(provider):
    return ChatRequest(provider=provider, model="chat", messages=[ChatMessage(role="user", content="hi")], max_tokens=1024)


def test_kimi_parse_basic(monkeypatch):
    captured = {}
    body = {
        "choices": [{"message": {"role": "assistant", "content": "ok"}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
    }
    patch_client(monkeypatch, Resp(body=body), captured)
    res = OpenAICompatibleClient(KIMI_CONFIG, SettingsStub()).chat(make_req("kimi"))
    assert res.text == "ok"
    assert res.provider == "kimi"
    assert captured["url"] == "https://api.moonshot.cn/v1/chat/completions"
    assert captured["payload"]["model"] == "kimi-k2-turbo-preview"
    assert captured["payload"]["max_tokens"] == 1024


def test_glm_falls_back_to_registry_base_url(monkeypatch):
    captured = {}
    patch_client(monkeypatch, Resp(body={"choices": [], "usage": {}}), captured)
    res = OpenAICompatibleClient(GLM_CONFIG, SettingsStub()).chat(make_req("glm"))
    assert captured["url"] == "https://open.bigmodel.cn/api/paas/v4/chat/completions"
    assert res.text == ""


def test_missing_api_key():
    class NoKey(SettingsStub):
        kimi_api_key = None

    with pytest.raises(ValidationError):
        OpenAICompatibleClient(KIMI_CONFIG, NoKey()).chat(make_req("kimi"))


def test_rate_limit(monkeypatch):
    patch_client(monkeypatch, Resp(status_code=429))
    with pytest.raises(RateLimitError):
        OpenAICompatibleClient(KIMI_CONFIG, SettingsStub()).chat(make_req("kimi"))


def test_http_error(monkeypatch):
    patch_client(monkeypatch, Resp(status_code=500, text="boom"))
    with pytest.raises(ApiError) as ei:
        OpenAICompatibleClient(GLM_CONFIG, SettingsStub()).chat(make_req("glm"))
    assert ei.value.extra["upstream_status"] == 500

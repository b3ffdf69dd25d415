import pytest
from fastapi.testclient import TestClient

from chat_core.agents.orchestrator import ChatConfig, ChatOrchestrator
from chat_core.api import service
from chat_core.api.app import create_app
from chat_core.infrastructure.storage.sqlite_store import SqliteMessageStore
from chat_core.tests.fakes import BrokenStore, FailingProvider, FakeProvider


CONFIG = ChatConfig(provider="fake", model="chat")


@pytest.fixture
def store(tmp_path):
    return SqliteMessageStore(db_path=tmp_path / "chat_history.db")


@pytest.fixture
def use_orchestrator():
    def _use(orchestrator):
        service.set_default_orchestrator(orchestrator)
        return TestClient(create_app(), raise_server_exceptions=False)

    yield _use
    service.set_default_orchestrator(None)


def test_health(use_orchestrator, store):
    client = use_orchestrator(ChatOrchestrator(store, FakeProvider(), config=CONFIG))
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_chat_then_history(use_orchestrator, store):
    client = use_orchestrator(ChatOrchestrator(store, FakeProvider("Hi there"), config=CONFIG))
    resp = client.post("/api/chat", json={"message": "Hello", "sessionId": "abc"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["message"]["role"] == "assistant"
    assert body["message"]["content"] == "Hi there"
    assert body["message"]["timestamp"].endswith("Z")
    assert resp.headers["access-control-allow-origin"] == "*"

    resp = client.get("/api/history", params={"sessionId": "abc"})
    assert resp.status_code == 200
    messages = resp.json()["messages"]
    assert [(m["role"], m["content"]) for m in messages] == [("user", "Hello"), ("assistant", "Hi there")]


def test_chat_accepts_null_history(use_orchestrator, store):
    client = use_orchestrator(ChatOrchestrator(store, FakeProvider("Hi"), config=CONFIG))
    resp = client.post("/api/chat", json={"message": "Hello", "sessionId": "abc", "conversationHistory": None})
    assert resp.status_code == 200
    assert resp.json()["message"]["content"] == "Hi"


def test_chat_uses_history_hint_for_new_session(use_orchestrator, store):
    provider = FakeProvider("ok")
    client = use_orchestrator(ChatOrchestrator(store, provider, config=CONFIG))
    resp = client.post(
        "/api/chat",
        json={
            "message": "and now?",
            "sessionId": "fresh",
            "conversationHistory": [{"role": "user", "content": "from the browser"}, {"role": "bogus"}],
        },
    )
    assert resp.status_code == 200
    assert [m.content for m in provider.requests[0].messages] == ["from the browser", "and now?"]


@pytest.mark.parametrize(
    "payload",
    [{"sessionId": "abc"}, {"message": "Hello"}, {"message": "", "sessionId": "abc"}, {"message": "Hi", "sessionId": ""}],
)
def test_chat_missing_fields(use_orchestrator, store, payload):
    provider = FailingProvider()
    client = use_orchestrator(ChatOrchestrator(store, provider, config=CONFIG))
    resp = client.post("/api/chat", json=payload)
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Missing required fields"}
    assert provider.calls == 0


def test_chat_malformed_body(use_orchestrator, store):
    client = use_orchestrator(ChatOrchestrator(store, FakeProvider(), config=CONFIG))
    resp = client.post("/api/chat", content=b"{not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_chat_model_failure_is_500_and_not_persisted(use_orchestrator, store):
    client = use_orchestrator(ChatOrchestrator(store, FailingProvider(), config=CONFIG))
    resp = client.post("/api/chat", json={"message": "Hello", "sessionId": "abc"})
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "upstream exploded"}
    assert client.get("/api/history", params={"sessionId": "abc"}).json()["messages"] == []


def test_history_requires_session_id(use_orchestrator, store):
    client = use_orchestrator(ChatOrchestrator(store, FakeProvider(), config=CONFIG))
    resp = client.get("/api/history")
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Missing sessionId"}
    assert client.delete("/api/history").status_code == 400


def test_unknown_session_history_is_empty(use_orchestrator, store):
    client = use_orchestrator(ChatOrchestrator(store, FakeProvider(), config=CONFIG))
    resp = client.get("/api/history", params={"sessionId": "unknown-session"})
    assert resp.json() == {"success": True, "messages": []}


def test_delete_history_is_idempotent(use_orchestrator, store):
    client = use_orchestrator(ChatOrchestrator(store, FakeProvider(), config=CONFIG))
    client.post("/api/chat", json={"message": "Hello", "sessionId": "abc"})
    for _ in range(2):
        resp = client.delete("/api/history", params={"sessionId": "abc"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "History deleted"}
    assert client.get("/api/history", params={"sessionId": "abc"}).json()["messages"] == []


def test_history_read_failure_degrades(use_orchestrator):
    client = use_orchestrator(ChatOrchestrator(BrokenStore(), FakeProvider(), config=CONFIG))
    resp = client.get("/api/history", params={"sessionId": "abc"})
    assert resp.status_code == 200
    assert resp.json()["messages"] == []


def test_delete_failure_is_500(use_orchestrator):
    client = use_orchestrator(ChatOrchestrator(BrokenStore(), FakeProvider(), config=CONFIG))
    resp = client.delete("/api/history", params={"sessionId": "abc"})
    assert resp.status_code == 500
    assert resp.json()["success"] is False


def test_options_preflight(use_orchestrator, store):
    client = use_orchestrator(ChatOrchestrator(store, FakeProvider(), config=CONFIG))
    resp = client.options("/api/chat")
    assert resp.status_code == 204
    assert resp.content == b""
    assert resp.headers["access-control-allow-methods"] == "GET, POST, DELETE, OPTIONS"
    assert "Content-Type" in resp.headers["access-control-allow-headers"]


def test_unknown_route_and_method(use_orchestrator, store):
    client = use_orchestrator(ChatOrchestrator(store, FakeProvider(), config=CONFIG))
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Not Found"}
    assert resp.headers["access-control-allow-origin"] == "*"
    assert client.put("/api/chat", json={}).status_code == 404


def test_unexpected_error_is_500(use_orchestrator, store, monkeypatch):
    client = use_orchestrator(ChatOrchestrator(store, FakeProvider(), config=CONFIG))

    def explode(session_id):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(service, "get_history", explode)
    resp = client.get("/api/history", params={"sessionId": "abc"})
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Internal server error"}

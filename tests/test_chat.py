import json
from concurrent.futures import ThreadPoolExecutor

import pytest
import requests

from routers import chat as chat_router
from services import chat
from services.chat import ChatAgentClient, InMemoryChatSessionStore, analyze_intent, handle_message


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.parametrize(
    "message, language, category",
    [
        ("আমি খাবার দেব", "bn", "donation"),
        ("আমাদের এলাকায় বন্যা, সাহায্য চাই", "bn", "request"),
        ("I can deliver with my bike", "en", "volunteer"),
        ("Hello there", "en", "general"),
    ],
)
def test_analyze_intent(message, language, category):
    assert analyze_intent(message, language)["category"] == category


def test_message_without_agent_uses_fallback(client, chat_store):
    response = client.post(
        "/api/chat/message",
        json={"message": "I want to donate rice", "user_id": "u1", "session_id": "s1", "language": "en"},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["session_id"] == "s1"
    assert data["message"]["role"] == "assistant"
    assert data["message"]["ai_generated"] is False
    assert "show_donation_form" in data["message"]["actions"]
    assert data["session_info"]["message_count"] == 2
    assert len(chat_store) == 1


def test_session_can_be_read_and_cleared(client):
    client.post("/api/chat/message", json={"message": "দান করতে চাই", "user_id": "u1", "session_id": "s2"})

    session = client.get("/api/chat/sessions/s2").json()["data"]
    assert [m["role"] for m in session["messages"]] == ["user", "assistant"]

    assert client.delete("/api/chat/sessions/s2").status_code == 200
    assert client.get("/api/chat/sessions/s2").status_code == 404
    assert client.delete("/api/chat/sessions/s2").status_code == 404


def test_empty_message_is_rejected(client):
    response = client.post("/api/chat/message", json={"message": "  ", "user_id": "u1", "session_id": "s3"})
    assert response.status_code == 400


def test_analyze_intent_endpoint(client):
    response = client.post("/api/chat/analyze-intent", json={"message": "need food urgently", "language": "en"})
    assert response.json()["data"] == {"category": "request", "confidence": 0.8, "language": "en"}


def test_sessions_expire_after_ttl():
    clock = FakeClock()
    store = InMemoryChatSessionStore(ttl_seconds=30, clock=clock)
    store.get_or_create("s1", "u1")

    clock.now = 29
    store.get_or_create("s1", "u1")
    clock.now = 50
    assert store.get("s1") is not None
    clock.now = 60
    assert store.get("s1") is None
    assert len(store) == 0


def test_agent_reply_is_used(monkeypatch):
    calls = []

    def fake_post(url, headers, json, timeout):
        calls.append({"url": url, "json": json, "timeout": timeout})
        result = {"response": "ধন্যবাদ!", "suggestions": ["খাবার"], "detected_intent": {"category": "donation"}}
        return FakeResponse({"outputs": [{"outputs": [{"results": result}]}]})

    monkeypatch.setattr(chat.requests, "post", fake_post)
    store = InMemoryChatSessionStore(ttl_seconds=60)
    agent = ChatAgentClient("http://agent.local/run", api_key="k", timeout=12)

    result = handle_message(store, agent, message="দান", user_id="u1", session_id="s1")

    assert result["message"]["content"] == "ধন্যবাদ!"
    assert result["message"]["ai_generated"] is True
    assert calls[0]["timeout"] == 12
    sent = json.loads(calls[0]["json"]["input_value"])
    assert sent["sessionId"] == "s1"
    assert sent["conversationHistory"][-1]["content"] == "দান"


def test_agent_timeout_falls_back(monkeypatch):
    def slow_post(*args, **kwargs):
        raise requests.Timeout("agent took too long")

    monkeypatch.setattr(chat.requests, "post", slow_post)
    agent = ChatAgentClient("http://agent.local/run")

    reply = agent.ask("I want to volunteer", "en", {"id": "s1", "user_id": "u1", "messages": []})

    assert reply["ai_generated"] is False
    assert reply["actions"] == ["show_volunteer_registration"]


def test_agent_garbage_falls_back(monkeypatch):
    monkeypatch.setattr(chat.requests, "post", lambda *a, **kw: FakeResponse({"unexpected": True}))
    agent = ChatAgentClient("http://agent.local/run")

    reply = agent.ask("hello", "en", {"id": "s1", "user_id": "u1", "messages": []})

    assert reply["ai_generated"] is False
    assert reply["intent"]["category"] == "general"


@pytest.mark.parametrize(
    "payload",
    [[], {"result": None}, {"result": "[1, 2]"}, {"outputs": ["oops"]}],
)
def test_agent_non_object_reply_falls_back(monkeypatch, payload):
    monkeypatch.setattr(chat.requests, "post", lambda *a, **kw: FakeResponse(payload))
    agent = ChatAgentClient("http://agent.local/run")

    reply = agent.ask("hello", "en", {"id": "s1", "user_id": "u1", "messages": []})

    assert reply["ai_generated"] is False
    assert reply["actions"] == ["show_main_menu"]


def test_endpoint_survives_broken_agent(client, monkeypatch):
    monkeypatch.setattr(chat.requests, "post", lambda *a, **kw: FakeResponse({"result": None}))
    client.app.dependency_overrides[chat_router.get_chat_agent] = lambda: ChatAgentClient("http://agent.local/run")

    response = client.post(
        "/api/chat/message",
        json={"message": "I need help", "user_id": "u1", "session_id": "s9", "language": "en"},
    )

    assert response.status_code == 200
    assert response.json()["data"]["message"]["ai_generated"] is False


def test_store_hands_out_copies():
    store = InMemoryChatSessionStore(ttl_seconds=60)
    session = store.get_or_create("s1", "u1")

    session["messages"].append({"role": "user", "content": "not saved"})

    assert store.get("s1")["messages"] == []
    store.get("s1")["messages"].append({"role": "user", "content": "still not saved"})
    assert store.get("s1")["messages"] == []


def test_history_is_capped():
    store = InMemoryChatSessionStore(ttl_seconds=60, max_messages=4)

    for n in range(5):
        store.append_messages("s1", "u1", {"content": f"q{n}"}, {"content": f"a{n}"})

    assert [m["content"] for m in store.get("s1")["messages"]] == ["q3", "a3", "q4", "a4"]


def test_concurrent_messages_keep_turns_paired():
    store = InMemoryChatSessionStore(ttl_seconds=60)
    agent = ChatAgentClient("")

    def send(n):
        handle_message(store, agent, message=f"donate {n}", user_id="u1", session_id="s1", language="en")

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(send, range(40)))

    messages = store.get("s1")["messages"]
    assert len(messages) == 80
    assert [m["role"] for m in messages] == ["user", "assistant"] * 40

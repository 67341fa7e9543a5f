import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from db import get_session
from main import app
from routers.chat import get_chat_agent, get_chat_store
from services.chat import ChatAgentClient, InMemoryChatSessionStore
from services.notifications import Notifier, get_notifier


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    def notify(self, event, recipients, payload):
        self.events.append((event, recipients, payload))

    def of(self, event):
        return [e for e in self.events if e[0] == event]


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="notifier")
def notifier_fixture():
    return RecordingNotifier()


@pytest.fixture(name="chat_store")
def chat_store_fixture():
    return InMemoryChatSessionStore(ttl_seconds=60)


@pytest.fixture(name="chat_agent")
def chat_agent_fixture():
    return ChatAgentClient("")


@pytest.fixture(name="client")
def client_fixture(session, notifier, chat_store, chat_agent):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_chat_store] = lambda: chat_store
    app.dependency_overrides[get_chat_agent] = lambda: chat_agent

    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from errors import NotFoundError
from responses import ok
from schemas import ChatMessageIn, IntentRequest
from services.chat import ChatAgentClient, ChatSessionStore, analyze_intent, handle_message

router = APIRouter(tags=["chat"])


def get_chat_store(request: Request) -> ChatSessionStore:
    return request.app.state.chat_store


def get_chat_agent(request: Request) -> ChatAgentClient:
    return request.app.state.chat_agent


ChatStoreDep = Annotated[ChatSessionStore, Depends(get_chat_store)]
ChatAgentDep = Annotated[ChatAgentClient, Depends(get_chat_agent)]


@router.post("/message")
def send_message(payload: ChatMessageIn, store: ChatStoreDep, agent: ChatAgentDep):
    """Send a message to the AI assistant; falls back to local replies if it is down."""
    return ok(
        handle_message(
            store,
            agent,
            message=payload.message,
            user_id=payload.user_id,
            session_id=payload.session_id,
            language=payload.language,
            context=payload.context,
        )
    )


@router.get("/sessions/{session_id}")
def get_session(session_id: str, store: ChatStoreDep):
    session = store.get(session_id)
    if session is None:
        raise NotFoundError("Chat session not found")
    return ok(session)


@router.delete("/sessions/{session_id}")
def clear_session(session_id: str, store: ChatStoreDep):
    if not store.delete(session_id):
        raise NotFoundError("Chat session not found")
    return ok(message="Chat session cleared successfully")


@router.post("/analyze-intent")
def detect_intent(payload: IntentRequest):
    return ok(analyze_intent(payload.message, payload.language))

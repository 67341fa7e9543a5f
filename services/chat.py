"""
Chat assistant: conversation sessions plus the proxy to the external AI agent.

The agent call is bounded by a timeout. On timeout or any agent failure the
reply comes from a local keyword-based responder instead.
"""

import copy
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 6
MAX_SESSION_MESSAGES = 100

INTENT_KEYWORDS = {
    "donation": {
        "bn": ["দান", "দিতে চাই", "খাবার দেব", "কাপড় দেব", "সাহায্য করব"],
        "en": ["donate", "give", "want to help", "have food", "have clothes"],
    },
    "request": {
        "bn": ["সাহায্য চাই", "দরকার", "খাবার লাগবে", "কাপড় লাগবে", "বন্যা"],
        "en": ["need help", "require", "need food", "need clothes", "flood", "disaster"],
    },
    "volunteer": {
        "bn": ["স্বেচ্ছাসেবক", "পৌঁছাতে পারি", "সাহায্য করতে পারি", "গাড়ি আছে"],
        "en": ["volunteer", "can deliver", "can help", "have vehicle", "transport"],
    },
}

FALLBACK_REPLIES = {
    "bn": {
        "donation": {
            "text": "আপনি কি ধরনের জিনিস দান করতে চান? খাবার, কাপড়, ওষুধ নাকি অন্য কিছু?",
            "suggestions": ["খাবার", "কাপড়", "ওষুধ", "কম্বল"],
            "actions": ["show_donation_form"],
        },
        "request": {
            "text": "আপনার কোন এলাকার জন্য সাহায্য দরকার? আমি আশেপাশের দাতাদের খুঁজে দিতে পারি।",
            "suggestions": ["ঢাকা", "চট্টগ্রাম", "সিলেট", "রাজশাহী"],
            "actions": ["show_request_form"],
        },
        "volunteer": {
            "text": "স্বেচ্ছাসেবক হিসেবে আপনি কি ধরনের সহায়তা করতে পারবেন?",
            "suggestions": ["খাবার পৌঁছানো", "কাপড় বিতরণ", "যানবাহন সহায়তা"],
            "actions": ["show_volunteer_registration"],
        },
        "general": {
            "text": "আমি আপনাকে দান, সাহায্যের অনুরোধ, বা স্বেচ্ছাসেবা নিয়ে সাহায্য করতে পারি। কিভাবে সহায়তা করতে পারি?",
            "suggestions": ["দান করতে চাই", "সাহায্য চাই", "স্বেচ্ছাসেবক হতে চাই"],
            "actions": ["show_main_menu"],
        },
    },
    "en": {
        "donation": {
            "text": "What type of items would you like to donate? Food, clothes, medicine, or something else?",
            "suggestions": ["Food", "Clothes", "Medicine", "Blankets"],
            "actions": ["show_donation_form"],
        },
        "request": {
            "text": "Which area needs assistance? I can help find nearby donors.",
            "suggestions": ["Dhaka", "Chittagong", "Sylhet", "Rajshahi"],
            "actions": ["show_request_form"],
        },
        "volunteer": {
            "text": "How would you like to help as a volunteer?",
            "suggestions": ["Food delivery", "Clothes distribution", "Transportation"],
            "actions": ["show_volunteer_registration"],
        },
        "general": {
            "text": "I can help you with donations, relief requests, or volunteering. How can I assist you?",
            "suggestions": ["I want to donate", "I need help", "I want to volunteer"],
            "actions": ["show_main_menu"],
        },
    },
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def analyze_intent(message: str, language: str = "bn") -> dict:
    """Keyword-based intent detection."""
    lowered = message.lower()
    for category, keywords in INTENT_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords.get(language, keywords["en"])):
            return {"category": category, "confidence": 0.8, "language": language}
    return {"category": "general", "confidence": 0.5, "language": language}


def fallback_reply(message: str, language: str = "bn") -> dict:
    intent = analyze_intent(message, language)
    replies = FALLBACK_REPLIES.get(language, FALLBACK_REPLIES["en"])
    reply = dict(replies.get(intent["category"], replies["general"]))
    reply["intent"] = intent
    reply["ai_generated"] = False
    return reply


# ---------------- Session store -----------------

def _new_session(session_id: str, user_id: str, context: Optional[dict]) -> dict:
    return {
        "id": session_id,
        "user_id": user_id,
        "messages": [],
        "context": context or {},
        "created_at": _now_iso(),
    }


class ChatSessionStore:
    """
    Keyed store of chat sessions. Sessions are plain JSON-ready dicts and
    callers only ever see copies; history changes go through append_messages.
    """

    def get(self, session_id: str) -> Optional[dict]:
        raise NotImplementedError

    def get_or_create(self, session_id: str, user_id: str, context: Optional[dict] = None) -> dict:
        raise NotImplementedError

    def append_messages(self, session_id: str, user_id: str, *messages: dict) -> dict:
        raise NotImplementedError

    def delete(self, session_id: str) -> bool:
        raise NotImplementedError


class InMemoryChatSessionStore(ChatSessionStore):
    """
    Process-local store. A session expires `ttl_seconds` after it was last
    touched; expired sessions are dropped lazily on access. Only the last
    `max_messages` messages of a session are kept.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        max_messages: int = MAX_SESSION_MESSAGES,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_messages = max_messages
        self._clock = clock
        self._sessions: dict[str, dict] = {}
        self._touched: dict[str, float] = {}
        self._lock = threading.Lock()

    def _evict_expired(self) -> None:
        cutoff = self._clock() - self.ttl_seconds
        for session_id in [sid for sid, touched in self._touched.items() if touched < cutoff]:
            self._sessions.pop(session_id, None)
            self._touched.pop(session_id, None)

    def _load(self, session_id: str, user_id: str, context: Optional[dict]) -> dict:
        self._evict_expired()
        session = self._sessions.get(session_id)
        if session is None:
            session = _new_session(session_id, user_id, context)
            self._sessions[session_id] = session
        self._touched[session_id] = self._clock()
        return session

    def get(self, session_id: str) -> Optional[dict]:
        with self._lock:
            self._evict_expired()
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session is not None else None

    def get_or_create(self, session_id: str, user_id: str, context: Optional[dict] = None) -> dict:
        with self._lock:
            return copy.deepcopy(self._load(session_id, user_id, context))

    def append_messages(self, session_id: str, user_id: str, *messages: dict) -> dict:
        with self._lock:
            session = self._load(session_id, user_id, None)
            history = session["messages"]
            history.extend(copy.deepcopy(list(messages)))
            if len(history) > self.max_messages:
                del history[: len(history) - self.max_messages]
            session["updated_at"] = _now_iso()
            return copy.deepcopy(session)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            self._touched.pop(session_id, None)
            return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._sessions)


# ---------------- Agent client -----------------

class ChatAgentClient:
    def __init__(self, url: str, api_key: str = "", timeout: float = 12.0):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout

    def _payload(self, message: str, language: str, session: dict) -> dict:
        context = {
            "userMessage": message,
            "language": language,
            "sessionId": session["id"],
            "conversationHistory": session["messages"][-HISTORY_WINDOW:],
            "userContext": {
                "userId": session["user_id"],
                "platform": "jonoshongjog_relief_platform",
                "capabilities": [
                    "donation_guidance",
                    "request_assistance",
                    "volunteer_coordination",
                    "disaster_info",
                ],
            },
            "responseRequirements": {
                "language": language,
                "tone": "respectful_bangla" if language == "bn" else "helpful_english",
                "maxLength": 300,
                "includeActionSuggestions": True,
                "culturalContext": "bangladesh_relief_distribution",
            },
        }
        return {"input_value": json.dumps(context), "input_type": "json", "output_type": "json"}

    @staticmethod
    def _parse(data) -> dict:
        if not isinstance(data, dict):
            raise ValueError("Agent response is not a JSON object")
        outputs = data.get("outputs")
        if outputs and outputs[0].get("outputs"):
            result = outputs[0]["outputs"][0]["results"]
        elif "result" in data:
            result = data["result"]
        else:
            raise ValueError("Unrecognised agent response format")
        if isinstance(result, str):
            result = json.loads(result)
        if not isinstance(result, dict):
            raise ValueError("Agent result is not a JSON object")
        return result

    def ask(self, message: str, language: str, session: dict) -> dict:
        if not self.url:
            return fallback_reply(message, language)

        try:
            response = requests.post(
                self.url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "User-Agent": "Jonoshongjog-Relief-Platform/1.0",
                },
                json=self._payload(message, language, session),
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = self._parse(response.json())
            return {
                "text": result.get("response") or result.get("message") or "আমি বুঝতে পারছি না। আবার বলুন।",
                "suggestions": result.get("suggestions") or [],
                "actions": result.get("actions") or [],
                "intent": result.get("detected_intent") or {"category": "general", "confidence": 0.5},
                "ai_generated": True,
            }
        except (requests.RequestException, ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            logger.warning("Chat agent unavailable, using fallback reply: %s", e)
            return fallback_reply(message, language)


def handle_message(
    store: ChatSessionStore,
    agent: ChatAgentClient,
    *,
    message: str,
    user_id: str,
    session_id: str,
    language: str = "bn",
    context: Optional[dict] = None,
) -> dict:
    """
    Record one user turn and the assistant's reply.
    Both messages are appended to the stored history together.
    """
    session = store.get_or_create(session_id, user_id, context)
    user_message = {
        "id": uuid.uuid4().hex,
        "role": "user",
        "content": message,
        "language": language,
        "timestamp": _now_iso(),
    }
    # the agent sees the pending user turn; the store is updated after the reply
    session["messages"].append(user_message)

    reply = agent.ask(message, language, session)

    assistant_message = {
        "id": uuid.uuid4().hex,
        "role": "assistant",
        "content": reply["text"],
        "language": language,
        "timestamp": _now_iso(),
        "suggestions": reply.get("suggestions", []),
        "actions": reply.get("actions", []),
        "ai_generated": reply.get("ai_generated", False),
    }
    session = store.append_messages(session_id, user_id, user_message, assistant_message)

    return {
        "session_id": session_id,
        "message": assistant_message,
        "session_info": {
            "message_count": len(session["messages"]),
            "context": session["context"],
        },
    }

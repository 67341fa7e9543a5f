import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import (
    CHAT_AGENT_API_KEY,
    CHAT_AGENT_TIMEOUT,
    CHAT_AGENT_URL,
    CHAT_SESSION_TTL_SECONDS,
    DEBUG,
    FRONTEND_URL,
    LOG_LEVEL,
)
from db import create_db_and_tables
from errors import AppError, PreconditionFailed
from routers import auth, chat, deliveries, donations, matching, requests, volunteers
from services.chat import ChatAgentClient, InMemoryChatSessionStore
from services.notifications import LoggingNotifier

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Jonoshongjog")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL, "http://localhost:5174"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.notifier = LoggingNotifier()
app.state.chat_store = InMemoryChatSessionStore(ttl_seconds=CHAT_SESSION_TTL_SECONDS)
app.state.chat_agent = ChatAgentClient(
    CHAT_AGENT_URL,
    api_key=CHAT_AGENT_API_KEY,
    timeout=CHAT_AGENT_TIMEOUT,
)


@app.on_event("startup")
def on_startup() -> None:
    create_db_and_tables()
    logger.info("Jonoshongjog backend started (chat agent %s)", "on" if CHAT_AGENT_URL else "off")


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    body = {"success": False, "error": exc.message}
    if exc.details:
        body["details"] = exc.details
    if isinstance(exc, PreconditionFailed) and exc.allowed:
        body["allowed"] = exc.allowed
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Validation failed",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    error = "Route not found" if exc.status_code == 404 and exc.detail == "Not Found" else exc.detail
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": error})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "message": str(exc) if DEBUG else "Something went wrong",
        },
    )


@app.get("/api/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "jonoshongjog-backend",
    }


app.include_router(auth.router, prefix="/api/auth")
app.include_router(donations.router, prefix="/api/donations")
app.include_router(requests.router, prefix="/api/requests")
app.include_router(volunteers.router, prefix="/api/volunteers")
app.include_router(matching.router, prefix="/api/matching")
app.include_router(deliveries.router, prefix="/api/deliveries")
app.include_router(chat.router, prefix="/api/chat")

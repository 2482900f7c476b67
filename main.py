import logging
import os
import time
from typing import Callable, Dict, List, Optional

from fastapi import APIRouter, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from accounts import AccountStore
from chat import ChatService
from database import KVStore, create_store
from errors import ChatError
from message_log import MessageLog
from presence import PresenceTracker
from room_directory import RoomDirectory
from rooms import PUBLIC_ROOM
from schemas import AuthRequest, Message, PresenceRequest, RoomSummary, SendMessageRequest

# Chat Config
PRESENCE_TTL_SECONDS = int(os.getenv("PRESENCE_TTL_SECONDS", 300))
MESSAGE_RETENTION_DAYS = int(os.getenv("MESSAGE_RETENTION_DAYS", 90))
MAX_MESSAGES_PER_PARTITION = int(os.getenv("MAX_MESSAGES_PER_PARTITION", 2000))
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", 1000))
HISTORY_WINDOW_DAYS = int(os.getenv("HISTORY_WINDOW_DAYS", 7))
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", 200))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CURSOR_PARAM_PREFIX = "lastId_"

logging.basicConfig(
    level=LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

router = APIRouter()


def build_chat_service(store: KVStore) -> ChatService:
    return ChatService(
        accounts=AccountStore(store),
        presence=PresenceTracker(store, ttl_seconds=PRESENCE_TTL_SECONDS),
        messages=MessageLog(
            store,
            max_messages=MAX_MESSAGES_PER_PARTITION,
            retention_days=MESSAGE_RETENTION_DAYS,
        ),
        rooms=RoomDirectory(store, retention_days=MESSAGE_RETENTION_DAYS),
        max_message_length=MAX_MESSAGE_LENGTH,
        window_days=HISTORY_WINDOW_DAYS,
        history_limit=HISTORY_LIMIT,
    )


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "status": status_code}},
    )


def create_app(
    store: Optional[KVStore] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    if store is None:
        store = create_store(clock=clock)

    app = FastAPI(title="Chat API")
    app.state.store = store
    app.state.clock = clock
    app.state.chat = build_chat_service(store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
        max_age=86400,
    )

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
        return error_response(exc.message, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
            for err in exc.errors()
        )
        return error_response(problems or "Invalid request", status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = "Route not found" if exc.status_code == 404 else str(exc.detail)
        return error_response(message, exc.status_code)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return error_response("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    app.include_router(router)
    return app


def get_chat(request: Request) -> ChatService:
    return request.app.state.chat


def now_ms(request: Request) -> int:
    return int(request.app.state.clock() * 1000)


@router.get("/")
def read_root():
    return {"message": "Chat API running"}


@router.get("/health")
def health(request: Request):
    store = request.app.state.store
    return {"status": "ok", "store": getattr(store, "backend", type(store).__name__)}


# ---------- Auth Endpoints ----------
@router.post("/auth")
def auth(payload: AuthRequest, request: Request, response: Response):
    _, created = get_chat(request).authenticate(payload.username, payload.password, now_ms(request))
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return {"success": True}


@router.post("/auth/register", status_code=status.HTTP_201_CREATED)
def register(payload: AuthRequest, request: Request):
    get_chat(request).register(payload.username, payload.password, now_ms(request))
    return {"success": True}


@router.post("/auth/login")
def login(payload: AuthRequest, request: Request):
    get_chat(request).login(payload.username, payload.password, now_ms(request))
    return {"success": True}


# ---------- Presence ----------
@router.post("/presence")
def heartbeat(payload: PresenceRequest, request: Request):
    get_chat(request).heartbeat(payload.username, now_ms(request))
    return {"success": True}


@router.post("/presence/offline")
def go_offline(payload: PresenceRequest, request: Request):
    get_chat(request).go_offline(payload.username)
    return {"success": True}


@router.get("/presence", response_model=List[str])
def list_active_users(request: Request):
    return get_chat(request).active_users()


# ---------- Messages ----------
@router.post("/messages", status_code=status.HTTP_201_CREATED)
def send_message(payload: SendMessageRequest, request: Request):
    message = get_chat(request).send(payload.sender, payload.message, payload.to, now_ms(request))
    return {"success": True, "messageId": message.id}


@router.get("/messages")
def get_messages(
    request: Request,
    user: Optional[str] = None,
    roomId: Optional[str] = None,
    roomIds: Optional[str] = None,
):
    chat = get_chat(request)
    if roomIds is not None:
        room_ids = {r.strip() for r in roomIds.split(",") if r.strip()}
        cursors: Dict[str, str] = {
            name[len(CURSOR_PARAM_PREFIX):]: value
            for name, value in request.query_params.items()
            if name.startswith(CURSOR_PARAM_PREFIX)
        }
        result = chat.fetch_incremental(room_ids, cursors, user, now_ms(request))
        return {room: [m.model_dump() for m in msgs] for room, msgs in result.items()}

    messages: List[Message] = chat.fetch_window(user, roomId or PUBLIC_ROOM, now_ms(request))
    return [m.model_dump() for m in messages]


# ---------- Rooms ----------
@router.get("/rooms", response_model=List[RoomSummary])
def list_rooms(request: Request, user: Optional[str] = None):
    return get_chat(request).list_rooms(user)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

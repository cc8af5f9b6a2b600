"""
Relay server: FastAPI REST surface with a Socket.IO live channel in front.

    POST   /api/chat/send          human message (stateless fallback path)
    GET    /api/chat/history       windowed history
    DELETE /api/chat/history       clear history
    GET    /api/chat/pending       handoff queue for the assistant
    DELETE /api/chat/pending/{id}  acknowledge one pending entry
    DELETE /api/chat/pending       clear the handoff queue
    POST   /api/chat/respond       assistant response
    POST   /api/chat/status        assistant status broadcast
    GET    /api/health             liveness

Every /api route counts against one shared per-client rate limit. The two
write routes that humans trigger carry a tighter limit of their own.
"""

# No postponed annotations here: FastAPI reads route signatures through the
# rate limit wrapper.
import logging
import time
from typing import Any, Optional

import socketio
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from skipper_chat import __version__
from skipper_chat.config import ServerConfig
from skipper_chat.errors import ParseError, SkipperChatError, StoreIOError, ValidationError
from skipper_chat.models.events import ENVELOPE_EVENT
from skipper_chat.models.message import utc_now_iso
from skipper_chat.server.coordinator import DeliveryCoordinator
from skipper_chat.server.hub import ConnectionHub, Session
from skipper_chat.server.store import JsonFileMessageStore, MessageStore

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    ParseError: 400,
    StoreIOError: 500,
}

# Routes under the tighter write limit.
WRITE_ROUTES = {("POST", "/api/chat/send"), ("DELETE", "/api/chat/history")}


class SendRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Any = None
    client_id: Optional[str] = Field(default=None, alias="clientId")


class RespondRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Any = None
    reply_to: Optional[str] = Field(default=None, alias="replyTo")


def _error_body(error: str, message: str, **extra: Any) -> dict[str, Any]:
    return {"error": error, "message": message, **extra}


def _limit_message(request: Request, exc: RateLimitExceeded) -> str:
    if (request.method, request.url.path) in WRITE_ROUTES:
        return f"Write operations limited to {exc.detail}."
    return f"Please slow down. Limit is {exc.detail}."


class RelayServer:
    """Owns one store, one hub and one coordinator for the process lifetime."""

    def __init__(self, config: Optional[ServerConfig] = None, store: Optional[MessageStore] = None):
        self.config = config or ServerConfig()
        self.store = store or JsonFileMessageStore(self.config.data_dir, self.config.max_message_length)
        self.hub = ConnectionHub()
        self.coordinator = DeliveryCoordinator(self.store, self.hub, self.config.max_message_length)
        self.hub.set_message_handler(self.coordinator.handle_session_message)
        self.started_at = time.monotonic()

        self.api = self._build_api()
        self.sio = self._build_socketio()
        self.asgi = socketio.ASGIApp(self.sio, other_asgi_app=self.api,
                                     socketio_path=self.config.socketio_path)

    # -- live channel ------------------------------------------------------------

    def _build_socketio(self) -> socketio.AsyncServer:
        sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=self.config.cors_origins())
        hub = self.hub

        @sio.event
        async def connect(sid: str, environ: dict[str, Any], auth: Any = None) -> None:
            async def send(text: str) -> None:
                await sio.emit(ENVELOPE_EVENT, text, to=sid)

            await hub.on_connect(Session(sid, send))

        @sio.event
        async def disconnect(sid: str, *_args: Any) -> None:
            hub.on_disconnect(sid)

        @sio.on(ENVELOPE_EVENT)
        async def on_envelope(sid: str, data: Any) -> None:
            session = hub.get(sid)
            if session is None:
                return
            await hub.on_inbound_envelope(session, data)

        return sio

    # -- REST --------------------------------------------------------------------

    def _build_api(self) -> FastAPI:
        app = FastAPI(title="skipper-chat", version=__version__)
        app.state.relay = self
        limiter = Limiter(
            key_func=get_remote_address,
            application_limits=[self.config.rate_limit],
            enabled=self.config.rate_limit_enabled,
        )
        app.state.limiter = limiter
        app.add_middleware(SlowAPIMiddleware)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.cors_origins(),
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "X-API-Key"],
            max_age=86400,
        )

        max_body = self.config.max_body_bytes

        @app.middleware("http")
        async def _limit_body_size(request: Request, call_next):
            length = request.headers.get("content-length")
            if length is not None and length.isdigit() and int(length) > max_body:
                message = f"Request body exceeds {max_body} bytes"
                return JSONResponse(status_code=413, content=_error_body("Payload Too Large", message))
            return await call_next(request)

        @app.exception_handler(SkipperChatError)
        async def _relay_error(_request: Request, exc: SkipperChatError) -> JSONResponse:
            status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
            if status >= 500:
                logger.error("Request failed: %s", exc)
            label = "Bad Request" if status == 400 else "Internal Server Error"
            return JSONResponse(status_code=status, content=_error_body(label, str(exc), code=exc.code))

        @app.exception_handler(RequestValidationError)
        async def _bad_request(_request: Request, exc: RequestValidationError) -> JSONResponse:
            return JSONResponse(status_code=400, content=_error_body("Bad Request", "Invalid request body"))

        @app.exception_handler(RateLimitExceeded)
        def _rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
            logger.warning("Rate limit hit by %s on %s", get_remote_address(request), request.url.path)
            return JSONResponse(status_code=429, content=_error_body("Too many requests", _limit_message(request, exc)))

        @app.exception_handler(StarletteHTTPException)
        async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
            if exc.status_code == 404:
                message = f"Endpoint {request.method} {request.url.path} does not exist"
                return JSONResponse(status_code=404, content=_error_body("Not Found", message))
            return JSONResponse(status_code=exc.status_code, content=_error_body("Error", str(exc.detail)))

        coordinator = self.coordinator
        store = self.store

        @app.get("/api/health")
        async def health() -> dict[str, Any]:
            return {
                "alive": True,
                "timestamp": utc_now_iso(),
                "serverUptime": int(time.monotonic() - self.started_at),
                "connections": self.hub.connection_count,
                "pending": len(store.list_pending()),
                "version": __version__,
            }

        @app.post("/api/chat/send")
        @limiter.limit(self.config.write_rate_limit)
        async def chat_send(request: Request, body: SendRequest) -> dict[str, Any]:
            message = await coordinator.accept_user_message(body.message, client_id=body.client_id)
            return {"success": True, "message": message.to_wire(), "timestamp": message.timestamp}

        @app.get("/api/chat/history")
        async def chat_history(limit: Optional[int] = None, before: Optional[str] = None,
                               after: Optional[str] = None) -> dict[str, Any]:
            return store.history(limit, before=before, after=after).to_wire()

        @app.delete("/api/chat/history")
        @limiter.limit(self.config.write_rate_limit)
        async def chat_clear_history(request: Request) -> dict[str, Any]:
            count = store.clear()
            logger.info("Chat history cleared (%d messages)", count)
            return {"success": True, "cleared": count, "message": f"Cleared {count} messages"}

        @app.get("/api/chat/pending")
        async def chat_pending() -> dict[str, Any]:
            pending = store.list_pending()
            return {
                "pending": [p.to_wire() for p in pending],
                "count": len(pending),
                "hasMessages": bool(pending),
            }

        @app.delete("/api/chat/pending/{message_id}")
        async def chat_remove_pending(message_id: str) -> dict[str, Any]:
            removed = store.remove_pending(message_id)
            remaining = len(store.list_pending())
            logger.info("Removed %d message(s) from pending queue", removed)
            return {"success": removed > 0, "removed": removed, "remaining": remaining}

        @app.delete("/api/chat/pending")
        async def chat_clear_pending() -> dict[str, Any]:
            count = store.clear_pending()
            logger.info("Cleared %d pending messages", count)
            return {"success": True, "cleared": count}

        @app.post("/api/chat/respond")
        async def chat_respond(body: RespondRequest) -> dict[str, Any]:
            message, removed = await coordinator.accept_assistant_message(body.message, reply_to=body.reply_to)
            return {
                "success": True,
                "message": message.to_wire(),
                "timestamp": message.timestamp,
                "removedPending": removed,
            }

        @app.post("/api/chat/status")
        async def chat_status(body: dict[str, Any]) -> dict[str, Any]:
            recipients = await coordinator.publish_status(body)
            return {"success": True, "recipients": recipients}

        return app


def create_app(config: Optional[ServerConfig] = None) -> socketio.ASGIApp:
    return RelayServer(config).asgi


def run_server(config: ServerConfig, log_level: str = "info") -> None:
    import uvicorn

    app = create_app(config)
    logger.info("Skipper chat relay running at http://%s:%d", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port, log_level=log_level, log_config=None)

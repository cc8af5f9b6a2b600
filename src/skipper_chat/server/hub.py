"""
Connection hub: registry of live sessions and envelope fan-out.

The hub knows nothing about Socket.IO. Each physical connection is wrapped in a
Session whose ``send`` coroutine writes one serialized envelope.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, Union

from skipper_chat.errors import ParseError, SkipperChatError
from skipper_chat.models.envelope import Envelope, build_envelope, parse_envelope
from skipper_chat.models.events import INBOUND_TYPES, C2SEvent, S2CEvent
from skipper_chat.models.message import utc_now_iso

logger = logging.getLogger(__name__)

SendFn = Callable[[str], Awaitable[None]]
MessageHandler = Callable[["Session", dict[str, Any]], Awaitable[None]]


class Session:
    """One open bidirectional connection. Closed is terminal."""

    __slots__ = ("id", "_send", "closed", "connected_at")

    def __init__(self, session_id: str, send: SendFn):
        self.id = session_id
        self._send = send
        self.closed = False
        self.connected_at = utc_now_iso()

    async def send(self, text: str) -> None:
        if self.closed:
            raise ConnectionResetError(f"session {self.id} is closed")
        await self._send(text)

    def close(self) -> None:
        self.closed = True

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, closed={self.closed})"


class ConnectionHub:
    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._message_handler: Optional[MessageHandler] = None

    @property
    def connection_count(self) -> int:
        return len(self._sessions)

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        """Handler for inbound chat:message payloads (normally the coordinator)."""
        self._message_handler = handler

    async def on_connect(self, session: Session) -> None:
        self._sessions[session.id] = session
        logger.info("Session %s connected (%d open)", session.id, len(self._sessions))
        await self.send_to(session, build_envelope(
            S2CEvent.CONNECTED,
            {"sessionId": session.id, "timestamp": utc_now_iso()},
        ))

    def on_disconnect(self, session: Union[Session, str]) -> None:
        session_id = session if isinstance(session, str) else session.id
        existing = self._sessions.pop(session_id, None)
        if existing is not None:
            existing.close()
            logger.info("Session %s disconnected (%d open)", session_id, len(self._sessions))

    async def on_inbound_envelope(self, session: Session, raw: Any) -> None:
        try:
            envelope = parse_envelope(raw)
        except ParseError as e:
            logger.debug("Bad envelope from %s: %s", session.id, e)
            await self.send_error(session, e)
            return

        if envelope.type not in INBOUND_TYPES:
            await self.send_error(session, ParseError(f"Unknown message type: {envelope.type}", code="unknown_type"))
            return

        if envelope.type == C2SEvent.PING:
            await self.send_to(session, build_envelope(S2CEvent.PONG, {"timestamp": utc_now_iso()}))
        elif envelope.type == C2SEvent.CHAT_TYPING:
            await self.broadcast_to_others(session, envelope)
        elif envelope.type == C2SEvent.CHAT_MESSAGE:
            if self._message_handler is None:
                await self.send_error(session, SkipperChatError("unavailable", "Message delivery is not available"))
                return
            try:
                await self._message_handler(session, envelope.payload)
            except SkipperChatError as e:
                # Validation and store failures go back to the sender; the session stays open.
                logger.warning("Rejected message from %s: %s", session.id, e)
                await self.send_error(session, e)

    async def send_error(self, session: Session, error: SkipperChatError) -> None:
        await self.send_to(session, build_envelope(S2CEvent.ERROR, {"code": error.code}, message=str(error)))

    async def send_to(self, session: Session, event: Envelope) -> bool:
        return await self._deliver(session, event.dumps())

    async def broadcast_to_all(self, event: Envelope) -> int:
        return await self._fan_out(event.dumps(), exclude=None)

    async def broadcast_to_others(self, origin: Session, event: Envelope) -> int:
        return await self._fan_out(event.dumps(), exclude=origin.id)

    async def _fan_out(self, text: str, exclude: Optional[str]) -> int:
        delivered = 0
        for session in self.sessions():
            if session.id == exclude:
                continue
            if await self._deliver(session, text):
                delivered += 1
        return delivered

    async def _deliver(self, session: Session, text: str) -> bool:
        try:
            await session.send(text)
            return True
        except Exception as e:
            logger.warning("Dropping session %s after send failure: %s", session.id, e)
            self.on_disconnect(session)
            return False

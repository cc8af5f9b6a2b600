"""
Delivery coordinator: binds network input to the store and the hub.

Both transports (REST and the live channel) funnel sends through here. The
coordinator does no file or socket I/O itself.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from skipper_chat.models.envelope import build_envelope
from skipper_chat.models.events import S2CEvent
from skipper_chat.models.message import MAX_MESSAGE_LENGTH, Message, Role, validate_content
from skipper_chat.server.hub import ConnectionHub, Session
from skipper_chat.server.store import MessageStore

logger = logging.getLogger(__name__)


def sanitize_for_log(text: str, limit: int = 100) -> str:
    return text.replace("\r", " ").replace("\n", " ")[:limit]


class DeliveryCoordinator:
    def __init__(self, store: MessageStore, hub: ConnectionHub,
                 max_message_length: int = MAX_MESSAGE_LENGTH):
        self._store = store
        self._hub = hub
        self._max_length = max_message_length

    @property
    def store(self) -> MessageStore:
        return self._store

    @property
    def hub(self) -> ConnectionHub:
        return self._hub

    async def accept_user_message(self, content: Any, *, origin: Optional[Session] = None,
                                  client_id: Optional[str] = None) -> Message:
        """Persist a human message, queue it for the assistant and fan it out.

        A repeated client_id returns the message already accepted for it, so a
        client that retries over the other transport never creates a duplicate.
        """
        text = validate_content(content, self._max_length)

        message = self._store.find_by_client_id(client_id) if client_id else None
        if message is not None:
            logger.info("Duplicate submission for client id %s, returning %s", client_id, message.id)
        else:
            message = self._store.append(Role.USER, text, client_id=client_id)
            self._store.enqueue_pending(message)
            logger.info("Chat message received: \"%s\"", sanitize_for_log(text))

        payload = message.to_wire()
        if origin is not None:
            await self._hub.send_to(origin, build_envelope(S2CEvent.CHAT_MESSAGE_ACK, payload))
            await self._hub.broadcast_to_others(origin, build_envelope(S2CEvent.CHAT_MESSAGE, payload))
        else:
            await self._hub.broadcast_to_all(build_envelope(S2CEvent.CHAT_MESSAGE, payload))
        return message

    async def accept_assistant_message(self, content: Any, *,
                                       reply_to: Optional[str] = None) -> tuple[Message, int]:
        """Persist an assistant response, clear its pending entry and broadcast it.

        Returns the message and how many pending entries were removed (0 or 1).
        """
        text = validate_content(content, self._max_length)
        message = self._store.append(Role.ASSISTANT, text, reply_to=reply_to)
        removed = self._store.remove_pending(reply_to) if reply_to else 0
        logger.info("Assistant response sent: \"%s\"", sanitize_for_log(text, 50))
        await self._hub.broadcast_to_all(build_envelope(S2CEvent.CHAT_RESPONSE, message.to_wire()))
        return message, removed

    async def publish_status(self, status: dict[str, Any]) -> int:
        return await self._hub.broadcast_to_all(build_envelope(S2CEvent.STATUS_UPDATE, status))

    async def handle_session_message(self, session: Session, payload: dict[str, Any]) -> None:
        """Inbound chat:message from the live channel."""
        client_id = payload.get("clientId")
        await self.accept_user_message(
            payload.get("content"),
            origin=session,
            client_id=client_id if isinstance(client_id, str) and client_id else None,
        )

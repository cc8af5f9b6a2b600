"""
Delivery reconciler: optimistic local message list merged with server state.

Submit path:
  1. append a provisional ``temp_*`` message (pending-local)
  2. send over the live session and wait ``ack_timeout`` for its ack
  3. otherwise send over REST
  4. replace the provisional entry in place with the confirmed message

Confirmed messages are matched by final id, provisional ones by the client id
the reconciler generated. Content is never used for matching.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from skipper_chat.config import ClientConfig
from skipper_chat.errors import AckTimeoutError, SkipperChatError, ValidationError
from skipper_chat.models.envelope import Envelope
from skipper_chat.models.events import S2CEvent
from skipper_chat.models.message import (
    MAX_MESSAGE_LENGTH,
    DeliveryState,
    Message,
    Role,
    utc_now_iso,
    validate_content,
)
from skipper_chat.client.api import ChatAPI
from skipper_chat.client.connection import ConnectionManager
from skipper_chat.client.scheduler import ScheduledTask, TaskScheduler

logger = logging.getLogger(__name__)

LOCAL_ID_PREFIX = "temp_"


def is_local_id(message_id: str) -> bool:
    return message_id.startswith(LOCAL_ID_PREFIX)


class DeliveryReconciler:
    def __init__(
        self,
        connection: ConnectionManager,
        api: ChatAPI,
        config: Optional[ClientConfig] = None,
        scheduler: Optional[TaskScheduler] = None,
        max_message_length: int = MAX_MESSAGE_LENGTH,
        on_change: Optional[Callable[[list[Message]], None]] = None,
        on_typing: Optional[Callable[[dict[str, Any]], None]] = None,
        on_status: Optional[Callable[[dict[str, Any]], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self._connection = connection
        self._api = api
        self._config = config or ClientConfig()
        self._scheduler = scheduler or TaskScheduler()
        self._max_length = max_message_length
        self.on_change = on_change
        self.on_typing = on_typing
        self.on_status = on_status
        self.on_error = on_error

        self.messages: list[Message] = []
        self.last_error: Optional[str] = None
        self._waiters: dict[str, asyncio.Future] = {}
        self._poll_task: Optional[ScheduledTask] = None
        self._remove_handler = connection.add_event_handler(self.handle_envelope)

    # -- lookup ------------------------------------------------------------------

    def find(self, message_id: str) -> Optional[Message]:
        idx = self._index_of_id(message_id)
        return self.messages[idx] if idx is not None else None

    def _index_of_id(self, message_id: str) -> Optional[int]:
        for i, m in enumerate(self.messages):
            if m.id == message_id:
                return i
        return None

    def _index_of_client_id(self, client_id: str) -> Optional[int]:
        for i, m in enumerate(self.messages):
            if m.client_id == client_id:
                return i
        return None

    def last_confirmed_id(self) -> Optional[str]:
        for m in reversed(self.messages):
            if not is_local_id(m.id):
                return m.id
        return None

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(list(self.messages))

    # -- merge -------------------------------------------------------------------

    def merge(self, message: Message) -> Message:
        """Merge a server-confirmed message. Returns the entry now in the list.

        Known final id: duplicate, discarded. Client id of a provisional or
        failed entry: replaces it in place. Client id of an entry confirmed
        under another id: discarded. Anything else is appended.
        """
        idx = self._index_of_id(message.id)
        if idx is not None:
            entry = self.messages[idx]
            self._resolve(message, entry)
            return entry

        if message.client_id:
            idx = self._index_of_client_id(message.client_id)
            if idx is not None:
                entry = self.messages[idx]
                if not is_local_id(entry.id):
                    return entry
                confirmed = message if message.status else message.with_status(DeliveryState.SENT)
                self.messages[idx] = confirmed
                self._changed()
                self._resolve(message, confirmed)
                return confirmed

        self.messages.append(message)
        self._changed()
        return message

    def _resolve(self, incoming: Message, entry: Message) -> None:
        if incoming.role != Role.USER or not incoming.client_id:
            return
        waiter = self._waiters.get(incoming.client_id)
        if waiter is not None and not waiter.done():
            waiter.set_result(entry)

    def _set_status(self, message_id: str, status: DeliveryState) -> Optional[Message]:
        idx = self._index_of_id(message_id)
        if idx is None:
            return None
        updated = self.messages[idx].with_status(status)
        self.messages[idx] = updated
        self._changed()
        return updated

    # -- submit ------------------------------------------------------------------

    async def submit(self, content: str) -> Message:
        """Send a message. Never raises for delivery failures.

        Raises ValidationError for empty or over-length text, in which case
        nothing is added to the list. A message that could not be delivered
        stays in the list as ``failed``.
        """
        text = validate_content(content, self._max_length)
        local_id = f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"
        provisional = Message(
            id=local_id,
            role=Role.USER,
            content=text,
            timestamp=utc_now_iso(),
            status=DeliveryState.PENDING_LOCAL,
            client_id=local_id,
        )
        self.messages.append(provisional)
        self._changed()
        return await self._deliver(provisional)

    async def retry(self, message_id: str) -> Message:
        """Resend a failed message, keeping its position and client id."""
        entry = self.find(message_id)
        if entry is None or entry.status != DeliveryState.FAILED.value:
            raise ValidationError(f"No failed message with id {message_id}")
        pending = self._set_status(message_id, DeliveryState.PENDING_LOCAL)
        return await self._deliver(pending or entry)

    async def _deliver(self, entry: Message) -> Message:
        client_id = entry.client_id or entry.id
        text = entry.content
        waiter: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiters[client_id] = waiter
        try:
            if self._connection.send(text, client_id=client_id):
                try:
                    return await self._wait_for_ack(waiter)
                except AckTimeoutError as e:
                    logger.info("%s, sending over REST", e)
            else:
                logger.debug("Live session unavailable, sending over REST")

            try:
                confirmed = await self._api.send(text, client_id=client_id)
            except SkipperChatError as e:
                logger.warning("Send failed: %s", e)
                self.last_error = str(e)
                return self._mark_failed(entry)
            return self.merge(confirmed)
        finally:
            self._waiters.pop(client_id, None)

    async def _wait_for_ack(self, waiter: asyncio.Future) -> Message:
        try:
            return await asyncio.wait_for(waiter, timeout=self._config.ack_timeout)
        except asyncio.TimeoutError:
            raise AckTimeoutError(f"No acknowledgment within {self._config.ack_timeout}s")

    def _mark_failed(self, entry: Message) -> Message:
        idx = self._index_of_client_id(entry.client_id or entry.id)
        if idx is None:
            # List was cleared while the send was in flight.
            return entry.with_status(DeliveryState.FAILED)
        current = self.messages[idx]
        if not is_local_id(current.id):
            # Confirmed through the other transport meanwhile.
            return current
        failed = current.with_status(DeliveryState.FAILED)
        self.messages[idx] = failed
        self._changed()
        return failed

    # -- inbound -----------------------------------------------------------------

    def handle_envelope(self, envelope: Envelope) -> None:
        kind = envelope.type
        if kind in (S2CEvent.CHAT_MESSAGE, S2CEvent.CHAT_MESSAGE_ACK, S2CEvent.CHAT_RESPONSE):
            try:
                message = Message.model_validate(envelope.payload)
            except PydanticValidationError as e:
                logger.debug("Ignoring malformed %s payload: %s", kind, e)
                return
            merged = self.merge(message)
            if kind == S2CEvent.CHAT_RESPONSE and merged.reply_to:
                target = self.find(merged.reply_to)
                if target is not None and target.role == Role.USER:
                    self._set_status(target.id, DeliveryState.DELIVERED)
        elif kind == S2CEvent.CHAT_TYPING:
            if self.on_typing is not None:
                self.on_typing(envelope.payload)
        elif kind == S2CEvent.STATUS_UPDATE:
            if self.on_status is not None:
                self.on_status(envelope.payload)
        elif kind == S2CEvent.ERROR:
            self.last_error = envelope.message or envelope.payload.get("code") or "Unknown error"
            logger.warning("Server error: %s", self.last_error)
            if self.on_error is not None:
                self.on_error(self.last_error)
        elif kind == S2CEvent.CONNECTED:
            # Catch up on anything broadcast while the session was down.
            self._scheduler.spawn(self._poll_quietly(), name="catch-up")

    # -- history and polling -----------------------------------------------------

    async def load_history(self, limit: int = 50) -> int:
        page = await self._api.history(limit=limit)
        before = len(self.messages)
        for message in page.messages:
            self.merge(message)
        return len(self.messages) - before

    async def poll_once(self) -> int:
        """Fetch history after the last confirmed id and merge it. Returns how many were added."""
        page = await self._api.history(limit=50, after=self.last_confirmed_id())
        before = len(self.messages)
        for message in page.messages:
            merged = self.merge(message)
            if message.role == Role.ASSISTANT and merged.reply_to:
                target = self.find(merged.reply_to)
                if target is not None and target.status == DeliveryState.SENT.value:
                    self._set_status(target.id, DeliveryState.DELIVERED)
        return len(self.messages) - before

    async def _poll_quietly(self) -> None:
        try:
            await self.poll_once()
        except SkipperChatError as e:
            logger.debug("Polling failed: %s", e)

    async def _poll_if_disconnected(self) -> None:
        if self._connection.connected:
            return
        await self._poll_quietly()

    def start(self) -> None:
        """Start the polling fallback. It only polls while the live session is down."""
        if self._poll_task is None or self._poll_task.done:
            self._poll_task = self._scheduler.call_every(
                self._config.poll_interval, self._poll_if_disconnected, name="poll",
            )

    def close(self) -> None:
        self._scheduler.cancel_all()
        self._poll_task = None
        self._remove_handler()
        for waiter in self._waiters.values():
            if not waiter.done():
                waiter.cancel()
        self._waiters.clear()

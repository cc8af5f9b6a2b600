"""
Client connection manager: one live session per client instance.

State machine::

    disconnected -> connecting -> connected -> disconnected -> connecting ...
                                                            -> error (retries exhausted)

Every transition into ``disconnected`` schedules a reconnect after
``min(base * 2**attempt + jitter, cap)``. A missed ``pong`` force-closes the
transport, which goes through the same path.
"""

from __future__ import annotations

import logging
import random
import time
from enum import Enum
from typing import Callable, Optional

from skipper_chat.config import ClientConfig
from skipper_chat.errors import ParseError, TransportError
from skipper_chat.models.envelope import Envelope, build_envelope, parse_envelope
from skipper_chat.models.events import C2SEvent, S2CEvent
from skipper_chat.models.message import utc_now_iso
from skipper_chat.client.scheduler import ScheduledTask, TaskScheduler
from skipper_chat.transport.socketio import Transport, TransportFactory, socketio_transport_factory

logger = logging.getLogger(__name__)

EventHandler = Callable[[Envelope], None]
StatusHandler = Callable[["ConnectionStatus"], None]


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


def compute_backoff(attempt: int, base: float = 1.0, cap: float = 30.0, jitter: float = 1.0,
                    rand: Callable[[], float] = random.random) -> float:
    """Reconnect delay for the given attempt (0-based), jittered and capped."""
    return min(base * (2 ** attempt) + rand() * jitter, cap)


class ConnectionManager:
    def __init__(
        self,
        transport_factory: Optional[TransportFactory] = None,
        config: Optional[ClientConfig] = None,
        scheduler: Optional[TaskScheduler] = None,
        rand: Callable[[], float] = random.random,
    ):
        self._config = config or ClientConfig()
        self._factory = transport_factory or socketio_transport_factory(
            self._config.base_url,
            socketio_path=self._config.socketio_path,
            ready_timeout=self._config.ready_timeout,
        )
        self._scheduler = scheduler or TaskScheduler()
        self._rand = rand

        self.status = ConnectionStatus.DISCONNECTED
        self.reconnect_attempt = 0
        self.last_ping_sent_at: Optional[float] = None
        self.last_pong_at: Optional[float] = None
        self.last_reconnect_delay: Optional[float] = None
        self.last_error: Optional[str] = None

        self._transport: Optional[Transport] = None
        self._stopped = True
        self._reconnect_task: Optional[ScheduledTask] = None
        self._ping_task: Optional[ScheduledTask] = None
        self._pong_watch: Optional[ScheduledTask] = None
        self._event_handlers: list[EventHandler] = []
        self._status_handlers: list[StatusHandler] = []

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED and self._transport is not None

    # -- handlers ----------------------------------------------------------------

    def add_event_handler(self, handler: EventHandler) -> Callable[[], None]:
        """Add an envelope handler. Returns a cleanup function."""
        self._event_handlers.append(handler)

        def remove() -> None:
            try:
                self._event_handlers.remove(handler)
            except ValueError:
                pass
        return remove

    def add_status_handler(self, handler: StatusHandler) -> Callable[[], None]:
        self._status_handlers.append(handler)

        def remove() -> None:
            try:
                self._status_handlers.remove(handler)
            except ValueError:
                pass
        return remove

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        logger.debug("Connection %s -> %s", self.status.value, status.value)
        self.status = status
        for handler in list(self._status_handlers):
            handler(status)

    # -- lifecycle ---------------------------------------------------------------

    async def start(self) -> None:
        """Open the live session. Also restarts a manager that gave up (error)."""
        self._stopped = False
        if self.status == ConnectionStatus.ERROR:
            self.reconnect_attempt = 0
            self._set_status(ConnectionStatus.DISCONNECTED)
        await self._connect()

    async def close(self) -> None:
        """Tear down: cancel every timer and close the transport. No reconnect."""
        self._stopped = True
        self._scheduler.cancel_all()
        self._reconnect_task = self._ping_task = self._pong_watch = None
        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                await transport.close()
            except TransportError as e:
                logger.debug("Close failed: %s", e)
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def _connect(self) -> None:
        if self._stopped or self.status in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
            return
        self._set_status(ConnectionStatus.CONNECTING)

        holder: list[Transport] = []
        transport = self._factory(
            lambda text: self._on_message(text),
            lambda reason: self._on_close(holder[0] if holder else None, reason),
        )
        holder.append(transport)
        self._transport = transport
        logger.info("Connecting (attempt %d)", self.reconnect_attempt)

        try:
            await transport.connect()
        except (TransportError, OSError) as e:
            if self._transport is transport:
                self._transport = None
            self.last_error = str(e)
            logger.warning("Connect failed: %s", e)
            if not self._stopped:
                self._enter_disconnected()
            return

        if self._stopped or self._transport is not transport:
            await transport.close()
            return

        self.reconnect_attempt = 0
        self.last_error = None
        self._set_status(ConnectionStatus.CONNECTED)
        self._start_keepalive()

    def _on_close(self, transport: Optional[Transport], reason: str) -> None:
        if transport is None or transport is not self._transport:
            return
        logger.info("Connection closed: %s", reason)
        self._transport = None
        self._stop_keepalive()
        if self._stopped:
            self._set_status(ConnectionStatus.DISCONNECTED)
            return
        self._enter_disconnected()

    def _enter_disconnected(self) -> None:
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        if self.reconnect_attempt >= self._config.max_reconnect_attempts:
            logger.warning("Max reconnect attempts reached")
            self.last_error = "Unable to connect after multiple attempts"
            self._set_status(ConnectionStatus.ERROR)
            return

        delay = compute_backoff(
            self.reconnect_attempt,
            base=self._config.reconnect_base,
            cap=self._config.reconnect_cap,
            jitter=self._config.reconnect_jitter,
            rand=self._rand,
        )
        self.last_reconnect_delay = delay
        logger.info("Scheduling reconnect in %.1fs (attempt %d)", delay, self.reconnect_attempt + 1)
        self._reconnect_task = self._scheduler.call_later(delay, self._reconnect_now, name="reconnect")

    async def _reconnect_now(self) -> None:
        self._reconnect_task = None
        self.reconnect_attempt += 1
        await self._connect()

    # -- keepalive ---------------------------------------------------------------

    def _start_keepalive(self) -> None:
        self._stop_keepalive()
        self._ping_task = self._scheduler.call_every(self._config.ping_interval, self._send_ping, name="ping")

    def _stop_keepalive(self) -> None:
        for task in (self._ping_task, self._pong_watch):
            if task is not None:
                task.cancel()
        self._ping_task = self._pong_watch = None

    async def _send_ping(self) -> None:
        if not self.connected:
            return
        self.last_ping_sent_at = time.monotonic()
        timeout = self._config.pong_timeout
        # Armed before emitting: a fast transport can deliver the pong inside _emit.
        if timeout is not None and self._pong_watch is None:
            self._pong_watch = self._scheduler.call_later(timeout, self._pong_missed, name="pong-watch")
        await self._emit(build_envelope(C2SEvent.PING))

    async def _pong_missed(self) -> None:
        self._pong_watch = None
        transport = self._transport
        if transport is None:
            return
        logger.warning("No pong within %.1fs, dropping connection", self._config.pong_timeout)
        await transport.close()
        # Transports report their own close; make sure the manager moves on either way.
        self._on_close(transport, "keepalive timeout")

    # -- messages ----------------------------------------------------------------

    def _on_message(self, text: str) -> None:
        try:
            envelope = parse_envelope(text)
        except ParseError as e:
            logger.debug("Ignoring unparseable envelope: %s", e)
            return
        if envelope.type == S2CEvent.PONG:
            self.last_pong_at = time.monotonic()
            if self._pong_watch is not None:
                self._pong_watch.cancel()
                self._pong_watch = None
        for handler in list(self._event_handlers):
            handler(envelope)

    def send(self, content: str, client_id: Optional[str] = None) -> bool:
        """Queue a chat message on the live session.

        Returns False immediately when not connected, so the caller can use the
        stateless path instead.
        """
        if not self.connected:
            return False
        payload = {"content": content}
        if client_id:
            payload["clientId"] = client_id
        self._scheduler.spawn(self._emit(build_envelope(C2SEvent.CHAT_MESSAGE, payload)), name="emit")
        return True

    def send_typing(self) -> bool:
        if not self.connected:
            return False
        envelope = build_envelope(C2SEvent.CHAT_TYPING, {"timestamp": utc_now_iso()})
        self._scheduler.spawn(self._emit(envelope), name="emit")
        return True

    async def _emit(self, envelope: Envelope) -> None:
        transport = self._transport
        if transport is None:
            return
        try:
            await transport.send(envelope.dumps())
        except TransportError as e:
            logger.error("Emit failed for %s: %s", envelope.type, e)

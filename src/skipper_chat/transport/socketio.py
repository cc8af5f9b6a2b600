"""
Socket.IO client transport: one physical connection to the relay.

Envelopes travel as JSON text on the ``envelope`` event. connect() resolves
only after the server's ``connected`` handshake arrives. The transport never
reconnects by itself; the connection manager builds a fresh one per attempt.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional, Protocol

import socketio
from socketio import exceptions as sio_exceptions

from skipper_chat.errors import TransportError
from skipper_chat.models.events import ENVELOPE_EVENT, S2CEvent

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str], None]
CloseCallback = Callable[[str], None]


class Transport(Protocol):
    async def connect(self) -> None: ...

    async def send(self, text: str) -> None: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[MessageCallback, CloseCallback], Transport]


class SocketIOTransport:
    def __init__(
        self,
        base_url: str,
        on_message: MessageCallback,
        on_close: CloseCallback,
        socketio_path: str = "socket.io",
        transports: Optional[list[str]] = None,
        ready_timeout: float = 15.0,
    ):
        self._base_url = base_url
        self._on_message = on_message
        self._on_close = on_close
        self._socketio_path = socketio_path
        self._transports = transports or ["websocket"]
        self._ready_timeout = ready_timeout
        self._sio: Optional[socketio.AsyncClient] = None
        self._open = False
        self._close_reported = False

    @property
    def open(self) -> bool:
        return self._open and self._sio is not None and self._sio.connected

    async def connect(self) -> None:
        if self._sio is not None:
            raise TransportError("transport already used; build a new one per connection")

        self._sio = socketio.AsyncClient(reconnection=False)
        ready_event = asyncio.Event()

        @self._sio.on(ENVELOPE_EVENT)
        async def on_envelope(data: Any) -> None:
            text = data if isinstance(data, str) else json.dumps(data)
            if not ready_event.is_set() and _is_handshake(text):
                self._open = True
                ready_event.set()
            self._on_message(text)

        @self._sio.event
        async def disconnect(*_args: Any) -> None:
            was_open = self._open
            self._open = False
            if was_open:
                self._report_close("server closed connection")

        try:
            await self._sio.connect(
                self._base_url,
                transports=self._transports,
                socketio_path=self._socketio_path,
            )
        except sio_exceptions.ConnectionError as e:
            self._sio = None
            raise TransportError(f"Connect to {self._base_url} failed: {e}") from e

        try:
            await asyncio.wait_for(ready_event.wait(), timeout=self._ready_timeout)
        except asyncio.TimeoutError:
            await self._sio.disconnect()
            raise TransportError(f"Timed out waiting for 'connected' handshake after {self._ready_timeout}s")

    async def send(self, text: str) -> None:
        if not self.open:
            raise TransportError("Socket.IO not connected")
        try:
            await self._sio.emit(ENVELOPE_EVENT, text)  # type: ignore[union-attr]
        except sio_exceptions.SocketIOError as e:
            raise TransportError(f"Emit failed: {e}") from e

    async def close(self) -> None:
        was_open = self._open
        self._open = False
        if self._sio is not None:
            await self._sio.disconnect()
        if was_open:
            self._report_close("closed by client")

    def _report_close(self, reason: str) -> None:
        if self._close_reported:
            return
        self._close_reported = True
        self._on_close(reason)


def _is_handshake(text: str) -> bool:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return False
    return isinstance(data, dict) and data.get("type") == S2CEvent.CONNECTED


def socketio_transport_factory(base_url: str, socketio_path: str = "socket.io",
                               ready_timeout: float = 15.0) -> TransportFactory:
    def factory(on_message: MessageCallback, on_close: CloseCallback) -> Transport:
        return SocketIOTransport(base_url, on_message, on_close,
                                 socketio_path=socketio_path, ready_timeout=ready_timeout)
    return factory

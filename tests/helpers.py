"""Fakes shared by the test suite: in-process sessions, transports and HTTP."""

from __future__ import annotations

import asyncio
import itertools
import json
from pathlib import Path
from typing import Any, Optional

import httpx

from skipper_chat.client.api import ChatAPI
from skipper_chat.client.connection import ConnectionManager
from skipper_chat.client.reconciler import DeliveryReconciler
from skipper_chat.client.scheduler import TaskScheduler
from skipper_chat.config import ClientConfig, ServerConfig
from skipper_chat.errors import TransportError
from skipper_chat.server.app import RelayServer
from skipper_chat.server.hub import ConnectionHub, Session
from skipper_chat.transport.http import HttpClient

_ids = itertools.count(1)

FAST_CLIENT = ClientConfig(
    ack_timeout=0.2,
    reconnect_base=0.01,
    reconnect_cap=0.05,
    reconnect_jitter=0.0,
    max_reconnect_attempts=3,
    ping_interval=60.0,
    pong_timeout=None,
    poll_interval=0.05,
)


class RecordingSession(Session):
    """Session that keeps every envelope it was sent, decoded."""

    def __init__(self, session_id: Optional[str] = None, fail: bool = False):
        self.received: list[dict[str, Any]] = []
        self.fail = fail

        async def send(text: str) -> None:
            if self.fail:
                raise ConnectionResetError("peer went away")
            self.received.append(json.loads(text))

        super().__init__(session_id or f"s{next(_ids)}", send)

    def types(self) -> list[str]:
        return [e["type"] for e in self.received]

    def of_type(self, kind: str) -> list[dict[str, Any]]:
        return [e for e in self.received if e["type"] == kind]


class LoopbackTransport:
    """Client transport wired straight into a ConnectionHub.

    ``mute_inbound`` drops everything the server sends after the handshake;
    ``drop_outbound`` drops everything the client sends.
    """

    def __init__(self, hub: ConnectionHub, on_message, on_close, fail: bool = False):
        self.hub = hub
        self.on_message = on_message
        self.on_close = on_close
        self.fail = fail
        self.mute_inbound = False
        self.drop_outbound = False
        self.open = False
        self.sent: list[dict[str, Any]] = []
        self.session: Optional[Session] = None

    async def connect(self) -> None:
        if self.fail:
            raise TransportError("connection refused")
        self.session = Session(f"loop{next(_ids)}", self._deliver)
        self.open = True
        await self.hub.on_connect(self.session)

    async def _deliver(self, text: str) -> None:
        if self.mute_inbound and json.loads(text).get("type") != "connected":
            return
        self.on_message(text)

    async def send(self, text: str) -> None:
        if not self.open:
            raise TransportError("not connected")
        self.sent.append(json.loads(text))
        if self.drop_outbound:
            return
        await self.hub.on_inbound_envelope(self.session, text)

    async def close(self) -> None:
        if not self.open:
            return
        self.open = False
        self.hub.on_disconnect(self.session)
        self.on_close("closed by client")

    def server_drop(self) -> None:
        """Simulate the server or network closing the connection."""
        self.open = False
        self.hub.on_disconnect(self.session)
        self.on_close("server closed connection")


class LoopbackFactory:
    def __init__(self, hub: ConnectionHub, fail: bool = False):
        self.hub = hub
        self.fail = fail
        self.mute_inbound = False
        self.drop_outbound = False
        self.created: list[LoopbackTransport] = []

    def __call__(self, on_message, on_close) -> LoopbackTransport:
        transport = LoopbackTransport(self.hub, on_message, on_close, fail=self.fail)
        transport.mute_inbound = self.mute_inbound
        transport.drop_outbound = self.drop_outbound
        self.created.append(transport)
        return transport

    @property
    def current(self) -> LoopbackTransport:
        return self.created[-1]


class SwitchableTransport(httpx.AsyncBaseTransport):
    """ASGI transport to the relay app that can be switched off."""

    def __init__(self, app: Any):
        self._inner = httpx.ASGITransport(app=app)
        self.down = False

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        return await self._inner.handle_async_request(request)


def make_server(data_dir: Path, **overrides) -> RelayServer:
    return RelayServer(ServerConfig(data_dir=data_dir, **overrides))


class Device:
    """One client instance (connection manager + reconciler) against a RelayServer."""

    def __init__(self, server: RelayServer, config: ClientConfig = FAST_CLIENT, fail: bool = False):
        self.server = server
        self.http_transport = SwitchableTransport(server.api)
        self.http = HttpClient(base_url="http://relay.test", transport=self.http_transport)
        self.api = ChatAPI(self.http)
        self.factory = LoopbackFactory(server.hub, fail=fail)
        self.scheduler = TaskScheduler()
        self.connection = ConnectionManager(self.factory, config=config, scheduler=self.scheduler)
        self.reconciler = DeliveryReconciler(self.connection, self.api, config=config, scheduler=self.scheduler)

    async def close(self) -> None:
        self.reconciler.close()
        await self.connection.close()
        await self.http.close()


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Yield to the loop until ``predicate()`` holds; fail the test after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)

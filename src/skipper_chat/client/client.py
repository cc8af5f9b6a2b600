"""
AsyncSkipperChat / SkipperChat: main client entry points.
"""

import asyncio
from typing import Any, Callable, Optional

from skipper_chat.client.api import ChatAPI
from skipper_chat.client.connection import ConnectionManager, ConnectionStatus
from skipper_chat.client.reconciler import DeliveryReconciler
from skipper_chat.client.scheduler import TaskScheduler
from skipper_chat.config import ClientConfig
from skipper_chat.models.message import HistoryPage, Message
from skipper_chat.transport.http import HttpClient
from skipper_chat.transport.socketio import TransportFactory


class AsyncSkipperChat:
    """Async chat client (primary)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        config: Optional[ClientConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
        http: Optional[HttpClient] = None,
    ):
        cfg = config or ClientConfig()
        if base_url:
            cfg = cfg.model_copy(update={"base_url": base_url})
        self._config = cfg
        self._scheduler = TaskScheduler()

        self.http = http or HttpClient(base_url=cfg.base_url)
        self.api = ChatAPI(self.http)
        self.connection = ConnectionManager(transport_factory, config=cfg, scheduler=self._scheduler)
        self.reconciler = DeliveryReconciler(self.connection, self.api, config=cfg, scheduler=self._scheduler)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def connected(self) -> bool:
        return self.connection.connected

    @property
    def status(self) -> ConnectionStatus:
        return self.connection.status

    @property
    def messages(self) -> list[Message]:
        return list(self.reconciler.messages)

    def on_change(self, handler: Optional[Callable[[list[Message]], None]]) -> None:
        self.reconciler.on_change = handler

    def on_typing(self, handler: Optional[Callable[[dict[str, Any]], None]]) -> None:
        self.reconciler.on_typing = handler

    def on_status(self, handler: Optional[Callable[[dict[str, Any]], None]]) -> None:
        self.reconciler.on_status = handler

    def on_connection_status(self, handler: Callable[[ConnectionStatus], None]) -> Callable[[], None]:
        return self.connection.add_status_handler(handler)

    async def connect(self, load_history: bool = True) -> None:
        """Load history, open the live session and start the polling fallback.

        A failed live connection is not an error here: the manager keeps
        retrying in the background and polling covers the gap.
        """
        if load_history:
            await self.reconciler.load_history()
        await self.connection.start()
        self.reconciler.start()

    async def disconnect(self) -> None:
        self.reconciler.close()
        await self.connection.close()
        await self.http.close()

    async def send(self, content: str) -> Message:
        """Send a message; returns it as confirmed, or with status ``failed``."""
        return await self.reconciler.submit(content)

    async def retry(self, message_id: str) -> Message:
        return await self.reconciler.retry(message_id)

    def send_typing(self) -> bool:
        return self.connection.send_typing()

    async def history(self, limit: int = 50, before: Optional[str] = None,
                      after: Optional[str] = None) -> HistoryPage:
        return await self.api.history(limit=limit, before=before, after=after)

    async def clear_history(self) -> int:
        count = await self.api.clear_history()
        self.reconciler.messages.clear()
        return count


class SkipperChat:
    """Sync wrapper around AsyncSkipperChat. Runs the event loop internally."""

    def __init__(self, **kwargs: Any):
        self._loop = asyncio.new_event_loop()
        self._async = AsyncSkipperChat(**kwargs)

    def _run(self, coro: Any) -> Any:
        return self._loop.run_until_complete(coro)

    @property
    def api(self) -> ChatAPI:
        return self._async.api

    @property
    def connected(self) -> bool:
        return self._async.connected

    @property
    def messages(self) -> list[Message]:
        return self._async.messages

    def connect(self, **kwargs: Any) -> None:
        self._run(self._async.connect(**kwargs))

    def disconnect(self) -> None:
        self._run(self._async.disconnect())

    def send(self, content: str) -> Message:
        return self._run(self._async.send(content))

    def retry(self, message_id: str) -> Message:
        return self._run(self._async.retry(message_id))

    def history(self, **kwargs: Any) -> HistoryPage:
        return self._run(self._async.history(**kwargs))

    def clear_history(self) -> int:
        return self._run(self._async.clear_history())

"""
Pending-queue consumer for the assistant process.

The relay never pushes to the assistant; the assistant polls the pending
queue and answers with ``respond(..., reply_to=id)``, which also removes the
entry. Consumption is at-least-once: if the process dies between reading an
entry and answering it, the entry is handed out again on the next drain, so
handlers must tolerate seeing the same envelope twice.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from skipper_chat.client.api import ChatAPI
from skipper_chat.errors import SkipperChatError, ValidationError
from skipper_chat.models.message import PendingEnvelope

logger = logging.getLogger(__name__)

Reply = Optional[str]
Handler = Callable[[PendingEnvelope], Union[Reply, Awaitable[Reply]]]


class PendingResponder:
    def __init__(self, api: ChatAPI, handler: Handler, poll_interval: float = 5.0):
        self._api = api
        self._handler = handler
        self._poll_interval = poll_interval
        self._stop = asyncio.Event()

    async def drain_once(self) -> int:
        """Process every envelope currently queued. Returns how many were handled.

        An envelope whose handler raises, or whose reply the relay rejects, stays
        queued and is offered again on the next drain; the rest are still processed.
        """
        handled = 0
        for envelope in await self._api.pending():
            try:
                reply = self._handler(envelope)
                if inspect.isawaitable(reply):
                    reply = await reply
            except Exception:
                logger.exception("Handler failed for pending message %s", envelope.id)
                continue
            try:
                if reply:
                    await self._api.respond(reply, reply_to=envelope.id)
                else:
                    await self._api.remove_pending(envelope.id)
            except ValidationError as e:
                logger.warning("Reply to %s rejected: %s", envelope.id, e)
                continue
            handled += 1
        return handled

    async def run(self) -> None:
        self._stop.clear()
        while not self._stop.is_set():
            try:
                count = await self.drain_once()
                if count:
                    logger.info("Handled %d pending message(s)", count)
            except SkipperChatError as e:
                logger.warning("Drain failed: %s", e)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stop.set()

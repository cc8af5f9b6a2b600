"""
Chat REST API: typed wrappers over the stateless request surface.
"""

from __future__ import annotations

from typing import Any, Optional

from skipper_chat.models.message import HistoryPage, Message, PendingEnvelope
from skipper_chat.transport.http import HttpClient


class ChatAPI:
    def __init__(self, http: HttpClient):
        self._http = http

    async def send(self, content: str, client_id: Optional[str] = None) -> Message:
        """Send a human message; returns the server-materialized message."""
        body: dict[str, Any] = {"message": content}
        if client_id:
            body["clientId"] = client_id
        result = await self._http.post("/chat/send", body)
        return Message.model_validate(result["message"])

    async def history(self, limit: int = 50, before: Optional[str] = None,
                      after: Optional[str] = None) -> HistoryPage:
        params: dict[str, Any] = {"limit": limit}
        if before:
            params["before"] = before
        if after:
            params["after"] = after
        return HistoryPage.model_validate(await self._http.get("/chat/history", params=params))

    async def clear_history(self) -> int:
        result = await self._http.delete("/chat/history")
        return int(result.get("cleared", 0))

    async def pending(self) -> list[PendingEnvelope]:
        result = await self._http.get("/chat/pending")
        return [PendingEnvelope.model_validate(p) for p in result.get("pending", [])]

    async def remove_pending(self, message_id: str) -> int:
        result = await self._http.delete(f"/chat/pending/{message_id}")
        return int(result.get("removed", 0))

    async def clear_pending(self) -> int:
        result = await self._http.delete("/chat/pending")
        return int(result.get("cleared", 0))

    async def respond(self, content: str, reply_to: Optional[str] = None) -> Message:
        body: dict[str, Any] = {"message": content}
        if reply_to:
            body["replyTo"] = reply_to
        result = await self._http.post("/chat/respond", body)
        return Message.model_validate(result["message"])

    async def publish_status(self, status: dict[str, Any]) -> int:
        result = await self._http.post("/chat/status", status)
        return int(result.get("recipients", 0))

    async def health(self) -> dict[str, Any]:
        return await self._http.get("/health")

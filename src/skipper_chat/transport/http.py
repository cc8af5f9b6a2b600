"""
REST HTTP client for the relay server.
"""

from typing import Any, Optional

import httpx

from skipper_chat.errors import HttpError, StoreIOError, TransportError, ValidationError

DEFAULT_BASE_URL = "http://127.0.0.1:3031"


class HttpClient:
    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{self._base_url}/api",
            headers={"User-Agent": "skipper-chat/0.1.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        try:
            body = resp.json()
        except ValueError:
            body = {}
        message = body.get("message") if isinstance(body, dict) else None
        message = message or f"HTTP {resp.status_code}: {resp.text[:200]}"
        if resp.status_code == 400:
            raise ValidationError(message)
        if resp.status_code >= 500 and isinstance(body, dict) and body.get("code") == "io_error":
            raise StoreIOError(message)
        raise HttpError(resp.status_code, message, details=body if isinstance(body, dict) else None)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e
        self._raise_for_status(resp)
        return resp.json()

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post(self, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        return await self._request("POST", path, json=body)

    async def delete(self, path: str, params: Optional[dict[str, str]] = None) -> Any:
        return await self._request("DELETE", path, params=params)

    async def close(self) -> None:
        await self._client.aclose()

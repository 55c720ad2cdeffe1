"""HTTP client for the proc-manager API."""

import json
from typing import Any
from urllib.parse import urlsplit

import httpx


class ApiError(Exception):
    """The server could not be reached or answered with an error."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


def decode_payload(body: bytes) -> Any:
    """Decode a response body.

    Names are passed through byte for byte by the server, so the body may
    hold raw control characters or invalid UTF-8.
    """
    return json.loads(body.decode("utf-8", errors="replace"), strict=False)


def error_message(data: Any, status: int) -> str:
    """Render an error body as one line: `error: message (errno N)`."""
    if not isinstance(data, dict):
        return f"HTTP {status}"
    message = str(data.get("error") or f"HTTP {status}")
    if "message" in data:
        message = f"{message}: {data['message']}"
        if "errno" in data:
            message = f"{message} (errno {data['errno']})"
    return message


class ApiClient:
    """One short-lived connection per request, matching the server's Connection: close.

    Simple and stateless: requests succeed or raise ApiError. The TUI decides
    when to retry.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        parts = urlsplit(base_url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError(f"Unsupported API URL: {base_url!r}")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def request(self, method: str, path: str, payload: Any = None) -> httpx.Response:
        """Send one request and return the response.

        Raises:
            ApiError: If the connection fails, times out or the response is garbled
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                return await client.request(method, path, json=payload)
        except httpx.TimeoutException as e:
            raise ApiError(f"{method} {path} timed out after {self.timeout}s") from e
        except httpx.RemoteProtocolError as e:
            raise ApiError(f"Malformed response to {method} {path}") from e
        except httpx.HTTPError as e:
            raise ApiError(f"Cannot reach {self.base_url}: {e}") from e

    async def _call(self, method: str, path: str, payload: Any = None) -> Any:
        response = await self.request(method, path, payload)
        status = response.status_code
        try:
            data = decode_payload(response.content)
        except ValueError as e:
            raise ApiError(f"Invalid response body (HTTP {status})", status) from e
        if status >= 400:
            raise ApiError(error_message(data, status), status)
        return data

    async def fetch_snapshot(self) -> dict[str, Any]:
        """GET /api/processes.

        Returns:
            {"current_user": str, "count": int, "processes": [...]}
        """
        return await self._call("GET", "/api/processes")

    async def kill(self, pid: int) -> dict[str, Any]:
        """POST /api/kill for pid.

        Raises:
            ApiError: With the server's message, e.g. "Invalid PID" or
                "kill failed: Operation not permitted (errno 1)"
        """
        return await self._call("POST", "/api/kill", {"pid": pid})

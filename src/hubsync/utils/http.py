"""
Thin aiohttp wrapper shared by the token manager and the providers.

One request per call, no retry: retry policy belongs to whoever invokes the
enclosing sync operation. Network errors and timeouts surface as
TransportError; status handling is left to the caller.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from hubsync.exceptions import TransportError
from hubsync.utils.logging import get_logger

logger = get_logger("hubsync.utils.http")


@dataclass
class HttpResponse:
    """A fully-read HTTP response."""

    status: int
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON, or None when it is not JSON."""
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None


class HttpClient:
    """
    Shared aiohttp session with per-request timeout.

    Usable as an async context manager; nested ``async with`` blocks share one
    session, which is closed when the outermost block exits.

    Example:
        ```python
        http = HttpClient(timeout=30)
        async with http:
            response = await http.request("POST", "https://api.example.com/token", data={...})
        ```
    """

    def __init__(self, timeout: float = 60.0, headers: dict[str, str] | None = None):
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.default_headers = headers or {}
        self.session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()
        self._session_refcount = 0

    async def _ensure_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self.session is None or self.session.closed:
                self.session = aiohttp.ClientSession(timeout=self.timeout, headers=self.default_headers)
            return self.session

    async def __aenter__(self) -> "HttpClient":
        await self._ensure_session()
        async with self._session_lock:
            self._session_refcount += 1
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        async with self._session_lock:
            self._session_refcount -= 1
            if self._session_refcount <= 0 and self.session and not self.session.closed:
                await self.session.close()
                self.session = None
                self._session_refcount = 0

    async def close(self) -> None:
        """Explicitly close the session."""
        async with self._session_lock:
            if self.session and not self.session.closed:
                await self.session.close()
            self.session = None
            self._session_refcount = 0

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        data: Any = None,
        json: Any = None,
        auth: aiohttp.BasicAuth | None = None,
    ) -> HttpResponse:
        """
        Send one request and read the whole body.

        Raises:
            TransportError: On connection failures and timeouts
        """
        session = await self._ensure_session()
        start_time = time.monotonic()
        try:
            async with session.request(
                method,
                url,
                headers=headers,
                params=params,
                data=data,
                json=json,
                auth=auth,
            ) as response:
                body = await response.read()
                duration = time.monotonic() - start_time
                log_level = logger.debug if response.status <= 299 else logger.warning
                log_level(f"{method} {url} {response.status} {duration:.2f}s {len(body)}B")
                return HttpResponse(
                    status=response.status,
                    body=body,
                    headers={k: v for k, v in response.headers.items()},
                    url=url,
                )
        except asyncio.TimeoutError as e:
            logger.warning(f"{method} {url} timed out after {self.timeout.total}s")
            raise TransportError(f"Request timed out: {method} {url}", url=url) from e
        except aiohttp.ClientError as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise TransportError(f"Request failed: {method} {url}: {e}", url=url) from e

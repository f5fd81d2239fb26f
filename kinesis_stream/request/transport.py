"""
HTTP transport for service requests.

The transport issues one POST per request and returns the status, headers and
body text. It knows nothing about signing, retries or the JSON protocol.
Network failures are reported as TransportError with an errno-style code so
the retry policy can classify them.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import socket
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

import aiohttp

from ..errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class HttpRequest:
    """A fully built request, ready to sign and send."""

    scheme: str
    host: str
    port: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    path: str = "/"
    verify_ssl: bool = True

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}{self.path}"


@dataclass
class HttpResponse:
    status: int
    headers: Dict[str, str]
    body: str


class Transport(Protocol):
    """Sends one HTTP request."""

    async def send(self, request: HttpRequest) -> HttpResponse:
        """Send the request.

        Raises:
            TransportError: If no response was received
        """
        ...

    async def close(self) -> None:
        ...


def error_code(exc: BaseException) -> str:
    """Map a network exception to an errno-style code."""
    if isinstance(
        exc,
        (aiohttp.ServerDisconnectedError, aiohttp.ClientPayloadError, ConnectionResetError),
    ):
        return "ECONNRESET"
    if isinstance(exc, asyncio.TimeoutError):
        return "ETIMEDOUT"
    if isinstance(exc, aiohttp.ClientConnectorError):
        exc = exc.os_error
    if isinstance(exc, socket.gaierror):
        return "ENOTFOUND"
    if isinstance(exc, OSError) and exc.errno in errno.errorcode:
        return errno.errorcode[exc.errno]
    return "EREQUEST"


class AiohttpTransport:
    """Transport backed by a pooled aiohttp session.

    The session is created on first use so the transport can be built outside
    a running event loop. Connections are kept alive and reused.
    """

    def __init__(self, connection_limit: int = 100) -> None:
        self.connection_limit = connection_limit
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=self.connection_limit),
            )
        return self._session

    async def send(self, request: HttpRequest) -> HttpResponse:
        session = self._get_session()
        try:
            async with session.post(
                request.url,
                data=request.body,
                headers=request.headers,
                ssl=None if request.verify_ssl else False,
            ) as resp:
                raw = await resp.read()
                return HttpResponse(
                    status=resp.status,
                    headers=dict(resp.headers),
                    body=raw.decode("utf-8", errors="replace"),
                )
        except aiohttp.ServerTimeoutError as e:
            raise TransportError(f"Socket timed out: {e}", code="ESOCKETTIMEDOUT") from e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(
                f"Request to {request.host} failed: {e}", code=error_code(e)
            ) from e

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

"""Access logging in Apache Combined Log Format.

    127.0.0.1 - - [10/Oct/2026:13:55:36 +0000] "GET /user/1?a=b HTTP/1.1" 200 2326 "http://example.com/" "curl/8.5.0"

One line per HTTP request, written to the `hyperdrive.access` logger once the
wrapped handler returns (or raises). The byte count is what the wrapped
handler sent: placed inside a compression layer, that is the uncompressed
size.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import TYPE_CHECKING, cast

from hyperdrive.middleware._proto import ResponseHTTPProtocol

if TYPE_CHECKING:
    from collections.abc import Callable

    from hyperdrive.middleware._proto import Headers
    from hyperdrive.rsgi import (
        HTTPProtocol,
        HTTPScope,
        HTTPStreamTransport,
        RSGIHandler,
        RSGIHTTPHandler,
        WebsocketProtocol,
        WebsocketScope,
    )

access_logger = logging.getLogger("hyperdrive.access")


class _CountingStreamTransport:
    __slots__ = ("_owner", "_transport")

    def __init__(
        self, transport: HTTPStreamTransport, owner: _RecordingHTTPProtocol
    ) -> None:
        self._transport = transport
        self._owner = owner

    async def send_bytes(self, data: bytes) -> None:
        await self._transport.send_bytes(data)
        self._owner.size += len(data)

    async def send_str(self, data: str) -> None:
        await self._transport.send_str(data)
        self._owner.size += len(data.encode("utf-8"))


class _RecordingHTTPProtocol(ResponseHTTPProtocol):
    """Records status and body size of the response."""

    __slots__ = ("size",)

    def __init__(self, proto: HTTPProtocol) -> None:
        super().__init__(proto)
        self.size = 0

    def response_str(self, status: int, headers: Headers, body: str) -> None:
        super().response_str(status, headers, body)
        self.size = len(body.encode("utf-8"))

    def response_bytes(self, status: int, headers: Headers, body: bytes) -> None:
        super().response_bytes(status, headers, body)
        self.size = len(body)

    def response_file(self, status: int, headers: Headers, file: str) -> None:
        super().response_file(status, headers, file)
        try:
            self.size = os.path.getsize(file)
        except OSError:
            self.size = 0

    def response_file_range(
        self, status: int, headers: Headers, file: str, start: int, end: int
    ) -> None:
        super().response_file_range(status, headers, file, start, end)
        self.size = max(end - start, 0)

    def response_stream(self, status: int, headers: Headers) -> HTTPStreamTransport:
        return _CountingStreamTransport(super().response_stream(status, headers), self)


def _client_host(client: str) -> str:
    """Strip the port from an RSGI client address ("ip:port" or "[ipv6]:port")."""
    if client.startswith("["):
        return client[1 : client.find("]")] if "]" in client else client
    if client.count(":") == 1:
        return client.split(":", 1)[0]
    return client


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def format_combined(
    scope: HTTPScope, status: int, size: int, timestamp: datetime
) -> str:
    uri = scope.path
    if scope.query_string:
        uri = f"{uri}?{scope.query_string}"
    referer = _quote(scope.headers.get("referer", ""))
    user_agent = _quote(scope.headers.get("user-agent", ""))
    return (
        f"{_client_host(scope.client) or '-'} - - "
        f"[{timestamp.strftime('%d/%b/%Y:%H:%M:%S %z')}] "
        f'"{scope.method} {_quote(uri)} HTTP/{scope.http_version}" '
        f'{status} {size} "{referer}" "{user_agent}"'
    )


def access_log(
    *, logger: logging.Logger = access_logger
) -> Callable[[RSGIHandler], RSGIHandler]:
    """Create access logging middleware.

    Lines are logged at INFO on `logger`; see `hyperdrive.log.configure_logging`
    to send them to stdout. Websocket connections are not logged.
    """

    def middleware(handler: RSGIHandler) -> RSGIHandler:
        async def logged_handler(
            scope: HTTPScope | WebsocketScope,
            proto: HTTPProtocol | WebsocketProtocol,
        ) -> None:
            if scope.proto != "http":
                await handler(scope, proto)  # ty: ignore[invalid-argument-type]
                return

            http_handler = cast("RSGIHTTPHandler", handler)
            scope = cast("HTTPScope", scope)
            recording = _RecordingHTTPProtocol(cast("HTTPProtocol", proto))
            timestamp = datetime.now().astimezone()
            try:
                await http_handler(scope, recording)
            finally:
                logger.info(
                    format_combined(
                        scope, recording.status or 0, recording.size, timestamp
                    )
                )

        return logged_handler

    return middleware

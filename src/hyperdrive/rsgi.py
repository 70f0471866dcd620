"""RSGI interface types.

Structural types for the subset of the RSGI specification used by hyperdrive
(https://github.com/emmett-framework/granian/blob/master/docs/spec/RSGI.md).
Nothing here is checked at runtime; granian supplies the concrete objects.
"""

from collections.abc import Awaitable, Callable, Mapping
from typing import Literal, Protocol

type Middleware[T] = Callable[[T], T]


class HTTPScope(Protocol):
    proto: Literal["http"]
    http_version: Literal["1", "1.1", "2"]
    rsgi_version: str
    server: str
    client: str
    scheme: str
    method: str
    path: str
    query_string: str
    headers: Mapping[str, str]
    authority: str | None


class WebsocketScope(Protocol):
    proto: Literal["ws"]
    http_version: Literal["1", "1.1", "2"]
    rsgi_version: str
    server: str
    client: str
    scheme: str
    method: str
    path: str
    query_string: str
    headers: Mapping[str, str]
    authority: str | None


class HTTPStreamTransport(Protocol):
    async def send_bytes(self, data: bytes) -> None: ...
    async def send_str(self, data: str) -> None: ...


class HTTPProtocol(Protocol):
    async def __call__(self) -> bytes: ...
    def __aiter__(self) -> bytes: ...
    async def client_disconnect(self) -> None: ...
    def response_empty(self, status: int, headers: list[tuple[str, str]]) -> None: ...
    def response_str(
        self, status: int, headers: list[tuple[str, str]], body: str
    ) -> None: ...
    def response_bytes(
        self, status: int, headers: list[tuple[str, str]], body: bytes
    ) -> None: ...
    def response_file(
        self, status: int, headers: list[tuple[str, str]], file: str
    ) -> None: ...
    def response_file_range(
        self,
        status: int,
        headers: list[tuple[str, str]],
        file: str,
        start: int,
        end: int,
    ) -> None: ...
    def response_stream(
        self, status: int, headers: list[tuple[str, str]]
    ) -> HTTPStreamTransport: ...


class WebsocketTransport(Protocol):
    async def receive(self) -> object: ...
    async def send_bytes(self, data: bytes) -> None: ...
    async def send_str(self, data: str) -> None: ...


class WebsocketProtocol(Protocol):
    async def accept(self) -> WebsocketTransport: ...
    def close(self, status: int | None = None) -> tuple[int, bool]: ...


type RSGIHTTPHandler = Callable[[HTTPScope, HTTPProtocol], Awaitable[None]]
type RSGIWebsocketHandler = Callable[
    [WebsocketScope, WebsocketProtocol], Awaitable[None]
]
type RSGIHandler = RSGIHTTPHandler | RSGIWebsocketHandler

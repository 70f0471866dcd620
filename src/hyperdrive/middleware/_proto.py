from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hyperdrive.rsgi import HTTPProtocol, HTTPStreamTransport

type Headers = list[tuple[str, str]]


def find_header(headers: Headers, name: str) -> str | None:
    """Value of the first header called name (case-insensitive), or None."""
    name = name.lower()
    for key, value in headers:
        if key.lower() == name:
            return value
    return None


def without_header(headers: Headers, name: str) -> Headers:
    name = name.lower()
    return [(k, v) for k, v in headers if k.lower() != name]


class ResponseHTTPProtocol:
    """HTTPProtocol wrapper that sees every response before it is sent.

    Subclasses override `_start` to record the status or rewrite headers.
    Everything else is delegated to the wrapped protocol.
    """

    __slots__ = ("_proto", "status")

    def __init__(self, proto: HTTPProtocol) -> None:
        self._proto = proto
        self.status: int | None = None

    @property
    def started(self) -> bool:
        return self.status is not None

    def _start(self, status: int, headers: Headers) -> Headers:
        self.status = status
        return headers

    async def __call__(self) -> bytes:
        return await self._proto()

    def __aiter__(self) -> bytes:
        return self._proto.__aiter__()

    async def client_disconnect(self) -> None:
        await self._proto.client_disconnect()

    def response_empty(self, status: int, headers: Headers) -> None:
        self._proto.response_empty(status, self._start(status, headers))

    def response_str(self, status: int, headers: Headers, body: str) -> None:
        self._proto.response_str(status, self._start(status, headers), body)

    def response_bytes(self, status: int, headers: Headers, body: bytes) -> None:
        self._proto.response_bytes(status, self._start(status, headers), body)

    def response_file(self, status: int, headers: Headers, file: str) -> None:
        self._proto.response_file(status, self._start(status, headers), file)

    def response_file_range(
        self, status: int, headers: Headers, file: str, start: int, end: int
    ) -> None:
        self._proto.response_file_range(
            status, self._start(status, headers), file, start, end
        )

    def response_stream(self, status: int, headers: Headers) -> HTTPStreamTransport:
        return self._proto.response_stream(status, self._start(status, headers))


class HeaderSettingHTTPProtocol(ResponseHTTPProtocol):
    """Adds default headers to the response.

    A header the handler already set is left alone, as if the defaults had
    been written first and the handler had overwritten them. `vary` is the
    exception: its values are merged.
    """

    __slots__ = ("_defaults",)

    def __init__(self, proto: HTTPProtocol, defaults: Headers) -> None:
        super().__init__(proto)
        self._defaults = defaults

    def _start(self, status: int, headers: Headers) -> Headers:
        self.status = status
        missing: Headers = []
        for name, value in self._defaults:
            current = find_header(headers, name)
            if current is None:
                missing.append((name, value))
            elif name == "vary" and value.lower() not in current.lower():
                merged = f"{current}, {value}"
                headers = [*without_header(headers, "vary"), (name, merged)]
        return [*headers, *missing] if missing else headers

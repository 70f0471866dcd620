"""Response compression middleware (gzip, deflate).

Negotiates the encoding from the request's `Accept-Encoding` header and
compresses str/bytes responses and streams with cramjam. File responses are
passed through untouched.

Compression levels follow zlib: 1 (best speed) to 9 (best compression), 0 for
no compression, -1 for the default level and -2 for Huffman-only encoding.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal, cast

from cramjam import (
    deflate,  # ty: ignore[unresolved-import]  # fixed in cramjam >2.11
    gzip,  # ty: ignore[unresolved-import]  # fixed in cramjam >2.11
)
from granian.rsgi import ProtocolClosed

from hyperdrive.middleware._proto import find_header, without_header

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

logger = logging.getLogger(__name__)

type Encoding = Literal["gzip", "deflate"]

# server preference, used to break ties between equal client q-values
ENCODINGS: tuple[Encoding, ...] = ("gzip", "deflate")

DEFAULT_LEVEL = -1
DEFAULT_MIN_SIZE = 500
DEFAULT_COMPRESSIBLE_TYPES: frozenset[str] = frozenset(
    {
        "application/javascript",
        "application/json",
        "application/ld+json",
        "application/manifest+json",
        "application/wasm",
        "application/xml",
        "image/svg+xml",
        "text/css",
        "text/csv",
        "text/event-stream",
        "text/html",
        "text/javascript",
        "text/markdown",
        "text/plain",
        "text/xml",
    }
)

# zlib's -1 (default) is level 6; cramjam has no Huffman-only mode so -2
# uses the fastest level
_ZLIB_LEVELS = {-1: 6, -2: 1}


def compression_level(level: int) -> int:
    """Map a zlib-style level (-2..9) to a cramjam level (0..9).

    Out of range levels use the default.
    """
    if not -2 <= level <= 9:
        level = DEFAULT_LEVEL
    return _ZLIB_LEVELS.get(level, level)


def _parse_accept_encoding(header: str) -> list[tuple[str, float]]:
    """Parse Accept-Encoding into (coding, q) pairs in header order."""
    result: list[tuple[str, float]] = []
    for part in header.split(","):
        coding, _, params = part.strip().partition(";")
        coding = coding.strip().lower()
        if not coding:
            continue
        quality = 1.0
        for param in params.split(";"):
            name, _, value = param.strip().partition("=")
            if name.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        result.append((coding, quality))
    return result


def _select_encoding(header: str) -> Encoding | None:
    """Pick the acceptable encoding with the highest q-value.

    Explicit codings override `*`; q=0 rejects; ties go to server preference.
    """
    accepted = dict(_parse_accept_encoding(header))
    wildcard = accepted.get("*", 0.0)
    best: Encoding | None = None
    best_quality = 0.0
    for encoding in ENCODINGS:
        quality = accepted.get(encoding, wildcard)
        if quality > best_quality:
            best, best_quality = encoding, quality
    return best


def _compress(encoding: Encoding, data: bytes, level: int) -> bytes:
    if encoding == "gzip":
        return bytes(gzip.compress(data, level=level))
    return bytes(deflate.compress(data, level=level))


def _media_type(headers: Headers) -> str:
    content_type = find_header(headers, "content-type") or ""
    return content_type.split(";", 1)[0].strip().lower()


def _encoded_headers(headers: Headers, encoding: Encoding) -> Headers:
    vary = find_header(headers, "vary")
    headers = without_header(without_header(headers, "vary"), "content-length")
    vary = f"{vary}, accept-encoding" if vary else "accept-encoding"
    return [*headers, ("content-encoding", encoding), ("vary", vary)]


class _CompressingStreamTransport:
    """Compresses each chunk and flushes it, so streamed events aren't held back."""

    __slots__ = ("_compressor", "_transport")

    def __init__(
        self, transport: HTTPStreamTransport, encoding: Encoding, level: int
    ) -> None:
        self._transport = transport
        self._compressor = (
            gzip.Compressor(level) if encoding == "gzip" else deflate.Compressor(level)
        )

    async def send_bytes(self, data: bytes) -> None:
        self._compressor.compress(data)
        chunk = bytes(self._compressor.flush())
        if chunk:
            await self._transport.send_bytes(chunk)

    async def send_str(self, data: str) -> None:
        await self.send_bytes(data.encode("utf-8"))

    async def finish(self) -> None:
        chunk = bytes(self._compressor.finish())
        if not chunk:
            return
        try:
            await self._transport.send_bytes(chunk)
        except ProtocolClosed:
            logger.debug("client disconnected before compressed stream finished")


class _CompressingHTTPProtocol:
    __slots__ = ("_encoding", "_level", "_min_size", "_proto", "_stream", "_types")

    def __init__(
        self,
        proto: HTTPProtocol,
        encoding: Encoding,
        level: int,
        min_size: int,
        compressible_types: frozenset[str] | None,
    ) -> None:
        self._proto = proto
        self._encoding = encoding
        self._level = level
        self._min_size = min_size
        self._types = compressible_types
        self._stream: _CompressingStreamTransport | None = None

    def _should_compress(self, headers: Headers) -> bool:
        return (
            find_header(headers, "content-encoding") is None
            and (self._types is None or _media_type(headers) in self._types)
        )

    async def __call__(self) -> bytes:
        return await self._proto()

    def __aiter__(self) -> bytes:
        return self._proto.__aiter__()

    async def client_disconnect(self) -> None:
        await self._proto.client_disconnect()

    def response_empty(self, status: int, headers: Headers) -> None:
        self._proto.response_empty(status, headers)

    def response_str(self, status: int, headers: Headers, body: str) -> None:
        data = body.encode("utf-8")
        if len(data) < self._min_size or not self._should_compress(headers):
            self._proto.response_str(status, headers, body)
            return
        self._send_compressed(status, headers, data)

    def response_bytes(self, status: int, headers: Headers, body: bytes) -> None:
        if len(body) < self._min_size or not self._should_compress(headers):
            self._proto.response_bytes(status, headers, body)
            return
        self._send_compressed(status, headers, body)

    def _send_compressed(self, status: int, headers: Headers, data: bytes) -> None:
        compressed = _compress(self._encoding, data, self._level)
        headers = _encoded_headers(headers, self._encoding)
        headers.append(("content-length", str(len(compressed))))
        self._proto.response_bytes(status, headers, compressed)

    def response_file(self, status: int, headers: Headers, file: str) -> None:
        self._proto.response_file(status, headers, file)

    def response_file_range(
        self, status: int, headers: Headers, file: str, start: int, end: int
    ) -> None:
        self._proto.response_file_range(status, headers, file, start, end)

    def response_stream(self, status: int, headers: Headers) -> HTTPStreamTransport:
        if not self._should_compress(headers):
            return self._proto.response_stream(status, headers)
        transport = self._proto.response_stream(
            status, _encoded_headers(headers, self._encoding)
        )
        self._stream = _CompressingStreamTransport(
            transport, self._encoding, self._level
        )
        return self._stream

    async def finish(self) -> None:
        if self._stream is not None:
            await self._stream.finish()


def compress(
    *,
    level: int = DEFAULT_LEVEL,
    min_size: int = DEFAULT_MIN_SIZE,
    compressible_types: frozenset[str] | None = DEFAULT_COMPRESSIBLE_TYPES,
) -> Callable[[RSGIHandler], RSGIHandler]:
    """Create compression middleware.

    Args:
        level: zlib-style level, -2..9. Anything else uses the default (-1).
        min_size: Smallest str/bytes body, in bytes, worth compressing.
            Streams are always compressed.
        compressible_types: Media types eligible for compression. None
            compresses every media type.

    Example:
        router.use(compress(level=5))
    """
    if min_size < 0:
        msg = f"min_size must be >= 0, got {min_size}"
        raise ValueError(msg)
    cramjam_level = compression_level(level)

    def middleware(handler: RSGIHandler) -> RSGIHandler:
        async def compressed_handler(
            scope: HTTPScope | WebsocketScope,
            proto: HTTPProtocol | WebsocketProtocol,
        ) -> None:
            if scope.proto != "http":
                await handler(scope, proto)  # ty: ignore[invalid-argument-type]
                return

            http_handler = cast("RSGIHTTPHandler", handler)
            scope = cast("HTTPScope", scope)
            proto = cast("HTTPProtocol", proto)

            encoding = _select_encoding(scope.headers.get("accept-encoding", ""))
            if encoding is None:
                await http_handler(scope, proto)
                return

            wrapped = _CompressingHTTPProtocol(
                proto, encoding, cramjam_level, min_size, compressible_types
            )
            await http_handler(scope, wrapped)  # ty: ignore[invalid-argument-type]
            await wrapped.finish()

        return compressed_handler

    return middleware

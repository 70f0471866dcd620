from typing import cast

import pytest
from conftest import MockHTTPProtocol, MockWebsocketScope, mock_scope
from cramjam import (
    deflate,  # ty: ignore[unresolved-import]  # fixed in cramjam >2.11
    gzip,  # ty: ignore[unresolved-import]  # fixed in cramjam >2.11
)

from hyperdrive.middleware.compress import (
    DEFAULT_MIN_SIZE,
    _parse_accept_encoding,
    _select_encoding,
    compress,
    compression_level,
)
from hyperdrive.rsgi import HTTPProtocol, HTTPScope, RSGIHTTPHandler

LARGE_JSON = '{"data": "' + "x" * 1000 + '"}'


async def json_handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
    proto.response_str(200, [("content-type", "application/json")], LARGE_JSON)


# --- Unit tests for helper functions ------------------------------------------
class TestCompressionLevel:
    @pytest.mark.parametrize("level", [0, 1, 5, 9])
    def test_zlib_levels_pass_through(self, level: int) -> None:
        assert compression_level(level) == level

    def test_default_level(self) -> None:
        assert compression_level(-1) == 6

    def test_huffman_only_uses_fastest(self) -> None:
        assert compression_level(-2) == 1

    @pytest.mark.parametrize("level", [-3, 10, 42])
    def test_out_of_range_uses_default(self, level: int) -> None:
        assert compression_level(level) == 6


class TestParseAcceptEncoding:
    def test_single_encoding(self) -> None:
        assert _parse_accept_encoding("gzip") == [("gzip", 1.0)]

    def test_quality_values(self) -> None:
        result = _parse_accept_encoding("gzip;q=0.5, deflate;q=0.9, br")
        assert result == [("gzip", 0.5), ("deflate", 0.9), ("br", 1.0)]

    def test_invalid_quality_rejects(self) -> None:
        assert _parse_accept_encoding("gzip;q=high") == [("gzip", 0.0)]

    def test_empty_string(self) -> None:
        assert _parse_accept_encoding("") == []

    def test_whitespace_and_case(self) -> None:
        assert _parse_accept_encoding("  GZIP  ,  Deflate  ") == [
            ("gzip", 1.0),
            ("deflate", 1.0),
        ]


class TestSelectEncoding:
    def test_prefers_gzip_on_tie(self) -> None:
        assert _select_encoding("deflate, gzip") == "gzip"

    def test_deflate_only(self) -> None:
        assert _select_encoding("deflate") == "deflate"

    def test_quality_overrides_server_preference(self) -> None:
        assert _select_encoding("gzip;q=0.5, deflate") == "deflate"

    def test_unsupported_encodings(self) -> None:
        assert _select_encoding("br, zstd, identity") is None

    def test_quality_zero_rejects(self) -> None:
        assert _select_encoding("gzip;q=0, deflate") == "deflate"

    def test_wildcard(self) -> None:
        assert _select_encoding("*") == "gzip"

    def test_explicit_overrides_wildcard(self) -> None:
        assert _select_encoding("gzip;q=0, *") == "deflate"

    def test_wildcard_zero_rejects_all(self) -> None:
        assert _select_encoding("*;q=0") is None

    def test_empty_header(self) -> None:
        assert _select_encoding("") is None


# --- Middleware tests ---------------------------------------------------------
@pytest.mark.asyncio
async def test_compress_json_with_gzip() -> None:
    wrapped = cast(RSGIHTTPHandler, compress()(json_handler))

    proto = MockHTTPProtocol()
    await wrapped(mock_scope(headers={"accept-encoding": "gzip, deflate"}), proto)

    assert proto.response_status == 200
    assert proto.response_body is not None
    assert len(proto.response_body) < len(LARGE_JSON)
    assert proto.header("content-encoding") == "gzip"
    assert proto.header("vary") == "accept-encoding"
    assert proto.header("content-length") == str(len(proto.response_body))
    assert bytes(gzip.decompress(proto.response_body)).decode() == LARGE_JSON


@pytest.mark.asyncio
async def test_compress_json_with_deflate() -> None:
    wrapped = cast(RSGIHTTPHandler, compress()(json_handler))

    proto = MockHTTPProtocol()
    await wrapped(mock_scope(headers={"accept-encoding": "deflate"}), proto)

    assert proto.header("content-encoding") == "deflate"
    assert proto.response_body is not None
    assert bytes(deflate.decompress(proto.response_body)).decode() == LARGE_JSON


@pytest.mark.parametrize("level", [-2, -1, 0, 1, 9, 99])
@pytest.mark.asyncio
async def test_every_level_round_trips(level: int) -> None:
    wrapped = cast(RSGIHTTPHandler, compress(level=level)(json_handler))

    proto = MockHTTPProtocol()
    await wrapped(mock_scope(headers={"accept-encoding": "gzip"}), proto)

    assert proto.response_body is not None
    assert bytes(gzip.decompress(proto.response_body)).decode() == LARGE_JSON


@pytest.mark.asyncio
async def test_existing_vary_is_merged() -> None:
    async def handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
        proto.response_str(
            200, [("content-type", "text/plain"), ("Vary", "Origin")], "x" * 1000
        )

    proto = MockHTTPProtocol()
    await compress()(handler)(mock_scope(headers={"accept-encoding": "gzip"}), proto)
    assert proto.header("vary") == "Origin, accept-encoding"


@pytest.mark.asyncio
async def test_stale_content_length_dropped() -> None:
    body = b"x" * 1000

    async def handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
        proto.response_bytes(
            200, [("content-type", "text/plain"), ("content-length", "1000")], body
        )

    proto = MockHTTPProtocol()
    await compress()(handler)(mock_scope(headers={"accept-encoding": "gzip"}), proto)
    lengths = [v for k, v in proto.response_headers or [] if k == "content-length"]
    assert proto.response_body is not None
    assert lengths == [str(len(proto.response_body))]


@pytest.mark.asyncio
async def test_no_compression_without_accept_encoding() -> None:
    proto = MockHTTPProtocol()
    await compress()(json_handler)(mock_scope(), proto)
    assert proto.header("content-encoding") is None
    assert proto.response_body == LARGE_JSON.encode()


@pytest.mark.asyncio
async def test_no_compression_for_small_response() -> None:
    async def handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
        proto.response_str(200, [("content-type", "application/json")], '{"ok": 1}')

    proto = MockHTTPProtocol()
    await compress()(handler)(mock_scope(headers={"accept-encoding": "gzip"}), proto)
    assert proto.header("content-encoding") is None
    assert proto.response_body == b'{"ok": 1}'


@pytest.mark.asyncio
async def test_no_compression_for_non_compressible_type() -> None:
    body = b"\x89PNG\r\n" + b"x" * 1000

    async def handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
        proto.response_bytes(200, [("content-type", "image/png")], body)

    proto = MockHTTPProtocol()
    await compress()(handler)(mock_scope(headers={"accept-encoding": "gzip"}), proto)
    assert proto.header("content-encoding") is None
    assert proto.response_body == body


@pytest.mark.asyncio
async def test_content_type_parameters_ignored() -> None:
    async def handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
        proto.response_str(
            200, [("Content-Type", "text/html; charset=utf-8")], "<p>" * 500
        )

    proto = MockHTTPProtocol()
    await compress()(handler)(mock_scope(headers={"accept-encoding": "gzip"}), proto)
    assert proto.header("content-encoding") == "gzip"


@pytest.mark.asyncio
async def test_no_double_compression() -> None:
    body = b"already compressed data" * 50

    async def handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
        proto.response_bytes(
            200,
            [("content-type", "application/json"), ("content-encoding", "br")],
            body,
        )

    proto = MockHTTPProtocol()
    await compress()(handler)(mock_scope(headers={"accept-encoding": "gzip"}), proto)
    assert proto.response_body == body
    assert proto.header("content-encoding") == "br"


@pytest.mark.asyncio
async def test_custom_min_size() -> None:
    async def handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
        proto.response_str(200, [("content-type", "text/plain")], "x" * 100)

    scope = mock_scope(headers={"accept-encoding": "gzip"})

    proto1 = MockHTTPProtocol()
    await compress()(handler)(scope, proto1)
    assert 100 < DEFAULT_MIN_SIZE
    assert proto1.header("content-encoding") is None

    proto2 = MockHTTPProtocol()
    await compress(min_size=50)(handler)(scope, proto2)
    assert proto2.header("content-encoding") == "gzip"


@pytest.mark.asyncio
async def test_custom_compressible_types() -> None:
    async def handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
        proto.response_str(200, [("content-type", "application/x-custom")], "x" * 1000)

    scope = mock_scope(headers={"accept-encoding": "gzip"})

    proto1 = MockHTTPProtocol()
    await compress()(handler)(scope, proto1)
    assert proto1.header("content-encoding") is None

    proto2 = MockHTTPProtocol()
    middleware = compress(compressible_types=frozenset({"application/x-custom"}))
    await middleware(handler)(scope, proto2)
    assert proto2.header("content-encoding") == "gzip"


@pytest.mark.asyncio
async def test_any_type_and_size_when_unrestricted() -> None:
    async def handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
        proto.response_bytes(200, [("content-type", "image/png")], b"\x89PNG")

    proto = MockHTTPProtocol()
    middleware = compress(min_size=0, compressible_types=None)
    await middleware(handler)(mock_scope(headers={"accept-encoding": "gzip"}), proto)
    assert proto.header("content-encoding") == "gzip"
    assert proto.response_body is not None
    assert bytes(gzip.decompress(proto.response_body)) == b"\x89PNG"


def test_negative_min_size_raises() -> None:
    with pytest.raises(ValueError, match="min_size must be >= 0"):
        compress(min_size=-1)


@pytest.mark.asyncio
async def test_empty_and_file_responses_pass_through() -> None:
    async def empty(scope: HTTPScope, proto: HTTPProtocol) -> None:
        proto.response_empty(204, [])

    async def file(scope: HTTPScope, proto: HTTPProtocol) -> None:
        proto.response_file(200, [("content-type", "text/plain")], "/tmp/notes.txt")

    scope = mock_scope(headers={"accept-encoding": "gzip"})

    proto1 = MockHTTPProtocol()
    await compress()(empty)(scope, proto1)
    assert proto1.response_status == 204
    assert proto1.response_headers == []

    proto2 = MockHTTPProtocol()
    await compress()(file)(scope, proto2)
    assert proto2.response_file_path == "/tmp/notes.txt"
    assert proto2.header("content-encoding") is None


# --- Streaming ----------------------------------------------------------------
@pytest.mark.asyncio
async def test_stream_compressed() -> None:
    chunks = ["data: first\n\n", "data: second\n\n", "data: third\n\n"]

    async def handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
        transport = proto.response_stream(200, [("content-type", "text/event-stream")])
        for chunk in chunks:
            await transport.send_str(chunk)

    proto = MockHTTPProtocol()
    await compress()(handler)(mock_scope(headers={"accept-encoding": "gzip"}), proto)

    assert proto.header("content-encoding") == "gzip"
    assert proto.header("content-length") is None
    assert proto.stream_transport is not None
    # flushed as sent, then the trailer
    assert len(proto.stream_transport.chunks) > 1
    data = bytes(gzip.decompress(proto.stream_transport.get_data())).decode()
    assert data == "".join(chunks)


@pytest.mark.asyncio
async def test_stream_deflate() -> None:
    async def handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
        transport = proto.response_stream(200, [("content-type", "text/plain")])
        await transport.send_bytes(b"hello ")
        await transport.send_bytes(b"world")

    proto = MockHTTPProtocol()
    await compress()(handler)(mock_scope(headers={"accept-encoding": "deflate"}), proto)

    assert proto.stream_transport is not None
    data = bytes(deflate.decompress(proto.stream_transport.get_data()))
    assert data == b"hello world"


@pytest.mark.asyncio
async def test_stream_non_compressible_passthrough() -> None:
    async def handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
        transport = proto.response_stream(200, [("content-type", "video/mp4")])
        await transport.send_bytes(b"frame")

    proto = MockHTTPProtocol()
    await compress()(handler)(mock_scope(headers={"accept-encoding": "gzip"}), proto)

    assert proto.header("content-encoding") is None
    assert proto.stream_transport is not None
    assert proto.stream_transport.get_data() == b"frame"


@pytest.mark.asyncio
async def test_websocket_passthrough() -> None:
    seen: list[str] = []

    async def handler(s, p) -> None:
        seen.append(s.proto)

    scope = MockWebsocketScope(headers={"accept-encoding": "gzip"})
    await compress()(handler)(scope, object())
    assert seen == ["ws"]

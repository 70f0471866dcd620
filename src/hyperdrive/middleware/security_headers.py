"""Static security response headers.

    router.use(frame_options(), content_type_options())
"""

from __future__ import annotations

from typing import TYPE_CHECKING, cast

from hyperdrive.middleware._proto import HeaderSettingHTTPProtocol

if TYPE_CHECKING:
    from collections.abc import Callable

    from hyperdrive.rsgi import (
        HTTPProtocol,
        HTTPScope,
        RSGIHandler,
        RSGIHTTPHandler,
        WebsocketProtocol,
        WebsocketScope,
    )


def response_header(name: str, value: str) -> Callable[[RSGIHandler], RSGIHandler]:
    """Create middleware that adds `name: value` to every HTTP response.

    The header is set before the wrapped handler runs, so a handler that sets
    the same header itself overrides it. Websocket connections pass through.
    """
    defaults = [(name.lower(), value)]

    def middleware(handler: RSGIHandler) -> RSGIHandler:
        async def header_handler(
            scope: HTTPScope | WebsocketScope,
            proto: HTTPProtocol | WebsocketProtocol,
        ) -> None:
            if scope.proto != "http":
                await handler(scope, proto)  # ty: ignore[invalid-argument-type]
                return
            http_handler = cast("RSGIHTTPHandler", handler)
            await http_handler(
                cast("HTTPScope", scope),
                HeaderSettingHTTPProtocol(cast("HTTPProtocol", proto), defaults),
            )

        return header_handler

    return middleware


def frame_options(value: str = "DENY") -> Callable[[RSGIHandler], RSGIHandler]:
    """`X-Frame-Options` on every response, `DENY` unless given."""
    return response_header("X-Frame-Options", value)


def content_type_options() -> Callable[[RSGIHandler], RSGIHandler]:
    """`X-Content-Type-Options: nosniff` on every response."""
    return response_header("X-Content-Type-Options", "nosniff")

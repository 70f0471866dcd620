"""Cross-origin resource sharing middleware.

Follows the semantics of gorilla/handlers' CORS handler:

- requests without an `Origin` header, or from an origin that is not
  allowed, pass through untouched;
- preflight requests (`OPTIONS` with `Access-Control-Request-Method`) are
  answered here and never reach the wrapped handler: 405 for a method that
  isn't allowed, 403 for a request header that isn't allowed, 200 otherwise;
- every other request from an allowed origin gets
  `Access-Control-Allow-Origin` (plus credentials / exposed headers) and is
  passed on.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, cast

from hyperdrive.middleware._proto import HeaderSettingHTTPProtocol

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from hyperdrive.middleware._proto import Headers
    from hyperdrive.rsgi import (
        HTTPProtocol,
        HTTPScope,
        RSGIHandler,
        RSGIHTTPHandler,
        WebsocketProtocol,
        WebsocketScope,
    )

DEFAULT_METHODS: tuple[str, ...] = ("GET", "HEAD", "POST")
# always accepted in Access-Control-Request-Headers
SIMPLE_HEADERS: tuple[str, ...] = (
    "Accept",
    "Accept-Language",
    "Content-Language",
    "Origin",
)


def cors(
    *,
    origins: Iterable[str] = ("*",),
    headers: Iterable[str] = (),
    methods: Iterable[str] = DEFAULT_METHODS,
    exposed_headers: Iterable[str] = (),
    allow_credentials: bool = False,
    max_age: int = 0,
) -> Callable[[RSGIHandler], RSGIHandler]:
    """Create CORS middleware.

    Args:
        origins: Allowed origins. `"*"` allows any origin and is sent back as
            `*`; listed origins are echoed. Empty allows none.
        headers: Request headers allowed in addition to `SIMPLE_HEADERS`.
            Compared case-insensitively.
        methods: Methods a preflight may ask for.
        exposed_headers: Response headers the browser may expose to scripts.
        allow_credentials: Send `Access-Control-Allow-Credentials: true`.
            Browsers ignore it alongside `*`, so credentialed requests need
            listed origins.
        max_age: Seconds a preflight result may be cached. 0 omits the header.

    Example:
        router.use(cors(origins=["https://app.example.com"], headers=["Authorization"]))
    """
    if max_age < 0:
        msg = f"max_age must be >= 0, got {max_age}"
        raise ValueError(msg)

    allowed_origins = frozenset(o for o in origins if o)
    allow_any_origin = "*" in allowed_origins
    allowed_headers = frozenset(h.lower() for h in (*SIMPLE_HEADERS, *headers) if h)
    allowed_methods = frozenset(m.upper() for m in methods)
    exposed = ", ".join(exposed_headers)

    def origin_headers(origin: str) -> Headers:
        # only explicitly listed origins are echoed, "*" is never widened
        if allow_any_origin:
            result = [("access-control-allow-origin", "*")]
        else:
            result = [("access-control-allow-origin", origin), ("vary", "Origin")]
        if allow_credentials:
            result.append(("access-control-allow-credentials", "true"))
        return result

    def middleware(handler: RSGIHandler) -> RSGIHandler:
        async def cors_handler(
            scope: HTTPScope | WebsocketScope,
            proto: HTTPProtocol | WebsocketProtocol,
        ) -> None:
            if scope.proto != "http":
                await handler(scope, proto)  # ty: ignore[invalid-argument-type]
                return

            http_handler = cast("RSGIHTTPHandler", handler)
            scope = cast("HTTPScope", scope)
            proto = cast("HTTPProtocol", proto)

            origin = scope.headers.get("origin")
            if not origin or not (allow_any_origin or origin in allowed_origins):
                await http_handler(scope, proto)
                return

            requested_method = scope.headers.get("access-control-request-method")
            if scope.method.upper() == "OPTIONS" and requested_method is not None:
                _preflight(scope, proto, requested_method, origin)
                return

            response_headers = origin_headers(origin)
            if exposed:
                response_headers.append(("access-control-expose-headers", exposed))
            await http_handler(
                scope, HeaderSettingHTTPProtocol(proto, response_headers)
            )

        return cors_handler

    def _preflight(
        scope: HTTPScope, proto: HTTPProtocol, requested_method: str, origin: str
    ) -> None:
        method = requested_method.strip().upper()
        if method not in allowed_methods:
            proto.response_empty(405, [])
            return

        requested = [
            h.strip()
            for h in scope.headers.get("access-control-request-headers", "").split(",")
            if h.strip()
        ]
        if any(h.lower() not in allowed_headers for h in requested):
            proto.response_empty(403, [])
            return

        response_headers = origin_headers(origin)
        response_headers.append(("access-control-allow-methods", method))
        if requested:
            response_headers.append(
                ("access-control-allow-headers", ", ".join(requested))
            )
        if max_age:
            response_headers.append(("access-control-max-age", str(max_age)))
        proto.response_empty(200, response_headers)

    return middleware

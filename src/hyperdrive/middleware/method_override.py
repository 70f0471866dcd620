"""HTTP method override for clients that can only send GET and POST.

A POST carrying `X-HTTP-Method-Override: PUT` (or `PATCH`, `DELETE`) is seen
by downstream handlers as that method. The header value must match exactly;
other values and other request methods are left alone.

The router picks the route by method, so this middleware has to wrap the
router itself rather than be registered with `Router.use`:

    app = method_override()(router)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from hyperdrive.rsgi import (
        HTTPProtocol,
        HTTPScope,
        RSGIHandler,
        WebsocketProtocol,
        WebsocketScope,
    )

OVERRIDE_HEADER = "x-http-method-override"
OVERRIDABLE_METHODS = frozenset({"PUT", "PATCH", "DELETE"})


class _OverriddenHTTPScope:
    """Lightweight wrapper that overrides method on an HTTPScope."""

    __slots__ = ("_scope", "method")

    def __init__(self, scope: HTTPScope, method: str) -> None:
        self._scope = scope
        self.method = method

    def __getattr__(self, name: str) -> object:
        return getattr(self._scope, name)


def method_override() -> Callable[[RSGIHandler], RSGIHandler]:
    """Create method override middleware."""

    def middleware(handler: RSGIHandler) -> RSGIHandler:
        async def override_handler(
            scope: HTTPScope | WebsocketScope,
            proto: HTTPProtocol | WebsocketProtocol,
        ) -> None:
            if scope.proto == "http" and scope.method == "POST":
                override = scope.headers.get(OVERRIDE_HEADER)
                if override in OVERRIDABLE_METHODS:
                    scope = _OverriddenHTTPScope(scope, override)  # type: ignore[assignment]
            await handler(scope, proto)  # ty: ignore[invalid-argument-type]

        return override_handler

    return middleware

"""HTTP+Websocket router for RSGI applications.

Matched path variables are published through the `route_vars` ContextVar for
the duration of the handler call.
"""

from __future__ import annotations

from functools import reduce
from typing import TYPE_CHECKING, Literal

from hyperdrive.params import request_scope
from hyperdrive.tree import (
    LeafKey,
    Node,
    add_route,
    finalize_tree,
    find_handler,
    http_route,
    mount_tree,
    route_vars,
)

if TYPE_CHECKING:
    from asyncio import AbstractEventLoop

    from hyperdrive.rsgi import (
        HTTPProtocol,
        HTTPScope,
        Middleware,
        RSGIHandler,
        RSGIHTTPHandler,
        RSGIWebsocketHandler,
        WebsocketProtocol,
        WebsocketScope,
    )

type HTTPMethod = Literal[
    "CONNECT", "DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "POST", "PUT", "TRACE"
]
type WebsocketMethod = Literal["WEBSOCKET"]

_HTTP_METHODS = {
    k.value: k for k in LeafKey if k not in (LeafKey.ANY_HTTP, LeafKey.WEBSOCKET)
}


class Router:
    __slots__ = ("_finalized", "_tree")
    _tree: Node[RSGIHandler]
    _finalized: bool

    def __init__(
        self,
        *,
        not_found_handler: RSGIHTTPHandler | None = None,
        method_not_allowed_handler: RSGIHTTPHandler | None = None,
    ) -> None:
        self._tree = Node(
            not_found_handler=not_found_handler,
            method_not_allowed_handler=method_not_allowed_handler,
        )
        self._finalized = False

    def __rsgi_init__(self, loop: AbstractEventLoop) -> None:
        self.finalize()

    async def __rsgi__(
        self,
        scope: HTTPScope | WebsocketScope,
        proto: HTTPProtocol | WebsocketProtocol,
    ) -> None:
        await self(scope, proto)

    async def __call__(
        self,
        scope: HTTPScope | WebsocketScope,
        proto: HTTPProtocol | WebsocketProtocol,
    ) -> None:
        if not self._finalized:
            self.finalize()
        if scope.proto == "http":
            # unknown methods only reach any-method routes
            method = _HTTP_METHODS.get(scope.method.upper(), LeafKey.ANY_HTTP)
        else:
            method = LeafKey.WEBSOCKET
        handler, params, route = self._handler(method, scope.path)
        params_token = route_vars.set(params)
        route_token = http_route.set(route)
        try:
            with request_scope():
                await handler(scope, proto)  # ty: ignore[invalid-argument-type]
        finally:
            http_route.reset(route_token)
            route_vars.reset(params_token)

    def finalize(self) -> None:
        """Cascade error handlers and middleware down through the routing tree.

        Idempotent. Runs automatically on the first request (or from
        `__rsgi_init__` when served by granian), but can be called up front to
        surface configuration errors early.
        """
        if self._finalized:
            return
        if self._tree.not_found_handler is None:
            msg = "Router does not have not_found_handler"
            raise ValueError(msg)
        if self._tree.method_not_allowed_handler is None:
            msg = "Router does not have method_not_allowed_handler"
            raise ValueError(msg)
        self._tree = finalize_tree(
            self._tree,
            self._tree.not_found_handler,
            self._tree.method_not_allowed_handler,
            (),
        )
        self._finalized = True

    def _handler(
        self, method: LeafKey, path: str
    ) -> tuple[RSGIHandler, dict[str, str], str]:
        handler, middleware, params, route = find_handler(path, method, self._tree)
        wrapped = reduce(lambda h, m: m(h), reversed(middleware), handler)
        return wrapped, params, route

    def handle(
        self,
        path: str,
        handler: RSGIHandler,
        middleware: tuple[Middleware[RSGIHandler], ...] = (),
    ) -> None:
        """Registers handler at path for any http method, with optional middleware."""
        self._tree = add_route(self._tree, LeafKey.ANY_HTTP, path, handler, middleware)

    def method(
        self,
        method: HTTPMethod | WebsocketMethod | None,
        path: str,
        handler: RSGIHandler,
        middleware: tuple[Middleware[RSGIHandler], ...] = (),
    ) -> None:
        """Registers handler at path for method (None: any http method)."""
        key = LeafKey(method) if method is not None else LeafKey.ANY_HTTP
        self._tree = add_route(self._tree, key, path, handler, middleware)

    def connect(
        self,
        path: str,
        handler: RSGIHTTPHandler,
        middleware: tuple[Middleware[RSGIHandler], ...] = (),
    ) -> None:
        self.method("CONNECT", path, handler, middleware)

    def delete(
        self,
        path: str,
        handler: RSGIHTTPHandler,
        middleware: tuple[Middleware[RSGIHandler], ...] = (),
    ) -> None:
        self.method("DELETE", path, handler, middleware)

    def get(
        self,
        path: str,
        handler: RSGIHTTPHandler,
        middleware: tuple[Middleware[RSGIHandler], ...] = (),
    ) -> None:
        self.method("GET", path, handler, middleware)

    def head(
        self,
        path: str,
        handler: RSGIHTTPHandler,
        middleware: tuple[Middleware[RSGIHandler], ...] = (),
    ) -> None:
        self.method("HEAD", path, handler, middleware)

    def options(
        self,
        path: str,
        handler: RSGIHTTPHandler,
        middleware: tuple[Middleware[RSGIHandler], ...] = (),
    ) -> None:
        self.method("OPTIONS", path, handler, middleware)

    def patch(
        self,
        path: str,
        handler: RSGIHTTPHandler,
        middleware: tuple[Middleware[RSGIHandler], ...] = (),
    ) -> None:
        self.method("PATCH", path, handler, middleware)

    def post(
        self,
        path: str,
        handler: RSGIHTTPHandler,
        middleware: tuple[Middleware[RSGIHandler], ...] = (),
    ) -> None:
        self.method("POST", path, handler, middleware)

    def put(
        self,
        path: str,
        handler: RSGIHTTPHandler,
        middleware: tuple[Middleware[RSGIHandler], ...] = (),
    ) -> None:
        self.method("PUT", path, handler, middleware)

    def trace(
        self,
        path: str,
        handler: RSGIHTTPHandler,
        middleware: tuple[Middleware[RSGIHandler], ...] = (),
    ) -> None:
        self.method("TRACE", path, handler, middleware)

    def websocket(
        self,
        path: str,
        handler: RSGIWebsocketHandler,
        middleware: tuple[Middleware[RSGIHandler], ...] = (),
    ) -> None:
        self.method("WEBSOCKET", path, handler, middleware)

    def not_found(self, handler: RSGIHTTPHandler) -> None:
        """Registers http handler for paths that can't be found."""
        if self._tree.not_found_handler is not None:
            msg = "not found handler is already set"
            raise ValueError(msg)
        self._tree = self._tree.update(not_found_handler=handler)

    def method_not_allowed(self, handler: RSGIHTTPHandler) -> None:
        """Registers http handler for paths where the method is unresolved."""
        if self._tree.method_not_allowed_handler is not None:
            msg = "method not allowed handler is already set"
            raise ValueError(msg)
        self._tree = self._tree.update(method_not_allowed_handler=handler)

    def use(self, *middleware: Middleware[RSGIHandler]) -> None:
        """Adds router-wide middleware, applied to matched routes only."""
        self._tree = self._tree.update(middleware=self._tree.middleware + middleware)

    def mount(self, path: str, router: Router) -> None:
        """Merges in another router at path."""
        if path.endswith("/") and path != "/":
            msg = "mount path cannot end in /"
            raise ValueError(msg)
        self._tree = mount_tree(path, self._tree, router._tree)

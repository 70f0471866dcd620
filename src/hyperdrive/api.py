"""API: a router plus the default middleware chain, configured from Settings.

    api = API("todo", "todo list service")
    api.router.get("/todo/{id}", get_todo)
    api.start()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import uvloop
from granian.server.embed import Server

from hyperdrive.config import Settings, get_settings
from hyperdrive.log import configure_logging
from hyperdrive.middleware.access_log import access_log
from hyperdrive.middleware.compress import compress
from hyperdrive.middleware.cors import cors
from hyperdrive.middleware.method_override import method_override
from hyperdrive.middleware.recovery import recovery
from hyperdrive.middleware.security_headers import (
    content_type_options,
    frame_options,
)
from hyperdrive.params import request_scope
from hyperdrive.router import Router

if TYPE_CHECKING:
    from asyncio import AbstractEventLoop

    from hyperdrive.rsgi import (
        HTTPProtocol,
        HTTPScope,
        RSGIHandler,
        WebsocketProtocol,
        WebsocketScope,
    )

logger = logging.getLogger(__name__)

# headers every CORS-enabled API accepts, on top of CORS_HEADERS
DEFAULT_CORS_HEADERS = ("Content-Type", "X-Content-Type-Options")


async def not_found(_scope: HTTPScope, proto: HTTPProtocol) -> None:
    proto.response_str(404, [("content-type", "text/plain")], "404 page not found")


async def method_not_allowed(_scope: HTTPScope, proto: HTTPProtocol) -> None:
    proto.response_str(405, [("content-type", "text/plain")], "405 method not allowed")


class Application:
    """RSGI application serving handler, finalizing router on startup."""

    __slots__ = ("handler", "router")

    def __init__(self, handler: RSGIHandler, router: Router) -> None:
        self.handler = handler
        self.router = router

    def __rsgi_init__(self, loop: AbstractEventLoop) -> None:
        self.router.finalize()

    async def __rsgi__(
        self,
        scope: HTTPScope | WebsocketScope,
        proto: HTTPProtocol | WebsocketProtocol,
    ) -> None:
        with request_scope():
            await self.handler(scope, proto)  # ty: ignore[invalid-argument-type]


class API:
    """Router, settings and middleware for one HTTP API.

    Settings are read once (from the environment, unless passed in) and shared
    by every middleware the API builds.
    """

    def __init__(
        self,
        name: str,
        desc: str = "",
        *,
        settings: Settings | None = None,
        router: Router | None = None,
    ) -> None:
        self.name = name
        self.desc = desc
        self.settings = settings if settings is not None else get_settings()
        if router is None:
            router = Router(
                not_found_handler=not_found,
                method_not_allowed_handler=method_not_allowed,
            )
        self.router = router

    def cors_middleware(self, handler: RSGIHandler) -> RSGIHandler:
        """CORS per CORS_ORIGINS / CORS_HEADERS / CORS_CREDENTIALS.

        Returns handler unchanged when CORS_ENABLED is false.
        """
        settings = self.settings
        if not settings.cors_enabled:
            return handler
        return cors(
            origins=settings.cors_origin_list,
            headers=[*DEFAULT_CORS_HEADERS, *settings.cors_header_list],
            allow_credentials=settings.cors_credentials,
        )(handler)

    def frame_options_middleware(self, handler: RSGIHandler) -> RSGIHandler:
        """Adds `X-Frame-Options: DENY` to every response."""
        return frame_options()(handler)

    def content_type_options_middleware(self, handler: RSGIHandler) -> RSGIHandler:
        """Adds `X-Content-Type-Options: nosniff` to every response."""
        return content_type_options()(handler)

    def compression_middleware(self, handler: RSGIHandler) -> RSGIHandler:
        """Compresses responses at GZIP_LEVEL when the client accepts it.

        Like gorilla/handlers, every body is eligible whatever its size or
        media type, unless it already has a Content-Encoding.
        """
        return compress(
            level=self.settings.gzip_level, min_size=0, compressible_types=None
        )(handler)

    def logging_middleware(self, handler: RSGIHandler) -> RSGIHandler:
        """Logs each request in Combined Log Format to stdout."""
        configure_logging()
        return access_log()(handler)

    def recovery_middleware(self, handler: RSGIHandler) -> RSGIHandler:
        """Turns exceptions into 500s; tracebacks are logged outside production."""
        return recovery(print_stack=not self.settings.is_production)(handler)

    def method_override_middleware(self, handler: RSGIHandler) -> RSGIHandler:
        """Honours X-HTTP-Method-Override on POST. Not part of the default chain."""
        return method_override()(handler)

    def default_middleware_chain(self, handler: RSGIHandler) -> RSGIHandler:
        """Wraps handler in, outermost first: CORS, frame options, content type
        options, compression, access logging, recovery.
        """
        return self.cors_middleware(
            self.frame_options_middleware(
                self.content_type_options_middleware(
                    self.compression_middleware(
                        self.logging_middleware(self.recovery_middleware(handler))
                    )
                )
            )
        )

    def app(self) -> Application:
        """The router wrapped in the default middleware chain, as an RSGI app."""
        return Application(self.default_middleware_chain(self.router), self.router)

    async def serve(self, address: str = "0.0.0.0") -> None:  # noqa: S104
        server = Server(self.app(), address=address, port=self.settings.port)
        logger.info(
            "%s listening on %s:%d (%s)",
            self.name,
            address,
            self.settings.port,
            self.settings.environment,
        )
        try:
            await server.serve()
        except asyncio.CancelledError:
            await server.shutdown()

    def start(self, address: str = "0.0.0.0") -> None:  # noqa: S104
        """Serve the API with granian on PORT until interrupted."""
        configure_logging()
        uvloop.run(self.serve(address))

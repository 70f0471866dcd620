"""Turn unhandled handler exceptions into 500 responses."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, cast

from hyperdrive.middleware._proto import ResponseHTTPProtocol

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

logger = logging.getLogger(__name__)


def recovery(
    *, print_stack: bool = True, logger: logging.Logger = logger
) -> Callable[[RSGIHandler], RSGIHandler]:
    """Create recovery middleware.

    Any `Exception` raised by the wrapped handler is logged and, if no
    response has been started yet, answered with an empty 500. The traceback
    is only logged when `print_stack` is true. Cancellation is not caught.
    """

    def middleware(handler: RSGIHandler) -> RSGIHandler:
        async def recovering_handler(
            scope: HTTPScope | WebsocketScope,
            proto: HTTPProtocol | WebsocketProtocol,
        ) -> None:
            if scope.proto != "http":
                await handler(scope, proto)  # ty: ignore[invalid-argument-type]
                return

            http_handler = cast("RSGIHTTPHandler", handler)
            scope = cast("HTTPScope", scope)
            tracked = ResponseHTTPProtocol(cast("HTTPProtocol", proto))
            try:
                await http_handler(scope, tracked)
            except Exception as e:  # noqa: BLE001
                logger.error(
                    "recovered from error serving %s %s: %r",
                    scope.method,
                    scope.path,
                    e,
                    exc_info=e if print_stack else None,
                )
                if not tracked.started:
                    tracked.response_empty(500, [])

        return recovering_handler

    return middleware

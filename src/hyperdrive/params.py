"""Request parameter helpers.

Parameters come from three places: the URL query string, a URL-encoded
request body, and the path variables of the matched route. Each helper
returns a `Values` mapping of key to list of values; `params` merges all
three. None of the helpers raise on malformed input, they return whatever
could be parsed.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode

from hyperdrive.tree import route_vars

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

    from hyperdrive.rsgi import HTTPProtocol, HTTPScope

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# methods whose body is parsed as form data
_FORM_METHODS = frozenset({"POST", "PUT", "PATCH"})


class _BodySlot:
    __slots__ = ("body",)

    def __init__(self) -> None:
        self.body: bytes | None = None


# open for the duration of a request dispatched by Router or API
_request_slot: ContextVar[_BodySlot | None] = ContextVar("request_slot", default=None)
# fallback for calls outside a request scope, keyed on the proto object
_request_body: ContextVar[tuple[HTTPProtocol, bytes] | None] = ContextVar(
    "request_body", default=None
)


@contextmanager
def request_scope() -> Iterator[None]:
    """Share one memoized request body with everything handling this request.

    Opened by `Router` and the `API` application around each request, so
    middleware that wraps `proto` and the handler read the same body. A
    nested scope reuses the one already open.
    """
    if _request_slot.get() is not None:
        yield
        return
    token = _request_slot.set(_BodySlot())
    try:
        yield
    finally:
        _request_slot.reset(token)


class Values(dict[str, list[str]]):
    """Multi-valued parameter mapping, in insertion order."""

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, str]]) -> Values:
        values = cls()
        for key, value in pairs:
            values.add(key, value)
        return values

    def get_first(self, key: str, default: str = "") -> str:
        """First value for key, or default when the key is absent."""
        values = self.get(key)
        return values[0] if values else default

    def add(self, key: str, value: str) -> None:
        self.setdefault(key, []).append(value)

    def set(self, key: str, value: str) -> None:
        self[key] = [value]

    def delete(self, key: str) -> None:
        self.pop(key, None)

    def extend(self, other: Mapping[str, list[str]]) -> None:
        """Append other's values after any existing values for the same key."""
        for key, values in other.items():
            self.setdefault(key, []).extend(values)

    def encode(self) -> str:
        """URL-encode, sorted by key."""
        return urlencode(
            [(key, value) for key in sorted(self) for value in self[key]]
        )


def query_params(scope: HTTPScope) -> Values:
    """Parameters from the URL query string."""
    return _parse_urlencoded(scope.query_string)


async def request_body(proto: HTTPProtocol) -> bytes:
    """Read the request body, at most once per request.

    The body is memoized for the current request, so `body_params`,
    `params` and the handler itself can all read it. Handlers that need the
    raw body after parsing parameters must read it through this function
    rather than awaiting `proto()` again.

    Inside a `request_scope` (any request dispatched by `Router` or served by
    `API`) the memo is shared by every `proto` wrapper seen during the
    request. Outside one, it only applies to the same `proto` object.
    """
    slot = _request_slot.get()
    if slot is not None:
        if slot.body is None:
            slot.body = await proto()
        return slot.body
    cached = _request_body.get()
    if cached is not None and cached[0] is proto:
        return cached[1]
    body = await proto()
    _request_body.set((proto, body))
    return body


async def body_params(scope: HTTPScope, proto: HTTPProtocol) -> Values:
    """Parameters from a URL-encoded POST, PUT or PATCH body.

    Any other method or content type gives an empty `Values` without touching
    the body.
    """
    if scope.method.upper() not in _FORM_METHODS:
        return Values()
    content_type = scope.headers.get("content-type", "")
    if content_type.split(";", 1)[0].strip().lower() != FORM_CONTENT_TYPE:
        return Values()
    body = await request_body(proto)
    if not body:
        return Values()
    return _parse_urlencoded(body.decode("utf-8", errors="replace"))


def path_params() -> Values:
    """Path variables of the route currently being handled.

    Empty when called outside a handler dispatched by the router.
    """
    return Values({key: [value] for key, value in route_vars.get({}).items()})


async def params(scope: HTTPScope, proto: HTTPProtocol) -> Values:
    """Query, body and path parameters merged in that order.

    A key present in more than one source keeps every value, earlier sources
    first.
    """
    merged = query_params(scope)
    merged.extend(await body_params(scope, proto))
    merged.extend(path_params())
    return merged


def _parse_urlencoded(data: str) -> Values:
    # invalid percent escapes are kept verbatim, blank values are kept
    return Values.from_pairs(
        parse_qsl(data, keep_blank_values=True, errors="replace")
    )

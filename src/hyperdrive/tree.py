"""Segment trie used by the router, with path variable support.

Routes are split on "/" into segments. A segment is matched exactly, by a
`{name}` wildcard, or by a trailing `{name...}` catch-all, in that order of
priority. Leaves are keyed by HTTP method (or any-method / websocket).
"""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Never

from hyperdrive.rsgi import Middleware

# set by Router for the duration of a matched dispatch
route_vars: ContextVar[dict[str, str]] = ContextVar("route_vars")
http_route: ContextVar[str] = ContextVar("http_route")


class LeafKey(Enum):
    """HTTP methods (RFC 9110, RFC 5789), any-method, or websocket."""

    CONNECT = "CONNECT"
    DELETE = "DELETE"
    GET = "GET"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    PATCH = "PATCH"
    POST = "POST"
    PUT = "PUT"
    TRACE = "TRACE"

    ANY_HTTP = "ANY_HTTP"
    WEBSOCKET = "WEBSOCKET"

    def __repr__(self) -> str:
        return str(self.value)


class FrozenDict[K, V](dict[K, V]):
    """Hashable dict, so trees can key the find_handler cache."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._hash: int | None = None

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self.items()))
        return self._hash

    def _immutable(self, *args, **kwargs) -> Never:
        msg = "FrozenDict is immutable"
        raise TypeError(msg)

    __setitem__ = __delitem__ = clear = pop = popitem = setdefault = update = _immutable


@dataclass(slots=True, frozen=True)
class Node[T]:
    handler: T | None = None
    middleware: tuple[Middleware[T], ...] = ()
    children: FrozenDict[str | LeafKey, Node[T]] = field(default_factory=FrozenDict)
    wildcard: Branch[T] | None = None
    catchall: Branch[T] | None = None
    not_found_handler: T | None = None
    method_not_allowed_handler: T | None = None

    def update(self, **changes: object) -> Node[T]:
        """Copy of the node with the given (non-None) fields replaced."""
        current = {
            "handler": self.handler,
            "middleware": self.middleware,
            "children": self.children,
            "wildcard": self.wildcard,
            "catchall": self.catchall,
            "not_found_handler": self.not_found_handler,
            "method_not_allowed_handler": self.method_not_allowed_handler,
        }
        current.update({k: v for k, v in changes.items() if v is not None})
        return Node(**current)  # ty: ignore[invalid-argument-type]


@dataclass(slots=True, frozen=True)
class Branch[T]:
    """Named variable segment (wildcard or catch-all) and the subtree below it."""

    name: str
    child: Node[T]


@lru_cache(maxsize=1024)
def find_handler[T](
    path: str,
    method: LeafKey,
    tree: Node[T],
) -> tuple[T, tuple[Middleware[T], ...], dict[str, str], str]:
    """Walk the tree for path and method.

    Returns (handler, middleware, route_vars, route_pattern). For unmatched
    paths the not found handler is returned with no vars and an empty
    pattern; for a matched path without the method, the method not allowed
    handler.
    """
    segments = path[1:].split("/")

    current = tree
    params: dict[str, str] = {}
    route_parts: list[str] = []
    for i, seg in enumerate(segments):
        child = current.children.get(seg)
        if child is not None:
            route_parts.append(seg)
            current = child
            continue
        if current.wildcard is not None:
            params[current.wildcard.name] = seg
            route_parts.append("{" + current.wildcard.name + "}")
            current = current.wildcard.child
            continue
        if current.catchall is not None:
            params[current.catchall.name] = "/".join(segments[i:])
            route_parts.append("{" + current.catchall.name + "...}")
            current = current.catchall.child
            break
        return _not_found(current)

    leaf = current.children.get(method) or current.children.get(LeafKey.ANY_HTTP)
    if leaf is None:
        if any(isinstance(k, LeafKey) for k in current.children):
            if current.method_not_allowed_handler is None:
                msg = "No method not allowed handler set"
                raise ValueError(msg)
            return current.method_not_allowed_handler, (), params, ""
        return _not_found(current)
    if leaf.handler is None:
        return _not_found(current)

    return leaf.handler, leaf.middleware, params, "/" + "/".join(route_parts)


def _not_found[T](
    node: Node[T],
) -> tuple[T, tuple[Middleware[T], ...], dict[str, str], str]:
    if node.not_found_handler is None:
        msg = "No not found handler set"
        raise ValueError(msg)
    return node.not_found_handler, (), {}, ""


def add_route[T](
    tree: Node[T],
    method: LeafKey,
    path: str,
    handler: T,
    middleware: tuple[Middleware[T], ...] = (),
) -> Node[T]:
    """Add handler for method on path, with optional route middleware."""
    leaf = Node(handler=handler, middleware=middleware)
    route = _sub_tree(path, Node(children=FrozenDict({method: leaf})))
    return merge_trees(tree, route)


def mount_tree[T](path: str, parent: Node[T], child: Node[T]) -> Node[T]:
    """Merge child in under path, keeping child's middleware on child's routes."""
    if child.middleware:
        child = _push_middleware_to_leaves(child, ())
    if path == "/":
        return merge_trees(parent, child)
    return merge_trees(parent, _sub_tree(path, child))


def finalize_tree[T](
    tree: Node[T],
    not_found_handler: T,
    method_not_allowed_handler: T,
    middleware: tuple[Middleware[T], ...],
) -> Node[T]:
    """Cascade error handlers and middleware down to every node.

    A node's own error handlers override the inherited ones for its subtree;
    middleware accumulates outermost (root) first.
    """
    not_found_handler = tree.not_found_handler or not_found_handler
    method_not_allowed_handler = (
        tree.method_not_allowed_handler or method_not_allowed_handler
    )
    middleware += tree.middleware

    def descend(node: Node[T]) -> Node[T]:
        return finalize_tree(
            node, not_found_handler, method_not_allowed_handler, middleware
        )

    return Node(
        handler=tree.handler,
        middleware=middleware,
        children=FrozenDict({k: descend(v) for k, v in tree.children.items()}),
        wildcard=Branch(tree.wildcard.name, descend(tree.wildcard.child))
        if tree.wildcard is not None
        else None,
        catchall=Branch(tree.catchall.name, descend(tree.catchall.child))
        if tree.catchall is not None
        else None,
        not_found_handler=not_found_handler,
        method_not_allowed_handler=method_not_allowed_handler,
    )


def _push_middleware_to_leaves[T](
    tree: Node[T], middleware: tuple[Middleware[T], ...]
) -> Node[T]:
    middleware += tree.middleware
    return Node(
        handler=tree.handler,
        middleware=middleware if tree.handler is not None else (),
        children=FrozenDict(
            {
                k: _push_middleware_to_leaves(v, middleware)
                for k, v in tree.children.items()
            }
        ),
        wildcard=Branch(
            tree.wildcard.name,
            _push_middleware_to_leaves(tree.wildcard.child, middleware),
        )
        if tree.wildcard is not None
        else None,
        catchall=Branch(
            tree.catchall.name,
            _push_middleware_to_leaves(tree.catchall.child, middleware),
        )
        if tree.catchall is not None
        else None,
        not_found_handler=tree.not_found_handler,
        method_not_allowed_handler=tree.method_not_allowed_handler,
    )


def _sub_tree[T](path: str, child: Node[T]) -> Node[T]:
    """Build the chain of nodes leading from the root to child along path."""
    if not path.startswith("/"):
        msg = f"path must start with '/', provided {path=}"
        raise ValueError(msg)
    for seg in reversed(path[1:].split("/")):
        if seg.startswith("{") and seg.endswith("...}"):
            child = Node(catchall=Branch(seg[1:-4], child))
        elif seg.startswith("{") and seg.endswith("}"):
            child = Node(wildcard=Branch(seg[1:-1], child))
        else:
            child = Node(children=FrozenDict({seg: child}))
    return child


def _pick[V](a: V | None, b: V | None, what: str) -> V | None:
    if a is not None and b is not None and a is not b:
        msg = f"nodes have conflicting {what}"
        raise ValueError(msg)
    return a if a is not None else b


def _merge_branch[T](
    a: Branch[T] | None, b: Branch[T] | None, what: str
) -> Branch[T] | None:
    if a is None or b is None:
        return a or b
    if a.name != b.name:
        msg = f"nodes have conflicting {what}"
        raise ValueError(msg)
    return Branch(a.name, merge_trees(a.child, b.child))


def merge_trees[T](tree1: Node[T], tree2: Node[T]) -> Node[T]:
    """Merge tree2 into tree1, raising ValueError on any conflict."""
    if tree2.middleware and tree1.middleware != tree2.middleware:
        msg = "node being merged in has conflicting middleware"
        raise ValueError(msg)

    children = dict(tree1.children)
    for key, child in tree2.children.items():
        children[key] = merge_trees(children[key], child) if key in children else child

    return Node(
        handler=_pick(tree1.handler, tree2.handler, "handlers"),
        middleware=tree1.middleware or tree2.middleware,
        children=FrozenDict(children),
        wildcard=_merge_branch(tree1.wildcard, tree2.wildcard, "wildcards"),
        catchall=_merge_branch(tree1.catchall, tree2.catchall, "catchalls"),
        not_found_handler=_pick(
            tree1.not_found_handler, tree2.not_found_handler, "not found handlers"
        ),
        method_not_allowed_handler=_pick(
            tree1.method_not_allowed_handler,
            tree2.method_not_allowed_handler,
            "method not allowed handlers",
        ),
    )

from importlib.metadata import version

from .api import API
from .config import Settings, get_settings
from .params import (
    Values,
    body_params,
    params,
    path_params,
    query_params,
    request_body,
    request_scope,
)
from .router import Router
from .tree import http_route, route_vars

__all__ = [
    "API",
    "Router",
    "Settings",
    "Values",
    "__version__",
    "body_params",
    "get_settings",
    "http_route",
    "params",
    "path_params",
    "query_params",
    "request_body",
    "request_scope",
    "route_vars",
]

__version__ = version("hyperdrive")

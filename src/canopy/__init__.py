"""Canopy - an App Router style request and view-composition engine for ASGI.

Resolves requests against an ordered route table, composes nested layout
trees with loading, error and not-found boundaries, and streams the result
as HTML or as a payload of description rows.

Basic usage::

    from canopy import App, RouteDescriptor, RouteTable, View, h

    def home():
        return h("h1", None, "Hello, World!")

    app = App(RouteTable(routes=(RouteDescriptor("/", page=View(home)),)))

Control flow from view code::

    from canopy import not_found, redirect

    async def post(params):
        entry = await load(params["slug"])
        if entry is None:
            not_found()
"""

__version__ = "0.1.0"
__all__ = [
    "App",
    "AppConfig",
    "CanopyError",
    "ConfigurationError",
    "DynamicUsageError",
    "ErrorBoundary",
    "Fragment",
    "HTTPError",
    "InterceptEntry",
    "ParallelSlot",
    "Request",
    "Response",
    "RouteDescriptor",
    "RouteHandler",
    "RouteTable",
    "StreamingResponse",
    "Suspense",
    "View",
    "cookies",
    "draft_mode",
    "forbidden",
    "h",
    "headers",
    "not_found",
    "params",
    "pathname",
    "permanent_redirect",
    "redirect",
    "search_params",
    "unauthorized",
]


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import canopy`` fast while providing a clean top-level API.
    """
    if name == "App":
        from canopy.app import App

        return App

    if name == "AppConfig":
        from canopy.config import AppConfig

        return AppConfig

    if name == "Request":
        from canopy.http.request import Request

        return Request

    if name in ("Response", "StreamingResponse"):
        from canopy.http import response as _resp

        return getattr(_resp, name)

    if name in (
        "InterceptEntry",
        "ParallelSlot",
        "RouteDescriptor",
        "RouteHandler",
        "RouteTable",
        "View",
    ):
        from canopy.routing import route as _route

        return getattr(_route, name)

    if name in ("ErrorBoundary", "Fragment", "Suspense", "h"):
        from canopy.views import nodes as _nodes

        return getattr(_nodes, name)

    if name in ("forbidden", "not_found", "permanent_redirect", "redirect", "unauthorized"):
        from canopy import signals as _signals

        return getattr(_signals, name)

    if name in ("cookies", "draft_mode", "headers", "params", "pathname", "search_params"):
        from canopy import context as _ctx

        return getattr(_ctx, name)

    if name in ("CanopyError", "ConfigurationError", "DynamicUsageError", "HTTPError"):
        from canopy import errors as _errors

        return getattr(_errors, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)

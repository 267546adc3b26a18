"""Normal-route branch - route handlers and page rendering.

A matched route is either a request handler (method dispatch) or a page.
Pages go through, in order:

    1. segment config (render mode, static params allowlist)
    2. interception (payload requests only)
    3. tree composition
    4. layout pre-render (innermost to outermost)
    5. page pre-render
    6. two-phase render, root row awaited before headers go out
    7. cache directive

Control signals raised at any step become redirects or access fallback
pages; other errors render the nearest error view (status 200) or
propagate to the ASGI handler.
"""

import inspect
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urljoin

from canopy._internal.invoke import call_with_props, invoke
from canopy.context import (
    dynamic_usage_detected,
    set_navigation,
    set_render_mode,
    take_pending_cookies,
)
from canopy.errors import ConfigurationError, MethodNotAllowed
from canopy.http.query import QueryParams
from canopy.http.request import Request
from canopy.http.response import AnyResponse, Response, StreamingResponse
from canopy.rendering.cache import VARY, derive_cache_headers
from canopy.rendering.digest import sanitize_error
from canopy.rendering.markup import HTML_CONTENT_TYPE, render_document
from canopy.rendering.payload import _NO_RETURN, PAYLOAD_CONTENT_TYPE, render_payload
from canopy.rendering.tee import TeeBuffer
from canopy.routing.matcher import InterceptTarget, find_intercept, match_route
from canopy.routing.route import RouteDescriptor, RouteHandler, RouteTable, View
from canopy.signals import ControlSignal, HTTPAccessFallbackSignal, RedirectSignal
from canopy.views.fallbacks import compose_access_fallback, compose_error_page
from canopy.views.tree import SlotIntercept, compose_view_tree

logger = logging.getLogger("canopy.server")

PARAMS_HEADER = "X-Canopy-Params"

_STATUS_TEXT = {401: "Unauthorized", 403: "Forbidden", 404: "Not Found"}

# URL syntax characters kept as-is when a redirect target is encoded for a header.
URL_SAFE = "/:@!$&'()*+,;=?#%"


def absolute_location(request: Request, target: str) -> str:
    """Resolve *target* against the request URL, escaping non-ASCII characters."""
    return urljoin(request.url, quote(target, safe=URL_SAFE))


@dataclass(frozen=True, slots=True)
class RenderSettings:
    """App-wide inputs every render needs."""

    table: RouteTable
    debug: bool = False
    lang: str = "en"
    intercepts: tuple[InterceptTarget, ...] = ()


# -- Streaming --


async def stream_tree(
    tree: Any,
    settings: RenderSettings,
    *,
    is_rsc: bool,
    status: int = 200,
    params: Mapping[str, Any] | None = None,
    return_value: Any = _NO_RETURN,
) -> StreamingResponse:
    """Start the two-phase render of *tree* and return the streaming response.

    The root row is resolved before returning, so signals and errors
    outside any boundary are raised here, before headers are sent.
    """
    tee = TeeBuffer(render_payload(tree, debug=settings.debug, return_value=return_value))
    try:
        await tee.get(0)
    except BaseException:
        await tee.aclose()
        raise

    if is_rsc:
        return StreamingResponse(
            chunks=tee.cursor(),
            status=status,
            content_type=PAYLOAD_CONTENT_TYPE,
            headers=(VARY,),
        )
    return StreamingResponse(
        chunks=render_document(tee, lang=settings.lang, params=params),
        status=status,
        content_type=HTML_CONTENT_TYPE,
        headers=(VARY,),
    )


# -- Fallback pages --


async def render_access_fallback(
    route: RouteDescriptor | None,
    status: int,
    settings: RenderSettings,
    *,
    is_rsc: bool,
    params: Mapping[str, Any] | None = None,
    boundary: View | None = None,
    layouts: Sequence[View | None] | None = None,
) -> AnyResponse:
    """The access fallback page for *status*, or its plain-text stand-in."""
    tree = await compose_access_fallback(
        route,
        status,
        settings.table,
        params=params,
        boundary=boundary,
        layouts=layouts,
    )
    if tree is None:
        return Response.text_response(_STATUS_TEXT.get(status, "Not Found"), status)
    return await stream_tree(tree, settings, is_rsc=is_rsc, status=status, params=params)


async def render_error_page(
    route: RouteDescriptor | None,
    exc: Exception,
    settings: RenderSettings,
    *,
    is_rsc: bool,
    params: Mapping[str, Any] | None = None,
) -> AnyResponse | None:
    """The error view page for *exc* (status 200), or ``None`` if no error view exists."""
    tree = compose_error_page(route, sanitize_error(exc, debug=settings.debug), settings.table, params=params)
    if tree is None:
        return None
    logger.error("View error rendered by error page: %s", exc, exc_info=exc)
    return await stream_tree(tree, settings, is_rsc=is_rsc, status=200, params=params)


async def signal_response(
    signal: ControlSignal,
    request: Request,
    route: RouteDescriptor | None,
    settings: RenderSettings,
    *,
    is_rsc: bool,
    params: Mapping[str, Any] | None = None,
) -> AnyResponse:
    """Turn a control signal into its response."""
    logger.debug("Signal %s on %s %s", signal.digest, request.method, request.path)
    if isinstance(signal, RedirectSignal):
        return Response.redirect(absolute_location(request, signal.url), signal.status)
    return await render_access_fallback(route, signal.status, settings, is_rsc=is_rsc, params=params)


# -- Route handlers --


def negotiate(value: Any) -> AnyResponse:
    """Convert a route handler's return value to a Response.

    1. ``Response`` / ``StreamingResponse`` -> pass through
    2. ``None``                             -> 204
    3. ``str``                              -> 200, text/html
    4. ``bytes``                            -> 200, application/octet-stream
    5. ``dict`` / ``list``                  -> 200, application/json
    6. ``(value, int)``                     -> negotiate value, override status
    """
    match value:
        case Response() | StreamingResponse():
            return value
        case None:
            return Response(status=204)
        case str():
            return Response(body=value)
        case bytes():
            return Response(body=value, content_type="application/octet-stream")
        case dict() | list():
            return Response.json_response(value)
        case (inner, int() as status):
            return negotiate(inner).with_status(status)
    msg = f"Route handler returned unsupported type {type(value).__name__!r}"
    raise TypeError(msg)


async def handle_route_handler(
    request: Request,
    route: RouteDescriptor,
    handler: RouteHandler,
    params: Mapping[str, Any],
) -> AnyResponse:
    """Dispatch to the handler for the request method.

    GET answers HEAD when no HEAD handler exists; OPTIONS is answered
    automatically with ``Allow``; anything else unknown is a 405.
    """
    methods = {name.upper(): fn for name, fn in handler.methods.items()}
    allowed = handler.allowed()
    method = request.method

    if method == "OPTIONS" and "OPTIONS" not in methods:
        return Response(status=204, headers=(("Allow", ", ".join(sorted(allowed))),))

    fn = methods.get(method)
    if fn is None and method == "HEAD":
        fn = methods.get("GET")
    if fn is None:
        raise MethodNotAllowed(allowed)

    try:
        result = await invoke(call_with_props, fn, {"request": request, "params": params})
    except RedirectSignal as signal:
        take_pending_cookies()
        return Response.redirect(absolute_location(request, signal.url), signal.status)
    except HTTPAccessFallbackSignal as signal:
        take_pending_cookies()
        return Response(status=signal.status)
    except Exception:
        take_pending_cookies()
        logger.exception("Route handler error on %s %s", method, route.pattern)
        return Response(status=500)

    return negotiate(result).with_cookies(take_pending_cookies())


# -- Page pre-render --


async def _static_params_allowed(view: View, params: Mapping[str, Any]) -> bool:
    """Whether *params* are among those ``generate_static_params`` returns.

    Keys missing from a generated entry are inherited from parent
    segments and do not constrain the match.
    """
    try:
        generated = await invoke(call_with_props, view.generate_static_params, {"params": params})
    except Exception:
        logger.exception("generate_static_params failed; allowing params %r", dict(params))
        return True
    if not isinstance(generated, list | tuple):
        return True
    for entry in generated:
        if all(
            key not in entry
            or (
                json.dumps(value) == json.dumps(entry[key])
                if isinstance(value, list)
                else str(value) == str(entry[key])
            )
            for key, value in params.items()
        ):
            return True
    return False


async def prerender_layouts(
    request: Request,
    route: RouteDescriptor,
    params: Mapping[str, Any],
    settings: RenderSettings,
    *,
    is_rsc: bool,
) -> AnyResponse | None:
    """Call each layout, innermost first, to surface its signals before streaming.

    A not-found raised by layout ``i`` renders the nearest not-found view
    declared above it (or the app-wide one) inside ``layouts[:i]`` only.
    Other errors are left for the real render to hit.
    """
    for index in range(len(route.layouts) - 1, -1, -1):
        layout = route.layouts[index]
        if layout is None:
            continue
        try:
            await invoke(call_with_props, layout.component, {"params": params, "children": None})
        except RedirectSignal as signal:
            return Response.redirect(absolute_location(request, signal.url), signal.status)
        except HTTPAccessFallbackSignal as signal:
            boundary = None
            if signal.status == 404:
                for parent in range(index - 1, -1, -1):
                    boundary = route.not_found_at(parent)
                    if boundary is not None:
                        break
                boundary = boundary or settings.table.not_found
            return await render_access_fallback(
                route,
                signal.status,
                settings,
                is_rsc=is_rsc,
                params=params,
                boundary=boundary,
                layouts=route.layouts[:index],
            )
        except Exception as exc:
            logger.debug("Layout %d of %s failed during pre-render: %s", index, route.pattern, exc)
    return None


async def prerender_page(
    request: Request,
    route: RouteDescriptor,
    page: View,
    params: Mapping[str, Any],
    search_params: QueryParams,
    settings: RenderSettings,
    *,
    is_rsc: bool,
) -> AnyResponse | None:
    """Call the page once to surface its signals before streaming.

    With a loading boundary the page's pending work is not awaited: the
    Suspense stream resolves it instead.
    """
    try:
        result = call_with_props(
            page.component,
            {"params": params, "search_params": search_params.to_dict()},
        )
        if inspect.isawaitable(result):
            if route.loading is None:
                await result
            elif inspect.iscoroutine(result):
                result.close()
    except ControlSignal as signal:
        return await signal_response(signal, request, route, settings, is_rsc=is_rsc, params=params)
    except Exception as exc:
        logger.debug("Page %s failed during pre-render: %s", route.pattern, exc)
    return None


# -- Pages --


def _with_render_headers(
    response: StreamingResponse,
    page: View,
    params: Mapping[str, Any],
    *,
    is_rsc: bool,
) -> StreamingResponse:
    """Attach the cache directive and, for payload responses, the matched params."""
    response = response.with_headers(derive_cache_headers(page, dynamic_usage_detected()))
    if is_rsc and params:
        response = response.with_header(PARAMS_HEADER, json.dumps(dict(params), separators=(",", ":")))
    return response



async def _compose_or_recover(
    request: Request,
    route: RouteDescriptor,
    params: Mapping[str, Any],
    settings: RenderSettings,
    *,
    is_rsc: bool,
    search_params: QueryParams,
    intercept: SlotIntercept | None = None,
) -> Any:
    """Compose the tree; on failure return the response that replaces it."""
    try:
        return await compose_view_tree(
            route,
            params,
            search_params=search_params,
            table=settings.table,
            intercept=intercept,
        )
    except ControlSignal as signal:
        return await signal_response(signal, request, route, settings, is_rsc=is_rsc, params=params)
    except Exception as exc:
        response = await render_error_page(route, exc, settings, is_rsc=is_rsc, params=params)
        if response is None:
            raise
        return response


async def render_page(
    request: Request,
    route: RouteDescriptor,
    params: Mapping[str, Any],
    settings: RenderSettings,
    *,
    pathname: str,
    search_params: QueryParams,
    is_rsc: bool,
) -> AnyResponse:
    """Render the page of a matched *route* as HTML or a payload stream."""
    page = route.page
    if page is None:
        msg = f"Route {route.pattern!r} has no page to render"
        raise ConfigurationError(msg)

    if page.dynamic in ("force-static", "error"):
        set_render_mode(page.dynamic)
        search_params = QueryParams()
        set_navigation(pathname, search_params, params)

    if (
        not page.dynamic_params
        and route.is_dynamic
        and page.generate_static_params is not None
        and not await _static_params_allowed(page, params)
    ):
        return Response.text_response("Not Found", 404)

    intercept: SlotIntercept | None = None
    if is_rsc:
        found = find_intercept(pathname, settings.intercepts)
        if found is not None:
            source = settings.table.routes[found.target.source_index]
            slot = SlotIntercept(found.target.slot_name, found.target.page, found.params)
            if source is not route:
                source_match = match_route(source.pattern, settings.table)
                source_params = source_match.params if source_match is not None else {}
                set_navigation(pathname, search_params, found.params)
                tree = await _compose_or_recover(
                    request,
                    source,
                    source_params,
                    settings,
                    is_rsc=True,
                    search_params=search_params,
                    intercept=slot,
                )
                if isinstance(tree, Response | StreamingResponse):
                    return tree
                response = await stream_tree(tree, settings, is_rsc=True, params=found.params)
                return _with_render_headers(response, page, found.params, is_rsc=True)
            intercept = slot

    tree = await _compose_or_recover(
        request,
        route,
        params,
        settings,
        is_rsc=is_rsc,
        search_params=search_params,
        intercept=intercept,
    )
    if isinstance(tree, Response | StreamingResponse):
        return tree

    early = await prerender_layouts(request, route, params, settings, is_rsc=is_rsc)
    if early is not None:
        return early
    early = await prerender_page(
        request, route, page, params, search_params, settings, is_rsc=is_rsc
    )
    if early is not None:
        return early

    try:
        response = await stream_tree(tree, settings, is_rsc=is_rsc, params=params)
    except ControlSignal as signal:
        return await signal_response(signal, request, route, settings, is_rsc=is_rsc, params=params)
    except Exception as exc:
        fallback = await render_error_page(route, exc, settings, is_rsc=is_rsc, params=params)
        if fallback is None:
            raise
        return fallback

    return _with_render_headers(response, page, params, is_rsc=is_rsc)

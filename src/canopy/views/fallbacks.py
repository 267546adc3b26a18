"""Fallback page trees: access fallbacks (404/403/401) and error pages.

Both are wrapped in the same layout chain as a regular page, so the
fallback renders inside the site chrome.
"""

from collections.abc import Mapping, Sequence
from typing import Any

from canopy.routing.route import RouteDescriptor, RouteTable, View
from canopy.views.metadata import collect_metadata, head_elements
from canopy.views.nodes import ErrorBoundary, Fragment, SegmentScope, h


def access_fallback_view(route: RouteDescriptor | None, status: int, table: RouteTable) -> View | None:
    """The view answering *status* for *route*: the route's own, else the app-wide one."""
    if route is not None:
        own = {404: route.not_found, 403: route.forbidden, 401: route.unauthorized}.get(status)
        if own is not None:
            return own
    return table.fallback_for(status)


def error_view(route: RouteDescriptor | None, table: RouteTable) -> View | None:
    """Nearest error view: leaf, then each layout's (innermost first), then global."""
    if route is not None:
        if route.error is not None:
            return route.error
        for error in reversed(route.errors):
            if error is not None:
                return error
    return table.global_error


def _wrap_in_layouts(
    element: Any,
    layouts: Sequence[View | None],
    depths: Sequence[int],
    params: Mapping[str, Any],
    table: RouteTable,
) -> Any:
    for i in range(len(layouts) - 1, -1, -1):
        layout = layouts[i]
        if layout is None:
            continue
        element = h(layout.component, {"params": params}, element)
        element = SegmentScope(depth=depths[i] if i < len(depths) else 0, child=element)
    if table.global_error is not None:
        element = ErrorBoundary(fallback=table.global_error.component, child=element, is_global=True)
    return element


async def compose_access_fallback(
    route: RouteDescriptor | None,
    status: int,
    table: RouteTable,
    *,
    params: Mapping[str, Any] | None = None,
    boundary: View | None = None,
    layouts: Sequence[View | None] | None = None,
) -> Any | None:
    """Tree for an access fallback page, or ``None`` if no view answers *status*.

    *boundary* and *layouts* override the defaults when a layout itself
    raised: the fallback then renders inside the layouts above it only.
    """
    view = boundary or access_fallback_view(route, status, table)
    if view is None:
        return None
    if layouts is None:
        layouts = route.layouts if route is not None else table.root_layouts
    params = params or {}
    metadata = await collect_metadata(layouts, params)
    element = Fragment((*head_elements(metadata, noindex=True), h(view.component)))
    depths = route.layout_depths if route is not None else ()
    return _wrap_in_layouts(element, layouts, depths, params, table)


def compose_error_page(
    route: RouteDescriptor | None,
    error: Mapping[str, Any],
    table: RouteTable,
    *,
    params: Mapping[str, Any] | None = None,
) -> Any | None:
    """Tree for the error page showing *error*, or ``None`` without an error view."""
    view = error_view(route, table)
    if view is None:
        return None
    layouts = route.layouts if route is not None else table.root_layouts
    depths = route.layout_depths if route is not None else ()
    element = Fragment((h("meta", {"charset": "utf-8"}), h(view.component, {"error": dict(error)})))
    return _wrap_in_layouts(element, layouts, depths, params or {}, table)

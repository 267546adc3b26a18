"""View tree composition for a matched route.

``compose_view_tree()`` builds the nested element for a page, bottom-up:

    page (with metadata head)
      -> loading Suspense
      -> leaf error boundary (unless it is the innermost layout's own)
      -> not-found boundary (route, then global)
      -> templates, innermost first
      -> per layout, innermost to outermost:
           layout error boundary, layout not-found boundary,
           parallel slots targeting this layout,
           the layout element, its SegmentScope
      -> global error boundary

Nothing is rendered here: components are referenced, not called, so two
compositions of the same route and params compare equal. The only side
effect is marking dynamic usage when the query string is non-empty.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from canopy.context import mark_dynamic_usage
from canopy.http.query import QueryParams
from canopy.routing.route import ParallelSlot, RouteDescriptor, RouteTable, View
from canopy.views.metadata import collect_metadata, head_elements
from canopy.views.nodes import ErrorBoundary, Fragment, NotFoundBoundary, SegmentScope, Suspense, h


@dataclass(frozen=True, slots=True)
class SlotIntercept:
    """An intercepting page shown in ``slot`` instead of its own page."""

    slot: str
    page: View
    params: Mapping[str, Any]


def _slot_element(
    slot: ParallelSlot,
    params: Mapping[str, Any],
    intercept: SlotIntercept | None,
) -> Any:
    if intercept is not None and intercept.slot == slot.name:
        page: View | None = intercept.page
        slot_params = intercept.params or params
    else:
        page = slot.page or slot.default
        slot_params = params
    if page is None:
        return None

    element: Any = h(page.component, {"params": slot_params})
    if slot.layout is not None:
        element = h(slot.layout.component, {"params": slot_params}, element)
    if slot.loading is not None:
        element = Suspense(fallback=h(slot.loading.component), child=element)
    if slot.error is not None:
        element = ErrorBoundary(fallback=slot.error.component, child=element)
    return element


async def compose_view_tree(
    route: RouteDescriptor,
    params: Mapping[str, Any],
    *,
    search_params: QueryParams | None = None,
    table: RouteTable | None = None,
    intercept: SlotIntercept | None = None,
) -> Any:
    """Compose the element tree for *route*'s page."""
    page = route.page
    if page is None:
        return h("div", None, "Page has no view")
    table = table or RouteTable()

    metadata = await collect_metadata([*route.layouts, page], params)

    page_props: dict[str, Any] = {"params": params}
    if search_params is not None:
        if len(search_params):
            mark_dynamic_usage()
        page_props["search_params"] = search_params.to_dict()

    element: Any = Fragment((*head_elements(metadata), h(page.component, page_props)))

    if route.loading is not None:
        element = Suspense(fallback=h(route.loading.component), child=element)

    innermost_error = route.errors[-1] if route.errors else None
    if route.error is not None and route.error != innermost_error:
        element = ErrorBoundary(fallback=route.error.component, child=element)

    not_found = route.not_found or table.not_found
    if not_found is not None:
        element = NotFoundBoundary(fallback=h(not_found.component), child=element)

    for template in reversed(route.templates):
        if template is not None:
            element = h(template.component, {"params": params}, element)

    last = len(route.layouts) - 1
    for i in range(last, -1, -1):
        error = route.errors[i]
        if error is not None:
            element = ErrorBoundary(fallback=error.component, child=element)

        layout = route.layouts[i]
        if layout is None:
            continue

        layout_not_found = route.not_found_at(i)
        if layout_not_found is not None:
            element = NotFoundBoundary(fallback=h(layout_not_found.component), child=element)

        layout_props: dict[str, Any] = {"params": params}
        for slot in route.slots:
            target = slot.layout_index if slot.layout_index >= 0 else last
            if target != i:
                continue
            slot_element = _slot_element(slot, params, intercept)
            if slot_element is not None:
                layout_props[slot.name] = slot_element

        element = h(layout.component, layout_props, element)
        element = SegmentScope(depth=route.layout_depths[i], child=element)

    if table.global_error is not None:
        element = ErrorBoundary(fallback=table.global_error.component, child=element, is_global=True)

    return element

"""Cache-Control derivation for rendered pages.

Precedence, first match wins:

    force-dynamic            -> no-store, must-revalidate
    dynamic API used         -> no-store, must-revalidate
    force-static / error     -> s-maxage=31536000, STATIC (unless revalidate > 0)
    revalidate > 0           -> s-maxage=N, stale-while-revalidate
    otherwise                -> no header

A force-static or error page never reaches the dynamic branch: its reads
of request state return empty values (or raise) instead of marking the
render dynamic.
"""

from typing import Literal

from canopy.routing.route import RouteHandler, View

NO_STORE = "no-store, must-revalidate"
STATIC_MAX_AGE = 31536000
STATIC_MARKER = ("X-Canopy-Cache", "STATIC")
VARY = ("Vary", "RSC, Accept")


def derive_cache_headers(
    view: View | RouteHandler | None,
    dynamic_used: bool,
) -> list[tuple[str, str]]:
    """``Cache-Control`` (and the static marker) for a rendered *view*."""
    mode: Literal["auto", "force-dynamic", "force-static", "error"] = "auto"
    revalidate: int | None = None
    if view is not None:
        mode = view.dynamic
        revalidate = view.revalidate

    if mode == "force-dynamic":
        return [("Cache-Control", NO_STORE)]
    if mode in ("force-static", "error") and not revalidate:
        return [("Cache-Control", f"s-maxage={STATIC_MAX_AGE}, stale-while-revalidate"), STATIC_MARKER]
    if dynamic_used and mode == "auto":
        return [("Cache-Control", NO_STORE)]
    if revalidate is not None and revalidate > 0:
        return [("Cache-Control", f"s-maxage={revalidate}, stale-while-revalidate")]
    return []

"""Path matching against the ordered route table.

Matching is a pure function of (pathname, table): patterns are tried in
table order and the first hit wins. There is no specificity ranking and
no backtracking.
"""

from dataclasses import dataclass

from canopy.routing.route import (
    InterceptEntry,
    PathSegment,
    RouteMatch,
    RouteTable,
    View,
    parse_pattern,
)

type Params = dict[str, str | list[str]]


def match_segments(parts: list[str], segments: tuple[PathSegment, ...]) -> Params | None:
    """Match URL *parts* against pre-parsed pattern *segments*.

    ``+`` and ``*`` segments capture the remaining parts and end matching
    (``+`` needs at least one); ``:name`` captures exactly one part; static
    segments must be equal. Otherwise the counts must agree exactly.
    """
    params: Params = {}
    for i, segment in enumerate(segments):
        if segment.kind == "catch_all":
            rest = parts[i:]
            if not rest:
                return None
            params[segment.name] = rest  # type: ignore[index]
            return params
        if segment.kind == "optional_catch_all":
            params[segment.name] = parts[i:]  # type: ignore[index]
            return params
        if i >= len(parts):
            return None
        if segment.kind == "param":
            params[segment.name] = parts[i]  # type: ignore[index]
        elif segment.value != parts[i]:
            return None
    if len(parts) != len(segments):
        return None
    return params


def split_path(url: str) -> list[str]:
    return [p for p in url.split("/") if p]


def match_pattern(url: str, pattern: str) -> Params | None:
    """Match one pathname against one pattern string."""
    return match_segments(split_path(url), parse_pattern(pattern))


def clean_pathname(url: str) -> str:
    """Drop the query string and a trailing slash (except for the root)."""
    pathname = url.split("?", 1)[0]
    if pathname != "/" and pathname.endswith("/"):
        pathname = pathname[:-1]
    return pathname


def match_route(url: str, table: RouteTable) -> RouteMatch | None:
    """Return the first route in table order matching *url*, or ``None``."""
    parts = split_path(clean_pathname(url))
    for route in table.routes:
        params = match_segments(parts, route.segments)
        if params is not None:
            return RouteMatch(route=route, params=params)
    return None


# -- Interception --


@dataclass(frozen=True, slots=True)
class InterceptTarget:
    """An intercepting route flattened out of its owning route's slot."""

    source_index: int
    slot_name: str
    target_pattern: str
    page: View
    entry: InterceptEntry


@dataclass(frozen=True, slots=True)
class InterceptMatch:
    target: InterceptTarget
    params: Params


def build_intercept_lookup(table: RouteTable) -> tuple[InterceptTarget, ...]:
    """Collect every slot intercept in table order. Computed once at startup."""
    targets: list[InterceptTarget] = []
    for index, route in enumerate(table.routes):
        for slot in route.slots:
            for entry in slot.intercepts:
                targets.append(
                    InterceptTarget(
                        source_index=index,
                        slot_name=slot.name,
                        target_pattern=entry.target_pattern,
                        page=entry.page,
                        entry=entry,
                    )
                )
    return tuple(targets)


def find_intercept(pathname: str, lookup: tuple[InterceptTarget, ...]) -> InterceptMatch | None:
    """First intercept whose target pattern matches *pathname*."""
    for target in lookup:
        params = match_pattern(pathname, target.target_pattern)
        if params is not None:
            return InterceptMatch(target=target, params=params)
    return None

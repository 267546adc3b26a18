"""Routing - the route table and pure path matching.

    View / RouteHandler / RouteDescriptor / RouteTable -- route table data
    ParallelSlot / InterceptEntry -- slots and intercepting routes
    match_route / match_pattern -- first-match lookup in table order
    normalize_path / decode_path -- canonical pathnames
"""

from canopy.routing.matcher import (
    build_intercept_lookup,
    find_intercept,
    match_pattern,
    match_route,
)
from canopy.routing.normalize import decode_path, normalize_path
from canopy.routing.route import (
    InterceptEntry,
    ParallelSlot,
    RouteDescriptor,
    RouteHandler,
    RouteMatch,
    RouteTable,
    View,
)

__all__ = [
    "InterceptEntry",
    "ParallelSlot",
    "RouteDescriptor",
    "RouteHandler",
    "RouteMatch",
    "RouteTable",
    "View",
    "build_intercept_lookup",
    "decode_path",
    "find_intercept",
    "match_pattern",
    "match_route",
    "normalize_path",
]

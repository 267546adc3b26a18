"""Views - the element model and route tree composition.

    h / Element / Fragment -- the element model views return
    Suspense / ErrorBoundary / NotFoundBoundary / SegmentScope -- structural nodes
    compose_view_tree -- nested page tree for a matched route
    compose_access_fallback / compose_error_page -- fallback page trees
"""

from canopy.views.fallbacks import compose_access_fallback, compose_error_page
from canopy.views.metadata import merge_metadata
from canopy.views.nodes import (
    Element,
    ErrorBoundary,
    Fragment,
    NotFoundBoundary,
    SegmentScope,
    Suspense,
    h,
)
from canopy.views.tree import SlotIntercept, compose_view_tree

__all__ = [
    "Element",
    "ErrorBoundary",
    "Fragment",
    "NotFoundBoundary",
    "SegmentScope",
    "SlotIntercept",
    "Suspense",
    "compose_access_fallback",
    "compose_error_page",
    "compose_view_tree",
    "h",
    "merge_metadata",
]

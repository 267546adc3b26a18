"""View tree nodes.

Views return a small element model: host elements and component elements
built with ``h()``, plain text, numbers, kida ``Markup`` (raw HTML), lists,
and ``None``. Composition wraps those in structural nodes that the render
phases interpret:

    Fragment          -- a sequence of children without a wrapper element
    Suspense          -- defer ``child``, show ``fallback`` meanwhile
    ErrorBoundary     -- render ``fallback(error=...)`` if ``child`` fails
    NotFoundBoundary  -- render ``fallback`` if ``child`` calls not_found()
    SegmentScope      -- tag a layout with its URL segment depth

Every node is a frozen dataclass, so two compositions of the same route
compare equal.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Element:
    """A host element (``type`` is a tag name) or a component element.

    Component elements are resolved during the payload phase by calling
    ``type`` with the props it accepts; ``children`` are passed as the
    ``children`` prop.
    """

    type: str | Callable[..., Any]
    props: Mapping[str, Any] = field(default_factory=dict)
    children: tuple[Any, ...] = ()

    @property
    def is_component(self) -> bool:
        return not isinstance(self.type, str)


def h(type: str | Callable[..., Any], props: Mapping[str, Any] | None = None, *children: Any) -> Element:  # noqa: A002
    """Build an element::

        h("ul", {"class_": "posts"}, *(h("li", None, p.title) for p in posts))
        h(Sidebar, {"items": items})
    """
    return Element(type, dict(props or {}), tuple(children))


@dataclass(frozen=True, slots=True)
class Fragment:
    children: tuple[Any, ...] = ()


@dataclass(frozen=True, slots=True)
class Suspense:
    fallback: Any
    child: Any


@dataclass(frozen=True, slots=True)
class ErrorBoundary:
    """Catches errors from ``child``; control signals pass through.

    ``fallback`` is a view callable receiving ``error`` as a mapping with
    ``message`` and ``digest``.
    """

    fallback: Callable[..., Any]
    child: Any
    is_global: bool = False


@dataclass(frozen=True, slots=True)
class NotFoundBoundary:
    """Catches not-found signals from ``child`` and renders ``fallback``."""

    fallback: Any
    child: Any


@dataclass(frozen=True, slots=True)
class SegmentScope:
    depth: int
    child: Any


type Node = (
    Element | Fragment | Suspense | ErrorBoundary | NotFoundBoundary | SegmentScope | str | int | float | None
)

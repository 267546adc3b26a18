"""Route table frozen dataclasses.

The route table is produced by route discovery (outside canopy) and
handed to ``App`` as data. Every view slot holds a ``View`` - the view
callable plus the segment exports that steer caching and params.

Pattern syntax (one token per path segment)::

    /blog                static
    /blog/:slug          one segment
    /docs/:path+         one or more trailing segments (catch-all)
    /shop/:path*         zero or more trailing segments (optional catch-all)
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from canopy.errors import ConfigurationError

type DynamicMode = Literal["auto", "force-dynamic", "force-static", "error"]

_DYNAMIC_MODES = frozenset({"auto", "force-dynamic", "force-static", "error"})


@dataclass(frozen=True, slots=True)
class PathSegment:
    """A parsed segment of a route pattern.

    kind: ``static``, ``param`` (``:id``), ``catch_all`` (``:path+``)
    or ``optional_catch_all`` (``:path*``).
    """

    value: str
    kind: Literal["static", "param", "catch_all", "optional_catch_all"] = "static"
    name: str | None = None


def parse_pattern(pattern: str) -> tuple[PathSegment, ...]:
    """Parse a route pattern into segments. Empty parts are dropped."""
    segments: list[PathSegment] = []
    for part in pattern.split("/"):
        if not part:
            continue
        if part.startswith(":") and part.endswith("+"):
            segments.append(PathSegment(part, "catch_all", part[1:-1]))
        elif part.startswith(":") and part.endswith("*"):
            segments.append(PathSegment(part, "optional_catch_all", part[1:-1]))
        elif part.startswith(":"):
            segments.append(PathSegment(part, "param", part[1:]))
        else:
            segments.append(PathSegment(part))
    return tuple(segments)


@dataclass(frozen=True, slots=True)
class View:
    """A view callable and its segment exports.

    ``metadata`` is a mapping or a callable ``(params) -> mapping`` (sync or
    async); entries from layouts and the page are merged outer to inner.
    """

    component: Callable[..., Any]
    revalidate: int | None = None
    dynamic: DynamicMode = "auto"
    dynamic_params: bool = True
    generate_static_params: Callable[..., Any] | None = None
    metadata: Mapping[str, Any] | Callable[..., Any] | None = None

    def __post_init__(self) -> None:
        if self.dynamic not in _DYNAMIC_MODES:
            msg = f"Unknown dynamic mode {self.dynamic!r}; expected one of {sorted(_DYNAMIC_MODES)}"
            raise ConfigurationError(msg)


@dataclass(frozen=True, slots=True)
class RouteHandler:
    """A request-handler leaf: HTTP method name -> handler callable."""

    methods: Mapping[str, Callable[..., Any]]
    revalidate: int | None = None
    dynamic: DynamicMode = "auto"

    def allowed(self) -> frozenset[str]:
        """Methods answered, including the implicit HEAD and OPTIONS."""
        names = {m.upper() for m in self.methods}
        if "GET" in names:
            names.add("HEAD")
        names.add("OPTIONS")
        return frozenset(names)


@dataclass(frozen=True, slots=True)
class InterceptEntry:
    """An intercepting route owned by a parallel slot.

    ``convention`` is the directory marker it came from: ``(.)``, ``(..)``,
    ``(..)(..)`` or ``(...)``.
    """

    target_pattern: str
    page: View
    convention: str = "(.)"
    params: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ParallelSlot:
    """A named sub-tree passed to a layout as an extra prop."""

    name: str
    page: View | None = None
    default: View | None = None
    layout: View | None = None
    loading: View | None = None
    error: View | None = None
    layout_index: int = -1
    intercepts: tuple[InterceptEntry, ...] = ()


@dataclass(frozen=True, slots=True)
class RouteDescriptor:
    """One URL pattern with its views, outer to inner.

    ``layouts``, ``errors``, ``not_founds`` and ``layout_depths`` are
    index-aligned: entry ``i`` belongs to layout ``i``. ``not_founds``
    may be left empty when no layout declares its own not-found view.
    """

    pattern: str
    layouts: tuple[View | None, ...] = ()
    errors: tuple[View | None, ...] = ()
    not_founds: tuple[View | None, ...] = ()
    layout_depths: tuple[int, ...] = ()
    templates: tuple[View | None, ...] = ()
    page: View | None = None
    handler: RouteHandler | None = None
    loading: View | None = None
    error: View | None = None
    not_found: View | None = None
    forbidden: View | None = None
    unauthorized: View | None = None
    slots: tuple[ParallelSlot, ...] = ()
    segments: tuple[PathSegment, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if (self.page is None) == (self.handler is None):
            msg = f"Route {self.pattern!r} must define exactly one of page or handler"
            raise ConfigurationError(msg)
        if not (len(self.layouts) == len(self.errors) == len(self.layout_depths)):
            msg = (
                f"Route {self.pattern!r}: layouts, errors and layout_depths must have "
                f"equal length (got {len(self.layouts)}, {len(self.errors)}, "
                f"{len(self.layout_depths)})"
            )
            raise ConfigurationError(msg)
        if self.not_founds and len(self.not_founds) != len(self.layouts):
            msg = f"Route {self.pattern!r}: not_founds must align with layouts"
            raise ConfigurationError(msg)
        object.__setattr__(self, "segments", parse_pattern(self.pattern))

    @property
    def is_dynamic(self) -> bool:
        return any(s.kind != "static" for s in self.segments)

    @property
    def leaf(self) -> View | RouteHandler:
        return self.page if self.page is not None else self.handler  # type: ignore[return-value]

    def not_found_at(self, index: int) -> View | None:
        if index < len(self.not_founds):
            return self.not_founds[index]
        return None


@dataclass(frozen=True, slots=True)
class RouteTable:
    """Ordered routes plus the app-wide fallback views.

    Order matters: the first matching route wins, so more specific
    patterns must precede catch-alls.
    """

    routes: tuple[RouteDescriptor, ...] = ()
    not_found: View | None = None
    forbidden: View | None = None
    unauthorized: View | None = None
    global_error: View | None = None
    root_layouts: tuple[View | None, ...] = ()

    def fallback_for(self, status: int) -> View | None:
        if status == 403:
            return self.forbidden
        if status == 401:
            return self.unauthorized
        return self.not_found


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful route match."""

    route: RouteDescriptor
    params: dict[str, str | list[str]]

"""Canopy exception hierarchy.

Shared across the rule engine, middleware gate, renderer, and request
pipeline so every module raises and catches the same types. Control
signals (redirect, not-found, access fallbacks) are *not* errors and
live in ``canopy.signals``.
"""

from dataclasses import dataclass


class CanopyError(Exception):
    """Base for all canopy-specific errors."""


class ConfigurationError(CanopyError):
    """Raised when the route table or app configuration is invalid.

    Typically raised while building ``RouteDescriptor`` values or during
    ``App._freeze()`` at startup.
    """


class DynamicUsageError(CanopyError):
    """A page declared ``dynamic = "error"`` read per-request state.

    The message names the offending API so the misuse is obvious.
    """

    def __init__(self, api: str) -> None:
        self.api = api
        super().__init__(
            f'Page with `dynamic = "error"` used a dynamic API ({api}). '
            "This page was expected to be fully static."
        )


@dataclass(frozen=True, slots=True)
class HTTPError(CanopyError):
    """An error that maps directly to an HTTP status code.

    Raised by the pipeline for protocol-level failures. The ASGI handler
    catches these and converts them to plain-text responses, bypassing
    view-level boundaries.
    """

    status: int
    detail: str = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)


class NotFound(HTTPError):  # noqa: N818 - conventional name in web frameworks
    """404 - no route matched the request path."""

    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(status=404, detail=detail)


class MethodNotAllowed(HTTPError):  # noqa: N818 - conventional name in web frameworks
    """405 - the route handler exists but not for this HTTP method."""

    def __init__(self, allowed: frozenset[str]) -> None:
        allow_value = ", ".join(sorted(allowed))
        super().__init__(
            status=405,
            detail="Method Not Allowed",
            headers=(("Allow", allow_value),),
        )


class MalformedPathError(HTTPError):
    """400 - the request path could not be percent-decoded."""

    def __init__(self, detail: str = "Bad Request") -> None:
        super().__init__(status=400, detail=detail)


class PayloadTooLarge(HTTPError):  # noqa: N818
    """413 - a mutation action body exceeded the configured limit."""

    def __init__(self, detail: str = "Payload Too Large") -> None:
        super().__init__(status=413, detail=detail)

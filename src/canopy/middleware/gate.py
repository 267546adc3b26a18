"""Middleware gate - one optional gatekeeping function before routing.

The gate function receives the request (with its canonical pathname) and
returns a response or ``None``. The response is classified, not sent:

- ``next_response()`` (``x-middleware-next: 1``) -> continue, merging headers
- a 3xx with ``Location`` -> that redirect, verbatim
- ``rewrite_response()`` (``x-middleware-rewrite``) -> continue on a new path
- anything else -> returned to the client verbatim (auth walls, blocks)

Headers prefixed ``x-middleware-`` are reserved directives. Request-header
overrides (``x-middleware-request-*``) are folded back into the per-request
header view; every reserved header is stripped before a client sees it.

Usage::

    from canopy.middleware.gate import next_response, redirect_response

    async def gate(request):
        if "session" not in request.cookies:
            return redirect_response("/login")
        return next_response(request_headers={"x-user": "alice"})

    app = App(table, middleware=gate, middleware_matcher=["/dashboard/:path*"])
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import urlsplit

from canopy._internal.invoke import invoke
from canopy.http.request import Request
from canopy.http.response import AnyResponse, Response
from canopy.rules.patterns import safe_compile

logger = logging.getLogger("canopy.server")

RESERVED_PREFIX = "x-middleware-"
NEXT_HEADER = "x-middleware-next"
REWRITE_HEADER = "x-middleware-rewrite"
REQUEST_HEADER_PREFIX = "x-middleware-request-"
OVERRIDE_HEADERS = "x-middleware-override-headers"


def is_reserved_header(name: str) -> bool:
    return name.lower().startswith(RESERVED_PREFIX)


# -- Response helpers for gate functions --


def _request_header_directives(request_headers: Mapping[str, str] | None) -> list[tuple[str, str]]:
    if not request_headers:
        return []
    directives = [(f"{REQUEST_HEADER_PREFIX}{k.lower()}", v) for k, v in request_headers.items()]
    directives.append((OVERRIDE_HEADERS, ",".join(k.lower() for k in request_headers)))
    return directives


def next_response(
    *,
    headers: Mapping[str, str] | None = None,
    request_headers: Mapping[str, str] | None = None,
) -> Response:
    """Continue to the route, adding *headers* to the final response.

    *request_headers* override what ``canopy.context.headers()`` returns
    to view code for the rest of the request.
    """
    pairs = [(NEXT_HEADER, "1"), *(headers or {}).items(), *_request_header_directives(request_headers)]
    return Response(headers=tuple(pairs))


def rewrite_response(
    url: str,
    *,
    status: int = 200,
    headers: Mapping[str, str] | None = None,
    request_headers: Mapping[str, str] | None = None,
) -> Response:
    """Serve *url*'s route instead, keeping the client's URL."""
    pairs = [(REWRITE_HEADER, url), *(headers or {}).items(), *_request_header_directives(request_headers)]
    return Response(status=status, headers=tuple(pairs))


def redirect_response(url: str, status: int = 307) -> Response:
    return Response.redirect(url, status)


# -- Matcher --


def _matcher_regex(pattern: str) -> str:
    """Translate a matcher path pattern into a regex body."""
    out: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("/:", i):
            j = i + 2
            while j < len(pattern) and (pattern[j].isalnum() or pattern[j] == "_"):
                j += 1
            suffix = pattern[j] if j < len(pattern) else ""
            if j > i + 2 and suffix == "*":
                out.append("(?:/.*)?")
                i = j + 1
                continue
            if j > i + 2 and suffix == "+":
                out.append("(?:/.+)")
                i = j + 1
                continue
            out.append("/([^/]+)" if j > i + 2 else "/:")
            i = j
            continue
        ch = pattern[i]
        if ch == ":" and i + 1 < len(pattern) and (pattern[i + 1].isalnum() or pattern[i + 1] == "_"):
            j = i + 1
            while j < len(pattern) and (pattern[j].isalnum() or pattern[j] == "_"):
                j += 1
            out.append("([^/]+)")
            i = j
            continue
        out.append("\\." if ch == "." else ch)
        i += 1
    return "".join(out)


def matches_pattern(pathname: str, pattern: str) -> bool:
    """Whether *pathname* is covered by one matcher *pattern*.

    Patterns with ``(`` or ``\\`` are raw regular expressions; otherwise
    ``/:p*``, ``/:p+`` and ``:p`` tokens are supported.
    """
    if "(" in pattern or "\\" in pattern:
        compiled = safe_compile(f"^{pattern}$")
        if compiled is not None:
            return compiled.match(pathname) is not None
    compiled = safe_compile(f"^{_matcher_regex(pattern)}$")
    if compiled is not None:
        return compiled.match(pathname) is not None
    return pathname == pattern


# -- Outcome --


@dataclass(frozen=True, slots=True)
class MiddlewareResult:
    """Classified outcome of running the gate.

    ``headers`` are client-bound response headers with every reserved
    header removed; ``request_headers`` are the unpacked overrides.
    """

    action: Literal["continue", "rewrite", "redirect", "respond"]
    response: AnyResponse | None = None
    rewrite_path: str | None = None
    status: int | None = None
    headers: tuple[tuple[str, str], ...] = ()
    request_headers: dict[str, str] = field(default_factory=dict)

    @property
    def proceeds(self) -> bool:
        return self.action in ("continue", "rewrite")


_CONTINUE = MiddlewareResult(action="continue")


def _split_headers(
    response: AnyResponse,
) -> tuple[tuple[tuple[str, str], ...], dict[str, str]]:
    """Separate client-bound headers from request-header overrides."""
    client: list[tuple[str, str]] = []
    overrides: dict[str, str] = {}
    for name, value in response.headers:
        lower = name.lower()
        if lower.startswith(REQUEST_HEADER_PREFIX):
            overrides[lower[len(REQUEST_HEADER_PREFIX) :]] = value
        elif not lower.startswith(RESERVED_PREFIX):
            client.append((name, value))
    return tuple(client), overrides


def classify(response: AnyResponse | None) -> MiddlewareResult:
    """Turn the gate function's return value into a pipeline outcome."""
    if response is None:
        return _CONTINUE

    if response.header(NEXT_HEADER) == "1":
        headers, overrides = _split_headers(response)
        return MiddlewareResult(
            action="continue",
            headers=headers,
            request_headers=overrides,
        )

    if 300 <= response.status < 400 and response.header("location"):
        return MiddlewareResult(action="redirect", response=response)

    rewrite = response.header(REWRITE_HEADER)
    if rewrite:
        headers, overrides = _split_headers(response)
        return MiddlewareResult(
            action="rewrite",
            rewrite_path=urlsplit(rewrite).path or "/",
            status=response.status if response.status != 200 else None,
            headers=headers,
            request_headers=overrides,
        )

    return MiddlewareResult(
        action="respond",
        response=response.without_headers(is_reserved_header),
    )


class MiddlewareGate:
    """The app's gatekeeping function plus its path allowlist.

    With no matcher the gate runs on every path.
    """

    __slots__ = ("func", "matcher")

    def __init__(
        self,
        func: Callable[..., Any],
        matcher: str | Sequence[str] | None = None,
    ) -> None:
        self.func = func
        if isinstance(matcher, str):
            matcher = (matcher,)
        self.matcher: tuple[str, ...] | None = tuple(matcher) if matcher is not None else None

    def applies_to(self, pathname: str) -> bool:
        if self.matcher is None:
            return True
        return any(matches_pattern(pathname, p) for p in self.matcher)

    async def run(self, request: Request, pathname: str) -> MiddlewareResult:
        """Run the gate for *pathname* (already decoded and normalized)."""
        if not self.applies_to(pathname):
            return _CONTINUE
        try:
            response = await invoke(self.func, request.with_path(pathname))
        except Exception:
            logger.exception("Middleware error on %s %s", request.method, pathname)
            return MiddlewareResult(
                action="respond",
                response=Response.text_response("Internal Server Error", 500),
            )
        return classify(response)

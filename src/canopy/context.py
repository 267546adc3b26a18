"""Request-scoped context via ContextVar.

Provides the ambient per-request state view code can read:

- navigation: ``pathname()``, ``search_params()``, ``params()``
- request state: ``headers()``, ``cookies()``, ``draft_mode()``
- dynamic-usage tracking for cache derivation

All of it lives in ``ContextVar``s bound by ``request_scope()`` for the
whole lifetime of one request (including streaming), and is reset on
every exit path. Outside a request every accessor raises ``LookupError``.

Thread safety:
    ``ContextVar`` is task-local under asyncio. Child tasks spawned while
    rendering copy the context, so they share the same per-request state
    objects but never another request's.
"""

import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Literal

from canopy.errors import DynamicUsageError
from canopy.http.cookies import SetCookie
from canopy.http.headers import Headers
from canopy.http.query import QueryParams

type RenderMode = Literal["auto", "force-static", "error"]

DRAFT_MODE_COOKIE = "__prerender_bypass"

# Per-process secret: only a cookie minted by this server enables draft mode.
_DRAFT_SECRET = str(uuid.uuid4())


# -- State --


@dataclass(slots=True)
class NavigationState:
    pathname: str
    search_params: QueryParams
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class HeaderState:
    """Mutable per-request header/cookie state.

    ``cookies`` is a working copy: ``cookies().set()`` / ``.delete()``
    write through so later reads in the same request observe them.
    """

    headers: Headers
    cookies: dict[str, str]
    pending_cookies: list[SetCookie] = field(default_factory=list)
    draft_cookie: SetCookie | None = None
    dynamic_used: bool = False
    mode: RenderMode = "auto"


_navigation_var: ContextVar[NavigationState] = ContextVar("canopy_navigation")
_header_var: ContextVar[HeaderState] = ContextVar("canopy_headers")


def _header_state() -> HeaderState:
    try:
        return _header_var.get()
    except LookupError:
        msg = "headers()/cookies()/draft_mode() called outside a request scope"
        raise LookupError(msg) from None


def _navigation_state() -> NavigationState:
    try:
        return _navigation_var.get()
    except LookupError:
        msg = "Navigation state accessed outside a request scope"
        raise LookupError(msg) from None


@contextmanager
def request_scope(
    headers: Headers,
    cookies: Mapping[str, str],
    pathname: str,
    search_params: QueryParams,
) -> Iterator[HeaderState]:
    """Bind fresh header and navigation state for one request."""
    state = HeaderState(headers=headers, cookies=dict(cookies))
    header_token = _header_var.set(state)
    nav_token = _navigation_var.set(NavigationState(pathname, search_params))
    try:
        yield state
    finally:
        _navigation_var.reset(nav_token)
        _header_var.reset(header_token)


def set_navigation(
    pathname: str,
    search_params: QueryParams,
    params: Mapping[str, Any] | None = None,
) -> None:
    """Replace the navigation state (after matching, interception, re-render)."""
    _navigation_var.set(NavigationState(pathname, search_params, params or {}))


def set_request_headers(headers: Headers, cookies: Mapping[str, str]) -> None:
    """Swap in the header view produced by middleware request overrides."""
    state = _header_state()
    state.headers = headers
    state.cookies = dict(cookies)


def set_render_mode(mode: RenderMode) -> None:
    _header_state().mode = mode


# -- Dynamic usage --


def mark_dynamic_usage() -> None:
    """Record that this render read per-request state."""
    _header_state().dynamic_used = True


def dynamic_usage_detected() -> bool:
    return _header_state().dynamic_used


def _read_dynamic(api: str) -> HeaderState | None:
    """Gate a dynamic read by the current render mode.

    Returns the state to read from, or ``None`` when the page is
    force-static and must see empty values.
    """
    state = _header_state()
    if state.mode == "error":
        raise DynamicUsageError(api)
    if state.mode == "force-static":
        return None
    state.dynamic_used = True
    return state


# -- headers() --


def headers() -> Headers:
    """The incoming request headers (after middleware overrides)."""
    state = _read_dynamic("headers()")
    if state is None:
        return Headers()
    return state.headers


# -- cookies() --


class RequestCookies:
    """Readable and writable view over the request's cookies."""

    __slots__ = ("_state",)

    def __init__(self, state: HeaderState | None) -> None:
        self._state = state

    def _store(self) -> dict[str, str]:
        return self._state.cookies if self._state is not None else {}

    def get(self, name: str) -> str | None:
        return self._store().get(name)

    def get_all(self) -> dict[str, str]:
        return dict(self._store())

    def has(self, name: str) -> bool:
        return name in self._store()

    def __contains__(self, name: object) -> bool:
        return name in self._store()

    def __len__(self) -> int:
        return len(self._store())

    def set(
        self,
        name: str,
        value: str,
        *,
        max_age: int | None = None,
        path: str = "/",
        domain: str | None = None,
        secure: bool = False,
        httponly: bool = True,
        samesite: str | None = "Lax",
    ) -> None:
        """Set a cookie for the rest of this request and queue its ``Set-Cookie``."""
        state = _header_state()
        state.cookies[name] = value
        state.pending_cookies.append(
            SetCookie(
                name=name,
                value=value,
                max_age=max_age,
                path=path,
                domain=domain,
                secure=secure,
                httponly=httponly,
                samesite=samesite,
            )
        )

    def delete(self, name: str, *, path: str = "/") -> None:
        """Remove a cookie and queue an expiring ``Set-Cookie``."""
        state = _header_state()
        state.cookies.pop(name, None)
        state.pending_cookies.append(SetCookie(name=name, value="", max_age=0, path=path))

    def __repr__(self) -> str:
        return f"RequestCookies({self._store()!r})"


def cookies() -> RequestCookies:
    return RequestCookies(_read_dynamic("cookies()"))


def take_pending_cookies() -> list[SetCookie]:
    """Return and clear the ``Set-Cookie`` directives queued so far.

    A view may run more than once per request (pre-render, then render),
    so only the last directive per name, path and domain is kept.
    """
    state = _header_state()
    latest: dict[tuple[str, str, str | None], SetCookie] = {}
    for cookie in state.pending_cookies:
        key = (cookie.name, cookie.path, cookie.domain)
        latest.pop(key, None)
        latest[key] = cookie
    pending = list(latest.values())
    state.pending_cookies = []
    if state.draft_cookie is not None:
        pending.append(state.draft_cookie)
        state.draft_cookie = None
    return pending


# -- draft_mode() --


class DraftMode:
    """Preview mode toggled by a server-minted bypass cookie."""

    __slots__ = ("_state",)

    def __init__(self, state: HeaderState) -> None:
        self._state = state

    @property
    def is_enabled(self) -> bool:
        return self._state.cookies.get(DRAFT_MODE_COOKIE) == _DRAFT_SECRET

    def enable(self) -> None:
        self._state.cookies[DRAFT_MODE_COOKIE] = _DRAFT_SECRET
        self._state.draft_cookie = SetCookie(
            name=DRAFT_MODE_COOKIE,
            value=_DRAFT_SECRET,
            httponly=True,
            samesite="Lax",
        )

    def disable(self) -> None:
        self._state.cookies.pop(DRAFT_MODE_COOKIE, None)
        self._state.draft_cookie = SetCookie(
            name=DRAFT_MODE_COOKIE,
            value="",
            max_age=0,
            httponly=True,
            samesite="Lax",
        )


def draft_mode() -> DraftMode:
    state = _header_state()
    if state.mode == "error":
        raise DynamicUsageError("draft_mode()")
    return DraftMode(state)


# -- Navigation --


def pathname() -> str:
    return _navigation_state().pathname


def search_params() -> QueryParams:
    """The current query. Empty for force-static pages."""
    state = _read_dynamic("search_params()")
    if state is None:
        return QueryParams()
    return _navigation_state().search_params


def params() -> Mapping[str, Any]:
    return _navigation_state().params

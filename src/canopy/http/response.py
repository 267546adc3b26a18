"""HTTP responses with a chainable ``.with_*()`` transformation API.

Each transformation returns a new response. ``Response`` carries a
complete body; ``StreamingResponse`` carries an async chunk iterator and
supports the same header/cookie API so the pipeline can decorate either
without knowing which it holds.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any, Self

from canopy.http.cookies import SetCookie


class _Chainable:
    """Shared ``.with_*()`` API for both response types."""

    __slots__ = ()

    status: int
    headers: tuple[tuple[str, str], ...]
    cookies: tuple[SetCookie, ...]

    def with_status(self, status: int) -> Self:
        """Return a copy with a different status code."""
        return replace(self, status=status)  # type: ignore[type-var]

    def with_header(self, name: str, value: str) -> Self:
        """Return a copy with an additional header."""
        return replace(self, headers=(*self.headers, (name, value)))  # type: ignore[type-var]

    def with_headers(self, headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> Self:
        """Return a copy with additional headers."""
        new = tuple(headers.items()) if isinstance(headers, Mapping) else tuple(headers)
        return replace(self, headers=(*self.headers, *new))  # type: ignore[type-var]

    def with_cookies(self, cookies: Iterable[SetCookie]) -> Self:
        """Return a copy with additional ``Set-Cookie`` directives."""
        return replace(self, cookies=(*self.cookies, *cookies))  # type: ignore[type-var]

    def without_headers(self, drop: Callable[[str], bool]) -> Self:
        """Return a copy without headers whose lowercased name satisfies *drop*."""
        kept = tuple((n, v) for n, v in self.headers if not drop(n.lower()))
        return replace(self, headers=kept)  # type: ignore[type-var]

    def header(self, name: str) -> str | None:
        """First value of header *name* (case-insensitive), or ``None``."""
        key = name.lower()
        for n, v in self.headers:
            if n.lower() == key:
                return v
        return None

    def set_cookie_values(self) -> list[str]:
        """Serialized ``Set-Cookie`` values, raw headers first."""
        raw = [v for n, v in self.headers if n.lower() == "set-cookie"]
        return [*raw, *(c.to_header_value() for c in self.cookies)]


@dataclass(frozen=True, slots=True)
class Response(_Chainable):
    """An HTTP response built through immutable transformations."""

    body: str | bytes = ""
    status: int = 200
    content_type: str = "text/html; charset=utf-8"
    headers: tuple[tuple[str, str], ...] = ()
    cookies: tuple[SetCookie, ...] = ()

    @classmethod
    def redirect(cls, url: str, status: int = 307) -> Response:
        """A bodiless redirect to *url*."""
        return cls(body="", status=status, headers=(("Location", url),))

    @classmethod
    def text_response(cls, body: str, status: int) -> Response:
        """A plain-text response (protocol errors, fallbacks)."""
        return cls(body=body, status=status, content_type="text/plain; charset=utf-8")

    @classmethod
    def json_response(cls, data: Any, status: int = 200) -> Response:
        import json as json_module

        return cls(
            body=json_module.dumps(data),
            status=status,
            content_type="application/json",
        )

    def with_content_type(self, content_type: str) -> Response:
        """Return a new Response with a different content type."""
        return replace(self, content_type=content_type)

    @property
    def body_bytes(self) -> bytes:
        """Body as bytes."""
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return self.body

    @property
    def text(self) -> str:
        """Body as string."""
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8")
        return self.body


@dataclass(frozen=True, slots=True)
class StreamingResponse(_Chainable):
    """A streaming HTTP response that sends chunks progressively.

    Headers are sent immediately, then each chunk as an ASGI body message
    with ``more_body=True``.
    """

    chunks: AsyncIterator[str | bytes]
    status: int = 200
    content_type: str = "text/html; charset=utf-8"
    headers: tuple[tuple[str, str], ...] = ()
    cookies: tuple[SetCookie, ...] = ()

    def with_content_type(self, content_type: str) -> StreamingResponse:
        """Return a new StreamingResponse with a different content type."""
        return replace(self, content_type=content_type)


# Any response type the pipeline can produce
type AnyResponse = Response | StreamingResponse

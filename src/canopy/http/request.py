"""Immutable HTTP request.

Frozen metadata with async body access. The pipeline never mutates a
request: rewrites and middleware header overrides produce a new one via
``with_path()`` / ``with_headers()``, sharing the body stream.
"""

from __future__ import annotations

import json as json_module
from collections.abc import AsyncGenerator, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from canopy._internal.asgi import Receive
from canopy.errors import PayloadTooLarge
from canopy.http.cookies import parse_cookies
from canopy.http.headers import Headers
from canopy.http.query import QueryParams

if TYPE_CHECKING:
    from canopy.http.forms import FormData


@dataclass(frozen=True, slots=True)
class Request:
    """An immutable HTTP request.

    ``path`` is the raw, still percent-encoded pathname as received.
    Decoding and normalization happen in the pipeline so malformed input
    can be answered with a 400 instead of failing inside the server.
    """

    method: str
    path: str
    headers: Headers
    query: QueryParams
    http_version: str
    scheme: str
    server: tuple[str, int] | None
    client: tuple[str, int] | None
    cookies: Mapping[str, str]

    # Private: ASGI receive callable for body streaming
    _receive: Receive

    # Private: mutable cache for the body (shared by derived requests)
    _cache: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    # -- Computed properties --

    @property
    def content_type(self) -> str | None:
        """The Content-Type header value."""
        return self.headers.get("content-type")

    @property
    def content_length(self) -> int | None:
        """The Content-Length header as int."""
        value = self.headers.get("content-length")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    @property
    def host(self) -> str:
        """The ``Host`` header, falling back to the ASGI server address."""
        host = self.headers.get("host")
        if host:
            return host
        if self.server is not None:
            name, port = self.server
            return f"{name}:{port}"
        return "localhost"

    @property
    def url(self) -> str:
        """Absolute request URL (scheme, host, path and query string)."""
        base = f"{self.scheme}://{self.host}{self.path}"
        if self.query.raw:
            return f"{base}?{self.query.raw}"
        return base

    # -- Derivation --

    def with_path(self, path: str, query: QueryParams | None = None) -> Request:
        """Return a request for a rewritten path (body stream is shared)."""
        return replace(self, path=path, query=self.query if query is None else query)

    def with_headers(self, headers: Headers) -> Request:
        """Return a request with replaced headers, re-parsing cookies."""
        return replace(self, headers=headers, cookies=parse_cookies(headers.get("cookie", "")))

    # -- Async body access --

    async def stream(self) -> AsyncGenerator[bytes]:
        """Stream the request body in chunks."""
        while True:
            message = await self._receive()
            body = message.get("body", b"")
            if body:
                yield body
            if not message.get("more_body", False):
                break

    async def body(self, *, limit: int | None = None) -> bytes:
        """Read the full request body, counting the bytes actually received.

        The declared ``Content-Length`` is never trusted: with *limit* set,
        ``PayloadTooLarge`` is raised as soon as the streamed total exceeds
        it. The result is cached for later calls.
        """
        if "_body" in self._cache:
            return self._cache["_body"]
        chunks: list[bytes] = []
        total = 0
        async for chunk in self.stream():
            total += len(chunk)
            if limit is not None and total > limit:
                raise PayloadTooLarge()
            chunks.append(chunk)
        result = b"".join(chunks)
        self._cache["_body"] = result
        return result

    async def json(self) -> Any:
        """Parse the body as JSON."""
        return json_module.loads(await self.body())

    async def text(self) -> str:
        """Read the body as text (UTF-8)."""
        raw = await self.body()
        return raw.decode("utf-8")

    async def form(self) -> FormData:
        """Parse the body as form data (URL-encoded or multipart)."""
        if "_form" in self._cache:
            return self._cache["_form"]

        from canopy.http.forms import parse_form_data

        ct = self.content_type or "application/x-www-form-urlencoded"
        result = parse_form_data(await self.body(), ct)
        self._cache["_form"] = result
        return result

    # -- Factory --

    @classmethod
    def from_asgi(cls, scope: Mapping[str, Any], receive: Receive) -> Request:
        """Create a Request from an ASGI scope and receive callable."""
        headers = Headers(tuple(scope.get("headers", ())))
        raw_path = scope.get("raw_path")
        if raw_path:
            path = raw_path.decode("latin-1").split("?", 1)[0]
        else:
            path = scope["path"]
        server = scope.get("server")
        client = scope.get("client")
        return cls(
            method=scope["method"].upper(),
            path=path,
            headers=headers,
            query=QueryParams(scope.get("query_string", b"")),
            http_version=scope.get("http_version", "1.1"),
            scheme=scope.get("scheme", "http"),
            server=tuple(server) if server else None,
            client=tuple(client) if client else None,
            cookies=parse_cookies(headers.get("cookie", "")),
            _receive=receive,
        )

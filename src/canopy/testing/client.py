"""Async test client for canopy applications.

Uses the same Request and Response types as production.
No wrapper translation layer.
"""

import inspect
import json as json_module
from typing import Any

from canopy.app import App
from canopy.http.response import Response
from canopy.server.actions import ACTION_HEADER


def payload_rows(response: Response) -> list[dict[str, Any]]:
    """Decode a payload response body into its rows, in stream order."""
    return [json_module.loads(line) for line in response.text.splitlines() if line.strip()]


class TestClient:
    __test__ = False  # Tell pytest this is not a test class
    """Async test client for canopy applications.

    Returns the same ``Response`` type used in production. Sends requests
    through the ASGI interface directly - no HTTP involved. Streamed
    responses are collected whole.

    Usage::

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 200
    """

    __slots__ = ("app",)

    def __init__(self, app: App) -> None:
        self.app = app

    async def __aenter__(self) -> "TestClient":
        self.app._ensure_frozen()
        for hook in self.app._startup_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result
        return self

    async def __aexit__(self, *args: object) -> None:
        for hook in self.app._shutdown_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    async def get(self, path: str, *, headers: dict[str, str] | None = None) -> Response:
        """Send a GET request."""
        return await self.request("GET", path, headers=headers)

    async def head(self, path: str, *, headers: dict[str, str] | None = None) -> Response:
        """Send a HEAD request."""
        return await self.request("HEAD", path, headers=headers)

    async def options(self, path: str, *, headers: dict[str, str] | None = None) -> Response:
        """Send an OPTIONS request."""
        return await self.request("OPTIONS", path, headers=headers)

    async def post(
        self,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
        json: Any = None,
    ) -> Response:
        """Send a POST request."""
        extra_headers: dict[str, str] = {}
        request_body = body or b""

        if json is not None:
            request_body = json_module.dumps(json).encode("utf-8")
            extra_headers["content-type"] = "application/json"

        merged = {**extra_headers, **(headers or {})}
        return await self.request("POST", path, headers=merged, body=request_body)

    async def put(
        self,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> Response:
        """Send a PUT request."""
        return await self.request("PUT", path, headers=headers, body=body)

    async def delete(self, path: str, *, headers: dict[str, str] | None = None) -> Response:
        """Send a DELETE request."""
        return await self.request("DELETE", path, headers=headers)

    async def payload(self, path: str, *, headers: dict[str, str] | None = None) -> Response:
        """Request the payload stream of *path* instead of HTML."""
        return await self.request("GET", path, headers={"accept": "text/x-component", **(headers or {})})

    async def action(
        self,
        path: str,
        action_id: str,
        *,
        args: list[Any] | None = None,
        form: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Response:
        """Call a mutation action from the page at *path*.

        Sends a same-origin ``Origin`` unless *headers* override it.
        Arguments go as a JSON array, or as a URL-encoded form with *form*.
        """
        action_headers = {
            ACTION_HEADER: action_id,
            "origin": "http://testserver",
            "accept": "text/x-component",
        }
        if form is not None:
            from urllib.parse import urlencode

            body = urlencode(form).encode("utf-8")
            action_headers["content-type"] = "application/x-www-form-urlencoded"
        else:
            body = json_module.dumps(args or []).encode("utf-8")
            action_headers["content-type"] = "application/json"
        action_headers.update(headers or {})
        return await self.request("POST", path, headers=action_headers, body=body)

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
        chunks: list[bytes] | None = None,
    ) -> Response:
        """Send an arbitrary request through the ASGI app.

        With *chunks*, the body is delivered as several ASGI messages and
        no ``Content-Length`` is added.
        """
        # Split path and query string
        if "?" in path:
            path_part, query_string = path.split("?", 1)
        else:
            path_part = path
            query_string = ""

        # Build raw ASGI headers
        raw_headers: list[tuple[bytes, bytes]] = []
        for name, value in (headers or {}).items():
            raw_headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))
        if not any(name == b"host" for name, _ in raw_headers):
            raw_headers.append((b"host", b"testserver"))

        # Build ASGI scope
        scope: dict[str, Any] = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": method.upper(),
            "path": path_part,
            "raw_path": path_part.encode("latin-1"),
            "query_string": query_string.encode("latin-1"),
            "root_path": "",
            "headers": raw_headers,
            "server": ("testserver", 80),
            "client": ("127.0.0.1", 0),
        }

        # Build receive callable
        pending = list(chunks) if chunks is not None else [body or b""]

        async def receive() -> dict[str, Any]:
            if pending:
                chunk = pending.pop(0)
                return {"type": "http.request", "body": chunk, "more_body": bool(pending)}
            return {"type": "http.disconnect"}

        # Capture response via send
        response_status = 200
        response_headers: list[tuple[bytes, bytes]] = []
        response_body_parts: list[bytes] = []

        async def send(message: dict[str, Any]) -> None:
            nonlocal response_status, response_headers
            if message["type"] == "http.response.start":
                response_status = message["status"]
                response_headers = list(message.get("headers", []))
            elif message["type"] == "http.response.body":
                response_body_parts.append(message.get("body", b""))

        # Call the ASGI app
        await self.app(scope, receive, send)

        # Build canopy Response from captured data
        body_bytes = b"".join(response_body_parts)

        content_type = "text/html; charset=utf-8"
        extra_headers: list[tuple[str, str]] = []
        for name_b, value_b in response_headers:
            name_str = name_b.decode("latin-1")
            value_str = value_b.decode("latin-1")
            if name_str == "content-type":
                content_type = value_str
            elif name_str not in ("content-length", "transfer-encoding"):
                extra_headers.append((name_str, value_str))

        return Response(
            body=body_bytes,
            status=response_status,
            content_type=content_type,
            headers=tuple(extra_headers),
        )

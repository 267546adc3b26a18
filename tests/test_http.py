"""Tests for the HTTP primitives - requests, responses, headers, query, forms."""

from typing import Any

import pytest

from canopy.errors import PayloadTooLarge
from canopy.http.cookies import parse_cookies
from canopy.http.forms import is_form_content_type, parse_form_data
from canopy.http.headers import Headers
from canopy.http.query import QueryParams
from canopy.http.request import Request
from canopy.http.response import Response


DEFAULT_HEADERS = [(b"host", b"example.test:8080"), (b"cookie", b"theme=dark; n=a%20b")]


def _request(chunks: list[bytes], headers: list[tuple[bytes, bytes]] | None = None) -> Request:
    pending = list(chunks)

    async def receive() -> dict[str, Any]:
        chunk = pending.pop(0) if pending else b""
        return {"type": "http.request", "body": chunk, "more_body": bool(pending)}

    scope = {
        "type": "http",
        "method": "post",
        "path": "/café",
        "raw_path": b"/caf%C3%A9",
        "query_string": b"a=1&a=2&b=",
        "headers": DEFAULT_HEADERS if headers is None else headers,
        "server": ("example.test", 8080),
    }
    return Request.from_asgi(scope, receive)


class TestRequest:
    def test_from_asgi_keeps_raw_path(self) -> None:
        request = _request([])
        assert request.method == "POST"
        assert request.path == "/caf%C3%A9"
        assert request.cookies == {"theme": "dark", "n": "a b"}
        assert request.url == "http://example.test:8080/caf%C3%A9?a=1&a=2&b="

    def test_host_falls_back_to_server(self) -> None:
        request = _request([], headers=[])
        assert request.host == "example.test:8080"

    async def test_body_is_cached(self) -> None:
        request = _request([b"ab", b"cd"])
        assert await request.body() == b"abcd"
        assert await request.body() == b"abcd"

    async def test_body_limit_counts_received_bytes(self) -> None:
        request = _request([b"x" * 8, b"x" * 8])
        with pytest.raises(PayloadTooLarge):
            await request.body(limit=10)

    def test_with_headers_reparses_cookies(self) -> None:
        request = _request([])
        derived = request.with_headers(Headers.from_pairs([("cookie", "a=1")]))
        assert derived.cookies == {"a": "1"}
        assert request.cookies["theme"] == "dark"


class TestHeaders:
    def test_case_insensitive(self) -> None:
        headers = Headers.from_pairs([("X-Thing", "1"), ("x-thing", "2")])
        assert headers["x-thing"] == "1"
        assert headers.get_list("X-THING") == ["1", "2"]

    def test_overrides_and_without(self) -> None:
        headers = Headers.from_pairs([("a", "1"), ("b", "2")])
        assert headers.with_overrides({"A": "9"}).get("a") == "9"
        assert "b" not in headers.without(["B"])


class TestQueryParams:
    def test_first_value_and_lists(self) -> None:
        query = QueryParams("a=1&a=2&b=")
        assert query["a"] == "1"
        assert query.get_list("a") == ["1", "2"]
        assert query.to_dict() == {"a": ["1", "2"], "b": ""}
        assert len(query) == 2


class TestResponse:
    def test_chainable_copies(self) -> None:
        base = Response("x")
        changed = base.with_status(201).with_header("X-A", "1")
        assert base.status == 200
        assert changed.status == 201
        assert changed.header("x-a") == "1"

    def test_without_headers(self) -> None:
        response = Response(headers=(("X-Middleware-Next", "1"), ("X-Keep", "1")))
        kept = response.without_headers(lambda name: name.startswith("x-middleware-"))
        assert kept.headers == (("X-Keep", "1"),)

    def test_redirect(self) -> None:
        response = Response.redirect("/there", 308)
        assert response.status == 308
        assert response.header("location") == "/there"


class TestForms:
    def test_content_types(self) -> None:
        assert is_form_content_type("application/x-www-form-urlencoded; charset=utf-8")
        assert is_form_content_type("multipart/form-data; boundary=x")
        assert not is_form_content_type("application/json")

    def test_urlencoded(self) -> None:
        form = parse_form_data(b"tag=a&tag=b&name=Ada", "application/x-www-form-urlencoded")
        assert form["name"] == "Ada"
        assert form.get_list("tag") == ["a", "b"]

    def test_multipart(self) -> None:
        body = (
            b"--XyZ\r\n"
            b'Content-Disposition: form-data; name="name"\r\n\r\n'
            b"Ada\r\n"
            b"--XyZ\r\n"
            b'Content-Disposition: form-data; name="avatar"; filename="a.png"\r\n'
            b"Content-Type: image/png\r\n\r\n"
            b"PNGDATA\r\n"
            b"--XyZ--\r\n"
        )
        form = parse_form_data(body, "multipart/form-data; boundary=XyZ")
        assert form["name"] == "Ada"
        upload = form.files["avatar"]
        assert upload.filename == "a.png"
        assert upload.content_type == "image/png"
        assert upload.size == 7

    def test_multipart_without_boundary(self) -> None:
        with pytest.raises(ValueError, match="boundary"):
            parse_form_data(b"", "multipart/form-data")


class TestCookies:
    def test_parse(self) -> None:
        assert parse_cookies("") == {}
        assert parse_cookies("a=1; b = two ; junk") == {"a": "1", "b": "two"}

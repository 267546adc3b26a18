"""Tests for canopy.middleware.gate - classifying the gate function's result."""

from typing import Any

import pytest

from canopy.http.headers import Headers
from canopy.http.query import QueryParams
from canopy.http.request import Request
from canopy.http.response import Response
from canopy.middleware.gate import (
    MiddlewareGate,
    classify,
    matches_pattern,
    next_response,
    redirect_response,
    rewrite_response,
)


def _request(path: str = "/raw%20path") -> Request:
    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request(
        method="GET",
        path=path,
        headers=Headers.from_pairs([("host", "testserver")]),
        query=QueryParams(""),
        http_version="1.1",
        scheme="http",
        server=("testserver", 80),
        client=None,
        cookies={},
        _receive=receive,
    )


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------


class TestMatchesPattern:
    @pytest.mark.parametrize(
        ("pathname", "expected"),
        [
            ("/dashboard", True),
            ("/dashboard/a/b", True),
            ("/dashboardx", False),
            ("/other", False),
        ],
    )
    def test_optional_catch_all(self, pathname: str, expected: bool) -> None:
        assert matches_pattern(pathname, "/dashboard/:path*") is expected

    def test_catch_all_requires_segment(self) -> None:
        assert not matches_pattern("/admin", "/admin/:path+")
        assert matches_pattern("/admin/users", "/admin/:path+")

    def test_named_param(self) -> None:
        assert matches_pattern("/api/42", "/api/:id")
        assert not matches_pattern("/api/42/x", "/api/:id")

    def test_raw_regex(self) -> None:
        assert matches_pattern("/admin/x", "/(api|admin)/.*")
        assert not matches_pattern("/public/x", "/(api|admin)/.*")

    def test_exact(self) -> None:
        assert matches_pattern("/about", "/about")
        assert not matches_pattern("/about/team", "/about")


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestClassify:
    def test_none_continues(self) -> None:
        result = classify(None)
        assert result.action == "continue"
        assert result.proceeds

    def test_next_with_headers_and_overrides(self) -> None:
        result = classify(next_response(headers={"x-a": "1"}, request_headers={"X-User": "alice"}))
        assert result.action == "continue"
        assert result.headers == (("x-a", "1"),)
        assert result.request_headers == {"x-user": "alice"}

    def test_redirect(self) -> None:
        result = classify(redirect_response("/login"))
        assert result.action == "redirect"
        assert not result.proceeds
        assert result.response is not None
        assert result.response.header("location") == "/login"

    def test_rewrite(self) -> None:
        result = classify(rewrite_response("/internal?x=1", headers={"x-b": "2"}))
        assert result.action == "rewrite"
        assert result.rewrite_path == "/internal"
        assert result.status is None
        assert result.headers == (("x-b", "2"),)

    def test_rewrite_with_status(self) -> None:
        result = classify(rewrite_response("/maintenance", status=503))
        assert result.status == 503

    def test_other_response_is_sent_without_reserved_headers(self) -> None:
        blocked = Response.text_response("Unauthorized", 401).with_header("x-middleware-debug", "1")
        result = classify(blocked)
        assert result.action == "respond"
        assert result.response is not None
        assert result.response.status == 401
        assert result.response.header("x-middleware-debug") is None


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class TestMiddlewareGate:
    async def test_receives_canonical_pathname(self) -> None:
        seen: list[str] = []

        def gate(request: Request) -> None:
            seen.append(request.path)

        await MiddlewareGate(gate).run(_request(), "/raw path")
        assert seen == ["/raw path"]

    async def test_matcher_skips_other_paths(self) -> None:
        calls: list[str] = []

        async def gate(request: Request) -> Response:
            calls.append(request.path)
            return redirect_response("/login")

        mw = MiddlewareGate(gate, matcher="/dashboard/:path*")
        skipped = await mw.run(_request(), "/public")
        hit = await mw.run(_request(), "/dashboard/settings")

        assert skipped.action == "continue"
        assert hit.action == "redirect"
        assert calls == ["/dashboard/settings"]

    async def test_exception_becomes_500(self) -> None:
        def gate(request: Request) -> None:
            raise RuntimeError("boom")

        result = await MiddlewareGate(gate).run(_request(), "/")
        assert result.action == "respond"
        assert result.response is not None
        assert result.response.status == 500

"""Tests for canopy.rendering.payload - resolving view trees into rows."""

import json

import anyio
import pytest
from kida.utils.html import Markup

from canopy.rendering.digest import PRODUCTION_ERROR_MESSAGE
from canopy.rendering.payload import render_payload
from canopy.signals import RedirectSignal, not_found, redirect
from canopy.views.nodes import ErrorBoundary, Fragment, NotFoundBoundary, SegmentScope, Suspense, h


async def _rows(tree, **kwargs) -> list[dict]:
    return [json.loads(line) async for line in render_payload(tree, **kwargs)]


def _el(tag: str, *children, **props) -> dict:
    return {"$": "el", "tag": tag, "props": props, "children": list(children)}


async def slow(label="done"):
    await anyio.sleep(0)
    return h("p", None, label)


def boom():
    raise ValueError("db down")


def missing_post():
    not_found()


def go_home():
    redirect("/")


def error_view(error):
    return h("p", None, f"failed {error['digest']}")


# ---------------------------------------------------------------------------
# Root row
# ---------------------------------------------------------------------------


class TestRootRow:
    async def test_host_element(self) -> None:
        rows = await _rows(h("div", {"class_": "x", "on_click": print}, "hi", 3))
        assert rows == [{"id": 0, "model": _el("div", "hi", 3, class_="x")}]

    async def test_components_sync_and_async(self) -> None:
        def sync_comp(name):
            return h("b", None, name)

        async def async_comp(children):
            return h("i", None, children)

        rows = await _rows(h(async_comp, None, h(sync_comp, {"name": "n"})))
        assert rows[0]["model"] == _el("i", _el("b", "n"))

    async def test_fragments_scopes_and_markup(self) -> None:
        tree = SegmentScope(1, Fragment(("a", None, Markup("<b>raw</b>"))))
        rows = await _rows(tree)
        assert rows[0]["model"] == {
            "$": "scope",
            "depth": 1,
            "child": ["a", None, {"$": "html", "value": "<b>raw</b>"}],
        }

    async def test_return_value_wraps_root(self) -> None:
        rows = await _rows(h("p", None, "x"), return_value={"ok": True, "data": 1})
        assert rows[0]["model"] == {"root": _el("p", "x"), "returnValue": {"ok": True, "data": 1}}

    async def test_unknown_node(self) -> None:
        with pytest.raises(TypeError, match="Cannot render"):
            await _rows(object())


class TestRootBoundaries:
    async def test_error_outside_boundary_propagates(self) -> None:
        with pytest.raises(ValueError, match="db down"):
            await _rows(h(boom))

    async def test_error_boundary_renders_fallback(self) -> None:
        rows = await _rows(ErrorBoundary(fallback=error_view, child=h(boom)))
        (text,) = rows[0]["model"]["children"]
        assert text.startswith("failed ")

    async def test_signals_pass_error_boundaries(self) -> None:
        with pytest.raises(RedirectSignal):
            await _rows(ErrorBoundary(fallback=error_view, child=h(go_home)))

    async def test_not_found_boundary(self) -> None:
        rows = await _rows(NotFoundBoundary(fallback=h("p", None, "404"), child=h(missing_post)))
        assert rows[0]["model"] == _el("p", "404")


# ---------------------------------------------------------------------------
# Deferred rows
# ---------------------------------------------------------------------------


class TestSuspense:
    async def test_lazy_marker_then_row(self) -> None:
        tree = Fragment((h("h1", None, "T"), Suspense(fallback=h("p", None, "Loading"), child=h(slow))))
        rows = await _rows(tree)

        assert rows[0]["model"] == [
            _el("h1", "T"),
            {"$": "lazy", "id": 1, "fallback": _el("p", "Loading")},
        ]
        assert rows[1] == {"id": 1, "model": _el("p", "done")}

    async def test_rows_follow_deferral_order(self) -> None:
        async def slower():
            await anyio.sleep(0.01)
            return "first"

        tree = Fragment(
            (
                Suspense(fallback=None, child=h(slower)),
                Suspense(fallback=None, child=h(slow, {"label": "second"})),
            )
        )
        rows = await _rows(tree)
        assert [row["id"] for row in rows] == [0, 1, 2]
        assert rows[1]["model"] == "first"

    async def test_nested_waves(self) -> None:
        inner = Suspense(fallback="inner-loading", child=h(slow))
        rows = await _rows(Suspense(fallback="outer-loading", child=Fragment(("outer", inner))))

        assert [row["id"] for row in rows] == [0, 1, 2]
        assert rows[1]["model"] == ["outer", {"$": "lazy", "id": 2, "fallback": "inner-loading"}]
        assert rows[2]["model"] == _el("p", "done")

    async def test_deferred_error_without_boundary(self) -> None:
        rows = await _rows(Suspense(fallback=None, child=h(boom)))
        error = rows[1]["error"]
        assert rows[1]["id"] == 1
        assert "model" not in rows[1]
        assert error["message"] == PRODUCTION_ERROR_MESSAGE
        assert error["digest"].isdigit()

    async def test_deferred_error_debug_message(self) -> None:
        rows = await _rows(Suspense(fallback=None, child=h(boom)), debug=True)
        assert rows[1]["error"]["message"] == "db down"

    async def test_deferred_error_uses_enclosing_boundary(self) -> None:
        tree = ErrorBoundary(fallback=error_view, child=Suspense(fallback="...", child=h(boom)))
        rows = await _rows(tree)
        assert rows[0]["model"] == {"$": "lazy", "id": 1, "fallback": "..."}
        assert rows[1]["model"]["children"][0].startswith("failed ")

    async def test_deferred_not_found_uses_boundary(self) -> None:
        tree = NotFoundBoundary(
            fallback=h("p", None, "404"),
            child=Suspense(fallback=None, child=h(missing_post)),
        )
        rows = await _rows(tree)
        assert rows[1]["model"] == _el("p", "404")

    async def test_deferred_not_found_without_boundary_keeps_digest(self) -> None:
        rows = await _rows(Suspense(fallback=None, child=h(missing_post)))
        assert rows[1]["error"]["digest"] == "NEXT_NOT_FOUND"

    async def test_boundary_failure_drops_its_deferred_rows(self) -> None:
        def half_rendered():
            return Fragment((Suspense(fallback=None, child=h(slow)), h(boom)))

        rows = await _rows(ErrorBoundary(fallback=error_view, child=h(half_rendered)))
        assert len(rows) == 1

"""Tests for mutation actions - invocation, outcomes and request guards."""

import pytest

from canopy import App, AppConfig, h
from canopy.context import cookies
from canopy.http.forms import FormData
from canopy.rendering.digest import PRODUCTION_ERROR_MESSAGE
from canopy.routing.route import RouteDescriptor, RouteTable, View
from canopy.server.actions import ACTION_HEADER, ActionRegistry, run_action
from canopy.signals import not_found, redirect
from canopy.testing import TestClient, payload_rows


def cart():
    return h("p", None, "cart")


TABLE = RouteTable(routes=(RouteDescriptor("/cart", page=View(cart)),))


def _app(config: AppConfig | None = None) -> App:
    app = App(TABLE, config)

    @app.action("add")
    async def add(qty, note=None):
        return {"added": qty, "note": note}

    @app.action("boom")
    def boom():
        raise ValueError("db down")

    @app.action("go")
    def go():
        cookies().set("flash", "saved")
        redirect("/done")

    @app.action("gone")
    def gone():
        not_found()

    @app.action("signup")
    def signup(form: FormData):
        cookies().set("user", form["name"])
        return form["name"]

    return app


def _return_value(response) -> dict:
    return payload_rows(response)[0]["model"]["returnValue"]


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class TestActionOutcomes:
    async def test_return_value_and_rerendered_root(self) -> None:
        async with TestClient(_app()) as client:
            response = await client.action("/cart", "add", args=[2, "gift"])

        assert response.status == 200
        assert response.content_type == "text/x-component; charset=utf-8"
        root = payload_rows(response)[0]["model"]
        assert root["returnValue"] == {"ok": True, "data": {"added": 2, "note": "gift"}}
        assert root["root"][-1] == {"$": "el", "tag": "p", "props": {}, "children": ["cart"]}

    async def test_single_json_value_is_one_argument(self) -> None:
        async with TestClient(_app()) as client:
            response = await client.request(
                "POST",
                "/cart",
                headers={ACTION_HEADER: "add", "content-type": "application/json"},
                body=b"5",
            )
        assert _return_value(response)["data"]["added"] == 5

    async def test_failure_is_a_value(self) -> None:
        async with TestClient(_app()) as client:
            response = await client.action("/cart", "boom")

        assert response.status == 200
        value = _return_value(response)
        assert value["ok"] is False
        assert value["data"]["message"] == PRODUCTION_ERROR_MESSAGE
        assert value["data"]["digest"].isdigit()

    async def test_failure_message_in_debug(self) -> None:
        async with TestClient(_app(AppConfig(debug=True))) as client:
            response = await client.action("/cart", "boom")
        assert _return_value(response)["data"]["message"] == "db down"

    async def test_not_found_keeps_digest(self) -> None:
        async with TestClient(_app()) as client:
            response = await client.action("/cart", "gone")
        value = _return_value(response)
        assert value["ok"] is False
        assert value["data"]["digest"] == "NEXT_NOT_FOUND"

    async def test_unknown_action(self) -> None:
        async with TestClient(_app()) as client:
            response = await client.action("/cart", "nope")
        assert response.status == 200
        assert _return_value(response)["ok"] is False

    async def test_redirect_headers(self) -> None:
        async with TestClient(_app()) as client:
            response = await client.action("/cart", "go")

        assert response.status == 200
        assert response.body == b""
        assert response.header("x-action-redirect") == "/done"
        assert response.header("x-action-redirect-type") == "replace"
        assert response.header("x-action-redirect-status") == "307"
        assert response.set_cookie_values() == ["flash=saved; Path=/; HttpOnly; SameSite=Lax"]

    async def test_form_argument_and_cookies(self) -> None:
        async with TestClient(_app()) as client:
            response = await client.action("/cart", "signup", form={"name": "Ada"})
        assert _return_value(response) == {"ok": True, "data": "Ada"}
        assert response.set_cookie_values() == ["user=Ada; Path=/; HttpOnly; SameSite=Lax"]

    async def test_unmatched_page(self) -> None:
        async with TestClient(_app()) as client:
            response = await client.action("/elsewhere", "add", args=[1])
        root = payload_rows(response)[0]["model"]["root"]
        assert root["children"] == ["Page not found"]


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


class TestActionGuards:
    async def test_foreign_origin_is_403(self) -> None:
        async with TestClient(_app()) as client:
            response = await client.action("/cart", "add", args=[1], headers={"origin": "https://evil.test"})
        assert response.status == 403
        assert response.text == "Forbidden"

    async def test_null_origin_passes(self) -> None:
        async with TestClient(_app()) as client:
            response = await client.action("/cart", "add", args=[1], headers={"origin": "null"})
        assert response.status == 200

    async def test_allowed_origin(self) -> None:
        config = AppConfig(allowed_origins=("*.trusted.test",))
        async with TestClient(_app(config)) as client:
            response = await client.action(
                "/cart", "add", args=[1], headers={"origin": "https://app.trusted.test"}
            )
        assert response.status == 200

    async def test_declared_length_over_limit(self) -> None:
        async with TestClient(_app(AppConfig(max_action_body_size=16))) as client:
            response = await client.action("/cart", "add", args=[1], headers={"content-length": "1000"})
        assert response.status == 413
        assert response.text == "Payload Too Large"

    async def test_streamed_body_over_limit(self) -> None:
        async with TestClient(_app(AppConfig(max_action_body_size=16))) as client:
            response = await client.request(
                "POST",
                "/cart",
                headers={ACTION_HEADER: "add", "content-type": "application/json"},
                chunks=[b"[1, ", b'"' + b"x" * 32 + b'"', b"]"],
            )
        assert response.status == 413

    async def test_undecodable_body_is_500(self) -> None:
        async with TestClient(_app()) as client:
            response = await client.request(
                "POST",
                "/cart",
                headers={ACTION_HEADER: "add", "content-type": "application/json"},
                body=b"{not json",
            )
        assert response.status == 500
        assert response.text == "Internal Server Error"

    async def test_post_without_action_header_is_not_an_action(self) -> None:
        async with TestClient(_app()) as client:
            response = await client.post("/cart", json=[1])
        assert response.content_type == "text/html; charset=utf-8"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestActionRegistry:
    def test_duplicate_id(self) -> None:
        registry = ActionRegistry()
        registry.register("a", print)
        with pytest.raises(ValueError, match="already registered"):
            registry.register("a", print)

    async def test_run_action_outside_pipeline(self) -> None:
        registry = ActionRegistry()
        registry.register("double", lambda n: n * 2)
        outcome = await run_action(registry, "double", [21])
        assert outcome.return_value == {"ok": True, "data": 42}
        assert outcome.redirect is None

"""Mutation-action branch - server functions called by id.

A POST carrying the ``x-rsc-action`` header invokes the action registered
under that id and answers with a payload stream whose root row holds both
the re-rendered route and the action's outcome::

    {"root": <view tree>, "returnValue": {"ok": true, "data": <value>}}

Failures never surface as HTTP errors: they become ``{"ok": false, ...}``
return values. A redirect signal is the exception: it answers 200 with an
empty body and ``x-action-redirect*`` headers so the client navigates.
"""

import json
import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from canopy._internal.invoke import invoke
from canopy.context import set_navigation, take_pending_cookies
from canopy.errors import PayloadTooLarge
from canopy.http.forms import is_form_content_type
from canopy.http.query import QueryParams
from canopy.http.request import Request
from canopy.http.response import AnyResponse, Response, StreamingResponse
from canopy.middleware.csrf import validate_action_origin
from canopy.rendering.cache import VARY
from canopy.rendering.digest import sanitize_error
from canopy.rendering.payload import PAYLOAD_CONTENT_TYPE
from canopy.routing.matcher import match_route
from canopy.server.render import URL_SAFE, RenderSettings, stream_tree
from canopy.signals import HTTPAccessFallbackSignal, RedirectSignal
from canopy.views.nodes import h
from canopy.views.tree import compose_view_tree

logger = logging.getLogger("canopy.server")

ACTION_HEADER = "x-rsc-action"


class ActionRegistry:
    """Action callables by id. Filled at startup, read-only while serving."""

    __slots__ = ("_actions",)

    def __init__(self) -> None:
        self._actions: dict[str, Callable[..., Any]] = {}

    def register(self, action_id: str, func: Callable[..., Any]) -> None:
        if action_id in self._actions:
            msg = f"Action {action_id!r} is already registered"
            raise ValueError(msg)
        self._actions[action_id] = func

    def get(self, action_id: str) -> Callable[..., Any] | None:
        return self._actions.get(action_id)

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._actions

    def __iter__(self) -> Iterator[str]:
        return iter(self._actions)

    def __len__(self) -> int:
        return len(self._actions)


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    """What invoking an action produced: a return value, or a redirect."""

    return_value: Mapping[str, Any] | None = None
    redirect: RedirectSignal | None = None


def is_action_request(request: Request) -> bool:
    return request.method == "POST" and bool(request.headers.get(ACTION_HEADER))


async def decode_action_args(request: Request, *, limit: int) -> list[Any]:
    """Decode the call arguments from the request body.

    Form encodings become a single ``FormData`` argument; anything else is
    read as JSON, where an array is the argument list and any other value
    a single argument. Raises ``PayloadTooLarge`` once more than *limit*
    bytes have actually been received.
    """
    content_type = request.content_type or ""
    if is_form_content_type(content_type):
        await request.body(limit=limit)
        return [await request.form()]
    raw = await request.body(limit=limit)
    if not raw.strip():
        return []
    value = json.loads(raw)
    if isinstance(value, list):
        return value
    return [value]


async def run_action(
    registry: ActionRegistry,
    action_id: str,
    args: list[Any],
    *,
    debug: bool = False,
) -> ActionOutcome:
    """Invoke the action and classify how it ended."""
    action = registry.get(action_id)
    if action is None:
        missing = LookupError(f"Server action {action_id!r} not found")
        logger.warning("Unknown server action %r", action_id)
        return ActionOutcome({"ok": False, "data": sanitize_error(missing, debug=debug)})

    try:
        data = await invoke(action, *args)
    except RedirectSignal as signal:
        return ActionOutcome(redirect=signal)
    except HTTPAccessFallbackSignal as signal:
        logger.debug("Action %r raised %s", action_id, signal.digest)
        return ActionOutcome({"ok": False, "data": sanitize_error(signal, debug=debug)})
    except Exception as exc:
        logger.exception("Server action %r failed", action_id)
        return ActionOutcome({"ok": False, "data": sanitize_error(exc, debug=debug)})
    return ActionOutcome({"ok": True, "data": data})


def action_redirect_response(signal: RedirectSignal) -> Response:
    """Tell the client to navigate: 200, empty body, ``x-action-redirect*``."""
    return Response(
        body="",
        content_type=PAYLOAD_CONTENT_TYPE,
        headers=(
            VARY,
            ("x-action-redirect", quote(signal.url, safe=URL_SAFE)),
            ("x-action-redirect-type", signal.redirect_type),
            ("x-action-redirect-status", str(signal.status)),
        ),
        cookies=tuple(take_pending_cookies()),
    )


async def handle_action(
    request: Request,
    registry: ActionRegistry,
    settings: RenderSettings,
    *,
    pathname: str,
    search_params: QueryParams,
    allowed_origins: tuple[str, ...] = (),
    max_body_size: int,
) -> AnyResponse:
    """Run the mutation-action branch for *request* at *pathname*."""
    rejected = validate_action_origin(request.headers, allowed_origins)
    if rejected is not None:
        return rejected

    declared = request.content_length
    if declared is not None and declared > max_body_size:
        return Response.text_response("Payload Too Large", 413)

    action_id = request.headers.get(ACTION_HEADER, "")
    try:
        try:
            args = await decode_action_args(request, limit=max_body_size)
        except PayloadTooLarge:
            return Response.text_response("Payload Too Large", 413)

        outcome = await run_action(registry, action_id, args, debug=settings.debug)
        if outcome.redirect is not None:
            return action_redirect_response(outcome.redirect)

        matched = match_route(pathname, settings.table)
        if matched is None:
            tree: Any = h("div", None, "Page not found")
        else:
            set_navigation(pathname, search_params, matched.params)
            tree = await compose_view_tree(
                matched.route,
                matched.params,
                search_params=search_params,
                table=settings.table,
            )
        response: StreamingResponse = await stream_tree(
            tree,
            settings,
            is_rsc=True,
            return_value=outcome.return_value,
        )
    except Exception as exc:
        logger.exception("Server action %r failed on %s", action_id, pathname)
        if settings.debug:
            return Response.text_response(f"Server action failed: {exc}", 500)
        return Response.text_response("Internal Server Error", 500)

    return response.with_cookies(take_pending_cookies())

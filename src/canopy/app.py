"""Canopy application class.

Mutable during setup (actions, middleware, lifecycle hooks). Frozen at
runtime when ``__call__()`` is first invoked.
"""

import inspect
import threading
from collections.abc import Callable, Sequence
from typing import Any

import httpx

from canopy._internal.asgi import Receive, Scope, Send
from canopy.config import AppConfig
from canopy.middleware.gate import MiddlewareGate
from canopy.routing.route import RouteTable
from canopy.server.actions import ActionRegistry
from canopy.server.handler import handle_request
from canopy.server.pipeline import RequestPipeline


class App:
    """The canopy application.

    Serves one route table under one config::

        app = App(table, AppConfig(base_path="/docs"))

        @app.action("add-to-cart")
        async def add_to_cart(form):
            ...

    Thread safety:
        The setup phase is single-threaded (decorators at import time).
        The freeze transition uses a Lock + double-check so exactly one
        thread compiles the pipeline, even when several ASGI workers hit
        ``__call__()`` concurrently on first request.
    """

    __slots__ = (
        "_actions",
        "_freeze_lock",
        "_frozen",
        "_middleware",
        "_middleware_matcher",
        "_pipeline",
        "_proxy_transport",
        "_shutdown_hooks",
        "_startup_hooks",
        "config",
        "table",
    )

    def __init__(
        self,
        table: RouteTable,
        config: AppConfig | None = None,
        *,
        middleware: Callable[..., Any] | None = None,
        middleware_matcher: str | Sequence[str] | None = None,
        proxy_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.table = table
        self.config: AppConfig = config or AppConfig()
        self._middleware = middleware
        self._middleware_matcher = middleware_matcher
        self._proxy_transport = proxy_transport
        self._actions = ActionRegistry()
        self._startup_hooks: list[Callable[..., Any]] = []
        self._shutdown_hooks: list[Callable[..., Any]] = []
        self._pipeline: RequestPipeline | None = None
        self._frozen: bool = False
        self._freeze_lock = threading.Lock()

    # -- Registration --

    def action(self, action_id: str | None = None) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Register a mutation action, callable by id via ``x-rsc-action``.

        The id defaults to ``module#qualname``.
        """

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.add_action(action_id or f"{func.__module__}#{func.__qualname__}", func)
            return func

        return decorator

    def add_action(self, action_id: str, func: Callable[..., Any]) -> None:
        self._check_not_frozen()
        self._actions.register(action_id, func)

    def middleware(
        self, matcher: str | Sequence[str] | None = None
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Install the gatekeeping function, optionally limited to *matcher* paths.

        Usage::

            @app.middleware(["/admin/:path*"])
            def gate(request):
                if "session" not in request.cookies:
                    return redirect_response("/login")
                return next_response()
        """

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self._check_not_frozen()
            self._middleware = func
            self._middleware_matcher = matcher
            return func

        return decorator

    def on_startup(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register a hook run during ASGI lifespan startup, in registration order."""
        self._check_not_frozen()
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register a hook run during ASGI lifespan shutdown, in registration order."""
        self._check_not_frozen()
        self._shutdown_hooks.append(func)
        return func

    # -- ASGI interface --

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI 3.0 entry point."""
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return

        pipeline = self._ensure_frozen()
        await handle_request(scope, receive, send, pipeline=pipeline)

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        """Run the ASGI lifespan protocol, freezing the app at startup."""
        self._ensure_frozen()

        while True:
            message = await receive()
            msg_type = message["type"]

            if msg_type == "lifespan.startup":
                try:
                    for hook in self._startup_hooks:
                        result = hook()
                        if inspect.isawaitable(result):
                            await result
                    await send({"type": "lifespan.startup.complete"})
                except Exception as exc:
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return

            elif msg_type == "lifespan.shutdown":
                for hook in self._shutdown_hooks:
                    result = hook()
                    if inspect.isawaitable(result):
                        await result
                await send({"type": "lifespan.shutdown.complete"})
                return

    # -- Internal --

    def _ensure_frozen(self) -> RequestPipeline:
        """Thread-safe freeze with double-check locking; returns the compiled pipeline."""
        pipeline = self._pipeline
        if pipeline is not None:
            return pipeline
        with self._freeze_lock:
            if self._pipeline is None:
                self._pipeline = self._freeze()
            return self._pipeline

    def _freeze(self) -> RequestPipeline:
        """Compile the request pipeline. MUST only be called while holding _freeze_lock."""
        gate = None
        if self._middleware is not None:
            gate = MiddlewareGate(self._middleware, self._middleware_matcher)
        pipeline = RequestPipeline(
            self.table,
            self.config,
            gate=gate,
            actions=self._actions,
            proxy_transport=self._proxy_transport,
        )
        self._frozen = True
        return pipeline

    def _check_not_frozen(self) -> None:
        if self._frozen:
            msg = (
                "Cannot modify the app after it has started serving requests. "
                "Register actions, middleware and hooks before the first request."
            )
            raise RuntimeError(msg)

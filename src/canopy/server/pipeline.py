"""Request pipeline - the ordered state machine behind every request.

Each step may answer the request and stop::

    dev-origin guard        (debug only)
    decode + normalize      400 malformed, 404 protocol-relative
    base path               404 outside it
    trailing slash          308
    redirect rules          307 / 308
    before-files rewrites   external -> proxy
    payload detection       .rsc suffix or Accept: text/x-component
    middleware gate         respond, redirect, rewrite or continue
    image path              302 / 400
    mutation action         POST + x-rsc-action
    after-files rewrites    external -> proxy
    route match             then fallback rewrites, then 404
    route handler | page

Header rules are applied on the way out to every non-redirect response.
"""

import logging
from urllib.parse import quote, urljoin, urlsplit

import httpx

from canopy.config import AppConfig
from canopy.context import set_navigation, set_request_headers, take_pending_cookies
from canopy.errors import MalformedPathError
from canopy.http.cookies import parse_cookies
from canopy.http.query import QueryParams
from canopy.http.request import Request
from canopy.http.response import AnyResponse, Response
from canopy.middleware.dev_origin import validate_dev_request
from canopy.middleware.gate import MiddlewareGate, is_reserved_header
from canopy.rendering.payload import PAYLOAD_CONTENT_TYPE
from canopy.routing.matcher import build_intercept_lookup, match_route
from canopy.routing.normalize import decode_path, normalize_path
from canopy.routing.route import RouteMatch, RouteTable
from canopy.rules.conditions import RequestContext
from canopy.rules.engine import (
    is_external_url,
    match_headers,
    match_redirect,
    match_rewrite,
    sanitize_destination,
)
from canopy.rules.proxy import proxy_external_request
from canopy.rules.types import RewriteRule
from canopy.server.actions import ActionRegistry, handle_action, is_action_request
from canopy.server.render import (
    RenderSettings,
    absolute_location,
    handle_route_handler,
    render_access_fallback,
    render_page,
)

logger = logging.getLogger("canopy.server")

RSC_SUFFIX = ".rsc"

# Path characters left unescaped when a decoded pathname goes back into a Location.
_PATH_SAFE = "/:@!$&'()*+,;="


def is_payload_request(pathname: str, accept: str | None) -> bool:
    return pathname.endswith(RSC_SUFFIX) or PAYLOAD_CONTENT_TYPE.split(";")[0] in (accept or "")


def _location(request: Request, pathname: str, search: str = "") -> str:
    """Absolute redirect target for a decoded *pathname*, percent-encoded again."""
    return urljoin(request.url, quote(pathname, safe=_PATH_SAFE) + search)


def _merge_query(destination_query: str, query: QueryParams) -> QueryParams:
    """Rewrite destination query keys win over the request's own."""
    if not destination_query:
        return query
    target = QueryParams(destination_query)
    kept = [(k, v) for k, v in query.items_list() if k not in target]
    return QueryParams(QueryParams.encode([*target.items_list(), *kept]))


class RequestPipeline:
    """Runs one request through every stage for a fixed table and config."""

    __slots__ = ("actions", "config", "gate", "proxy_transport", "settings")

    def __init__(
        self,
        table: RouteTable,
        config: AppConfig,
        *,
        gate: MiddlewareGate | None = None,
        actions: ActionRegistry | None = None,
        proxy_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.gate = gate
        self.actions = actions if actions is not None else ActionRegistry()
        self.proxy_transport = proxy_transport
        self.settings = RenderSettings(
            table=table,
            debug=config.debug,
            lang=config.lang,
            intercepts=build_intercept_lookup(table),
        )

    # -- Entry --

    async def handle(self, request: Request) -> AnyResponse:
        """Answer *request*, then apply header rules and drop reserved headers."""
        ctx = RequestContext.from_request(request)
        response = await self._dispatch(request, ctx)
        response = response.without_headers(is_reserved_header)
        if not self.config.headers or 300 <= response.status < 400:
            return response
        extra = match_headers(self._rule_pathname(request.path), self.config.headers, ctx)
        if not extra:
            return response
        replaced = {name.lower() for name, _ in extra}
        return response.without_headers(lambda name: name in replaced).with_headers(extra)

    def _rule_pathname(self, raw: str) -> str:
        try:
            pathname = normalize_path(decode_path(raw))
        except MalformedPathError:
            pathname = raw
        base = self.config.base_path
        if base and pathname.startswith(base):
            pathname = pathname[len(base) :] or "/"
        return pathname

    async def _proxy(self, request: Request, destination: str) -> AnyResponse:
        return await proxy_external_request(
            request,
            destination,
            timeout=self.config.proxy_timeout,
            transport=self.proxy_transport,
        )

    # -- Stages --

    async def _dispatch(self, request: Request, ctx: RequestContext) -> AnyResponse:
        config = self.config

        if config.debug:
            blocked = validate_dev_request(request.headers, config.allowed_dev_origins, path=request.path)
            if blocked is not None:
                return blocked

        raw = request.path.replace("\\", "/")
        if raw.startswith("//"):
            return Response.text_response("404 Not Found", 404)
        try:
            pathname = normalize_path(decode_path(raw))
        except MalformedPathError:
            return Response.text_response("Bad Request", 400)

        base = config.base_path
        if base:
            if pathname != base and not pathname.startswith(base + "/"):
                return Response.text_response("Not Found", 404)
            pathname = pathname[len(base) :] or "/"

        query = request.query
        search = f"?{query.raw}" if query.raw else ""

        if pathname != "/" and not pathname.startswith("/api"):
            has_slash = pathname.endswith("/")
            if config.trailing_slash and not has_slash and not pathname.endswith(RSC_SUFFIX):
                return Response.redirect(_location(request, f"{base}{pathname}/", search), 308)
            if not config.trailing_slash and has_slash:
                stripped = pathname.rstrip("/") or "/"
                return Response.redirect(_location(request, f"{base}{stripped}", search), 308)

        if config.redirects:
            redirected = match_redirect(pathname, config.redirects, ctx)
            if redirected is not None:
                destination, permanent = redirected
                if base and not is_external_url(destination) and not destination.startswith(base):
                    destination = base + destination
                return Response.redirect(sanitize_destination(destination), 308 if permanent else 307)

        rewritten = self._rewrite(pathname, query, config.rewrites.before_files, ctx)
        if isinstance(rewritten, str):
            return await self._proxy(request, rewritten)
        if rewritten is not None:
            pathname, query = rewritten

        is_rsc = is_payload_request(pathname, request.headers.get("accept"))
        if pathname.endswith(RSC_SUFFIX):
            pathname = pathname[: -len(RSC_SUFFIX)] or "/"

        middleware_headers: tuple[tuple[str, str], ...] = ()
        rewrite_status: int | None = None
        if self.gate is not None:
            result = await self.gate.run(request, pathname)
            if result.response is not None:
                return result.response
            middleware_headers = result.headers
            if result.action == "rewrite" and result.rewrite_path is not None:
                pathname = result.rewrite_path
                rewrite_status = result.status
            if result.request_headers:
                overridden = request.headers.with_overrides(result.request_headers)
                set_request_headers(overridden, parse_cookies(overridden.get("cookie", "")))
                request = request.with_headers(overridden)

        if pathname == config.image_path:
            return self._image_redirect(request, query)

        set_navigation(pathname, query)

        if is_action_request(request):
            response = await handle_action(
                request,
                self.actions,
                self.settings,
                pathname=pathname,
                search_params=query,
                allowed_origins=config.allowed_origins,
                max_body_size=config.max_action_body_size,
            )
            return response.with_headers(middleware_headers)

        response = await self._route(request, ctx, pathname, query, is_rsc=is_rsc)
        response = response.with_cookies(take_pending_cookies())
        if rewrite_status is not None:
            response = response.with_status(rewrite_status)
        return response.with_headers(middleware_headers)

    def _rewrite(
        self,
        pathname: str,
        query: QueryParams,
        rules: tuple[RewriteRule, ...],
        ctx: RequestContext,
    ) -> str | tuple[str, QueryParams] | None:
        """Apply the first matching rewrite.

        Returns the destination itself when it is external (to be proxied),
        the new pathname and query otherwise, ``None`` when nothing matched.
        """
        if not rules:
            return None
        destination = match_rewrite(pathname, rules, ctx)
        if destination is None:
            return None
        if is_external_url(destination):
            return destination
        parts = urlsplit(destination)
        return parts.path or "/", _merge_query(parts.query, query)

    def _image_redirect(self, request: Request, query: QueryParams) -> Response:
        raw = query.get("url")
        if not raw:
            return Response.text_response("Missing url parameter", 400)
        target = raw.replace("\\", "/")
        if not target.startswith("/") or target.startswith("//"):
            return Response.text_response("Only relative URLs allowed", 400)
        return Response.redirect(absolute_location(request, target), 302)

    async def _route(
        self,
        request: Request,
        ctx: RequestContext,
        pathname: str,
        query: QueryParams,
        *,
        is_rsc: bool,
    ) -> AnyResponse:
        """The normal-route branch: rewrites, match, then handler or page."""
        rewrites = self.config.rewrites
        table = self.settings.table

        rewritten = self._rewrite(pathname, query, rewrites.after_files, ctx)
        if isinstance(rewritten, str):
            return await self._proxy(request, rewritten)
        if rewritten is not None:
            pathname, query = rewritten

        matched: RouteMatch | None = match_route(pathname, table)
        if matched is None:
            rewritten = self._rewrite(pathname, query, rewrites.fallback, ctx)
            if isinstance(rewritten, str):
                return await self._proxy(request, rewritten)
            if rewritten is not None:
                pathname, query = rewritten
                matched = match_route(pathname, table)

        if matched is None:
            logger.debug("No route for %s %s", request.method, pathname)
            set_navigation(pathname, query)
            return await render_access_fallback(None, 404, self.settings, is_rsc=is_rsc)

        route, params = matched.route, matched.params
        set_navigation(pathname, query, params)

        handler = route.handler
        if handler is not None:
            return await handle_route_handler(request, route, handler, params)

        return await render_page(
            request,
            route,
            params,
            self.settings,
            pathname=pathname,
            search_params=query,
            is_rsc=is_rsc,
        )

"""External rewrite proxy.

A rewrite whose destination is an absolute URL is served by forwarding
the request upstream with httpx. Credentials and internal headers never
leave the server, redirects are passed through rather than followed, and
the upstream gets a hard timeout.
"""

import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from canopy.http.request import Request
from canopy.http.response import Response

logger = logging.getLogger("canopy.rules")

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# Never forwarded to a third-party origin
_STRIPPED_REQUEST_HEADERS = frozenset(
    {"connection", "cookie", "authorization", "x-api-key", "proxy-authorization", "host"}
)

# httpx hands back a decoded body, so the framing headers no longer apply
_RECOMPUTED_RESPONSE_HEADERS = frozenset({"content-length", "content-encoding", "content-type"})


def build_target_url(destination: str, query: list[tuple[str, str]]) -> str:
    """Merge the original query into *destination*; destination keys win."""
    parts = urlsplit(destination)
    target_query = parse_qsl(parts.query, keep_blank_values=True)
    present = {key for key, _ in target_query}
    merged = [*target_query, *((k, v) for k, v in query if k not in present)]
    return urlunsplit(parts._replace(query=urlencode(merged)))


async def proxy_external_request(
    request: Request,
    destination: str,
    *,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Response:
    """Forward *request* to *destination* and return the upstream response.

    Timeout -> 504 ``Gateway Timeout``; any other transport failure ->
    502 ``Bad Gateway``.
    """
    target = build_target_url(destination, request.query.items_list())
    target_host = urlsplit(target).netloc

    headers = [
        (name, value)
        for name, value in request.headers.pairs()
        if name not in _STRIPPED_REQUEST_HEADERS and not name.startswith("x-middleware-")
    ]
    headers.append(("host", target_host))

    content = None
    if request.method not in ("GET", "HEAD"):
        content = await request.body()

    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
            transport=transport,
        ) as client:
            upstream = await client.request(request.method, target, headers=headers, content=content)
    except httpx.TimeoutException:
        logger.error("External rewrite proxy timeout: %s", target)
        return Response.text_response("Gateway Timeout", 504)
    except (httpx.HTTPError, httpx.InvalidURL):
        logger.exception("External rewrite proxy error: %s", target)
        return Response.text_response("Bad Gateway", 502)

    response_headers = tuple(
        (name, value)
        for name, value in upstream.headers.multi_items()
        if name.lower() not in HOP_BY_HOP_HEADERS
        and name.lower() not in _RECOMPUTED_RESPONSE_HEADERS
    )
    return Response(
        body=upstream.content,
        status=upstream.status_code,
        content_type=upstream.headers.get("content-type", "application/octet-stream"),
        headers=response_headers,
    )

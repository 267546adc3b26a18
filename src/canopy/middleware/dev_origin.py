"""Cross-origin guard for the development server.

A dev server has no auth and serves source-level detail, so pages on
other sites must not be able to read from it. Only loopback origins and
the configured ``allowed_dev_origins`` get through.
"""

import logging
from collections.abc import Mapping, Sequence
from urllib.parse import urlsplit

from canopy.http.response import Response
from canopy.middleware.csrf import is_origin_allowed

logger = logging.getLogger("canopy.server")

_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "[::1]"})


def _is_loopback(hostname: str) -> bool:
    return hostname in _LOOPBACK_HOSTS or hostname.endswith(".localhost")


def dev_block_reason(
    headers: Mapping[str, str],
    allowed_dev_origins: Sequence[str] = (),
) -> str | None:
    """Why the request must be blocked, or ``None`` to let it through."""
    if headers.get("sec-fetch-site") == "cross-site" and headers.get("sec-fetch-mode") == "no-cors":
        return "cross-site no-cors request"

    origin = headers.get("origin")
    if not origin or origin == "null":
        return None

    try:
        parts = urlsplit(origin)
        hostname = (parts.hostname or "").lower()
        origin_host = parts.netloc.lower()
    except ValueError:
        return f"invalid origin {origin!r}"
    if not hostname:
        return f"invalid origin {origin!r}"

    if _is_loopback(hostname):
        return None

    host = (headers.get("host") or "").split(",")[0].strip().lower()
    if host and origin_host == host:
        return None
    if allowed_dev_origins and (
        is_origin_allowed(hostname, allowed_dev_origins)
        or is_origin_allowed(origin_host, allowed_dev_origins)
    ):
        return None
    return f"cross-origin request from {origin_host}"


def validate_dev_request(
    headers: Mapping[str, str],
    allowed_dev_origins: Sequence[str] = (),
    *,
    path: str = "",
) -> Response | None:
    """Return a 403 response for a blocked dev request, else ``None``."""
    reason = dev_block_reason(headers, allowed_dev_origins)
    if reason is None:
        return None
    logger.warning("Blocked dev request: %s (%s)", reason, path)
    return Response.text_response("Forbidden", 403)

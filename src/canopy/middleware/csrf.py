"""Origin check for mutation actions.

Actions carry a custom ``x-rsc-action`` header, which cross-origin forms
cannot set, so the only remaining check is that a browser-supplied
``Origin`` agrees with the ``Host`` the request was sent to:

- no ``Origin`` (or ``"null"``) passes
- an ``Origin`` that is not a URL is rejected
- ``Host`` is the only trusted source; ``X-Forwarded-Host`` is client
  controlled and never consulted
- extra origins may be allowed, including ``*.example.com`` wildcards
"""

import logging
from collections.abc import Mapping, Sequence
from urllib.parse import urlsplit

from canopy.http.response import Response

logger = logging.getLogger("canopy.server")

_DEFAULT_PORTS = {"http": "80", "https": "443"}


def _origin_host(origin: str) -> str | None:
    """The ``host[:port]`` of *origin*, or ``None`` if it is not a URL."""
    try:
        parts = urlsplit(origin)
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None
    host = parts.hostname.lower()
    if ":" in host:
        host = f"[{host}]"
    if port is not None and str(port) != _DEFAULT_PORTS.get(parts.scheme.lower()):
        host = f"{host}:{port}"
    return host


def is_origin_allowed(origin_host: str, allowed: Sequence[str]) -> bool:
    """Whether *origin_host* is in *allowed* (``*.domain`` matches subdomains)."""
    for pattern in allowed:
        if pattern.startswith("*."):
            if origin_host == pattern[2:] or origin_host.endswith(pattern[1:]):
                return True
        elif origin_host == pattern:
            return True
    return False


def _forbidden() -> Response:
    return Response.text_response("Forbidden", 403)


def validate_action_origin(
    headers: Mapping[str, str],
    allowed_origins: Sequence[str] = (),
) -> Response | None:
    """Return a 403 response when the action's ``Origin`` is foreign, else ``None``."""
    origin = headers.get("origin")
    if not origin or origin == "null":
        return None

    origin_host = _origin_host(origin)
    if origin_host is None:
        return _forbidden()

    host = (headers.get("host") or "").split(",")[0].strip().lower()
    if not host:
        return None
    if origin_host == host:
        return None
    if allowed_origins and is_origin_allowed(origin_host, allowed_origins):
        return None

    logger.warning(
        "CSRF origin mismatch: origin %r does not match host %r; blocking action request",
        origin_host,
        host,
    )
    return _forbidden()

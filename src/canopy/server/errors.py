"""Error responses for failures that escape the request pipeline.

Protocol errors (``HTTPError``) become plain-text responses with their
status and headers. Anything else is logged and answered with a 500.
View errors never get here when an error view exists; the pipeline
renders that instead.
"""

import logging

from canopy.errors import HTTPError
from canopy.http.request import Request
from canopy.http.response import Response

logger = logging.getLogger("canopy.server")


def handle_http_error(exc: HTTPError, request: Request, *, debug: bool = False) -> Response:
    """Map an HTTPError to a plain-text Response."""
    logger.debug("%d %s %s - %s", exc.status, request.method, request.path, exc.detail)
    detail = exc.detail or f"Error {exc.status}"
    if debug and exc.detail:
        detail = f"{exc.status}: {exc.detail}"
    response = Response.text_response(detail, exc.status)
    return response.with_headers(exc.headers)


def handle_internal_error(exc: Exception, request: Request, *, debug: bool = False) -> Response:
    """Handle unexpected exceptions as 500 errors."""
    logger.error("500 %s %s", request.method, request.path, exc_info=exc)
    if debug:
        return Response.text_response(f"Internal Server Error: {type(exc).__name__}: {exc}", 500)
    return Response.text_response("Internal Server Error", 500)

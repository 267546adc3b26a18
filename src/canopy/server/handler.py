"""ASGI handler - translates ASGI scope/messages to canopy types.

The only component that touches raw ASGI directly. Converts the scope to
a typed Request, runs it through the pipeline, and sends the response
back through ASGI send().

Request-scoped state (headers, cookies, navigation) is bound for the
whole exchange, sending included: streamed views keep reading it after
the pipeline has returned.
"""

from canopy._internal.asgi import Receive, Scope, Send
from canopy.context import request_scope
from canopy.errors import HTTPError
from canopy.http.request import Request
from canopy.http.response import AnyResponse, StreamingResponse
from canopy.server.errors import handle_http_error, handle_internal_error
from canopy.server.pipeline import RequestPipeline
from canopy.server.sender import send_response, send_streaming_response


async def handle_request(
    scope: Scope,
    receive: Receive,
    send: Send,
    *,
    pipeline: RequestPipeline,
) -> None:
    """Process a single HTTP request through the full pipeline."""
    if scope["type"] != "http":
        return

    request = Request.from_asgi(scope, receive)
    debug = pipeline.config.debug

    with request_scope(request.headers, request.cookies, request.path, request.query):
        response: AnyResponse
        try:
            response = await pipeline.handle(request)
        except HTTPError as exc:
            response = handle_http_error(exc, request, debug=debug)
        except Exception as exc:
            response = handle_internal_error(exc, request, debug=debug)

        head = request.method == "HEAD"
        if isinstance(response, StreamingResponse):
            await send_streaming_response(response, send, head=head)
        else:
            await send_response(response, send, head=head)

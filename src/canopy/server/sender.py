"""ASGI response sending - translates canopy Response types to ASGI messages.

Handles both standard single-body responses and chunked streaming responses.
"""

import logging
from collections.abc import Iterable

from canopy._internal.asgi import Send
from canopy.http.response import Response, StreamingResponse

logger = logging.getLogger("canopy.server")


def _body_allowed(status: int) -> bool:
    """Whether an HTTP status code permits a response body."""
    # RFC: 1xx, 204, and 304 responses do not include a message body.
    return not (100 <= status < 200 or status in {204, 304})


def _raw_headers(
    response: Response | StreamingResponse,
    extra: Iterable[tuple[bytes, bytes]] = (),
) -> list[tuple[bytes, bytes]]:
    raw_headers: list[tuple[bytes, bytes]] = [
        (b"content-type", response.content_type.encode("latin-1")),
        *extra,
    ]
    for name, value in response.headers:
        raw_headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))
    raw_headers.extend(
        (b"set-cookie", cookie.to_header_value().encode("latin-1")) for cookie in response.cookies
    )
    return raw_headers


async def send_response(response: Response, send: Send, *, head: bool = False) -> None:
    """Translate a canopy Response into ASGI send() calls.

    With *head*, the ``Content-Length`` of the full body is sent but the
    body itself is not.
    """
    body = response.body_bytes if _body_allowed(response.status) else b""
    raw_headers = _raw_headers(response)
    if _body_allowed(response.status):
        raw_headers.append((b"content-length", str(len(body)).encode("latin-1")))

    await send(
        {
            "type": "http.response.start",
            "status": response.status,
            "headers": raw_headers,
        }
    )
    await send(
        {
            "type": "http.response.body",
            "body": b"" if head else body,
        }
    )


async def send_streaming_response(
    response: StreamingResponse,
    send: Send,
    *,
    head: bool = False,
) -> None:
    """Send a streaming response via chunked transfer encoding.

    Sends headers immediately, then each chunk as an ASGI body
    message with ``more_body=True``. Closes with an empty body.
    On mid-stream error, logs it, emits an HTML comment for HTML
    responses, and closes.
    """
    raw_headers = _raw_headers(response, [(b"transfer-encoding", b"chunked")])

    # No content-length: chunked transfer encoding signals body boundaries
    await send(
        {
            "type": "http.response.start",
            "status": response.status,
            "headers": raw_headers,
        }
    )

    def _encode_chunk(chunk: str | bytes) -> bytes:
        return chunk.encode("utf-8") if isinstance(chunk, str) else chunk

    try:
        if not head:
            async for chunk in response.chunks:
                if chunk:
                    await send(
                        {
                            "type": "http.response.body",
                            "body": _encode_chunk(chunk),
                            "more_body": True,
                        }
                    )
    except Exception:
        logger.exception("Error while streaming response")
        if response.content_type.startswith("text/html"):
            await send(
                {
                    "type": "http.response.body",
                    "body": b"<!-- canopy: render error -->",
                    "more_body": True,
                }
            )
    finally:
        aclose = getattr(response.chunks, "aclose", None)
        if aclose is not None:
            await aclose()

    # Close the stream
    await send(
        {
            "type": "http.response.body",
            "body": b"",
            "more_body": False,
        }
    )

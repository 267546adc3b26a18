"""Error digests and client-safe error values.

A digest is a short, stable identifier for a failure. Control signals
carry their own digest (see ``canopy.signals``); other errors get a djb2
hash of their message and traceback, so a generic message shown to the
client can still be correlated with the server log.
"""

import traceback
from typing import Any

from canopy.signals import ControlSignal

PRODUCTION_ERROR_MESSAGE = (
    "An error occurred in the Server Components render. "
    "The specific message is omitted in production builds to avoid leaking sensitive details. "
    "A digest property is included on this error instance which may provide additional "
    "details about the nature of the error."
)


def string_hash(text: str) -> str:
    """djb2 over *text* (last character first), as an unsigned 32-bit decimal string."""
    value = 5381
    for ch in reversed(text):
        value = ((value * 33) ^ ord(ch)) & 0xFFFFFFFF
    return str(value)


def error_digest(exc: BaseException) -> str:
    """Digest for *exc*: its signal digest, or a hash of message and traceback."""
    if isinstance(exc, ControlSignal):
        return exc.digest
    stack = "".join(traceback.format_exception(exc))
    return string_hash(str(exc) + stack)


def sanitize_error(exc: BaseException, *, debug: bool) -> dict[str, Any]:
    """The ``error`` value handed to error views and action callers.

    Signals keep their digest and message. Outside debug mode every other
    message is replaced by a generic one.
    """
    if isinstance(exc, ControlSignal):
        return {"message": str(exc), "digest": exc.digest}
    digest = error_digest(exc)
    if debug:
        return {"message": str(exc) or type(exc).__name__, "digest": digest}
    return {"message": PRODUCTION_ERROR_MESSAGE, "digest": digest}

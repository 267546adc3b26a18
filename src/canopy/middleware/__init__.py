"""Middleware - one gatekeeping function ahead of routing.

A gate is any callable matching:
    async def gate(request: Request) -> Response | None

Helpers for gate functions:
    next_response -- continue, optionally overriding request headers
    rewrite_response -- serve another path under the same URL
    redirect_response -- send the client elsewhere

Request guards applied by the pipeline:
    validate_action_origin -- Origin/Host check for mutation actions
    validate_dev_request -- cross-origin guard in debug mode
"""

from canopy.middleware.csrf import is_origin_allowed, validate_action_origin
from canopy.middleware.dev_origin import validate_dev_request
from canopy.middleware.gate import (
    MiddlewareGate,
    MiddlewareResult,
    matches_pattern,
    next_response,
    redirect_response,
    rewrite_response,
)

__all__ = [
    "MiddlewareGate",
    "MiddlewareResult",
    "is_origin_allowed",
    "matches_pattern",
    "next_response",
    "redirect_response",
    "rewrite_response",
    "validate_action_origin",
    "validate_dev_request",
]

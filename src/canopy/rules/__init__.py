"""Config rules - redirects, rewrites, and response headers.

Evaluated before routing against an immutable ``RequestContext``:

    RedirectRule / RewriteRule / HeaderRule -- rule types (``canopy.rules.types``)
    match_redirect / match_rewrite / match_headers -- rule evaluation
    proxy_external_request -- serve external rewrites through httpx
"""

from canopy.rules.conditions import RequestContext, check_has_conditions
from canopy.rules.engine import (
    is_external_url,
    match_headers,
    match_redirect,
    match_rewrite,
    sanitize_destination,
)
from canopy.rules.types import Condition, HeaderRule, RedirectRule, RewriteRule, RewriteRules

__all__ = [
    "Condition",
    "HeaderRule",
    "RedirectRule",
    "RequestContext",
    "RewriteRule",
    "RewriteRules",
    "check_has_conditions",
    "is_external_url",
    "match_headers",
    "match_redirect",
    "match_rewrite",
    "sanitize_destination",
]

"""Redirect, rewrite and header rule matching.

Redirects and rewrites short-circuit on the first matching rule whose
conditions hold; header rules accumulate across every match.
"""

import re
from collections.abc import Iterable

from canopy.rules.conditions import RequestContext, check_has_conditions
from canopy.rules.patterns import escape_header_source, match_config_pattern, safe_compile
from canopy.rules.types import HeaderRule, RedirectRule, RewriteRule

_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*:", re.IGNORECASE)
_LEADING_SLASHES = re.compile(r"^[\\/]+")


def interpolate_destination(destination: str, params: dict[str, str]) -> str:
    """Substitute ``:name*``, ``:name+`` and ``:name`` (first occurrence each)."""
    for key, value in params.items():
        destination = destination.replace(f":{key}*", value, 1)
        destination = destination.replace(f":{key}+", value, 1)
        destination = destination.replace(f":{key}", value, 1)
    return destination


def sanitize_destination(destination: str) -> str:
    """Collapse a leading run of slashes/backslashes into one slash.

    ``//evil.com`` and ``\\/evil.com`` are protocol-relative to a browser;
    both become ``/evil.com``. Fully-qualified http(s) URLs are untouched.
    """
    if destination.startswith(("http://", "https://")):
        return destination
    return _LEADING_SLASHES.sub("/", destination)


def is_external_url(url: str) -> bool:
    """Any URL with a scheme (http:, data:, javascript:, ...) or ``//`` prefix."""
    return bool(_SCHEME.match(url)) or url.startswith("//")


def match_redirect(
    pathname: str,
    rules: Iterable[RedirectRule],
    ctx: RequestContext | None = None,
) -> tuple[str, bool] | None:
    """First matching redirect as ``(destination, permanent)``."""
    for rule in rules:
        params = match_config_pattern(pathname, rule.source)
        if params is None:
            continue
        if ctx is not None and not check_has_conditions(rule.has, rule.missing, ctx):
            continue
        destination = interpolate_destination(rule.destination, params)
        return sanitize_destination(destination), rule.permanent
    return None


def match_rewrite(
    pathname: str,
    rules: Iterable[RewriteRule],
    ctx: RequestContext | None = None,
) -> str | None:
    """First matching rewrite destination, sanitized."""
    for rule in rules:
        params = match_config_pattern(pathname, rule.source)
        if params is None:
            continue
        if ctx is not None and not check_has_conditions(rule.has, rule.missing, ctx):
            continue
        return sanitize_destination(interpolate_destination(rule.destination, params))
    return None


def match_headers(
    pathname: str,
    rules: Iterable[HeaderRule],
    ctx: RequestContext | None = None,
) -> list[tuple[str, str]]:
    """Every header from every rule whose source matches *pathname*."""
    result: list[tuple[str, str]] = []
    for rule in rules:
        compiled = safe_compile(f"^{escape_header_source(rule.source)}$")
        if compiled is None or compiled.match(pathname) is None:
            continue
        if ctx is not None and not check_has_conditions(rule.has, rule.missing, ctx):
            continue
        result.extend(rule.headers)
    return result

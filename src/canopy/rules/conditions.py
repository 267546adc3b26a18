"""``has`` / ``missing`` condition evaluation for config rules."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from canopy.http.headers import Headers
from canopy.http.query import QueryParams
from canopy.rules.patterns import safe_compile
from canopy.rules.types import Condition

if TYPE_CHECKING:
    from canopy.http.request import Request


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Immutable per-request bundle rules are evaluated against.

    Built once per request, before any rule runs, and never mutated.
    """

    headers: Headers
    cookies: Mapping[str, str]
    query: QueryParams
    host: str

    @classmethod
    def from_request(cls, request: Request) -> RequestContext:
        """Build from a request; ``host`` is the Host header without its port."""
        return cls(
            headers=request.headers,
            cookies=request.cookies,
            query=request.query,
            host=strip_port(request.host),
        )


def strip_port(host: str) -> str:
    if host.startswith("["):
        end = host.find("]")
        return host[: end + 1] if end != -1 else host
    return host.split(":", 1)[0]


def _value_matches(expected: str | None, actual: str) -> bool:
    if expected is None:
        return True
    compiled = safe_compile(expected)
    if compiled is not None:
        return compiled.search(actual) is not None
    return actual == expected


def check_condition(condition: Condition, ctx: RequestContext) -> bool:
    """Whether a single condition holds for *ctx*."""
    match condition.type:
        case "header":
            value = ctx.headers.get(condition.key)
            return value is not None and _value_matches(condition.value, value)
        case "cookie":
            value = ctx.cookies.get(condition.key)
            return value is not None and _value_matches(condition.value, value)
        case "query":
            value = ctx.query.get(condition.key)
            return value is not None and _value_matches(condition.value, value)
        case "host":
            if condition.value is not None:
                return _value_matches(condition.value, ctx.host)
            return ctx.host == condition.key
    return False


def check_has_conditions(
    has: Iterable[Condition],
    missing: Iterable[Condition],
    ctx: RequestContext,
) -> bool:
    """A rule applies when every ``has`` holds and no ``missing`` does."""
    if not all(check_condition(c, ctx) for c in has):
        return False
    return not any(check_condition(c, ctx) for c in missing)

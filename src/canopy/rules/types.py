"""Config rule types - redirects, rewrites, headers, and their conditions.

All frozen: rules are supplied once at startup and read concurrently by
every request.
"""

from dataclasses import dataclass, field
from typing import Literal

type ConditionType = Literal["header", "cookie", "query", "host"]


@dataclass(frozen=True, slots=True)
class Condition:
    """A ``has``/``missing`` predicate.

    ``value`` is tested as a regular expression when it compiles safely,
    otherwise compared exactly. ``None`` means "key is present".
    """

    type: ConditionType
    key: str
    value: str | None = None


@dataclass(frozen=True, slots=True)
class RedirectRule:
    source: str
    destination: str
    permanent: bool = False
    has: tuple[Condition, ...] = ()
    missing: tuple[Condition, ...] = ()


@dataclass(frozen=True, slots=True)
class RewriteRule:
    source: str
    destination: str
    has: tuple[Condition, ...] = ()
    missing: tuple[Condition, ...] = ()


@dataclass(frozen=True, slots=True)
class HeaderRule:
    """Response headers applied to every path matching ``source``."""

    source: str
    headers: tuple[tuple[str, str], ...]
    has: tuple[Condition, ...] = ()
    missing: tuple[Condition, ...] = ()


@dataclass(frozen=True, slots=True)
class RewriteRules:
    """Rewrite rules grouped by when they run relative to routing.

    - ``before_files``: after redirects, before middleware.
    - ``after_files``: after middleware, before route matching.
    - ``fallback``: only when no route matched.
    """

    before_files: tuple[RewriteRule, ...] = field(default_factory=tuple)
    after_files: tuple[RewriteRule, ...] = field(default_factory=tuple)
    fallback: tuple[RewriteRule, ...] = field(default_factory=tuple)

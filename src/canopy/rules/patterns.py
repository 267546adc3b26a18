"""Config rule source patterns.

Redirect, rewrite and header rules use a richer source syntax than the
route table:

    /blog/:slug              one segment
    /docs/:path*             zero or more trailing segments
    /docs/:path+             one or more trailing segments
    /post/:id(\\d+)           inline constraint
    /feed/:path*.xml         catch-all followed by a literal suffix
    /(.*)/legacy             raw regular expression

Anything user-supplied that ends up compiled as a regex goes through
``safe_compile()``, which rejects nested quantifiers such as ``(a+)+``
before they can cause catastrophic backtracking.
"""

import logging
import re
from functools import lru_cache

logger = logging.getLogger("canopy.rules")

_QUANTIFIED_SEGMENT = re.compile(r":\w+[*+][^/]")
_SOURCE_TOKEN = re.compile(r":(\w+)|[.]|[^:.]+")
_CATCH_ALL_SUFFIX = re.compile(r":(\w+)(\*|\+)$")
_PLACEHOLDER = "\ue000"
_HEADER_GROUP = re.compile(r"\(([^)]+)\)")
_HEADER_TOKEN = re.compile(rf"{_PLACEHOLDER}G(\d+){_PLACEHOLDER}|:\w+|[.+?*]|[^.+?*:{_PLACEHOLDER}]+")
_HEADER_CONSTRAINT = re.compile(rf"{_PLACEHOLDER}G(\d+){_PLACEHOLDER}")


def is_safe_regex(pattern: str) -> bool:
    """Heuristic ReDoS check: reject a quantified group containing a quantifier.

    Escapes and character classes are skipped. ``?`` counts as a quantifier
    unless it follows ``+``, ``*``, ``?`` or ``}`` (lazy modifier). A ``?``
    after a group is allowed even when the group is quantified, since it
    only doubles the paths instead of multiplying them.
    """
    quantified: list[bool] = [False]
    depth = 0
    i = 0
    n = len(pattern)

    while i < n:
        ch = pattern[i]

        if ch == "\\":
            i += 2
            continue

        if ch == "[":
            i += 1
            while i < n and pattern[i] != "]":
                if pattern[i] == "\\":
                    i += 1
                i += 1
            i += 1
            continue

        if ch == "(":
            depth += 1
            if len(quantified) <= depth:
                quantified.append(False)
            else:
                quantified[depth] = False
            i += 1
            continue

        if ch == ")":
            had_quantifier = depth > 0 and quantified[depth]
            if depth > 0:
                depth -= 1
            nxt = pattern[i + 1] if i + 1 < n else ""
            if nxt in ("+", "*", "{"):
                if had_quantifier:
                    return False
                quantified[depth] = True
            i += 1
            continue

        if ch in ("+", "*"):
            if depth > 0:
                quantified[depth] = True
            i += 1
            continue

        if ch == "?":
            prev = pattern[i - 1] if i > 0 else ""
            if prev not in ("+", "*", "?", "}") and depth > 0:
                quantified[depth] = True
            i += 1
            continue

        if ch == "{":
            j = i + 1
            while j < n and (pattern[j].isdigit() or pattern[j] == ","):
                j += 1
            if j < n and pattern[j] == "}" and j > i + 1:
                if depth > 0:
                    quantified[depth] = True
                i = j + 1
                continue

        i += 1

    return True


@lru_cache(maxsize=512)
def safe_compile(pattern: str) -> re.Pattern[str] | None:
    """Compile *pattern*, or return ``None`` if it is unsafe or invalid.

    Rejections are logged once per pattern (the result is cached) so
    misconfigured rules are visible without flooding the log.
    """
    if not is_safe_regex(pattern):
        logger.warning(
            "Ignoring potentially unsafe regex pattern (ReDoS risk): %s. "
            "Patterns with nested quantifiers (e.g. (a+)+) can cause catastrophic "
            "backtracking; simplify the pattern to avoid nested repetition.",
            pattern,
        )
        return None
    try:
        return re.compile(pattern)
    except re.error:
        return None


def _extract_constraint(source: str, pos: int) -> tuple[str | None, int]:
    """Consume a balanced ``(...)`` group at *pos*; return (contents, new pos)."""
    if pos >= len(source) or source[pos] != "(":
        return None, pos
    depth = 1
    i = pos + 1
    while i < len(source) and depth > 0:
        if source[i] == "(":
            depth += 1
        elif source[i] == ")":
            depth -= 1
        i += 1
    if depth != 0:
        return None, pos
    return source[pos + 1 : i - 1], i


def _source_to_regex(source: str) -> tuple[str, list[str]]:
    """Translate a regex-style source into a regex body and its param names."""
    names: list[str] = []
    out: list[str] = []
    pos = 0
    while pos < len(source):
        tok = _SOURCE_TOKEN.match(source, pos)
        if tok is None:
            # A bare ':' not followed by a name: literal
            out.append(re.escape(source[pos]))
            pos += 1
            continue
        pos = tok.end()
        name = tok.group(1)
        if name is None:
            out.append("\\." if tok.group(0) == "." else tok.group(0))
            continue
        names.append(name)
        if source.startswith(("*", "+"), pos):
            quantifier = source[pos]
            constraint, pos = _extract_constraint(source, pos + 1)
            if constraint is not None:
                out.append(f"({constraint})")
            else:
                out.append("(.*)" if quantifier == "*" else "(.+)")
        else:
            constraint, pos = _extract_constraint(source, pos)
            out.append(f"({constraint})" if constraint is not None else "([^/]+)")
    return "".join(out), names


def match_config_pattern(pathname: str, source: str) -> dict[str, str] | None:
    """Match *pathname* against a rule *source*; return captured params or ``None``.

    Catch-all values are returned as the remaining path string (``a/b/c``),
    never split, so destination interpolation can splice them back in.
    """
    if "(" in source or "\\" in source or _QUANTIFIED_SEGMENT.search(source):
        body, names = _source_to_regex(source)
        compiled = safe_compile(f"^{body}$")
        if compiled is None:
            return None
        m = compiled.match(pathname)
        if m is None:
            return None
        return {name: (m.group(i + 1) or "") for i, name in enumerate(names)}

    catch_all = _CATCH_ALL_SUFFIX.search(source)
    if catch_all is not None:
        name, quantifier = catch_all.group(1), catch_all.group(2)
        prefix = source[: source.rfind(":")].rstrip("/")
        if not pathname.startswith(prefix):
            return None
        rest = pathname[len(prefix) :]
        if rest and not rest.startswith("/") and prefix:
            return None
        if quantifier == "+" and rest in ("", "/"):
            return None
        return {name: rest[1:] if rest.startswith("/") else rest}

    parts = source.split("/")
    path_parts = pathname.split("/")
    if len(parts) != len(path_parts):
        return None
    params: dict[str, str] = {}
    for part, value in zip(parts, path_parts, strict=True):
        if part.startswith(":"):
            params[part[1:]] = value
        elif part != value:
            return None
    return params


def escape_header_source(source: str) -> str:
    """Convert a header rule source into a regex body (unanchored).

    Inline ``(...)`` groups are lifted out first and restored verbatim;
    ``:name`` becomes one segment (or its following group as constraint),
    ``.``/``+``/``?`` are escaped and ``*`` becomes ``.*``.
    """
    groups: list[str] = []

    def _lift(m: re.Match[str]) -> str:
        groups.append(m.group(1))
        return f"{_PLACEHOLDER}G{len(groups) - 1}{_PLACEHOLDER}"

    text = _HEADER_GROUP.sub(_lift, source)
    out: list[str] = []
    pos = 0
    while pos < len(text):
        m = _HEADER_TOKEN.match(text, pos)
        if m is None:
            out.append(re.escape(text[pos]))
            pos += 1
            continue
        pos = m.end()
        tok = m.group(0)
        if m.group(1) is not None:
            out.append(f"({groups[int(m.group(1))]})")
        elif tok.startswith(":"):
            constraint = _HEADER_CONSTRAINT.match(text, pos)
            if constraint is not None:
                pos = constraint.end()
                out.append(f"({groups[int(constraint.group(1))]})")
            else:
                out.append("[^/]+")
        elif tok == ".":
            out.append("\\.")
        elif tok == "+":
            out.append("\\+")
        elif tok == "?":
            out.append("\\?")
        elif tok == "*":
            out.append(".*")
        else:
            out.append(tok)
    return "".join(out)

"""Pathname decoding and normalization.

Runs before any rule or route sees the path, so every later stage works
on one canonical form: single-decoded, ``.``/``..`` resolved (clamped at
the root), duplicate slashes collapsed, trailing slash preserved.
"""

from urllib.parse import unquote

from canopy.errors import MalformedPathError

_HEX = frozenset("0123456789abcdefABCDEF")


def decode_path(raw: str) -> str:
    """Percent-decode *raw* exactly once.

    Raises ``MalformedPathError`` for a truncated or non-hex escape or
    bytes that are not valid UTF-8, instead of guessing.
    """
    i = raw.find("%")
    while i != -1:
        if not set(raw[i + 1 : i + 3]) <= _HEX or i + 3 > len(raw):
            raise MalformedPathError()
        i = raw.find("%", i + 3)
    try:
        return unquote(raw, errors="strict")
    except UnicodeDecodeError:
        raise MalformedPathError() from None


def normalize_path(pathname: str) -> str:
    """Collapse ``//``, resolve ``.`` and ``..``, keep one leading slash.

    A trailing slash on the input survives so the trailing-slash policy
    can act on it later.
    """
    if (
        pathname.startswith("/")
        and "//" not in pathname
        and "/." not in pathname
    ):
        return pathname

    resolved: list[str] = []
    for part in pathname.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if resolved:
                resolved.pop()
            continue
        resolved.append(part)

    result = "/" + "/".join(resolved)
    if pathname.endswith("/") and result != "/":
        result += "/"
    return result

"""Immutable query string parameters.

Implements ``Mapping[str, str]``; ``to_dict()`` gives the shape handed to
pages as ``search_params`` (repeated keys become lists).
"""

from collections.abc import Iterator, Mapping
from urllib.parse import parse_qsl, urlencode


class QueryParams(Mapping[str, str]):
    """Immutable query string parameters, in arrival order.

    ``__getitem__`` returns the first value for a key.
    ``get_list`` returns all values for a key.
    """

    __slots__ = ("_items", "_raw")

    def __init__(self, query_string: bytes | str = b"") -> None:
        raw = query_string.decode("latin-1") if isinstance(query_string, bytes) else query_string
        object.__setattr__(self, "_raw", raw)
        object.__setattr__(self, "_items", tuple(parse_qsl(raw, keep_blank_values=True)))

    def __getitem__(self, key: str) -> str:
        for name, value in self._items:
            if name == key:
                return value
        raise KeyError(key)

    def __iter__(self) -> Iterator[str]:
        return iter(dict.fromkeys(name for name, _ in self._items))

    def __len__(self) -> int:
        return len(dict.fromkeys(name for name, _ in self._items))

    def __repr__(self) -> str:
        return f"QueryParams({self._raw!r})"

    def get_list(self, key: str) -> list[str]:
        """Return all values for *key*."""
        return [value for name, value in self._items if name == key]

    def items_list(self) -> list[tuple[str, str]]:
        """Every ``(key, value)`` pair including repeats."""
        return list(self._items)

    def to_dict(self) -> dict[str, str | list[str]]:
        """Collapse to a dict; repeated keys are promoted to lists."""
        out: dict[str, str | list[str]] = {}
        for name, value in self._items:
            if name in out:
                existing = out[name]
                out[name] = [*existing, value] if isinstance(existing, list) else [existing, value]
            else:
                out[name] = value
        return out

    @property
    def raw(self) -> str:
        """The undecoded query string (without ``?``)."""
        return self._raw

    @staticmethod
    def encode(items: list[tuple[str, str]]) -> str:
        return urlencode(items)

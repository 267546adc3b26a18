"""Payload phase - resolve a view tree into newline-delimited JSON rows.

Each row is ``{"id": n, "model": ...}``. Row 0 is the root; every
``Suspense`` child is deferred to a later row and referenced from its
parent by a lazy marker. Models are plain JSON:

    "text", 42, null                       text and numbers
    {"$": "el", "tag", "props", "children"}  host element
    {"$": "html", "value"}                 raw markup
    {"$": "lazy", "id", "fallback"}        deferred subtree
    {"$": "scope", "depth", "child"}       layout segment scope
    [...]                                  fragment

Pipeline::

    1. Resolve the root, calling components (sync or async) in order
    2. Yield row 0 (errors outside any boundary propagate to the caller)
    3. Resolve the deferred subtrees of this wave concurrently (anyio)
    4. Yield one row per subtree, in the order they were deferred
    5. Repeat with any subtrees deferred by that wave

A deferred subtree that fails is answered by the boundary enclosing its
``Suspense`` when there is one; otherwise its row carries
``{"error": {"digest": ..., "message": ...}}`` instead of a model.
"""

import itertools
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import anyio
from kida.utils.html import Markup

from canopy._internal.invoke import call_with_props, invoke
from canopy.rendering.digest import sanitize_error
from canopy.signals import ControlSignal, HTTPAccessFallbackSignal
from canopy.views.nodes import (
    Element,
    ErrorBoundary,
    Fragment,
    NotFoundBoundary,
    SegmentScope,
    Suspense,
    h,
)

logger = logging.getLogger("canopy.render")

PAYLOAD_CONTENT_TYPE = "text/x-component; charset=utf-8"

_NO_RETURN = object()

type Boundaries = tuple[ErrorBoundary | NotFoundBoundary, ...]


def encode_row(row: dict[str, Any]) -> str:
    return json.dumps(row, separators=(",", ":"), default=str) + "\n"


def _is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, HTTPAccessFallbackSignal) and exc.status == 404


def _json_props(props: dict[str, Any]) -> dict[str, Any]:
    """Host props that survive serialization; callables are dropped."""
    return {k: v for k, v in props.items() if not callable(v)}


@dataclass(frozen=True, slots=True)
class _Deferred:
    id: int
    node: Any
    boundaries: Boundaries


class PayloadRenderer:
    """Resolves one view tree into payload rows. Single use."""

    __slots__ = ("_debug", "_deferred", "_ids")

    def __init__(self, *, debug: bool = False, ids: itertools.count | None = None) -> None:
        self._debug = debug
        self._deferred: list[_Deferred] = []
        self._ids = ids or itertools.count(1)

    def _fork(self) -> "PayloadRenderer":
        """A renderer for one deferred subtree, sharing row ids."""
        return PayloadRenderer(debug=self._debug, ids=self._ids)

    # -- Resolution --

    async def resolve(self, node: Any, boundaries: Boundaries = ()) -> Any:
        """Resolve *node* into its JSON model."""
        match node:
            case None | bool():
                return None
            case Markup():
                return {"$": "html", "value": str(node)}
            case str() | int() | float():
                return node
            case list() | tuple():
                return [await self.resolve(child, boundaries) for child in node]
            case Fragment():
                return [await self.resolve(child, boundaries) for child in node.children]
            case Element() if node.is_component:
                props = dict(node.props)
                if node.children:
                    props["children"] = node.children[0] if len(node.children) == 1 else Fragment(node.children)
                rendered = await invoke(call_with_props, node.type, props)
                return await self.resolve(rendered, boundaries)
            case Element():
                return {
                    "$": "el",
                    "tag": node.type,
                    "props": _json_props(dict(node.props)),
                    "children": [await self.resolve(child, boundaries) for child in node.children],
                }
            case Suspense():
                ref = next(self._ids)
                self._deferred.append(_Deferred(ref, node.child, boundaries))
                return {"$": "lazy", "id": ref, "fallback": await self.resolve(node.fallback, boundaries)}
            case ErrorBoundary():
                mark = len(self._deferred)
                try:
                    return await self.resolve(node.child, (*boundaries, node))
                except ControlSignal:
                    raise
                except Exception as exc:
                    del self._deferred[mark:]
                    return await self._render_error_fallback(node, exc, boundaries)
            case NotFoundBoundary():
                mark = len(self._deferred)
                try:
                    return await self.resolve(node.child, (*boundaries, node))
                except HTTPAccessFallbackSignal as signal:
                    if signal.status != 404:
                        raise
                    del self._deferred[mark:]
                    return await self.resolve(node.fallback, boundaries)
            case SegmentScope():
                return {"$": "scope", "depth": node.depth, "child": await self.resolve(node.child, boundaries)}
        msg = f"Cannot render {type(node).__name__!r} as a view node"
        raise TypeError(msg)

    async def _render_error_fallback(
        self,
        boundary: ErrorBoundary,
        exc: Exception,
        boundaries: Boundaries,
    ) -> Any:
        logger.error(
            "View error caught by %s boundary: %s",
            "global error" if boundary.is_global else "error",
            exc,
            exc_info=exc,
        )
        error = sanitize_error(exc, debug=self._debug)
        return await self.resolve(h(boundary.fallback, {"error": error}), boundaries)

    async def _recover(self, exc: BaseException, boundaries: Boundaries) -> Any:
        """Answer a deferred failure with the innermost enclosing boundary that handles it."""
        for index in range(len(boundaries) - 1, -1, -1):
            boundary = boundaries[index]
            outer = boundaries[:index]
            if isinstance(boundary, NotFoundBoundary) and _is_not_found(exc):
                return await self.resolve(boundary.fallback, outer)
            if (
                isinstance(boundary, ErrorBoundary)
                and isinstance(exc, Exception)
                and not isinstance(exc, ControlSignal)
            ):
                return await self._render_error_fallback(boundary, exc, outer)
        raise exc

    async def _resolve_deferred(
        self,
        item: _Deferred,
        rows: dict[int, dict[str, Any]],
        nested: dict[int, list[_Deferred]],
    ) -> None:
        renderer = self._fork()
        try:
            try:
                model = await renderer.resolve(item.node, item.boundaries)
            except Exception as exc:
                del renderer._deferred[:]
                model = await renderer._recover(exc, item.boundaries)
        except ControlSignal as signal:
            logger.debug("Signal %s in deferred row %d", signal.digest, item.id)
            rows[item.id] = {"id": item.id, "error": sanitize_error(signal, debug=self._debug)}
        except Exception as exc:
            logger.error("View error in deferred row %d: %s", item.id, exc, exc_info=exc)
            rows[item.id] = {"id": item.id, "error": sanitize_error(exc, debug=self._debug)}
        else:
            rows[item.id] = {"id": item.id, "model": model}
            nested[item.id] = renderer._deferred

    # -- Streaming --

    async def rows(self, tree: Any, *, return_value: Any = _NO_RETURN) -> AsyncIterator[str]:
        """Yield the encoded rows for *tree*.

        With *return_value*, row 0 is ``{"root": ..., "returnValue": ...}``
        (the shape an action response carries).
        """
        root = await self.resolve(tree)
        if return_value is not _NO_RETURN:
            root = {"root": root, "returnValue": return_value}
        yield encode_row({"id": 0, "model": root})

        while self._deferred:
            wave, self._deferred = self._deferred, []
            rows: dict[int, dict[str, Any]] = {}
            nested: dict[int, list[_Deferred]] = {}
            async with anyio.create_task_group() as tg:
                for item in wave:
                    tg.start_soon(self._resolve_deferred, item, rows, nested)
            for item in wave:
                yield encode_row(rows[item.id])
                self._deferred.extend(nested.get(item.id, ()))


def render_payload(tree: Any, *, debug: bool = False, return_value: Any = _NO_RETURN) -> AsyncIterator[str]:
    """Payload rows for *tree* as an async iterator of NDJSON lines."""
    return PayloadRenderer(debug=debug).rows(tree, return_value=return_value)

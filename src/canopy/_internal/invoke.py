"""Invoke helpers - call sync or async view code uniformly.

Views, layouts, route handlers, actions, and the middleware function can
all be ``def`` or ``async def``. The sync/async check lives here, in one
place, together with prop filtering for view components.

Usage::

    from canopy._internal.invoke import invoke, call_with_props

    result = await invoke(handler, request)
    element = await call_with_props(layout, {"children": page, "params": params})
"""

import inspect
from collections.abc import Callable, Mapping
from functools import lru_cache
from typing import Any


async def invoke(handler: Any, *args: Any, **kwargs: Any) -> Any:
    """Call a handler and await the result if it's awaitable."""
    result = handler(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


@lru_cache(maxsize=1024)
def _accepted_props(func: Callable[..., Any]) -> frozenset[str] | None:
    """Names *func* accepts as keywords, or ``None`` if it takes ``**kwargs``."""
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return None
    names: set[str] = set()
    for name, param in sig.parameters.items():
        if param.kind is inspect.Parameter.VAR_KEYWORD:
            return None
        if param.kind in (
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
            inspect.Parameter.KEYWORD_ONLY,
        ):
            names.add(name)
    return frozenset(names)


def select_props(func: Callable[..., Any], props: Mapping[str, Any]) -> dict[str, Any]:
    """Keep only the props *func* declares.

    A page written as ``def page(params): ...`` never sees
    ``search_params``; one declaring ``**props`` sees everything.
    """
    accepted = _accepted_props(func)
    if accepted is None:
        return dict(props)
    return {k: v for k, v in props.items() if k in accepted}


def call_with_props(func: Callable[..., Any], props: Mapping[str, Any]) -> Any:
    """Call a view component with the props it accepts (result may be awaitable)."""
    return func(**select_props(func, props))

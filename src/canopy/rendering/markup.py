"""Markup phase - payload rows in, streamed HTML document out.

The document shell is a kida template. Head tags found in the root row
(``title``, ``meta``, ``link``) are hoisted into ``<head>`` next to the
params script; the rest renders into ``<body>``.

Deferred rows arrive after the shell: a lazy marker first renders its
fallback inside ``<div id="_canopy_b_N">``, and the resolved row follows
as a ``<template>`` + ``<script>`` pair that swaps it in. A deferred
redirect becomes a ``location.replace()`` script.

Every payload row is also embedded for the client as an inline script,
read from a second tee cursor and interleaved with the markup chunks as
rows become available, followed by a done marker.
"""

import html
import json
from collections.abc import AsyncIterator, Mapping
from functools import cache
from typing import Any

from kida import Environment
from kida.utils.html import Markup

from canopy.rendering.tee import TeeBuffer
from canopy.signals import RedirectSignal, parse_digest

HTML_CONTENT_TYPE = "text/html; charset=utf-8"

_SHELL_OPEN = (
    '<!DOCTYPE html><html lang="{{ lang }}"><head>{{ head }}{{ params_script }}</head><body>'
)
_SHELL_CLOSE = "{{ done_script }}</body></html>"

_HOISTED_TAGS = frozenset({"title", "meta", "link", "base"})
_VOID_TAGS = frozenset(
    {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
)

PAYLOAD_GLOBAL = "self.__canopy_f"


@cache
def _shell_env() -> Environment:
    return Environment(autoescape=True)


@cache
def _template(source: str) -> Any:
    return _shell_env().from_string(source)


def _script_json(value: Any) -> str:
    """JSON safe to place inside ``<script>`` (no ``</script>`` or comment openers)."""
    text = json.dumps(value, separators=(",", ":"), default=str)
    return text.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")


# -- Model to HTML --


def _attr_name(name: str) -> str:
    return name.rstrip("_").replace("_", "-")


def _attributes(props: Mapping[str, Any]) -> str:
    parts = []
    for key, value in props.items():
        if key == "children" or value is None or value is False:
            continue
        name = _attr_name(key)
        if value is True:
            parts.append(f" {name}")
            continue
        if isinstance(value, Mapping):
            value = ";".join(f"{_attr_name(k)}:{v}" for k, v in value.items())
        elif isinstance(value, list | tuple):
            value = " ".join(str(v) for v in value)
        parts.append(f' {name}="{html.escape(str(value), quote=True)}"')
    return "".join(parts)


class _MarkupWriter:
    """Renders payload models to HTML, optionally collecting head tags."""

    __slots__ = ("head", "hoist")

    def __init__(self, *, hoist: bool) -> None:
        self.hoist = hoist
        self.head: list[str] = []

    def render(self, model: Any) -> str:
        if model is None:
            return ""
        if isinstance(model, str):
            return html.escape(model, quote=False)
        if isinstance(model, bool):
            return ""
        if isinstance(model, int | float):
            return str(model)
        if isinstance(model, list):
            return "".join(self.render(child) for child in model)
        kind = model.get("$")
        if kind == "html":
            return model["value"]
        if kind == "scope":
            return self.render(model["child"])
        if kind == "lazy":
            return f'<div id="_canopy_b_{model["id"]}" style="display:contents">{self.render(model["fallback"])}</div>'
        if kind == "el":
            return self._element(model)
        return ""

    def _element(self, model: Mapping[str, Any]) -> str:
        tag = model["tag"]
        attrs = _attributes(model.get("props", {}))
        if tag in _VOID_TAGS:
            markup = f"<{tag}{attrs}>"
        else:
            inner = "".join(self.render(child) for child in model.get("children", ()))
            markup = f"<{tag}{attrs}>{inner}</{tag}>"
        if self.hoist and tag in _HOISTED_TAGS:
            self.head.append(markup)
            return ""
        return markup


def render_model(model: Any) -> str:
    """HTML for a payload model, head tags left in place."""
    return _MarkupWriter(hoist=False).render(model)


def _swap_script(row_id: int, body: str) -> str:
    template_id = f"_canopy_s_{row_id}"
    target_id = f"_canopy_b_{row_id}"
    return (
        f'<template id="{template_id}">{body}</template>'
        f"<script>"
        f'(function(){{var t=document.getElementById("{template_id}"),'
        f'e=document.getElementById("{target_id}");'
        f"if(t&&e){{e.innerHTML='';e.appendChild(t.content.cloneNode(true));t.remove();}}}})();"
        f"</script>"
    )


def _deferred_markup(row: Mapping[str, Any]) -> str:
    if "model" in row:
        return _swap_script(row["id"], render_model(row["model"]))
    error = row.get("error") or {}
    signal = parse_digest(error.get("digest"))
    if isinstance(signal, RedirectSignal):
        return f"<script>location.replace({_script_json(signal.url)})</script>"
    return ""


def _embed_script(row: str) -> str:
    return f"<script>({PAYLOAD_GLOBAL}={PAYLOAD_GLOBAL}||[]).push({_script_json(row.rstrip())})</script>"


def params_script(params: Mapping[str, Any]) -> str:
    return f"<script>self.__canopy_params={_script_json(dict(params))}</script>"


async def render_document(
    tee: TeeBuffer,
    *,
    lang: str = "en",
    params: Mapping[str, Any] | None = None,
) -> AsyncIterator[str]:
    """Stream the HTML document for the rows in *tee*.

    The root row must already be resolvable: the caller awaits it before
    sending headers so that errors outside any boundary surface first.
    """
    rows = tee.cursor()
    embed = tee.cursor()

    try:
        root = json.loads(await anext(rows))
        writer = _MarkupWriter(hoist=True)
        body = writer.render(root.get("model"))
        yield _template(_SHELL_OPEN).render(
            {
                "lang": lang,
                "head": Markup("".join(writer.head)),
                "params_script": Markup(params_script(params or {})),
            }
        )
        yield body

        async for line in rows:
            for pending in embed.take_available():
                yield _embed_script(pending)
            chunk = _deferred_markup(json.loads(line))
            if chunk:
                yield chunk

        remaining = [_embed_script(pending) async for pending in embed]
        yield "".join(remaining)
        yield _template(_SHELL_CLOSE).render(
            {"done_script": Markup("<script>self.__canopy_done=true</script>")}
        )
    finally:
        await tee.aclose()

"""Document metadata - merged from layouts and the page into head tags.

A view's ``metadata`` export is a mapping, or a callable receiving
``params`` (sync or async) that returns one. Entries merge outer to
inner, later keys winning. ``title`` may be a mapping with a
``template`` (``"%s | Site"``) applied to titles of deeper segments,
a ``default`` and an ``absolute`` that bypasses parent templates.

Recognized keys: ``title``, ``description``, ``keywords``, ``robots``,
``viewport`` (mapping), ``theme_color`` and ``other`` (extra
``<meta name=... content=...>`` pairs).
"""

from collections.abc import Iterable, Mapping
from typing import Any

from canopy._internal.invoke import call_with_props, invoke
from canopy.routing.route import View
from canopy.views.nodes import Element, h

DEFAULT_VIEWPORT: Mapping[str, Any] = {"width": "device-width", "initial_scale": 1}


async def resolve_metadata(view: View | None, params: Mapping[str, Any]) -> Mapping[str, Any] | None:
    if view is None or view.metadata is None:
        return None
    if isinstance(view.metadata, Mapping):
        return view.metadata
    return await invoke(call_with_props, view.metadata, {"params": params})


async def collect_metadata(views: Iterable[View | None], params: Mapping[str, Any]) -> dict[str, Any]:
    """Resolve and merge the metadata of *views*, outer to inner."""
    entries = []
    for view in views:
        meta = await resolve_metadata(view, params)
        if meta:
            entries.append(meta)
    return merge_metadata(entries)


def merge_metadata(entries: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    template: str | None = None
    for entry in entries:
        next_template = template
        for key, value in entry.items():
            if key == "title":
                if isinstance(value, Mapping):
                    if value.get("absolute"):
                        merged["title"] = value["absolute"]
                    elif value.get("default"):
                        merged["title"] = value["default"]
                    next_template = value.get("template", next_template)
                elif template and value:
                    merged["title"] = template.replace("%s", str(value))
                else:
                    merged["title"] = value
            elif key == "viewport" and isinstance(value, Mapping):
                merged["viewport"] = {**merged.get("viewport", {}), **value}
            elif key == "other" and isinstance(value, Mapping):
                merged["other"] = {**merged.get("other", {}), **value}
            else:
                merged[key] = value
        template = next_template
    return merged


def _viewport_content(viewport: Mapping[str, Any]) -> str:
    parts = []
    for key, value in viewport.items():
        if isinstance(value, bool):
            value = "yes" if value else "no"
        parts.append(f"{key.replace('_', '-')}={value}")
    return ", ".join(parts)


def head_elements(metadata: Mapping[str, Any], *, noindex: bool = False) -> list[Element]:
    """Head tags for merged *metadata*: charset first, viewport last."""
    tags = [h("meta", {"charset": "utf-8"})]
    if noindex:
        tags.append(h("meta", {"name": "robots", "content": "noindex"}))
    if metadata.get("title"):
        tags.append(h("title", None, str(metadata["title"])))
    if metadata.get("description"):
        tags.append(h("meta", {"name": "description", "content": metadata["description"]}))
    keywords = metadata.get("keywords")
    if keywords:
        if not isinstance(keywords, str):
            keywords = ", ".join(keywords)
        tags.append(h("meta", {"name": "keywords", "content": keywords}))
    if metadata.get("robots") and not noindex:
        tags.append(h("meta", {"name": "robots", "content": metadata["robots"]}))
    for name, content in metadata.get("other", {}).items():
        tags.append(h("meta", {"name": name, "content": content}))
    if metadata.get("theme_color"):
        tags.append(h("meta", {"name": "theme-color", "content": metadata["theme_color"]}))
    viewport = metadata.get("viewport") or DEFAULT_VIEWPORT
    tags.append(h("meta", {"name": "viewport", "content": _viewport_content(viewport)}))
    return tags

"""
Resolves `{{path}}` placeholders in strings against a context mapping.

Paths are dotted names with optional single-level index segments
(`order.items[0].price`). Rendering is done by pystache on a normalized
copy of the context; each placeholder is rendered on its own so a
missing or malformed one never disturbs its neighbours.
"""
import re
import logging
import collections.abc
from typing import Any, Mapping

import pystache

from clientops.clientops_datatypes import stringify

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")
INDEX_RE = re.compile(r"^(\w+)\[(\d+)\]$")

_renderer = pystache.Renderer(escape=lambda u: u, missing_tags="ignore")


class _RenderedList(dict):
    """A list exposed to Mustache by index (`items.0`), printed as JSON."""
    def __init__(self, items: list):
        super().__init__((str(i), _tmpl_normalize_value(v)) for i, v in enumerate(items))
        self._source = items

    def __str__(self):
        return stringify(self._source)


class _RenderedRecord(dict):
    """A mapping exposed to Mustache, printed as JSON."""
    def __init__(self, mapping: Mapping):
        super().__init__((str(k), _tmpl_normalize_value(v)) for k, v in mapping.items())
        self._source = mapping

    def __str__(self):
        return stringify(self._source)


def _tmpl_normalize_value(v):
    """Convert context values into plain types pystache can traverse."""
    if isinstance(v, collections.abc.Mapping):
        return _RenderedRecord(v)
    if isinstance(v, (list, tuple)):
        return _RenderedList(list(v))
    if v is None or isinstance(v, (str, bool, int, float, bytes)):
        return stringify(v)
    return v


def _to_mustache_name(expr: str) -> str:
    """Rewrite `name[3]` segments into Mustache dotted form (`name.3`)."""
    parts = []
    for part in expr.split("."):
        m = INDEX_RE.match(part)
        if m:
            parts.extend([m.group(1), m.group(2)])
        else:
            parts.append(part)
    return ".".join(parts)


def resolve_template(value: Any, ctx: Mapping | None = None) -> Any:
    """Substitute every `{{path}}` in `value`; non-strings pass through."""
    if not isinstance(value, str) or "{{" not in value:
        return value
    normalized = _RenderedRecord(ctx or {})

    def _render(match: re.Match) -> str:
        expr = match.group(1)
        try:
            # '&' keeps the tag a plain variable lookup
            return _renderer.render("{{&" + _to_mustache_name(expr) + "}}", normalized)
        except Exception as e:
            logger.warning("Failed to resolve template %r: %s", expr, e)
            return ""

    return PLACEHOLDER_RE.sub(_render, value)


__all__ = [
    "resolve_template",
]

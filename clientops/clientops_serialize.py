"""
Text codecs used by `fetch` bodies, `FileStore` files and op-tree files.

Reading understands json, yaml, toml and xml; writing only json and yaml,
the two formats a store file may use.
"""
from __future__ import annotations

import json
import re
import tomllib
import collections.abc
from xml.parsers.expat import ExpatError
from typing import Any, Optional

import xmltodict
import yaml

EXTENSIONS = {
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".xml": "xml",
}

_CHARSET = re.compile(r'charset\s*=\s*["\']?([^\s;"\']+)', re.IGNORECASE)


def _decode(data: bytes | bytearray | str, content_type: Optional[str]) -> str:
    if isinstance(data, str):
        return data
    match = _CHARSET.search(content_type or "")
    try:
        return bytes(data).decode(match.group(1) if match else "utf-8", errors="replace")
    except LookupError:
        return bytes(data).decode("utf-8", errors="replace")


def _plain(value: Any) -> Any:
    # xmltodict yields nested mappings; op trees want plain dicts and lists
    if isinstance(value, collections.abc.Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def format_for_path(path: str) -> Optional[str]:
    """The format named by a file's extension, or None."""
    for ext, fmt in EXTENSIONS.items():
        if path.lower().endswith(ext):
            return fmt
    return None


def deserialize(data: bytes | bytearray | str, *, fmt: str, content_type: Optional[str] = None) -> Any:
    """Parses `data` as `fmt`; text that fails to parse is returned as text.

    A `charset` in `content_type` selects the byte decoding. JSON that does
    not parse is retried as YAML, which covers hand-written op files.
    """
    text = _decode(data, content_type)
    match fmt:
        case "json":
            try:
                return json.loads(text)
            except ValueError:
                return deserialize(text, fmt="yaml")
        case "yaml":
            try:
                return yaml.safe_load(text)
            except yaml.YAMLError:
                return text
        case "toml":
            try:
                return tomllib.loads(text)
            except tomllib.TOMLDecodeError:
                return text
        case "xml":
            try:
                return _plain(xmltodict.parse(text))
            except ExpatError:
                return text
        case _:
            raise ValueError(f"Unsupported format: {fmt!r}")


def serialize(value: Any, *, fmt: str, pretty: bool = True) -> str:
    """Renders `value` as json or yaml text."""
    match fmt:
        case "json":
            return json.dumps(_plain(value), ensure_ascii=False, indent=2 if pretty else None)
        case "yaml":
            return yaml.safe_dump(_plain(value), sort_keys=False, allow_unicode=True)
        case _:
            raise ValueError(f"Unsupported format: {fmt!r}")


__all__ = [
    "deserialize",
    "serialize",
    "format_for_path",
]

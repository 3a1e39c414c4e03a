"""
String-keyed, string-valued stores backing `localSet`/`sessionSet`.

`MemoryStore` lives as long as the process. `FileStore` persists every
write to a JSON or YAML file (chosen by extension; any other extension
is written as JSON) so values survive restarts.
"""
from __future__ import annotations

import os
import logging
from typing import Dict, Iterator, Optional

from clientops.clientops_datatypes import stringify
from clientops.clientops_serialize import deserialize, format_for_path, serialize

logger = logging.getLogger(__name__)

STORE_FORMATS = ("json", "yaml")


def _resolve_locator(locator: str, base_dir: Optional[str] = None) -> str:
    # Accepts 'file://...' or a plain path
    rest = locator[7:] if locator.startswith("file://") else locator
    if rest.startswith("~"):
        return os.path.expanduser(rest)
    if os.path.isabs(rest):
        return rest
    base = base_dir or os.getcwd()
    return os.path.normpath(os.path.join(base, rest))


class MemoryStore:
    """An in-process key-value store."""
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = {str(k): stringify(v) for k, v in (initial or {}).items()}

    def get_item(self, key) -> Optional[str]:
        return self._data.get(stringify(key))

    def set_item(self, key, value):
        self._data[stringify(key)] = stringify(value)

    def remove_item(self, key):
        self._data.pop(stringify(key), None)

    def clear(self):
        self._data.clear()

    def keys(self):
        return list(self._data.keys())

    def __len__(self):
        return len(self._data)

    def __contains__(self, key) -> bool:
        return stringify(key) in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._data))


class FileStore(MemoryStore):
    """A key-value store mirrored to a file after every write."""
    def __init__(self, locator: str, *, base_dir: Optional[str] = None):
        self.path = _resolve_locator(locator, base_dir)
        self.fmt = format_for_path(self.path)
        if self.fmt not in STORE_FORMATS:
            self.fmt = "json"
        super().__init__(self._load())

    def _load(self) -> Dict[str, str]:
        if not os.path.isfile(self.path):
            return {}
        with open(self.path, "rb") as f:
            raw = f.read()
        if not raw.strip():
            return {}
        data = deserialize(raw, fmt=self.fmt)
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed store file %s", self.path)
            return {}
        return data

    def _flush(self):
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        text = serialize(self._data, fmt=self.fmt, pretty=True)
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, self.path)

    def set_item(self, key, value):
        super().set_item(key, value)
        self._flush()

    def remove_item(self, key):
        if key in self:
            super().remove_item(key)
            self._flush()

    def clear(self):
        super().clear()
        self._flush()

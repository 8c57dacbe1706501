"""In-memory remote store adapter — implements RemoteStorePort.

A process-local tree with Realtime Database semantics: writing None or an
empty dict removes the node, and emptied parents disappear with it. Used
for local runs (REMOTE_STORE_PROVIDER=memory) and in tests.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

logger = logging.getLogger(__name__)


def _split(path: str) -> list[str]:
    return [part for part in path.strip("/").split("/") if part]


class InMemoryRemoteStore:
    """Dictionary-backed implementation of RemoteStorePort."""

    def __init__(self, initial: dict | None = None) -> None:
        self._root: dict = copy.deepcopy(initial) if initial else {}

    async def read(self, path: str) -> Any | None:
        node: Any = self._root
        for part in _split(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    async def write(self, path: str, value: Any) -> None:
        self._set(_split(path), copy.deepcopy(value))

    async def merge(self, path: str, fields: dict[str, Any]) -> None:
        base = _split(path)
        for key, value in fields.items():
            self._set(base + _split(key), copy.deepcopy(value))

    async def delete(self, path: str) -> None:
        self._set(_split(path), None)

    def dump(self) -> dict:
        """Return a deep copy of the whole tree."""
        return copy.deepcopy(self._root)

    def _set(self, parts: list[str], value: Any) -> None:
        if not parts:
            self._root = value if isinstance(value, dict) else {}
            return

        removing = value is None or value == {}
        trail: list[tuple[dict, str]] = []
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if removing:
                    return
                child = {}
                node[part] = child
            trail.append((node, part))
            node = child

        if removing:
            node.pop(parts[-1], None)
            # Drop parents emptied by the removal
            for parent, key in reversed(trail):
                if parent[key]:
                    break
                del parent[key]
        else:
            node[parts[-1]] = value
        logger.debug("Memory store %s /%s", "delete" if removing else "set", "/".join(parts))

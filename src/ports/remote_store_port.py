"""Remote store port — abstract interface to the shared key-value store.

Paths are slash-delimited (``users/{userId}/roomAccess/{roomId}``). The
store offers no multi-key atomicity and no read-modify-write primitive:
every write is last-writer-wins at the granularity of the path written.
"""

from __future__ import annotations

from typing import Any, Protocol


class RemoteStoreError(Exception):
    """Raised when the store rejects an operation (permissions, validation)."""


class RemoteConnectionError(RemoteStoreError):
    """Raised on transport-level failures: unreachable, timed out, cancelled."""


class RemoteStorePort(Protocol):
    """Abstract remote store interface used by core modules."""

    async def read(self, path: str) -> Any | None: ...

    async def write(self, path: str, value: Any) -> None: ...

    async def merge(self, path: str, fields: dict[str, Any]) -> None: ...

    async def delete(self, path: str) -> None: ...

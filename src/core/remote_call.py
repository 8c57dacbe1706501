"""Per-step timeout for remote store calls.

A timed-out call is reported as a connection failure. The underlying
write is not cancelled: it may already have been applied remotely.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from src.ports.remote_store_port import RemoteConnectionError

T = TypeVar("T")


async def call_remote(awaitable: Awaitable[T], timeout: float | None = None) -> T:
    """Await a remote operation, converting a timeout into RemoteConnectionError."""
    if timeout is None:
        from src.config import settings
        timeout = settings.REMOTE_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise RemoteConnectionError(f"Remote call timed out after {timeout:g}s") from exc

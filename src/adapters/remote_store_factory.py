"""Remote store factory — creates the right adapter based on config."""

from __future__ import annotations

from src.config import settings
from src.ports.remote_store_port import RemoteStorePort


def create_remote_store() -> RemoteStorePort:
    """Return the remote store adapter matching REMOTE_STORE_PROVIDER."""
    provider = settings.REMOTE_STORE_PROVIDER.lower()

    if provider == "firebase":
        from src.adapters.firebase_store import FirebaseRemoteStore

        return FirebaseRemoteStore()

    if provider == "memory":
        from src.adapters.memory_store import InMemoryRemoteStore

        return InMemoryRemoteStore()

    raise ValueError(f"Unknown REMOTE_STORE_PROVIDER: {provider!r}")

"""Tests for the remote store adapter factory."""

import pytest
from unittest.mock import patch

from src.adapters.remote_store_factory import create_remote_store


class TestCreateRemoteStore:
    @patch("src.adapters.remote_store_factory.settings")
    def test_returns_firebase_store(self, mock_settings):
        mock_settings.REMOTE_STORE_PROVIDER = "firebase"
        store = create_remote_store()
        from src.adapters.firebase_store import FirebaseRemoteStore
        assert isinstance(store, FirebaseRemoteStore)

    @patch("src.adapters.remote_store_factory.settings")
    def test_returns_memory_store(self, mock_settings):
        mock_settings.REMOTE_STORE_PROVIDER = "memory"
        store = create_remote_store()
        from src.adapters.memory_store import InMemoryRemoteStore
        assert isinstance(store, InMemoryRemoteStore)

    @patch("src.adapters.remote_store_factory.settings")
    def test_case_insensitive(self, mock_settings):
        mock_settings.REMOTE_STORE_PROVIDER = "Memory"
        store = create_remote_store()
        from src.adapters.memory_store import InMemoryRemoteStore
        assert isinstance(store, InMemoryRemoteStore)

    @patch("src.adapters.remote_store_factory.settings")
    def test_unknown_provider_raises(self, mock_settings):
        mock_settings.REMOTE_STORE_PROVIDER = "postgres"
        with pytest.raises(ValueError, match="Unknown REMOTE_STORE_PROVIDER"):
            create_remote_store()

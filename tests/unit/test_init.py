"""Unit tests for PromptForge initialization and pillar wiring."""

from unittest.mock import Mock

import pytest
from promptforge import PromptForge, __version__
from promptforge.config import Settings
from promptforge.models import ResponseStatus
from promptforge.orchestrator import Orchestrator
from promptforge.registry import AdapterRegistry
from promptforge.store import SQLite, InMemory
from promptforge.vault import Vault

from conftest import TEST_ITERATIONS


@pytest.fixture
def fast_settings(tmp_path):
    return Settings(
        data_dir=tmp_path / "data",
        sqlite_path=tmp_path / "data" / "promptforge.sqlite",
        kdf_iterations=TEST_ITERATIONS,
        master_password="test-master-password",
        flush_interval=0,
        retry_delay=0,
    )


class TestPromptForgeInit:
    """Test PromptForge initialization and pillar configuration."""

    def test_version(self):
        assert __version__ == "0.1.0"

    def test_default_initialization(self, fast_settings):
        """Defaults: in-memory store, a vault over it, every built-in provider."""
        forge = PromptForge(settings=fast_settings)

        assert isinstance(forge.store, InMemory)
        assert isinstance(forge.vault, Vault)
        assert forge.vault.store is forge.store
        assert isinstance(forge.adapters, AdapterRegistry)
        assert forge.adapters.provider_ids() == [
            "openai",
            "anthropic",
            "google",
            "ollama",
            "echo",
        ]
        assert isinstance(forge.orchestrator, Orchestrator)
        assert forge.orchestrator.store is forge.store
        assert forge.orchestrator.vault is forge.vault

    def test_custom_store_initialization(self, fast_settings):
        mock_store = Mock()
        forge = PromptForge(store=mock_store, settings=fast_settings)
        assert forge.store is mock_store
        assert forge.vault.store is mock_store

    def test_custom_pillars(self, fast_settings):
        store = InMemory()
        vault = Vault(store, master_password="other", iterations=TEST_ITERATIONS)
        adapters = AdapterRegistry()
        forge = PromptForge(
            store=store, vault=vault, adapters=adapters, settings=fast_settings
        )

        assert forge.vault is vault
        assert forge.adapters is adapters
        assert forge.orchestrator.adapters is adapters

    def test_master_password_from_settings(self, fast_settings):
        forge = PromptForge(settings=fast_settings)
        forge.vault.store_api_key("openai", "sk-test-1234567890")

        reader = Vault(
            forge.store,
            master_password="test-master-password",
            iterations=TEST_ITERATIONS,
        )
        assert reader.get_api_key("openai") == "sk-test-1234567890"

    def test_from_settings_uses_sqlite(self, fast_settings):
        forge = PromptForge.from_settings(fast_settings)
        try:
            assert isinstance(forge.store, SQLite)
            assert fast_settings.sqlite_path.exists()
        finally:
            forge.store.close()


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_echo_round_trip(self, fast_settings):
        forge = PromptForge(settings=fast_settings)

        entry = await forge.orchestrator.submit_prompt("Hello", [], ["echo:echo-v1"])

        record = entry.responses[0]
        assert record.status is ResponseStatus.SUCCESS
        assert record.response == "Echo: Hello"
        assert forge.store.load_conversation(entry.id).status == "completed"

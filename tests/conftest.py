"""
Core pytest configuration and fixtures for PromptForge testing.

This module provides shared fixtures and scripted adapters so the dispatch,
streaming and vault code paths can be exercised without any network access.
"""

import asyncio
from typing import List, Optional, Sequence

import pytest
from promptforge.catalog import ModelCatalog
from promptforge.config import Settings
from promptforge.llm import LLM
from promptforge.models import (
    ChunkMetadata,
    ModelCapabilities,
    ModelInfo,
    TextResponse,
)
from promptforge.orchestrator import Orchestrator
from promptforge.registry import AdapterFactory, AdapterRegistry, ProviderInfo
from promptforge.store import SQLite, InMemory
from promptforge.vault import Fingerprint, Vault

TEST_ITERATIONS = 1000


# ===== SCRIPTED ADAPTERS =====


class ScriptedLLM(LLM):
    """An adapter whose behaviour is scripted per test.

    ``fail_with`` is raised when a call is opened, for the first
    ``fail_times`` calls (every call when None). ``stream_error`` is raised
    after all deltas have been yielded. When ``gate`` is set each delta waits
    for it, which lets tests cancel mid-stream.
    """

    provider_id = "fake"
    provider_name = "Fake"
    description = "Scripted test adapter"
    catalog = ModelCatalog(
        [
            ModelInfo(id="fake-1", name="Fake One"),
            ModelInfo(id="fake-2", name="Fake Two"),
            ModelInfo(
                id="fake-image",
                name="Fake Image",
                capabilities=ModelCapabilities(
                    text_generation=False, image_generation=True, streaming=False
                ),
            ),
        ]
    )
    validation_model = "fake-1"

    def __init__(
        self,
        deltas: Sequence[str] = ("Hello", ", ", "world"),
        fail_with: Optional[BaseException] = None,
        fail_times: Optional[int] = None,
        stream_error: Optional[BaseException] = None,
        gate: Optional[asyncio.Event] = None,
        requires_api_key: bool = True,
    ):
        super().__init__()
        self.deltas = list(deltas)
        self.fail_with = fail_with
        self.fail_times = fail_times
        self.stream_error = stream_error
        self.gate = gate
        self.requires_api_key = requires_api_key
        self.calls: List[dict] = []
        self.closed = False

    def _maybe_fail(self) -> None:
        if self.fail_with is None:
            return
        if self.fail_times is None or len(self.calls) <= self.fail_times:
            raise self.fail_with

    def _record(self, messages, options, api_key) -> None:
        self.calls.append(
            {"messages": messages, "options": options, "api_key": api_key}
        )

    async def _complete(self, messages, options, api_key):
        self._record(messages, options, api_key)
        self._maybe_fail()
        return TextResponse(
            content="".join(self.deltas),
            metadata=ChunkMetadata(model=options.model, finish_reason="stop"),
        )

    async def _open_stream(self, messages, options, api_key, state):
        self._record(messages, options, api_key)
        self._maybe_fail()
        return self._deltas(state)

    async def _deltas(self, state):
        try:
            for delta in self.deltas:
                if self.gate is not None:
                    await self.gate.wait()
                yield delta
            if self.stream_error is not None:
                raise self.stream_error
            state.set_usage(prompt_tokens=4, completion_tokens=3)
            state.finish_reason = "stop"
        finally:
            self.closed = True


class InstanceFactory(AdapterFactory):
    """Always hands out the same adapter instance."""

    def __init__(self, adapter: LLM):
        self.adapter = adapter

    def create_adapter(self) -> LLM:
        return self.adapter

    def provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            id=self.adapter.provider_id,
            name=self.adapter.provider_name,
            description=self.adapter.description,
            requires_api_key=self.adapter.requires_api_key,
        )


class StatusError(Exception):
    """Looks like an SDK error carrying an HTTP status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


# ===== SETTINGS AND VAULT FIXTURES =====


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Fast settings: cheap key derivation, no retry delay, no flush throttling."""
    return Settings(
        data_dir=tmp_path,
        sqlite_path=tmp_path / "promptforge.sqlite",
        kdf_iterations=TEST_ITERATIONS,
        retry_attempts=2,
        retry_delay=0,
        flush_interval=0,
    )


@pytest.fixture
def fingerprint() -> Fingerprint:
    """A fixed environment fingerprint so derived keys are reproducible."""
    return Fingerprint(
        system="Linux",
        machine="x86_64",
        node="testhost",
        user="tester",
        locale="en_US",
        home="/home/tester",
        timezone_offset=0,
    )


@pytest.fixture
def memory_store() -> InMemory:
    return InMemory()


@pytest.fixture
def sqlite_store(tmp_path):
    store = SQLite(tmp_path / "test.sqlite")
    yield store
    store.close()


@pytest.fixture
def all_store_implementations(tmp_path):
    """All store implementations for contract testing."""
    return [
        ("InMemory", InMemory()),
        ("SQLite", SQLite(tmp_path / "contract.sqlite")),
    ]


@pytest.fixture
def vault(memory_store, fingerprint) -> Vault:
    return Vault(memory_store, iterations=TEST_ITERATIONS, fingerprint=fingerprint)


# ===== ORCHESTRATOR FIXTURES =====


@pytest.fixture
def make_registry():
    """Builds a registry from ``provider_id=adapter`` keyword arguments."""

    def _make(**adapters: LLM) -> AdapterRegistry:
        registry = AdapterRegistry()
        for provider_id, adapter in adapters.items():
            registry.register(provider_id, InstanceFactory(adapter))
        return registry

    return _make


@pytest.fixture
def make_orchestrator(make_registry, vault, memory_store, settings):
    """Builds an orchestrator over the shared vault and in-memory store."""

    def _make(**adapters: LLM) -> Orchestrator:
        return Orchestrator(make_registry(**adapters), vault, memory_store, settings)

    return _make


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "slow: marks tests as slow-running")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)

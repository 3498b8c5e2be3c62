"""Provider id to adapter factory dispatch."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from .config import Settings
from .errors import ErrorCode, LLMAdapterError
from .llm import LLM, Anthropic, Echo, Gemini, Ollama, OpenAI

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderInfo:
    id: str
    name: str
    description: str
    requires_api_key: bool = True


class AdapterFactory(ABC):
    """Creates adapters for one provider."""

    @abstractmethod
    def create_adapter(self) -> LLM:
        pass

    @abstractmethod
    def provider_info(self) -> ProviderInfo:
        pass


class ClassFactory(AdapterFactory):
    """Factory over an ``LLM`` subclass and the keyword arguments it is built with."""

    def __init__(self, adapter_cls, **kwargs):
        self.adapter_cls = adapter_cls
        self.kwargs = kwargs

    def create_adapter(self) -> LLM:
        return self.adapter_cls(**self.kwargs)

    def provider_info(self) -> ProviderInfo:
        cls = self.adapter_cls
        return ProviderInfo(
            id=cls.provider_id,
            name=cls.provider_name,
            description=cls.description,
            requires_api_key=cls.requires_api_key,
        )


class AdapterRegistry:
    """Maps provider ids to factories and caches one adapter per provider.

    Providers can be disabled without being unregistered; a disabled
    provider is reported as unknown to dispatch.
    """

    def __init__(self):
        self._factories: Dict[str, AdapterFactory] = {}
        self._adapters: Dict[str, LLM] = {}
        self._disabled = set()

    def register(self, provider_id: str, factory: AdapterFactory) -> None:
        if provider_id in self._factories:
            logger.info("Replacing adapter factory for %s", provider_id)
        self._factories[provider_id] = factory
        self._adapters.pop(provider_id, None)

    def unregister(self, provider_id: str) -> None:
        self._factories.pop(provider_id, None)
        self._adapters.pop(provider_id, None)
        self._disabled.discard(provider_id)

    def get_factory(self, provider_id: str) -> Optional[AdapterFactory]:
        if provider_id in self._disabled:
            return None
        return self._factories.get(provider_id)

    def has_provider(self, provider_id: str) -> bool:
        return self.get_factory(provider_id) is not None

    def create_adapter(self, provider_id: str) -> LLM:
        """Builds a fresh adapter for ``provider_id``.

        Raises
        ------
        LLMAdapterError
            With code ``INVALID_REQUEST`` when the provider is unknown or disabled.
        """
        factory = self.get_factory(provider_id)
        if factory is None:
            raise LLMAdapterError(
                f"Unknown or disabled provider: {provider_id}",
                ErrorCode.INVALID_REQUEST,
            )
        return factory.create_adapter()

    def get_adapter(self, provider_id: str) -> LLM:
        """Returns the cached adapter for ``provider_id``, creating it on first use."""
        adapter = self._adapters.get(provider_id)
        if adapter is None or provider_id in self._disabled:
            adapter = self.create_adapter(provider_id)
            self._adapters[provider_id] = adapter
        return adapter

    def set_enabled(self, provider_id: str, enabled: bool) -> None:
        if provider_id not in self._factories:
            raise KeyError(provider_id)
        if enabled:
            self._disabled.discard(provider_id)
        else:
            self._disabled.add(provider_id)

    def providers(self, include_disabled: bool = False) -> List[ProviderInfo]:
        return [
            factory.provider_info()
            for provider_id, factory in self._factories.items()
            if include_disabled or provider_id not in self._disabled
        ]

    def provider_ids(self) -> List[str]:
        return [pid for pid in self._factories if pid not in self._disabled]


def default_registry(settings: Optional[Settings] = None) -> AdapterRegistry:
    """A registry with every built-in provider, configured from ``settings``."""
    settings = settings or Settings()
    timeout = settings.request_timeout
    registry = AdapterRegistry()
    registry.register("openai", ClassFactory(OpenAI, timeout=timeout))
    registry.register("anthropic", ClassFactory(Anthropic, timeout=timeout))
    registry.register("google", ClassFactory(Gemini, timeout=timeout))
    registry.register(
        "ollama", ClassFactory(Ollama, host=settings.ollama_host, timeout=timeout)
    )
    registry.register("echo", ClassFactory(Echo))
    return registry

"""
The main entrypoint for the PromptForge package.

This module contains the PromptForge class, which wires the pillars together:
the adapter registry, the credential vault, the store and the orchestrator.
Each pillar can be replaced by injecting a custom implementation.
"""

from typing import Optional

from . import config, errors, llm, models, orchestrator, registry, store, vault
from .config import Settings
from .errors import (
    ConversationNotFoundError,
    EncryptionError,
    ErrorCode,
    LegacySecretError,
    LLMAdapterError,
    PromptForgeError,
)

__version__ = "0.1.0"


class PromptForge:
    """Send one prompt to many LLMs, compare the answers, and continue per model.

    The constructor uses concrete default implementations, so
    ``PromptForge()`` works out of the box with an in-memory store.
    """

    def __init__(
        self,
        store: Optional[store.Store] = None,
        vault: Optional[vault.Vault] = None,
        adapters: Optional[registry.AdapterRegistry] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize PromptForge with configurable pillars.

        Parameters
        ----------
        store : store.Store, optional
            Persistence for keys, conversations and custom models.
            Defaults to store.InMemory().
        vault : vault.Vault, optional
            Credential vault over ``store``. Defaults to a vault keyed by the
            local fingerprint, or by ``settings.master_password`` when set.
        adapters : registry.AdapterRegistry, optional
            Provider dispatch. Defaults to every built-in provider.
        settings : Settings, optional
            Defaults to ``Settings()``; use ``Settings.from_env()`` to read
            ``PROMPTFORGE_*`` variables.

        Examples
        --------
        >>> forge = PromptForge()
        >>> forge.vault.store_api_key("openai", "sk-...")
        >>> entry = await forge.orchestrator.submit_prompt(
        ...     "Explain monads",
        ...     ["openai", "anthropic"],
        ...     ["openai:gpt-4o", "anthropic:claude-3-5-haiku-20241022"],
        ... )
        """
        self.settings = settings or Settings()
        self.store = store if store is not None else self._default_store()
        if vault is not None:
            self.vault = vault
        else:
            from .vault import Vault

            self.vault = Vault(
                self.store,
                master_password=self.settings.master_password,
                iterations=self.settings.kdf_iterations,
            )
        if adapters is not None:
            self.adapters = adapters
        else:
            from .registry import default_registry

            self.adapters = default_registry(self.settings)

        from .orchestrator import Orchestrator

        self.orchestrator = Orchestrator(
            self.adapters, self.vault, self.store, self.settings
        )

    @staticmethod
    def _default_store() -> "store.Store":
        from .store import InMemory

        return InMemory()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PromptForge":
        """Builds an instance backed by the SQLite file named in ``settings``."""
        from .store import SQLite

        settings.ensure_directories()
        return cls(store=SQLite(settings.sqlite_path or ":memory:"), settings=settings)


__all__ = [
    "PromptForge",
    "Settings",
    "ConversationNotFoundError",
    "EncryptionError",
    "ErrorCode",
    "LegacySecretError",
    "LLMAdapterError",
    "PromptForgeError",
    "config",
    "errors",
    "llm",
    "models",
    "orchestrator",
    "registry",
    "store",
    "vault",
]

"""
Provider selector: the active provider and its caller-supplied credential.

Switching provider or changing the credential never purges cached data;
records keyed by the previous provider stay addressable so switching back
is cheap.
"""

from __future__ import annotations

from typing import Any

import httpx

from fxc.logging import get_logger
from fxc.providers.registry import ProviderConfig, get_provider
from fxc.storage.fallback import FallbackStore
from fxc.types import StoreDomain, credential_key

logger = get_logger(__name__)


class ProviderSelector:
    """Holds the active ProviderConfig and credential for one session."""

    def __init__(
        self,
        store: FallbackStore,
        provider: ProviderConfig | str,
        credential: str | None = None,
    ) -> None:
        """Initialize selector.

        Args:
            store: Key-value store used to persist credentials.
            provider: Active provider config or its name.
            credential: Optional credential held in memory only.
        """
        self.store = store
        self._config = get_provider(provider) if isinstance(provider, str) else provider
        self._credential = credential.strip() if credential and credential.strip() else None

    def current_config(self) -> ProviderConfig:
        """The active provider config."""
        return self._config

    @property
    def provider_id(self) -> str:
        return self._config.id

    @property
    def credential(self) -> str | None:
        return self._credential

    @property
    def missing_credential(self) -> bool:
        """True when the active provider requires a credential and none is set."""
        return self._config.requires_credential and not self._credential

    def build_request_target(
        self, endpoint_path: str, params: dict[str, Any] | None = None
    ) -> str:
        """Build the full request URL for an endpoint.

        The credential is appended as a query parameter only when the
        active provider requires one.
        """
        query: dict[str, Any] = dict(params or {})
        if self._config.requires_credential and self._credential:
            query[self._config.credential_param] = self._credential
        url = httpx.URL(self._config.api_base + endpoint_path)
        if query:
            url = url.copy_merge_params(query)
        return str(url)

    async def select(self, provider: ProviderConfig | str) -> ProviderConfig:
        """Switch the active provider and load its stored credential."""
        config = get_provider(provider) if isinstance(provider, str) else provider
        if config.id != self._config.id:
            logger.info("Switching provider", previous=self._config.id, provider=config.id)
        self._config = config
        self._credential = None
        await self.load_credential()
        return config

    async def load_credential(self) -> str | None:
        """Load the stored credential for the active provider, if any."""
        if not self._config.requires_credential:
            self._credential = None
            return None
        result = await self.store.get(StoreDomain.SETTINGS, credential_key(self._config.id))
        if isinstance(result.value, str) and result.value.strip():
            self._credential = result.value.strip()
        return self._credential

    async def set_credential(self, value: str | None) -> bool:
        """Persist and activate a credential for the active provider.

        Returns:
            False (and stores nothing) when the value is blank.
        """
        if not value or not value.strip():
            return False
        credential = value.strip()
        await self.store.set(StoreDomain.SETTINGS, credential_key(self._config.id), credential)
        self._credential = credential
        logger.info("Credential saved", provider=self._config.id)
        return True

    async def clear_credential(self) -> None:
        """Forget the credential for the active provider."""
        await self.store.remove(StoreDomain.SETTINGS, credential_key(self._config.id))
        self._credential = None
        logger.info("Credential cleared", provider=self._config.id)

"""
Session: the explicit context object tying store, provider and network together.

Built once from Settings and passed to whatever needs it; nothing here is a
module-level global.

Usage:
    async with await Session.open(get_settings()) as session:
        result = await session.load_rate("USD", "EUR")
"""

from __future__ import annotations

from types import TracebackType

import httpx

from fxc.assets.generations import GenerationStore
from fxc.config import Settings
from fxc.exceptions import StoreWriteError
from fxc.logging import get_logger
from fxc.providers.registry import ProviderConfig, available_providers
from fxc.providers.selector import ProviderSelector
from fxc.remote.cache import RemoteDataCache
from fxc.remote.selection import load_selection, save_selection
from fxc.storage import open_store
from fxc.storage.fallback import FallbackStore
from fxc.types import (
    CurrencyListResult,
    CurrencyPair,
    RateResult,
    StoreDomain,
)

logger = get_logger(__name__)

PROVIDER_KEY = "selected-provider"


def _keep_credentials(domain: StoreDomain, key: str) -> bool:
    return domain == StoreDomain.SETTINGS and key.startswith("credential-")


class Session:
    """One running converter: store, provider selector, HTTP client and cache."""

    def __init__(
        self,
        settings: Settings,
        store: FallbackStore,
        selector: ProviderSelector,
        client: httpx.AsyncClient,
        owns_client: bool = True,
    ) -> None:
        self.settings = settings
        self.store = store
        self.selector = selector
        self.client = client
        self._owns_client = owns_client
        self.cache = RemoteDataCache(
            store,
            selector,
            client,
            retry_attempts=settings.HTTP_RETRY_ATTEMPTS,
            default_from=settings.DEFAULT_CURRENCY,
            default_to=settings.DEFAULT_TARGET_CURRENCY,
        )

    @classmethod
    async def open(
        cls,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
    ) -> Session:
        """Open the stores and restore the stored credential.

        Args:
            settings: Application settings.
            client: Optional HTTP client (tests inject a MockTransport client).
        """
        settings.ensure_directories()
        store = open_store(settings.CACHE_DIR)
        await store.init()

        selector = ProviderSelector(store, settings.PROVIDER, settings.PROVIDER_API_KEY)
        stored = (await store.get(StoreDomain.SETTINGS, PROVIDER_KEY)).value
        # A provider chosen at runtime outlives the configured default
        if (
            isinstance(stored, str)
            and stored in available_providers()
            and stored != selector.provider_id
        ):
            await selector.select(stored)
        elif selector.credential is None:
            await selector.load_credential()

        owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(
                timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS),
                follow_redirects=True,
            )
        logger.debug("Session opened", provider=selector.provider_id)
        return cls(settings, store, selector, client, owns_client=owns_client)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
        await self.store.close()

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def provider(self) -> ProviderConfig:
        return self.selector.current_config()

    async def load_rate(self, from_code: str, to_code: str) -> RateResult:
        return await self.cache.load_rate(from_code, to_code)

    async def load_currencies(self) -> CurrencyListResult:
        """Load the currency list and reconcile the saved selection against it."""
        selection = await load_selection(self.store, self.settings.selection_max_age)
        if selection is None:
            selection = CurrencyPair(
                from_code=self.settings.DEFAULT_CURRENCY,
                to_code=self.settings.DEFAULT_TARGET_CURRENCY,
            )
        result = await self.cache.load_currency_list(selection)
        if result.selection is not None and result.selection != selection:
            await self._remember_selection(result.selection)
        return result

    async def current_selection(self) -> CurrencyPair | None:
        return await load_selection(self.store, self.settings.selection_max_age)

    async def select_currencies(self, from_code: str, to_code: str) -> CurrencyPair:
        pair = CurrencyPair(from_code=from_code.upper(), to_code=to_code.upper())
        await self._remember_selection(pair)
        return pair

    async def _remember_selection(self, pair: CurrencyPair) -> bool:
        """Best-effort save: a failed write is logged, never raised."""
        try:
            await save_selection(self.store, pair)
        except StoreWriteError as e:
            logger.warning(
                "Selection write failed",
                selection=f"{pair.from_code}:{pair.to_code}",
                error=str(e),
            )
            return False
        return True

    async def select_provider(self, name: str) -> ProviderConfig:
        """Switch provider and remember the choice; cached data is kept."""
        config = await self.selector.select(name)
        await self.store.set(StoreDomain.SETTINGS, PROVIDER_KEY, config.id)
        return config

    async def set_credential(self, value: str | None) -> bool:
        return await self.selector.set_credential(value)

    async def clear_credential(self) -> None:
        await self.selector.clear_credential()

    async def force_refresh(self) -> int:
        """Drop all cached data and asset generations, keeping stored credentials.

        Returns:
            Number of removed key-value entries.
        """
        removed = await self.store.clear(keep=_keep_credentials)

        generations = GenerationStore(self.settings.asset_db_path)
        try:
            await generations.open()
            for name in await generations.names():
                await generations.delete(name)
                logger.info("Deleted asset generation", stale_generation=name)
        finally:
            await generations.close()

        logger.info("Forced refresh", removed=removed)
        return removed

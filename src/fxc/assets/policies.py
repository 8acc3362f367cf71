"""
Fetch interception policies for the asset agent.

- CacheFirstPolicy: serve the current generation, refetch in the background
  on a hit, fetch and store on a miss, and degrade navigations to an offline
  page, a cached root document or a synthesized offline response.
- NetworkFirstPolicy: try the network, store successes, fall back to the
  current generation and, for navigations, to a cached root document.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

import aiosqlite
import httpx

from fxc.assets.generations import Generation
from fxc.assets.models import AssetRequest, AssetResponse
from fxc.exceptions import AssetFetchError
from fxc.logging import get_logger
from fxc.types import AssetPolicy

logger = get_logger(__name__)

NetworkFetch = Callable[[AssetRequest], Awaitable[AssetResponse]]
Scheduler = Callable[[Coroutine[Any, Any, None]], None]


class FetchPolicy(ABC):
    """Decides how an intercepted request is answered."""

    kind: AssetPolicy

    def __init__(self, fetch: NetworkFetch) -> None:
        self.fetch = fetch

    @abstractmethod
    async def handle(
        self,
        request: AssetRequest,
        generation: Generation,
        navigation_fallbacks: list[str],
    ) -> AssetResponse:
        """Answer an intercepted request.

        Raises:
            AssetFetchError: If nothing can be served for a non-navigation request.
        """
        ...

    async def _store(
        self, generation: Generation, request: AssetRequest, response: AssetResponse
    ) -> None:
        try:
            await generation.put(request, response)
        except aiosqlite.Error as e:
            logger.warning("Failed to store asset", url=request.url, error=str(e))

    async def _first_cached(
        self, generation: Generation, urls: list[str]
    ) -> AssetResponse | None:
        for url in urls:
            cached = await generation.match(url)
            if cached is not None:
                return cached
        return None


class CacheFirstPolicy(FetchPolicy):
    """Serve from cache; go to the network only on a miss."""

    kind = AssetPolicy.CACHE_FIRST

    def __init__(
        self,
        fetch: NetworkFetch,
        schedule: Scheduler | None = None,
        offline_page: str | None = None,
    ) -> None:
        """Initialize the policy.

        Args:
            fetch: Network fetch function.
            schedule: Runs background refetches; None disables them.
            offline_page: Absolute URL of a dedicated offline page, if any.
        """
        super().__init__(fetch)
        self.schedule = schedule
        self.offline_page = offline_page

    async def handle(
        self,
        request: AssetRequest,
        generation: Generation,
        navigation_fallbacks: list[str],
    ) -> AssetResponse:
        cached = await generation.match(request)
        if cached is not None:
            logger.debug("Serving cached asset", url=request.url)
            if self.schedule is not None:
                self.schedule(self._refresh(request, generation))
            return cached

        try:
            response = await self.fetch(request)
        except httpx.HTTPError as e:
            logger.warning("Asset fetch failed", url=request.url, error=str(e))
            if request.navigate:
                return await self._offline_navigation(request, generation, navigation_fallbacks)
            raise AssetFetchError(
                "Asset unavailable offline", context={"url": request.url}
            ) from e

        if response.ok:
            await self._store(generation, request, response)
        return response

    async def _refresh(self, request: AssetRequest, generation: Generation) -> None:
        """Keep the generation warm; failures only cost freshness."""
        try:
            response = await self.fetch(request)
        except httpx.HTTPError as e:
            logger.debug("Background refresh failed", url=request.url, error=str(e))
            return
        if response.ok:
            await self._store(generation, request, response)

    async def _offline_navigation(
        self,
        request: AssetRequest,
        generation: Generation,
        navigation_fallbacks: list[str],
    ) -> AssetResponse:
        candidates = ([self.offline_page] if self.offline_page else []) + navigation_fallbacks
        cached = await self._first_cached(generation, candidates)
        if cached is not None:
            logger.info("Serving offline fallback", url=request.url, fallback=cached.url)
            return cached
        logger.info("Serving synthesized offline page", url=request.url)
        return AssetResponse.offline(request.url)


class NetworkFirstPolicy(FetchPolicy):
    """Prefer fresh content; fall back to the current generation."""

    kind = AssetPolicy.NETWORK_FIRST

    async def handle(
        self,
        request: AssetRequest,
        generation: Generation,
        navigation_fallbacks: list[str],
    ) -> AssetResponse:
        response: AssetResponse | None = None
        try:
            response = await self.fetch(request)
        except httpx.HTTPError as e:
            logger.info("Network failed for asset", url=request.url, error=str(e))
        else:
            if response.ok:
                await self._store(generation, request, response)
                return response

        cached = await generation.match(request, ignore_search=True)
        if cached is not None:
            logger.debug("Serving cached asset", url=request.url)
            return cached

        if request.navigate:
            fallback = await self._first_cached(generation, navigation_fallbacks)
            if fallback is not None:
                logger.info("Serving root document fallback", url=request.url)
                return fallback

        if response is not None:
            return response
        raise AssetFetchError("No cached version available", context={"url": request.url})

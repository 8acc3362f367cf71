"""
Asset cache agent: versioned caching of the application's own assets.

Lifecycle: installing -> installed (waiting) -> activating -> activated,
and finally superseded when a newer agent activates on the same
registration.

- Install fetches every manifest entry into a fresh generation. A failing
  asset is logged and skipped; a store that cannot be opened aborts.
- Activate evicts every generation other than the current one, claims all
  open application instances and broadcasts AgentUpdated.
- Fetch interception answers GET requests for the app's own origin (or an
  allowed external static origin) using the configured policy. Everything
  else, including provider API calls, passes through untouched.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import aiosqlite
import httpx

from fxc import __version__
from fxc.assets.generations import Generation, GenerationStore
from fxc.assets.manifest import AssetManifest, resolve_url
from fxc.assets.messages import (
    AgentMessage,
    AgentUpdated,
    ListKeys,
    SkipWaiting,
    UpdateChannel,
    parse_message,
)
from fxc.assets.models import AssetRequest, AssetResponse
from fxc.assets.policies import CacheFirstPolicy, FetchPolicy, NetworkFetch, NetworkFirstPolicy
from fxc.config import Settings
from fxc.exceptions import AssetInstallError, StoreUnavailableError
from fxc.logging import get_logger, log_context
from fxc.types import AssetPolicy, DeployMode

logger = get_logger(__name__)

GENERATION_PREFIX = "currency-converter-"

# Both modes promote a freshly installed agent without waiting for old
# instances to close, so updates land promptly on platforms with weak
# background refresh.
PROMOTE_IMMEDIATELY: dict[DeployMode, bool] = {
    DeployMode.DEVELOPMENT: True,
    DeployMode.PRODUCTION: True,
}


class AgentState(str, Enum):
    """Lifecycle states of an asset agent."""

    NEW = "new"
    INSTALLING = "installing"
    INSTALLED = "installed"  # waiting for promotion
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    SUPERSEDED = "superseded"
    REDUNDANT = "redundant"  # install aborted


@dataclass
class InstallReport:
    """Outcome of populating a generation."""

    generation: str
    cached: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def generation_name(version: str) -> str:
    return f"{GENERATION_PREFIX}{version}"


async def evict_stale_generations(store: GenerationStore, current: str) -> list[str]:
    """Delete every stored generation whose name is not ``current``.

    Returns:
        Names of the deleted generations.
    """
    stale = [name for name in await store.names() if name != current]
    for name in stale:
        await store.delete(name)
        logger.info("Deleted stale generation", stale_generation=name)
    return stale


class HttpAssetFetcher:
    """Network fetch for assets over an httpx client."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def __call__(self, request: AssetRequest) -> AssetResponse:
        response = await self.client.request(request.method, request.url)
        return AssetResponse.from_httpx(response)


class AssetCacheAgent:
    """Background agent intercepting requests for the application's assets."""

    def __init__(
        self,
        store: GenerationStore,
        fetch: NetworkFetch,
        channel: UpdateChannel,
        version: str,
        build_version: str,
        origin: str,
        manifest: AssetManifest | None = None,
        policy: AssetPolicy = AssetPolicy.NETWORK_FIRST,
        deploy_mode: DeployMode = DeployMode.PRODUCTION,
        external_origins: Iterable[str] = (),
        background_refresh: bool = True,
    ) -> None:
        """Initialize the agent.

        Args:
            store: Durable generation storage.
            fetch: Network fetch function for assets.
            channel: Channel to running application instances.
            version: Version tag naming the current generation.
            build_version: Build stamp reported in update broadcasts.
            origin: The application's own origin.
            manifest: Declared assets; the built-in app shell if None.
            policy: Interception policy.
            deploy_mode: Deployment mode.
            external_origins: Other origins whose static resources are cached.
            background_refresh: Refetch cached assets after a cache-first hit.
        """
        self.store = store
        self.fetch = fetch
        self.channel = channel
        self.version = version
        self.build_version = build_version
        self.origin = origin.rstrip("/")
        self.manifest = manifest or AssetManifest()
        self.deploy_mode = deploy_mode
        self.external_origins = {o.rstrip("/") for o in external_origins}
        self.state = AgentState.NEW
        self.skip_waiting_requested = False
        self.registration: AgentRegistration | None = None
        self._tasks: set[asyncio.Task[None]] = set()

        if policy == AssetPolicy.CACHE_FIRST:
            offline_page = (
                resolve_url(self.origin, self.manifest.offline_page)
                if self.manifest.offline_page
                else None
            )
            self.policy: FetchPolicy = CacheFirstPolicy(
                fetch,
                schedule=self._schedule if background_refresh else None,
                offline_page=offline_page,
            )
        else:
            self.policy = NetworkFirstPolicy(fetch)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: httpx.AsyncClient,
        channel: UpdateChannel,
        store: GenerationStore | None = None,
        fresh_build: bool = False,
    ) -> AssetCacheAgent:
        """Build an agent from settings.

        ``fresh_build`` stamps a new build when BUILD_VERSION is unset;
        otherwise the recorded stamp of the last install is reused.
        """
        manifest = AssetManifest.load(settings.ASSET_MANIFEST)
        build_version = settings.resolve_build_version(fresh=fresh_build)
        return cls(
            store=store or GenerationStore(settings.asset_db_path),
            fetch=HttpAssetFetcher(client),
            channel=channel,
            version=f"v{__version__}-{build_version}",
            build_version=build_version,
            origin=settings.ASSET_ORIGIN,
            manifest=manifest,
            policy=settings.ASSET_POLICY,
            deploy_mode=settings.DEPLOY_MODE,
            external_origins=settings.ASSET_EXTERNAL_ORIGINS,
            background_refresh=settings.ASSET_BACKGROUND_REFRESH,
        )

    @property
    def generation_name(self) -> str:
        return generation_name(self.version)

    def _set_state(self, state: AgentState) -> None:
        logger.debug("Agent state change", previous=self.state.value, state=state.value)
        self.state = state

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def install(self) -> InstallReport:
        """Populate a fresh generation with every manifest entry.

        Raises:
            AssetInstallError: If the generation store cannot be opened.
        """
        with log_context(component="asset-agent", generation=self.generation_name):
            self._set_state(AgentState.INSTALLING)
            try:
                await self.store.open()
                generation = await self.store.open_generation(self.generation_name)
            except (StoreUnavailableError, aiosqlite.Error) as e:
                self._set_state(AgentState.REDUNDANT)
                raise AssetInstallError(
                    "Failed to open asset cache",
                    context={"generation": self.generation_name, "error": str(e)},
                ) from e

            report = InstallReport(generation=self.generation_name)
            for url in self.manifest.resolve(self.origin):
                if await self._cache_asset(generation, url):
                    report.cached.append(url)
                else:
                    report.skipped.append(url)

            self.skip_waiting_requested = PROMOTE_IMMEDIATELY[self.deploy_mode]
            self._set_state(AgentState.INSTALLED)
            logger.info(
                "Installed asset generation",
                cached=len(report.cached),
                skipped=len(report.skipped),
            )
            return report

    async def _cache_asset(self, generation: Generation, url: str) -> bool:
        request = AssetRequest(url=url)
        try:
            response = await self.fetch(request)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Skipping asset", url=url, error=str(e))
            return False
        if not response.ok:
            logger.warning("Skipping asset", url=url, status=response.status)
            return False
        try:
            await generation.put(request, response)
        except aiosqlite.Error as e:
            logger.warning("Skipping asset", url=url, error=str(e))
            return False
        return True

    async def activate(self) -> list[str]:
        """Evict stale generations, claim open instances and broadcast the update.

        Returns:
            Names of the evicted generations.

        Raises:
            AssetInstallError: If the current generation was never installed.
        """
        with log_context(component="asset-agent", generation=self.generation_name):
            await self.store.open()
            if self.generation_name not in await self.store.names():
                raise AssetInstallError(
                    f"Generation {self.generation_name} is not installed; run install first",
                    context={"generation": self.generation_name},
                )
            self._set_state(AgentState.ACTIVATING)
            evicted = await evict_stale_generations(self.store, self.generation_name)

            subscriptions = self.channel.subscriptions
            for subscription in subscriptions:
                subscription.controller = self.version
            self._set_state(AgentState.ACTIVATED)

            recipients = self.channel.publish(
                AgentUpdated(version=self.version, build_version=self.build_version)
            )
            logger.info(
                "Activated asset generation",
                evicted=len(evicted),
                claimed=len(subscriptions),
                notified=recipients,
            )
            return evicted

    def supersede(self) -> None:
        self._set_state(AgentState.SUPERSEDED)

    # ------------------------------------------------------------------ #
    # Interception
    # ------------------------------------------------------------------ #

    def should_intercept(self, request: AssetRequest) -> bool:
        """Only GETs for our own origin or an allowed static origin are handled."""
        if request.method.upper() != "GET":
            return False
        return request.origin == self.origin or request.origin in self.external_origins

    async def handle_fetch(self, request: AssetRequest) -> AssetResponse | None:
        """Answer an intercepted request, or return None to let it pass through.

        Raises:
            AssetFetchError: If a non-navigation request can be served neither
                from the network nor from the current generation.
        """
        if self.state != AgentState.ACTIVATED or not self.should_intercept(request):
            return None
        generation = Generation(self.store, self.generation_name)
        with log_context(component="asset-agent", generation=self.generation_name):
            return await self.policy.handle(
                request,
                generation,
                self.manifest.navigation_fallbacks(self.origin),
            )

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------ #
    # Messages
    # ------------------------------------------------------------------ #

    async def handle_message(self, message: AgentMessage | dict[str, Any]) -> list[str] | None:
        """Process a control message.

        ``SkipWaiting`` promotes a waiting agent; ``ListKeys`` returns the
        request identities held in the current generation.
        """
        if isinstance(message, dict):
            parsed = parse_message(message)
            if parsed is None:
                return None
            message = parsed

        if isinstance(message, SkipWaiting):
            self.skip_waiting_requested = True
            if self.state == AgentState.INSTALLED:
                if self.registration is not None:
                    await self.registration.promote(self)
                else:
                    await self.activate()
            return None

        if isinstance(message, ListKeys):
            return await self.keys()

        return None

    async def keys(self) -> list[str]:
        """Request identities held in the current generation."""
        await self.store.open()
        return await Generation(self.store, self.generation_name).keys()

    async def close(self) -> None:
        """Cancel background refetches and close the store."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.store.close()


class AgentRegistration:
    """Tracks the active and waiting agents for one application scope."""

    def __init__(self, channel: UpdateChannel) -> None:
        self.channel = channel
        self.active: AssetCacheAgent | None = None
        self.waiting: AssetCacheAgent | None = None

    async def register(self, agent: AssetCacheAgent) -> InstallReport:
        """Install an agent and promote it when allowed.

        A new agent waits while another is active unless it requested
        immediate promotion.
        """
        agent.registration = self
        report = await agent.install()
        if self.active is None or agent.skip_waiting_requested:
            await self.promote(agent)
        else:
            self.waiting = agent
            logger.info("Agent waiting for promotion", version=agent.version)
        return report

    async def promote(self, agent: AssetCacheAgent) -> None:
        """Activate ``agent`` and supersede the previous one."""
        previous = self.active
        if self.waiting is agent:
            self.waiting = None
        await agent.activate()
        self.active = agent
        if previous is not None and previous is not agent:
            previous.supersede()
            await previous.close()

    async def release(self) -> None:
        """All old instances closed: a waiting agent may now take over."""
        if self.waiting is not None:
            await self.promote(self.waiting)

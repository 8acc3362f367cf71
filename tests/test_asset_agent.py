"""
Tests for the asset cache agent lifecycle, interception and eviction.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import aiosqlite
import httpx
import pytest

from fxc.app import AppInstance
from fxc.assets import (
    AgentRegistration,
    AgentState,
    AssetCacheAgent,
    AssetManifest,
    AssetRequest,
    AssetResponse,
    GenerationStore,
    ListKeys,
    SkipWaiting,
    UpdateChannel,
    evict_stale_generations,
    generation_name,
)
from fxc.assets import agent as agent_module
from fxc.exceptions import AssetFetchError, AssetInstallError, StoreUnavailableError
from fxc.types import AssetPolicy, DeployMode

ORIGIN = "https://app.test"
CDN = "https://cdn.test"

MANIFEST = AssetManifest(
    assets=("./", "./index.html", "./styles.css", f"{CDN}/lib.css"),
    root_document="./index.html",
)


class FakeNetwork:
    """Asset fetch function serving a fixed set of URLs."""

    def __init__(self, assets: dict[str, bytes]) -> None:
        self.assets = assets
        self.calls: list[str] = []
        self.offline = False
        self.hang: asyncio.Event | None = None
        self.invalid: set[str] = set()

    async def __call__(self, request: AssetRequest) -> AssetResponse:
        self.calls.append(request.url)
        if request.url in self.invalid:
            raise httpx.InvalidURL(f"Invalid URL: {request.url}")
        if self.hang is not None:
            await self.hang.wait()
        if self.offline:
            raise httpx.ConnectError("offline")
        body = self.assets.get(request.key)
        if body is None:
            return AssetResponse(url=request.url, status=404, body=b"not found")
        return AssetResponse(url=request.url, status=200, body=body)


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork(
        {
            f"{ORIGIN}/": b"<html>root</html>",
            f"{ORIGIN}/index.html": b"<html>index</html>",
            f"{ORIGIN}/styles.css": b"body{}",
            f"{CDN}/lib.css": b".btn{}",
        }
    )


@pytest.fixture
def channel() -> UpdateChannel:
    return UpdateChannel()


@pytest.fixture
async def make_agent(temp_dir: Path, network: FakeNetwork, channel: UpdateChannel):
    """Factory for agents sharing one asset database."""
    agents: list[AssetCacheAgent] = []

    def factory(
        version: str = "v1",
        policy: AssetPolicy = AssetPolicy.CACHE_FIRST,
        **kwargs,
    ) -> AssetCacheAgent:
        agent = AssetCacheAgent(
            store=GenerationStore(temp_dir / "assets.db"),
            fetch=network,
            channel=channel,
            version=version,
            build_version="2025.01.15.1030",
            origin=ORIGIN,
            manifest=MANIFEST,
            policy=policy,
            external_origins=[CDN],
            **kwargs,
        )
        agents.append(agent)
        return agent

    yield factory
    for agent in agents:
        await agent.close()


async def active_agent(factory, **kwargs) -> AssetCacheAgent:
    agent = factory(**kwargs)
    await agent.install()
    await agent.activate()
    return agent


class TestInstall:
    """Test populating a generation."""

    @pytest.mark.asyncio
    async def test_caches_every_manifest_entry(self, make_agent) -> None:
        agent = make_agent()
        report = await agent.install()

        assert report.generation == "currency-converter-v1"
        assert report.skipped == []
        assert len(report.cached) == 4
        assert agent.state == AgentState.INSTALLED
        assert f"{CDN}/lib.css" in await agent.keys()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", [DeployMode.DEVELOPMENT, DeployMode.PRODUCTION])
    async def test_requests_immediate_promotion(self, make_agent, mode: DeployMode) -> None:
        agent = make_agent(deploy_mode=mode)
        await agent.install()
        assert agent.skip_waiting_requested

    @pytest.mark.asyncio
    async def test_failing_asset_is_skipped(self, make_agent, network: FakeNetwork) -> None:
        """Test that one unreachable asset does not abort the install."""
        del network.assets[f"{ORIGIN}/styles.css"]
        agent = make_agent()

        report = await agent.install()

        assert report.skipped == [f"{ORIGIN}/styles.css"]
        assert len(report.cached) == 3
        assert agent.state == AgentState.INSTALLED

    @pytest.mark.asyncio
    async def test_malformed_url_is_skipped(self, make_agent, network: FakeNetwork) -> None:
        network.invalid.add(f"{ORIGIN}/styles.css")
        agent = make_agent()

        report = await agent.install()

        assert report.skipped == [f"{ORIGIN}/styles.css"]
        assert len(report.cached) == 3
        assert agent.state == AgentState.INSTALLED

    @pytest.mark.asyncio
    async def test_offline_install_skips_everything(
        self, make_agent, network: FakeNetwork
    ) -> None:
        network.offline = True
        report = await make_agent().install()

        assert report.cached == []
        assert len(report.skipped) == 4

    @pytest.mark.asyncio
    async def test_unopenable_store_aborts(self, make_agent) -> None:
        agent = make_agent()
        with patch.object(
            agent.store, "open", AsyncMock(side_effect=StoreUnavailableError("no disk"))
        ):
            with pytest.raises(AssetInstallError):
                await agent.install()

        assert agent.state == AgentState.REDUNDANT


class TestActivate:
    """Test activation, eviction and update broadcast."""

    @pytest.mark.asyncio
    async def test_evicts_every_other_generation(self, make_agent, temp_dir: Path) -> None:
        store = GenerationStore(temp_dir / "assets.db")
        await store.open()
        for version in ("v1", "v2"):
            await store.open_generation(generation_name(version))
        await store.close()

        agent = make_agent(version="v3")
        await agent.install()
        evicted = await agent.activate()

        assert sorted(evicted) == [generation_name("v1"), generation_name("v2")]
        assert await agent.store.names() == [generation_name("v3")]
        assert agent.state == AgentState.ACTIVATED

    @pytest.mark.asyncio
    async def test_uninstalled_generation_is_not_activated(self, make_agent) -> None:
        """Test that activating an unknown build keeps the installed generation."""
        installed = make_agent(version="v1")
        await installed.install()
        await installed.close()

        agent = make_agent(version="v2")
        with pytest.raises(AssetInstallError):
            await agent.activate()

        assert await agent.store.names() == [generation_name("v1")]
        assert agent.state == AgentState.NEW

    @pytest.mark.asyncio
    async def test_eviction_is_not_prefix_bound(self, temp_dir: Path) -> None:
        store = GenerationStore(temp_dir / "assets.db")
        await store.open()
        await store.open_generation("legacy-cache")
        await store.open_generation("current")

        try:
            assert await evict_stale_generations(store, "current") == ["legacy-cache"]
            assert await store.names() == ["current"]
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_claims_instances_and_broadcasts(
        self, make_agent, channel: UpdateChannel
    ) -> None:
        """Test that open instances are notified and controlled without reload."""
        first = AppInstance(channel)
        second = AppInstance(channel)
        first.show_error("Network error: 503")

        await active_agent(make_agent)

        assert first.process_pending() == 1
        assert second.process_pending() == 1
        assert first.error is None
        assert first.version == "v1"
        assert first.build_version == "2025.01.15.1030"
        assert first.controller == "v1"
        assert second.controller == "v1"

    @pytest.mark.asyncio
    async def test_closed_instance_not_notified(self, make_agent, channel: UpdateChannel) -> None:
        app = AppInstance(channel)
        app.close()

        await active_agent(make_agent)

        assert app.process_pending() == 0


class TestCacheFirst:
    """Test the cache-first interception policy."""

    @pytest.mark.asyncio
    async def test_cached_asset_served_while_network_hangs(
        self, make_agent, network: FakeNetwork
    ) -> None:
        """Test that a cache hit never waits for the network."""
        agent = await active_agent(make_agent)
        network.hang = asyncio.Event()

        response = await asyncio.wait_for(
            agent.handle_fetch(AssetRequest(f"{ORIGIN}/styles.css")), timeout=1.0
        )

        assert response is not None
        assert response.from_cache
        assert response.body == b"body{}"

    @pytest.mark.asyncio
    async def test_hit_refreshes_in_background(self, make_agent, network: FakeNetwork) -> None:
        agent = await active_agent(make_agent)
        network.assets[f"{ORIGIN}/styles.css"] = b"body{color:red}"
        calls_before = len(network.calls)

        first = await agent.handle_fetch(AssetRequest(f"{ORIGIN}/styles.css"))
        await asyncio.gather(*list(agent._tasks))
        second = await agent.handle_fetch(AssetRequest(f"{ORIGIN}/styles.css"))

        assert first.body == b"body{}"
        assert second.body == b"body{color:red}"
        assert len(network.calls) > calls_before

    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores(self, make_agent, network: FakeNetwork) -> None:
        agent = await active_agent(make_agent)
        network.assets[f"{ORIGIN}/extra.js"] = b"js"

        response = await agent.handle_fetch(AssetRequest(f"{ORIGIN}/extra.js"))

        assert not response.from_cache
        assert f"{ORIGIN}/extra.js" in await agent.keys()

    @pytest.mark.asyncio
    async def test_offline_navigation_uses_root_document(
        self, make_agent, network: FakeNetwork
    ) -> None:
        agent = await active_agent(make_agent)
        network.offline = True

        response = await agent.handle_fetch(AssetRequest(f"{ORIGIN}/convert", navigate=True))

        assert response.body == b"<html>index</html>"
        assert response.from_cache

    @pytest.mark.asyncio
    async def test_offline_navigation_with_empty_cache(
        self, make_agent, network: FakeNetwork
    ) -> None:
        """Test that a minimal offline response is synthesized as a last resort."""
        network.offline = True
        agent = await active_agent(make_agent)

        response = await agent.handle_fetch(AssetRequest(f"{ORIGIN}/", navigate=True))

        assert response.status == 503
        assert b"offline" in response.body
        assert response.headers["content-type"].startswith("text/html")

    @pytest.mark.asyncio
    async def test_offline_page_preferred(self, make_agent, network: FakeNetwork) -> None:
        network.assets[f"{ORIGIN}/offline.html"] = b"<html>offline page</html>"
        agent = make_agent()
        agent.manifest = AssetManifest(
            assets=MANIFEST.assets + ("./offline.html",), offline_page="./offline.html"
        )
        agent.policy.offline_page = f"{ORIGIN}/offline.html"
        await agent.install()
        await agent.activate()
        network.offline = True

        response = await agent.handle_fetch(AssetRequest(f"{ORIGIN}/convert", navigate=True))

        assert response.body == b"<html>offline page</html>"

    @pytest.mark.asyncio
    async def test_offline_subresource_miss_fails(
        self, make_agent, network: FakeNetwork
    ) -> None:
        agent = await active_agent(make_agent)
        network.offline = True

        with pytest.raises(AssetFetchError):
            await agent.handle_fetch(AssetRequest(f"{ORIGIN}/missing.png"))


class TestNetworkFirst:
    """Test the network-first interception policy."""

    @pytest.mark.asyncio
    async def test_fresh_response_stored(self, make_agent, network: FakeNetwork) -> None:
        agent = await active_agent(make_agent, policy=AssetPolicy.NETWORK_FIRST)
        network.assets[f"{ORIGIN}/styles.css"] = b"body{margin:0}"

        response = await agent.handle_fetch(AssetRequest(f"{ORIGIN}/styles.css"))
        network.offline = True
        cached = await agent.handle_fetch(AssetRequest(f"{ORIGIN}/styles.css"))

        assert response.body == b"body{margin:0}"
        assert not response.from_cache
        assert cached.body == b"body{margin:0}"
        assert cached.from_cache

    @pytest.mark.asyncio
    async def test_offline_match_ignores_query(self, make_agent, network: FakeNetwork) -> None:
        agent = await active_agent(make_agent, policy=AssetPolicy.NETWORK_FIRST)
        network.offline = True

        response = await agent.handle_fetch(AssetRequest(f"{ORIGIN}/styles.css?v=2"))

        assert response.body == b"body{}"

    @pytest.mark.asyncio
    async def test_offline_navigation_uses_root_document(
        self, make_agent, network: FakeNetwork
    ) -> None:
        agent = await active_agent(make_agent, policy=AssetPolicy.NETWORK_FIRST)
        network.offline = True

        response = await agent.handle_fetch(AssetRequest(f"{ORIGIN}/rates/today", navigate=True))

        assert response.body == b"<html>index</html>"

    @pytest.mark.asyncio
    async def test_error_status_returned_when_nothing_cached(
        self, make_agent, network: FakeNetwork
    ) -> None:
        agent = await active_agent(make_agent, policy=AssetPolicy.NETWORK_FIRST)

        response = await agent.handle_fetch(AssetRequest(f"{ORIGIN}/nope.js"))

        assert response.status == 404

    @pytest.mark.asyncio
    async def test_offline_miss_fails(self, make_agent, network: FakeNetwork) -> None:
        agent = await active_agent(make_agent, policy=AssetPolicy.NETWORK_FIRST)
        network.offline = True

        with pytest.raises(AssetFetchError):
            await agent.handle_fetch(AssetRequest(f"{ORIGIN}/nope.js"))


class TestInterceptionScope:
    """Test which requests the agent handles at all."""

    @pytest.mark.asyncio
    async def test_non_get_passes_through(self, make_agent) -> None:
        agent = await active_agent(make_agent)
        assert await agent.handle_fetch(AssetRequest(f"{ORIGIN}/", method="POST")) is None

    @pytest.mark.asyncio
    async def test_provider_api_passes_through(self, make_agent, network: FakeNetwork) -> None:
        """Test that rate requests to provider origins are never intercepted."""
        agent = await active_agent(make_agent)
        calls_before = len(network.calls)

        result = await agent.handle_fetch(
            AssetRequest("https://api.frankfurter.app/latest?from=USD&to=EUR")
        )

        assert result is None
        assert len(network.calls) == calls_before

    @pytest.mark.asyncio
    async def test_allowed_external_origin_handled(self, make_agent) -> None:
        agent = await active_agent(make_agent)
        response = await agent.handle_fetch(AssetRequest(f"{CDN}/lib.css"))
        assert response.body == b".btn{}"

    @pytest.mark.asyncio
    async def test_inactive_agent_does_not_intercept(self, make_agent) -> None:
        agent = make_agent()
        await agent.install()
        assert await agent.handle_fetch(AssetRequest(f"{ORIGIN}/")) is None


class TestMessages:
    """Test control messages and registration."""

    @pytest.mark.asyncio
    async def test_list_keys(self, make_agent) -> None:
        agent = await active_agent(make_agent)

        keys = await agent.handle_message(ListKeys())
        wire_keys = await agent.handle_message({"type": "LIST_KEYS"})

        assert keys == wire_keys
        assert f"{ORIGIN}/index.html" in keys

    @pytest.mark.asyncio
    async def test_unknown_message_ignored(self, make_agent) -> None:
        agent = await active_agent(make_agent)
        assert await agent.handle_message({"type": "BOGUS"}) is None

    @pytest.mark.asyncio
    async def test_skip_waiting_promotes_waiting_agent(
        self, make_agent, channel: UpdateChannel
    ) -> None:
        registration = AgentRegistration(channel)
        app = AppInstance(channel)
        old = make_agent(version="v1")
        new = make_agent(version="v2")

        with patch.dict(agent_module.PROMOTE_IMMEDIATELY, {DeployMode.PRODUCTION: False}):
            await registration.register(old)
            await registration.register(new)

        assert registration.active is old
        assert registration.waiting is new
        assert new.state == AgentState.INSTALLED

        await new.handle_message({"type": "SKIP_WAITING"})

        assert registration.active is new
        assert registration.waiting is None
        assert old.state == AgentState.SUPERSEDED
        assert new.state == AgentState.ACTIVATED
        assert await new.store.names() == [generation_name("v2")]
        app.process_pending()
        assert app.version == "v2"
        assert app.controller == "v2"

    @pytest.mark.asyncio
    async def test_immediate_promotion_on_register(
        self, make_agent, channel: UpdateChannel
    ) -> None:
        registration = AgentRegistration(channel)
        old = make_agent(version="v1")
        new = make_agent(version="v2")

        await registration.register(old)
        await registration.register(new)

        assert registration.active is new
        assert old.state == AgentState.SUPERSEDED

    @pytest.mark.asyncio
    async def test_skip_waiting_without_registration(self, make_agent) -> None:
        agent = make_agent()
        await agent.install()

        await agent.handle_message(SkipWaiting())

        assert agent.state == AgentState.ACTIVATED


class TestGenerationStore:
    """Test opening the generation store."""

    @pytest.mark.asyncio
    async def test_schema_failure_closes_connection(self, temp_dir: Path) -> None:
        connection = MagicMock()
        connection.execute = AsyncMock(side_effect=aiosqlite.DatabaseError("not a database"))
        connection.close = AsyncMock()
        store = GenerationStore(temp_dir / "assets.db")

        with patch.object(aiosqlite, "connect", AsyncMock(return_value=connection)):
            with pytest.raises(StoreUnavailableError):
                await store.open()

        connection.close.assert_awaited_once()
        with pytest.raises(RuntimeError):
            await store.names()

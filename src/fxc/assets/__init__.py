"""Asset cache agent: generations, interception policies and update messages."""

from fxc.assets.agent import (
    AgentRegistration,
    AgentState,
    AssetCacheAgent,
    HttpAssetFetcher,
    InstallReport,
    evict_stale_generations,
    generation_name,
)
from fxc.assets.generations import Generation, GenerationStore
from fxc.assets.manifest import AssetManifest
from fxc.assets.messages import (
    AgentUpdated,
    ListKeys,
    SkipWaiting,
    Subscription,
    UpdateChannel,
    parse_message,
)
from fxc.assets.models import AssetRequest, AssetResponse

__all__ = [
    "AgentRegistration",
    "AgentState",
    "AgentUpdated",
    "AssetCacheAgent",
    "AssetManifest",
    "AssetRequest",
    "AssetResponse",
    "Generation",
    "GenerationStore",
    "HttpAssetFetcher",
    "InstallReport",
    "ListKeys",
    "SkipWaiting",
    "Subscription",
    "UpdateChannel",
    "evict_stale_generations",
    "generation_name",
    "parse_message",
]

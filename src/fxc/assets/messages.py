"""
Typed messages between the asset agent and running application instances.

The agent publishes on an UpdateChannel; each instance holds a
Subscription. Delivery is fire-and-forget: publishing never waits for a
subscriber and a slow subscriber only delays itself.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from fxc.logging import get_logger
from fxc.types import generate_id, to_epoch_ms, utc_now

logger = get_logger(__name__)


class MessageType(str, Enum):
    """Wire ``type`` tags."""

    SW_UPDATED = "SW_UPDATED"
    SKIP_WAITING = "SKIP_WAITING"
    LIST_KEYS = "LIST_KEYS"


@dataclass(frozen=True)
class AgentUpdated:
    """Broadcast by the agent when a new generation becomes active."""

    version: str
    build_version: str
    timestamp: int = field(default_factory=lambda: to_epoch_ms(utc_now()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": MessageType.SW_UPDATED.value,
            "version": self.version,
            "buildVersion": self.build_version,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class SkipWaiting:
    """Control command: promote a waiting agent immediately."""

    def to_dict(self) -> dict[str, Any]:
        return {"type": MessageType.SKIP_WAITING.value}


@dataclass(frozen=True)
class ListKeys:
    """Diagnostic request for the keys held in the active generation."""

    def to_dict(self) -> dict[str, Any]:
        return {"type": MessageType.LIST_KEYS.value}


AgentMessage = Union[AgentUpdated, SkipWaiting, ListKeys]


def parse_message(data: Any) -> AgentMessage | None:
    """Parse a wire dict into a typed message; unknown types yield None."""
    if not isinstance(data, dict):
        return None
    kind = data.get("type")
    if kind == MessageType.SKIP_WAITING.value:
        return SkipWaiting()
    if kind == MessageType.LIST_KEYS.value:
        return ListKeys()
    if kind == MessageType.SW_UPDATED.value:
        try:
            return AgentUpdated(
                version=str(data["version"]),
                build_version=str(data.get("buildVersion", "")),
                timestamp=int(data["timestamp"]),
            )
        except (KeyError, TypeError, ValueError):
            return None
    logger.warning("Ignoring unknown message", type=kind)
    return None


class Subscription:
    """One application instance's inbox on the channel."""

    def __init__(self, channel: UpdateChannel, client_id: str) -> None:
        self.channel = channel
        self.client_id = client_id
        self.queue: asyncio.Queue[AgentMessage] = asyncio.Queue()
        # Version of the agent currently controlling this instance
        self.controller: str | None = None

    def pending(self) -> list[AgentMessage]:
        """Drain messages without waiting."""
        messages: list[AgentMessage] = []
        while not self.queue.empty():
            messages.append(self.queue.get_nowait())
        return messages

    async def receive(self) -> AgentMessage:
        """Wait for the next message."""
        return await self.queue.get()

    def close(self) -> None:
        self.channel.unsubscribe(self)


class UpdateChannel:
    """Publish/subscribe channel from the agent to application instances."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}

    def subscribe(self, client_id: str | None = None) -> Subscription:
        subscription = Subscription(self, client_id or generate_id("app"))
        self._subscriptions[subscription.client_id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.client_id, None)

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    def publish(self, message: AgentMessage) -> int:
        """Deliver to every open instance without waiting; returns the recipient count."""
        for subscription in self.subscriptions:
            subscription.queue.put_nowait(message)
        return len(self._subscriptions)

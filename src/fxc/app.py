"""
Foreground application instance.

Subscribes to the agent's update channel; when a new generation activates it
clears any displayed error and records the new version.
"""

from __future__ import annotations

from fxc.assets.messages import AgentMessage, AgentUpdated, Subscription, UpdateChannel
from fxc.logging import get_logger

logger = get_logger(__name__)


class AppInstance:
    """One open window of the application."""

    def __init__(self, channel: UpdateChannel, client_id: str | None = None) -> None:
        self.subscription: Subscription = channel.subscribe(client_id)
        self.error: str | None = None
        self.version: str | None = None
        self.build_version: str | None = None

    @property
    def client_id(self) -> str:
        return self.subscription.client_id

    @property
    def controller(self) -> str | None:
        """Version of the agent currently intercepting this instance's requests."""
        return self.subscription.controller

    def show_error(self, message: str) -> None:
        self.error = message

    def handle(self, message: AgentMessage) -> None:
        if isinstance(message, AgentUpdated):
            logger.info(
                "Application updated",
                client_id=self.client_id,
                version=message.version,
                build_version=message.build_version,
            )
            self.error = None
            self.version = message.version
            self.build_version = message.build_version

    def process_pending(self) -> int:
        """Handle every queued message; returns how many were handled."""
        messages = self.subscription.pending()
        for message in messages:
            self.handle(message)
        return len(messages)

    def close(self) -> None:
        self.subscription.close()

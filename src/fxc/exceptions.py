"""
Custom exception hierarchy for the currency converter cache engine.

All exceptions inherit from FXCError, which provides optional context
for structured error handling and logging.
"""

from __future__ import annotations

from typing import Any


class FXCError(Exception):
    """Base exception for all converter errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(FXCError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Unknown provider name
        - Malformed asset manifest
    """

    pass


class CredentialRequiredError(FXCError):
    """Raised when the active provider mandates a credential and none is set.

    Never retried against the network; the caller should prompt for a
    credential.

    Context should include:
        - provider: The provider identifier
    """

    pass


class FetchError(FXCError):
    """Base for failures of a remote fetch that trigger the cache fallback."""

    pass


class InvalidCredentialError(FetchError):
    """Raised when a provider rejects the credential (401/403).

    Context should include:
        - provider: The provider identifier
        - status_code: The HTTP status code
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.status_code = status_code


class NetworkError(FetchError):
    """Raised for any other non-success HTTP status or a transport failure.

    ``status_code`` is None when the request never produced a response.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.status_code = status_code


class RateNotFoundError(FetchError):
    """Raised when no extraction strategy could locate a rate in a payload.

    Context should include:
        - provider: The provider identifier
        - pair: The requested ``FROM:TO`` pair
    """

    pass


class MalformedResponseError(FetchError):
    """Raised when a response body is not JSON or has no usable shape."""

    pass


class StoreWriteError(FXCError):
    """Raised by a storage backend when a write fails.

    Never propagated to callers of cache operations; writes are best-effort.
    """

    pass


class StoreUnavailableError(FXCError):
    """Raised when a storage backend cannot be opened."""

    pass


class AssetInstallError(FXCError):
    """Raised when the asset generation store cannot be opened during install."""

    pass


class AssetFetchError(FXCError):
    """Raised when an intercepted asset request cannot be served at all.

    Context should include:
        - url: The requested URL
    """

    pass

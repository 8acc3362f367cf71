"""
Core types for the currency converter cache engine.

This module defines the fundamental data structures used throughout the system:
- Enums for store domains, backends, data sources and asset policies
- Frozen dataclasses for cache records (RateRecord, CurrencyListRecord)
- Result wrappers that tag a record with where it came from
- Helper functions for ID generation, timestamps and currency codes
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from uuid6 import uuid7

CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}$")


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "app", "msg")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (the persisted timestamp format)."""
    return int(dt.timestamp() * 1000)


def from_epoch_ms(value: int | float) -> datetime:
    """Convert epoch milliseconds back to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def is_currency_code(value: Any) -> bool:
    """Return True for exactly three uppercase ASCII letters."""
    return isinstance(value, str) and bool(CURRENCY_CODE_RE.match(value))


def rate_key(provider: str, from_code: str, to_code: str) -> str:
    """Composite key for a rate record: ``provider:from:to``."""
    return f"{provider}:{from_code}:{to_code}"


def credential_key(provider: str) -> str:
    """Settings key holding the credential for a provider."""
    return f"credential-{provider}"


class StoreDomain(str, Enum):
    """Named partitions of the key-value store."""

    CURRENCIES = "currencies"
    RATES = "rates"
    SETTINGS = "settings"


class Backend(str, Enum):
    """Which storage backend served a call."""

    STRUCTURED = "structured"  # SQLite, transactional
    FLAT = "flat"  # JSON document, string-keyed
    NONE = "none"  # No store touched (synthetic results)


class DataSource(str, Enum):
    """Where a returned record came from."""

    NETWORK = "network"
    CACHE = "cache"
    SYNTHETIC = "synthetic"


class DeployMode(str, Enum):
    """Deployment mode of the asset agent."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


class AssetPolicy(str, Enum):
    """Fetch interception policy of the asset agent."""

    CACHE_FIRST = "cache_first"
    NETWORK_FIRST = "network_first"


@dataclass(frozen=True)
class StoreResult:
    """Value read from the key-value store, tagged with the backend that served it."""

    value: Any
    backend: Backend

    @property
    def found(self) -> bool:
        return self.value is not None


@dataclass(frozen=True)
class CacheRecord:
    """A cached value plus its fetch timestamp.

    Records are immutable once written and replaced wholesale on refresh.
    """

    key: str
    fetched_at: datetime

    def age(self, now: datetime | None = None) -> timedelta:
        """Time elapsed since the record was fetched."""
        return (now or utc_now()) - self.fetched_at

    def is_stale(self, horizon: timedelta, now: datetime | None = None) -> bool:
        """True when the record is older than ``horizon``."""
        return self.age(now) > horizon


@dataclass(frozen=True)
class RateRecord(CacheRecord):
    """Pairwise exchange rate record.

    Key is ``provider:from:to``. A record for ``from == to`` is never
    persisted; it is synthesized with ``rate = 1``.
    """

    rate: float
    api_date: str

    def __post_init__(self) -> None:
        if not self.rate > 0:
            raise ValueError(f"Rate must be > 0, got {self.rate!r}")

    def to_dict(self) -> dict[str, Any]:
        """Persisted representation."""
        return {
            "key": self.key,
            "rate": self.rate,
            "apiDate": self.api_date,
            "fetchedAt": to_epoch_ms(self.fetched_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RateRecord:
        """Rebuild a record from its persisted representation."""
        return cls(
            key=data["key"],
            fetched_at=from_epoch_ms(data["fetchedAt"]),
            rate=float(data["rate"]),
            api_date=str(data.get("apiDate") or ""),
        )


@dataclass(frozen=True)
class CurrencyListRecord(CacheRecord):
    """Currency list for one provider: code -> display name.

    Key is the provider identifier. The display name equals the code when
    the source has no name.
    """

    currencies: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        bad = [code for code in self.currencies if not is_currency_code(code)]
        if bad:
            raise ValueError(f"Invalid currency codes: {bad}")

    @property
    def codes(self) -> list[str]:
        """Sorted currency codes."""
        return sorted(self.currencies)

    def to_dict(self) -> dict[str, Any]:
        """Persisted representation."""
        return {
            "provider": self.key,
            "data": dict(self.currencies),
            "fetchedAt": to_epoch_ms(self.fetched_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CurrencyListRecord:
        """Rebuild a record from its persisted representation."""
        return cls(
            key=data["provider"],
            fetched_at=from_epoch_ms(data["fetchedAt"]),
            currencies={str(k): str(v) for k, v in data["data"].items()},
        )


@dataclass(frozen=True)
class CurrencyPair:
    """A selected (from, to) currency pair."""

    from_code: str
    to_code: str

    def swapped(self) -> CurrencyPair:
        return CurrencyPair(from_code=self.to_code, to_code=self.from_code)


@dataclass(frozen=True)
class RateResult:
    """A rate record tagged with its source and serving backend."""

    record: RateRecord
    source: DataSource
    backend: Backend = Backend.NONE

    @property
    def rate(self) -> float:
        return self.record.rate

    @property
    def api_date(self) -> str:
        return self.record.api_date

    @property
    def fetched_at(self) -> datetime:
        return self.record.fetched_at

    def is_stale(self, horizon: timedelta, now: datetime | None = None) -> bool:
        """Staleness flag for presentation; never enforced by the cache."""
        return self.record.is_stale(horizon, now)

    def convert(self, amount: float) -> float:
        """Convert ``amount`` of the source currency into the target currency."""
        return amount * self.record.rate

    def to_dict(self) -> dict[str, Any]:
        return {**self.record.to_dict(), "source": self.source.value}


@dataclass(frozen=True)
class CurrencyListResult:
    """A currency list tagged with its source, plus the reconciled selection."""

    record: CurrencyListRecord
    source: DataSource
    backend: Backend = Backend.NONE
    selection: CurrencyPair | None = None

    @property
    def currencies(self) -> dict[str, str]:
        return self.record.currencies

    def is_stale(self, horizon: timedelta, now: datetime | None = None) -> bool:
        return self.record.is_stale(horizon, now)


def age_of(record: CacheRecord, now: datetime | None = None) -> timedelta:
    """Time elapsed since ``record`` was fetched."""
    return record.age(now)


def is_stale(record: CacheRecord, horizon: timedelta, now: datetime | None = None) -> bool:
    """Presentation flag: True when ``record`` is older than ``horizon``."""
    return record.is_stale(horizon, now)

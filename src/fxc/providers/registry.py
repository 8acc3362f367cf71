"""
Exchange-rate provider descriptors.

Each provider is a read-only ProviderConfig selected by name at runtime.
Add new providers to ``_PROVIDERS``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fxc.exceptions import ConfigurationError


@dataclass(frozen=True)
class ProviderConfig:
    """Static descriptor of a remote data source."""

    id: str
    name: str
    api_base: str
    requires_credential: bool
    currencies_endpoint: str
    rates_endpoint: str
    description: str = ""
    attribution_url: str = ""
    max_currencies: int | None = None
    credential_param: str = "api_key"
    # Extra query parameters sent with every rate request
    rate_params: dict[str, str] = field(default_factory=dict)
    # Name of the extraction strategy tried first for this provider's payloads
    rate_shape: str = "rates_mapping"
    currency_shape: str = "code_name_mapping"


FRANKFURTER = ProviderConfig(
    id="frankfurter",
    name="Frankfurter",
    description="Free service with 31 major currencies",
    api_base="https://api.frankfurter.app",
    requires_credential=False,
    currencies_endpoint="/currencies",
    rates_endpoint="/latest",
    attribution_url="https://www.frankfurter.app/",
    max_currencies=31,
    rate_params={"amount": "1"},
    rate_shape="rates_mapping",
    currency_shape="code_name_mapping",
)

UNIRATEAPI = ProviderConfig(
    id="unirateapi",
    name="UniRateAPI",
    description="Premium service with 170+ currencies",
    api_base="https://api.unirateapi.com/api",
    requires_credential=True,
    currencies_endpoint="/currencies",
    rates_endpoint="/rates",
    attribution_url="https://unirateapi.com/",
    max_currencies=170,
    rate_shape="rates_mapping",
    currency_shape="code_list",
)

# Registry of available providers - add new sources here.
_PROVIDERS: dict[str, ProviderConfig] = {
    FRANKFURTER.id: FRANKFURTER,
    UNIRATEAPI.id: UNIRATEAPI,
}

DEFAULT_PROVIDER = FRANKFURTER.id


def available_providers() -> list[str]:
    """Names of all registered providers."""
    return sorted(_PROVIDERS)


def get_provider(name: str) -> ProviderConfig:
    """Return a provider config by name.

    Raises ``ConfigurationError`` if *name* is not registered.
    """
    try:
        return _PROVIDERS[name]
    except KeyError:
        available = ", ".join(available_providers())
        raise ConfigurationError(
            f"Unknown provider '{name}'. Available: {available}",
            context={"provider": name},
        ) from None

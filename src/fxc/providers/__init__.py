"""
Exchange-rate provider package.

- registry.py: Static ProviderConfig descriptors selected by name
- parsing.py: Ordered extraction strategies for provider payloads
- selector.py: Active provider and credential for a session
"""

from fxc.providers.registry import (
    ProviderConfig,
    available_providers,
    get_provider,
)
from fxc.providers.selector import ProviderSelector

__all__ = [
    "ProviderConfig",
    "ProviderSelector",
    "available_providers",
    "get_provider",
]

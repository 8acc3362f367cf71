"""
Currency pair selection: reconciliation against a loaded code set and persistence.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from fxc.logging import get_logger
from fxc.storage.fallback import FallbackStore
from fxc.types import (
    CurrencyPair,
    StoreDomain,
    from_epoch_ms,
    is_currency_code,
    to_epoch_ms,
    utc_now,
)

logger = get_logger(__name__)

SELECTION_KEY = "selected-currencies"


def _replacement(codes: list[str], other: str, preferred: Iterable[str]) -> str:
    for code in preferred:
        if code in codes:
            return code
    for code in codes:
        if code != other:
            return code
    return codes[0]


def reconcile_selection(
    pair: CurrencyPair,
    codes: Iterable[str],
    default_from: str = "USD",
    default_to: str = "EUR",
) -> CurrencyPair:
    """Replace selected codes that are absent from ``codes``.

    A missing "from" code becomes ``default_from`` if available, else any
    code distinct from "to", else the first code. A missing "to" code
    becomes ``default_to``, else ``default_from`` when distinct from
    "from", else any code distinct from "from", else the first code.
    """
    available = sorted(set(codes))
    if not available:
        return pair

    from_code = pair.from_code
    if from_code not in available:
        from_code = _replacement(available, pair.to_code, [default_from])

    to_code = pair.to_code
    if to_code not in available:
        preferred = [default_to]
        if default_from != from_code:
            preferred.append(default_from)
        to_code = _replacement(available, from_code, preferred)

    reconciled = CurrencyPair(from_code=from_code, to_code=to_code)
    if reconciled != pair:
        logger.info(
            "Reconciled currency selection",
            previous=f"{pair.from_code}:{pair.to_code}",
            selection=f"{from_code}:{to_code}",
        )
    return reconciled


async def save_selection(
    store: FallbackStore, pair: CurrencyPair, now: datetime | None = None
) -> None:
    """Persist the selected pair with its save time."""
    await store.set(
        StoreDomain.SETTINGS,
        SELECTION_KEY,
        {
            "from": pair.from_code,
            "to": pair.to_code,
            "savedAt": to_epoch_ms(now or utc_now()),
        },
    )


async def load_selection(
    store: FallbackStore,
    max_age: timedelta,
    now: datetime | None = None,
) -> CurrencyPair | None:
    """Restore the saved pair if it is well-formed and younger than ``max_age``."""
    result = await store.get(StoreDomain.SETTINGS, SELECTION_KEY)
    data = result.value
    if not isinstance(data, dict):
        return None

    from_code, to_code = data.get("from"), data.get("to")
    saved_at = data.get("savedAt")
    if not (is_currency_code(from_code) and is_currency_code(to_code)):
        return None
    if not isinstance(saved_at, (int, float)):
        return None
    if (now or utc_now()) - from_epoch_ms(saved_at) >= max_age:
        return None
    return CurrencyPair(from_code=from_code, to_code=to_code)

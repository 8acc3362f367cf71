"""
Shape-tolerant parsing of provider responses.

Each provider places the rate, the date and the currency list under
different field names or nesting. Parsing is an ordered list of
extraction strategies, each a pure function from the raw payload to an
optional value. The provider's preferred strategy runs first, then the
remaining ones in declaration order; the first non-None result wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Generic, TypeVar

from fxc.exceptions import MalformedResponseError, RateNotFoundError
from fxc.types import is_currency_code

T = TypeVar("T")


@dataclass(frozen=True)
class ExtractionStrategy(Generic[T]):
    """A named, pure extraction function."""

    name: str
    extract: Callable[..., T | None]


def _ordered(
    strategies: list[ExtractionStrategy[T]], preferred: str | None
) -> list[ExtractionStrategy[T]]:
    if preferred is None:
        return list(strategies)
    first = [s for s in strategies if s.name == preferred]
    return first + [s for s in strategies if s.name != preferred]


def first_match(
    strategies: list[ExtractionStrategy[T]],
    *args: Any,
    preferred: str | None = None,
) -> tuple[str, T] | None:
    """Apply strategies in order and return ``(name, value)`` of the first success."""
    for strategy in _ordered(strategies, preferred):
        try:
            value = strategy.extract(*args)
        except (KeyError, TypeError, ValueError, AttributeError):
            value = None
        if value is not None:
            return strategy.name, value
    return None


# ---------------------------------------------------------------------------
# Rates
# ---------------------------------------------------------------------------


def _positive_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, str)):
        try:
            number = float(value)
        except ValueError:
            return None
        return number if number > 0 else None
    return None


def _rate_from_rates(payload: Any, to_code: str) -> float | None:
    return _positive_number(payload["rates"][to_code])


def _rate_from_top_level(payload: Any, to_code: str) -> float | None:
    return _positive_number(payload[to_code])


def _rate_from_single(payload: Any, to_code: str) -> float | None:
    return _positive_number(payload["rate"])


def _rate_from_result(payload: Any, to_code: str) -> float | None:
    return _positive_number(payload["result"][to_code])


RATE_STRATEGIES: list[ExtractionStrategy[float]] = [
    ExtractionStrategy("rates_mapping", _rate_from_rates),
    ExtractionStrategy("top_level_code", _rate_from_top_level),
    ExtractionStrategy("single_rate", _rate_from_single),
    ExtractionStrategy("result_mapping", _rate_from_result),
]


def extract_rate(
    payload: Any,
    from_code: str,
    to_code: str,
    preferred: str | None = None,
) -> float:
    """Locate the ``from -> to`` rate in a provider payload.

    Raises:
        RateNotFoundError: If every strategy is exhausted.
    """
    match = first_match(RATE_STRATEGIES, payload, to_code, preferred=preferred)
    if match is None:
        raise RateNotFoundError(
            f"Rate not found for {from_code} to {to_code}",
            context={"pair": f"{from_code}:{to_code}"},
        )
    return match[1]


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _date_string(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _date_from_timestamp(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and value > 0:
        # Epoch milliseconds are 13 digits, seconds are 10
        seconds = value / 1000 if value > 10**11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc).date().isoformat()
    return _date_string(value)


DATE_STRATEGIES: list[ExtractionStrategy[str]] = [
    ExtractionStrategy("date", lambda p: _date_string(p["date"])),
    ExtractionStrategy("updated", lambda p: _date_string(p["updated"])),
    ExtractionStrategy("timestamp", lambda p: _date_from_timestamp(p["timestamp"])),
]


def extract_api_date(payload: Any, today: date | None = None) -> str:
    """Return the provider's date for a rate, defaulting to today's ISO date."""
    match = first_match(DATE_STRATEGIES, payload)
    if match is not None:
        return match[1]
    return (today or datetime.now(timezone.utc).date()).isoformat()


# ---------------------------------------------------------------------------
# Currency lists
# ---------------------------------------------------------------------------


def _normalise_code(value: Any) -> str | None:
    if isinstance(value, str) and len(value) == 3 and value.isalpha():
        code = value.upper()
        return code if is_currency_code(code) else None
    return None


_WRAPPER_FIELDS = ("currencies", "data")


def _non_empty(mapping: dict[str, str]) -> dict[str, str] | None:
    return mapping or None


def _is_wrapper(payload: dict) -> bool:
    return any(isinstance(payload.get(name), (list, dict)) for name in _WRAPPER_FIELDS)


def _from_code_name_mapping(payload: Any) -> dict[str, str] | None:
    if not isinstance(payload, dict) or _is_wrapper(payload):
        return None
    result: dict[str, str] = {}
    for key, value in payload.items():
        code = _normalise_code(key)
        if code and isinstance(value, str) and value.strip():
            result[code] = value.strip()
    return _non_empty(result)


def _from_code_list(payload: Any) -> dict[str, str] | None:
    if not isinstance(payload, list):
        return None
    result: dict[str, str] = {}
    for item in payload:
        code = _normalise_code(item)
        if code:
            result[code] = code
    return _non_empty(result)


def _from_loose_mapping(payload: Any) -> dict[str, str] | None:
    # Either the key or the value may carry the code
    if not isinstance(payload, dict) or _is_wrapper(payload):
        return None
    result: dict[str, str] = {}
    for key, value in payload.items():
        code = _normalise_code(key) or _normalise_code(value)
        if code:
            result[code] = code
    return _non_empty(result)


def _from_nested(field_name: str) -> Callable[[Any], dict[str, str] | None]:
    def extract(payload: Any) -> dict[str, str] | None:
        if not isinstance(payload, dict) or field_name not in payload:
            return None
        inner = payload[field_name]
        return (
            _from_code_list(inner)
            or _from_code_name_mapping(inner)
            or _from_loose_mapping(inner)
        )

    return extract


# Wrapped shapes come before flat mappings: a wrapper's short metadata keys
# (e.g. "api") would otherwise read as currency codes.
CURRENCY_STRATEGIES: list[ExtractionStrategy[dict[str, str]]] = [
    ExtractionStrategy("nested_currencies", _from_nested("currencies")),
    ExtractionStrategy("nested_data", _from_nested("data")),
    ExtractionStrategy("code_name_mapping", _from_code_name_mapping),
    ExtractionStrategy("code_list", _from_code_list),
    ExtractionStrategy("loose_mapping", _from_loose_mapping),
]


def extract_currencies(payload: Any, preferred: str | None = None) -> dict[str, str]:
    """Build a code -> display name mapping from a currency list payload.

    Raises:
        MalformedResponseError: If no strategy yields at least one code.
    """
    match = first_match(CURRENCY_STRATEGIES, payload, preferred=preferred)
    if match is None:
        raise MalformedResponseError(
            "No currency codes found in response",
            context={"payload_type": type(payload).__name__},
        )
    return match[1]

"""
Tests for shape-tolerant provider response parsing.
"""

from __future__ import annotations

from datetime import date

import pytest

from fxc.exceptions import MalformedResponseError, RateNotFoundError
from fxc.providers.parsing import (
    RATE_STRATEGIES,
    extract_api_date,
    extract_currencies,
    extract_rate,
    first_match,
)


class TestExtractRate:
    """Test rate extraction across payload shapes."""

    @pytest.mark.parametrize(
        "payload",
        [
            {"rates": {"EUR": 0.92}},
            {"EUR": 0.92},
            {"rate": 0.92},
            {"result": {"EUR": 0.92}},
        ],
        ids=["rates_mapping", "top_level_code", "single_rate", "result_mapping"],
    )
    def test_all_shapes_yield_rate(self, payload: dict) -> None:
        assert extract_rate(payload, "USD", "EUR") == pytest.approx(0.92)

    def test_string_numbers_accepted(self) -> None:
        assert extract_rate({"rates": {"EUR": "0.5"}}, "USD", "EUR") == 0.5

    def test_first_strategy_wins(self) -> None:
        """Test that declaration order decides between conflicting shapes."""
        payload = {"rates": {"EUR": 0.9}, "rate": 0.1}
        assert extract_rate(payload, "USD", "EUR") == 0.9

    def test_preferred_strategy_runs_first(self) -> None:
        payload = {"rates": {"EUR": 0.9}, "rate": 0.1}
        assert extract_rate(payload, "USD", "EUR", preferred="single_rate") == 0.1

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"rates": {"GBP": 0.8}},
            {"rates": {"EUR": 0}},
            {"rate": -1},
            {"rate": True},
            {"rate": "abc"},
            [0.92],
            None,
        ],
    )
    def test_unusable_payloads_raise(self, payload: object) -> None:
        with pytest.raises(RateNotFoundError) as exc_info:
            extract_rate(payload, "USD", "EUR")
        assert exc_info.value.context["pair"] == "USD:EUR"

    def test_first_match_reports_strategy(self) -> None:
        assert first_match(RATE_STRATEGIES, {"result": {"EUR": 2}}, "EUR") == (
            "result_mapping",
            2.0,
        )


class TestExtractApiDate:
    """Test date extraction."""

    def test_date_field(self) -> None:
        assert extract_api_date({"date": "2025-01-15"}) == "2025-01-15"

    def test_updated_field(self) -> None:
        assert extract_api_date({"updated": "2025-01-14"}) == "2025-01-14"

    def test_timestamp_seconds_and_millis(self) -> None:
        assert extract_api_date({"timestamp": 1736899200}) == "2025-01-15"
        assert extract_api_date({"timestamp": 1736899200000}) == "2025-01-15"

    def test_defaults_to_today(self) -> None:
        assert extract_api_date({"rates": {}}, today=date(2025, 2, 1)) == "2025-02-01"


class TestExtractCurrencies:
    """Test currency list extraction."""

    def test_code_name_mapping(self) -> None:
        payload = {"USD": "United States Dollar", "EUR": "Euro"}
        assert extract_currencies(payload) == {"USD": "United States Dollar", "EUR": "Euro"}

    def test_code_list_uses_code_as_name(self) -> None:
        assert extract_currencies(["USD", "eur", "bad1", 5]) == {"USD": "USD", "EUR": "EUR"}

    @pytest.mark.parametrize("field", ["currencies", "data"])
    def test_nested_list(self, field: str) -> None:
        assert extract_currencies({field: ["GBP", "JPY"]}) == {"GBP": "GBP", "JPY": "JPY"}

    def test_nested_mapping(self) -> None:
        payload = {"currencies": {"GBP": "Pound"}}
        assert extract_currencies(payload) == {"GBP": "Pound"}

    @pytest.mark.parametrize("preferred", [None, "code_list", "code_name_mapping"])
    def test_wrapper_metadata_not_read_as_codes(self, preferred: str | None) -> None:
        """Test that short metadata keys beside a wrapped list are ignored."""
        payload = {"api": "v1", "currencies": ["USD", "EUR", "GBP"]}

        result = extract_currencies(payload, preferred=preferred)

        assert result == {"USD": "USD", "EUR": "EUR", "GBP": "GBP"}

    def test_loose_mapping(self) -> None:
        """Test a mapping whose values carry the codes."""
        assert extract_currencies({"1": "CHF", "2": "SEK"}) == {"CHF": "CHF", "SEK": "SEK"}

    @pytest.mark.parametrize("payload", [{}, [], "USD", {"currencies": []}, None])
    def test_no_codes_raise(self, payload: object) -> None:
        with pytest.raises(MalformedResponseError):
            extract_currencies(payload)

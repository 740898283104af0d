"""Tests for flexible private price tier parsing."""

from decimal import Decimal

import pytest

from app.utils.duration_tiers import (
    build_tier_index,
    find_tier,
    format_duration,
    load_price_range,
    parse_duration_label,
    participant_price,
)


class TestParseDurationLabel:
    @pytest.mark.parametrize(
        "label",
        ["1h 30m", "1h30m", "90m", "90 min", "1.5h", "90", 90],
    )
    def test_ninety_minute_spellings(self, label):
        assert parse_duration_label(label) == 90

    @pytest.mark.parametrize(
        "label,expected",
        [("1h", 60), ("2h", 120), ("45m", 45), ("1H 15M", 75), ("1,5h", 90)],
    )
    def test_other_durations(self, label, expected):
        assert parse_duration_label(label) == expected

    @pytest.mark.parametrize("label", [None, "", "   ", "abc", "0", 0, -30])
    def test_unparseable_labels(self, label):
        assert parse_duration_label(label) is None


class TestFormatDuration:
    def test_canonical_labels(self):
        assert format_duration(90) == "1h 30m"
        assert format_duration(60) == "1h"
        assert format_duration(30) == "30m"

    def test_non_canonical_durations(self):
        assert format_duration(100) == "1h 40m"
        assert format_duration(300) == "5h"


class TestTierLookup:
    PRICE_RANGE = [
        {"intervalo": "1h", "1": 30, "2": 50},
        {"intervalo": "1h 30m", "1": 40, "2": 40, "3": ""},
        {"intervalo": "90m", "1": 999},
        {"no_label": True},
    ]

    def test_tier_found_by_minutes_regardless_of_spelling(self):
        tier = find_tier(self.PRICE_RANGE, 90)

        assert tier is not None
        assert tier["intervalo"] == "1h 30m"

    def test_first_tier_wins_on_duplicate_duration(self):
        index = build_tier_index(self.PRICE_RANGE)

        assert set(index) == {60, 90}
        assert index[90]["1"] == 40

    def test_missing_duration(self):
        assert find_tier(self.PRICE_RANGE, 120) is None
        assert find_tier(self.PRICE_RANGE, None) is None

    def test_json_string_price_range(self):
        raw = '[{"intervalo": "2h", "1": 80}]'

        assert find_tier(raw, 120) == {"intervalo": "2h", "1": 80}

    def test_malformed_price_range(self):
        assert load_price_range("{not json") == []
        assert load_price_range({"intervalo": "1h"}) == []
        assert load_price_range(None) == []

    def test_participant_price(self):
        tier = find_tier(self.PRICE_RANGE, 90)

        assert participant_price(tier, 2) == Decimal("40")
        assert participant_price(tier, 3) is None
        assert participant_price(tier, 4) is None

    def test_zero_price_counts_as_missing(self):
        assert participant_price({"intervalo": "1h", "1": 0}, 1) is None

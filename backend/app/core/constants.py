"""Application-wide constants for the ski school booking platform."""

from __future__ import annotations

# Capacity
UNLIMITED_CAPACITY_SENTINEL = 999  # Reported for subgroups without max_participants

# Currencies
DEFAULT_CURRENCY = "EUR"

# Minor units per ISO 4217; anything missing is assumed to have cents
CURRENCY_MINOR_UNITS = {
    "EUR": 2,
    "CHF": 2,
    "USD": 2,
    "GBP": 2,
    "CAD": 2,
    "SEK": 2,
    "NOK": 2,
    "DKK": 2,
    "PLN": 2,
    "CZK": 2,
    "JPY": 0,
    "KRW": 0,
    "ISK": 0,
}

# Query limits
DEFAULT_QUERY_LIMIT = 100

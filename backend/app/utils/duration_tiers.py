"""
Duration tier parsing for flexible private course pricing.

A course's ``price_range`` is a list of tiers such as
``{"intervalo": "1h 30m", "1": 60, "2": 100, "3": 135}``: the label names the
lesson duration and every numeric key is a participant count. Labels are
parsed into minutes so lookups never depend on string formatting.
"""

from __future__ import annotations

from decimal import Decimal
import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from app.utils.money import to_decimal

logger = logging.getLogger(__name__)

DURATION_LABEL_KEYS = ("intervalo", "interval", "duration", "label")

_HOURS_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*h", re.IGNORECASE)
_MINUTES_RE = re.compile(r"(\d+)\s*m(?:in)?", re.IGNORECASE)
_PLAIN_RE = re.compile(r"^\s*(\d+)\s*$")

# Canonical labels for the durations schools configure
_CANONICAL_LABELS = {
    15: "15m",
    30: "30m",
    45: "45m",
    60: "1h",
    75: "1h 15m",
    90: "1h 30m",
    120: "2h",
    180: "3h",
    240: "4h",
}


def parse_duration_label(label: Any) -> Optional[int]:
    """
    Parse a duration label into minutes.

    "1h 30m", "1h30m", "90m", "90 min", "1.5h" and bare "90" all give 90.
    Returns None when nothing parseable is found.
    """
    if label is None:
        return None
    if isinstance(label, (int, float)) and not isinstance(label, bool):
        minutes = int(label)
        return minutes if minutes > 0 else None

    text = str(label).strip()
    if not text:
        return None

    plain = _PLAIN_RE.match(text)
    if plain:
        minutes = int(plain.group(1))
        return minutes if minutes > 0 else None

    total = 0.0
    found = False
    hours = _HOURS_RE.search(text)
    if hours:
        total += float(hours.group(1).replace(",", ".")) * 60
        found = True
    rest = text[hours.end():] if hours else text
    minutes_match = _MINUTES_RE.search(rest)
    if minutes_match:
        total += int(minutes_match.group(1))
        found = True

    if not found or total <= 0:
        return None
    return int(round(total))


def format_duration(minutes: int) -> str:
    """Canonical label for a duration in minutes ("1h 30m")."""
    if minutes in _CANONICAL_LABELS:
        return _CANONICAL_LABELS[minutes]
    hours, rest = divmod(minutes, 60)
    if hours and rest:
        return f"{hours}h {rest}m"
    if hours:
        return f"{hours}h"
    return f"{rest}m"


def load_price_range(raw: Any) -> List[Mapping[str, Any]]:
    """Return the tier list, tolerating JSON strings and junk."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Malformed price_range JSON ignored")
            return []
    if not isinstance(raw, list):
        return []
    return [tier for tier in raw if isinstance(tier, Mapping)]


def _tier_minutes(tier: Mapping[str, Any]) -> Optional[int]:
    for key in DURATION_LABEL_KEYS:
        if key in tier:
            return parse_duration_label(tier[key])
    return None


def build_tier_index(raw: Any) -> Dict[int, Mapping[str, Any]]:
    """Index tiers by duration in minutes; the first tier wins on duplicates."""
    index: Dict[int, Mapping[str, Any]] = {}
    for tier in load_price_range(raw):
        minutes = _tier_minutes(tier)
        if minutes is None:
            continue
        index.setdefault(minutes, tier)
    return index


def find_tier(raw: Any, minutes: Optional[int]) -> Optional[Mapping[str, Any]]:
    if minutes is None:
        return None
    return build_tier_index(raw).get(minutes)


def participant_price(tier: Mapping[str, Any], participants: int) -> Optional[Decimal]:
    """
    Price of the tier for a participant count, or None when not configured.

    Zero, empty and non-numeric values count as not configured.
    """
    value = tier.get(str(participants), tier.get(participants))  # type: ignore[call-overload]
    if value is None or value == "":
        return None
    price = to_decimal(value)
    if price <= 0:
        return None
    return price

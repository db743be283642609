"""Parsing helpers for free-text funding, budget and date values.

Grant amounts arrive either as numbers or as text such as
``"Up to $50,000"``, ``"$10,000 - $25,000"`` or ``"Significant"``.  The list
engine needs numeric bounds for range filters and amount sorting.
"""

import math
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

_NUMBER_RE = re.compile(r"\d[\d,.]*")
_BUDGET_RE = re.compile(r"\d+\.?\d*[mk]*")


def _numbers(text: str) -> list[float]:
    values = []
    for raw in _NUMBER_RE.findall(text):
        try:
            values.append(float(raw.replace(",", "").rstrip(".")))
        except ValueError:
            continue
    return values


def parse_min_funding_amount(value: Any) -> float:
    """Lower bound of a funding amount; ``0`` when nothing parses."""
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return float(value)
    if not isinstance(value, str):
        return 0.0
    numbers = _numbers(value.lower().replace("up to", "").strip())
    return min(numbers) if numbers else 0.0


def parse_max_funding_amount(value: Any) -> float:
    """Upper bound of a funding amount.

    "Significant" (open-ended awards) is treated as infinite so it survives
    any minimum-funding filter and sorts first under ``amount_desc``.
    """
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return float(value)
    if not isinstance(value, str):
        return 0.0
    lowered = value.lower()
    if "significant" in lowered:
        return math.inf
    numbers = _numbers(lowered.replace("up to", "").strip())
    return max(numbers) if numbers else 0.0


def funding_bounds(value: Any) -> tuple[float, float]:
    return parse_min_funding_amount(value), parse_max_funding_amount(value)


def parse_budget_range(value: Any) -> tuple[float, float]:
    """Parse nonprofit budget text like ``"$1M - $5M"`` or ``"500k"``."""
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return float(value), float(value)
    if not isinstance(value, str):
        return 0.0, 0.0
    cleaned = re.sub(r"[$,]", "", value.lower()).strip()
    parsed: list[float] = []
    for token in _BUDGET_RE.findall(cleaned):
        multiplier = 1.0
        if "m" in token:
            multiplier = 1_000_000.0
        elif "k" in token:
            multiplier = 1_000.0
        try:
            parsed.append(float(token.rstrip("mk")) * multiplier)
        except ValueError:
            continue
    if not parsed:
        return 0.0, 0.0
    return min(parsed), max(parsed)


def numeric_bounds(value: Any) -> tuple[float, float]:
    """Bounds for plain numeric fields such as staff count."""
    if value is None or isinstance(value, bool):
        return 0.0, 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0, 0.0
    return number, number


def display_funding_amount(
    max_amount: Optional[float], amount_text: Optional[str]
) -> float | str:
    """Value shown on grant cards: the number if known, else the text."""
    if max_amount is not None:
        return float(max_amount)
    if amount_text:
        return amount_text
    return "Not specified"


def format_funding_display(value: Any) -> str:
    """Render an amount as ``$5M`` / ``$250,000``; non-numeric text is returned as-is."""
    if isinstance(value, str):
        try:
            amount = float(value)
        except ValueError:
            return value or "Not specified"
    elif isinstance(value, (int, float, Decimal)):
        amount = float(value)
    else:
        return "Not specified"

    if amount >= 1_000_000:
        millions = f"{amount / 1_000_000:.1f}".removesuffix(".0")
        return f"${millions}M"
    return f"${amount:,.0f}"


def coerce_date(value: Any) -> Optional[date]:
    """Accept ``date``, ``datetime`` or ISO strings (``"2025-06-14"``)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise TypeError(f"Unsupported date value: {value!r}")

"""Scoring primitives shared by the matching and recommendation engines.

All functions are pure and return closeness values in [0, 1].
"""
from __future__ import annotations

import math
import re

IP_RATING_PATTERN = re.compile(r"^\s*ip\s*([0-6x])\s*([0-9x])k?\s*$", re.IGNORECASE)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp ``value`` to [low, high]."""
    return max(low, min(high, value))


def at_least(
    required: float,
    actual: float,
    *,
    oversize_penalty_per_ratio: float = 0.0,
    max_oversize_penalty: float = 0.0,
) -> float:
    """Closeness for "actual must be >= required" attributes (payload, reach, speed).

    Shortfall is penalised proportionally: missing half the requirement scores 0.
    Oversizing is optionally penalised per multiple of the requirement, capped.
    """
    if required <= 0:
        return 1.0

    if actual < required:
        deficit = (required - actual) / required
        return clamp(1.0 - 2.0 * deficit)

    surplus_ratio = actual / required - 1.0
    penalty = min(max_oversize_penalty, surplus_ratio * oversize_penalty_per_ratio)
    return clamp(1.0 - penalty)


def at_most(limit: float, actual: float) -> float:
    """Closeness for "actual must be <= limit" attributes (repeatability, lead time).

    Exceeding the limit by 100% or more scores 0.
    """
    if actual <= limit:
        return 1.0
    if limit <= 0:
        return 0.0
    return clamp(1.0 - (actual - limit) / limit)


def ratio_similarity(a: float, b: float) -> float:
    """min/max ratio of two non-negative values; 1.0 when both are zero."""
    high = max(a, b)
    if high <= 0:
        return 1.0
    return clamp(min(a, b) / high)


def midpoint(low: float, high: float) -> float:
    return (low + high) / 2


def price_fit(budget_min: float | None, budget_max: float | None, price_min: float, price_max: float) -> float:
    """Closeness of a supplier price band to a buyer budget.

    A band whose midpoint falls inside the budget scores 1.0; an overlapping band
    scores 0.85; a band entirely above the budget decays with the overshoot.
    Anything cheaper than the budget scores 1.0.
    """
    low = budget_min if budget_min is not None else 0.0
    high = budget_max if budget_max is not None else math.inf

    mid = midpoint(price_min, price_max)
    if low <= mid <= high:
        return 1.0
    if price_max < low:
        return 1.0
    if price_min <= high:
        return 0.85
    overshoot = (price_min - high) / high if high > 0 else 1.0
    return clamp(0.85 - overshoot)


def parse_ip_rating(value: str | None) -> tuple[int | None, int | None] | None:
    """Parse an ingress protection code like ``IP65`` or ``IPX4``.

    Returns (solids, liquids) where an ``X`` digit is None, or None if unparsable.
    """
    if not value:
        return None
    match = IP_RATING_PATTERN.match(value)
    if not match:
        return None
    solids, liquids = match.groups()
    return (
        None if solids.lower() == "x" else int(solids),
        None if liquids.lower() == "x" else int(liquids),
    )


def ip_rating_fit(required: tuple[int | None, int | None], actual: tuple[int | None, int | None]) -> float:
    """Average per-digit coverage of the required IP rating."""
    parts: list[float] = []
    for req_digit, act_digit in zip(required, actual):
        if req_digit is None or req_digit == 0:
            continue
        if act_digit is None:
            parts.append(0.0)
        else:
            parts.append(clamp(act_digit / req_digit))
    if not parts:
        return 1.0
    return sum(parts) / len(parts)


def weighted_mean(pairs: list[tuple[float, float]]) -> float | None:
    """Weighted mean of (score, weight) pairs; None when total weight is zero."""
    total_weight = sum(weight for _, weight in pairs)
    if total_weight <= 0:
        return None
    return sum(score * weight for score, weight in pairs) / total_weight

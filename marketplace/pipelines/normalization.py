"""Requirement normalization: raw buyer intake -> canonical Requirement.

Handles key aliases (form snake_case and catalog camelCase), numeric coercion,
category canonicalization, budget strings in lakh/crore notation, and free-text
cleanup. All field problems are collected and raised together.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Mapping

from marketplace.errors import ValidationError
from marketplace.scoring import parse_ip_rating
from marketplace.taxonomy import ANY_CATEGORY, CategoryResolver

logger = logging.getLogger(__name__)

INTEGRATION_OPTIONS = ("PLC", "Fieldbus", "Standalone", "Other")

# canonical field -> accepted input keys
NUMERIC_FIELDS: dict[str, tuple[str, ...]] = {
    "payload_kg": ("payload_kg", "payloadKg"),
    "reach_mm": ("reach_mm", "reachMm"),
    "repeatability_mm": ("repeatability_mm", "repeatabilityMm"),
    "max_speed_mps": ("max_speed_mps", "maxSpeedMps", "speed_mps"),
    "timeline_weeks": ("timeline_weeks", "timelineWeeks", "lead_time_weeks", "leadTimeWeeks"),
    "uptime_target_pct": ("uptime_target_pct", "uptimeTargetPct"),
    "throughput_per_hr": ("throughput_per_hr", "throughputPerHr"),
    "budget_min_inr": ("budget_min_inr", "budgetMinINR", "budgetMinInr"),
    "budget_max_inr": ("budget_max_inr", "budgetMaxINR", "budgetMaxInr"),
}

TEXT_FIELDS: dict[str, tuple[str, ...]] = {
    "controller": ("controller",),
    "use_case": ("use_case", "useCase"),
    "location": ("location",),
}

BUDGET_UNITS = {
    "k": 1e3,
    "thousand": 1e3,
    "l": 1e5,
    "lac": 1e5,
    "lacs": 1e5,
    "lakh": 1e5,
    "lakhs": 1e5,
    "m": 1e6,
    "mn": 1e6,
    "million": 1e6,
    "cr": 1e7,
    "crore": 1e7,
    "crores": 1e7,
}

BUDGET_NUMBER = re.compile(
    r"(\d+(?:\.\d+)?)\s*(thousand|lakhs?|lacs?|crores?|cr|million|mn|k|l|m)?(?![a-z])",
    re.IGNORECASE,
)
UPPER_BOUND_WORDS = re.compile(r"\b(under|below|upto|up to|max|maximum|less than|within)\b", re.IGNORECASE)
LOWER_BOUND_WORDS = re.compile(r"\b(above|over|min|minimum|at least|more than|from)\b", re.IGNORECASE)


@dataclass(frozen=True)
class Requirement:
    """Canonical, immutable buyer requirement used as matching input."""
    category: str | None
    payload_kg: float | None = None
    reach_mm: float | None = None
    repeatability_mm: float | None = None
    max_speed_mps: float | None = None
    ip_rating: str | None = None
    controller: str | None = None
    integration: str | None = None
    budget_min_inr: float | None = None
    budget_max_inr: float | None = None
    timeline_weeks: float | None = None
    uptime_target_pct: float | None = None
    throughput_per_hr: float | None = None
    use_case: str | None = None
    location: str | None = None
    budget_text: str | None = None
    specs: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation (used for intake persistence)."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["specs"] = dict(self.specs)
        return data


def normalize_whitespace(text: str) -> str:
    """Normalize whitespace: collapse multiple spaces, remove leading/trailing."""
    text = re.sub(r'\s+', ' ', text)
    return text.strip()


def normalize_punctuation(text: str) -> str:
    """Normalize common punctuation variations."""
    # Replace smart quotes
    text = text.replace('“', '"').replace('”', '"')
    text = text.replace('‘', "'").replace('’', "'")

    # Normalize dashes
    text = text.replace('–', '-').replace('—', '-')

    return text


def clean_text(value: str) -> str | None:
    """Free-text cleanup; empty results become None."""
    text = normalize_whitespace(normalize_punctuation(value))
    return text or None


def parse_budget_range(text: str) -> tuple[float | None, float | None] | None:
    """Parse budget strings like "₹5-10 lakhs", "under 2 crores" or "500000 - 900000".

    Returns (min, max) in INR, or None when no amount can be found.
    """
    cleaned = normalize_punctuation(text).replace(",", "").lower()
    numbers = BUDGET_NUMBER.findall(cleaned)
    if not numbers:
        return None

    # A trailing unit applies to earlier bare numbers: "5-10 lakhs"
    trailing_unit = next((unit for _, unit in reversed(numbers) if unit), "")
    amounts = [
        float(number) * BUDGET_UNITS.get((unit or trailing_unit).lower(), 1.0)
        for number, unit in numbers
    ]

    if len(amounts) == 1:
        amount = amounts[0]
        if LOWER_BOUND_WORDS.search(cleaned):
            return amount, None
        return None, amount

    low, high = amounts[0], amounts[1]
    if low > high:
        low, high = high, low
    return low, high


def _pick(raw: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _coerce_number(value: Any, name: str, errors: dict[str, str]) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        errors[name] = "must be a number"
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        if not value.strip():
            return None
        try:
            number = float(value.strip())
        except ValueError:
            errors[name] = f"must be a number, got {value!r}"
            return None
    else:
        errors[name] = f"must be a number, got {type(value).__name__}"
        return None

    if math.isnan(number) or math.isinf(number):
        errors[name] = "must be finite"
        return None
    if number < 0:
        errors[name] = "must be non-negative"
        return None
    return number


def _normalize_category(
    raw: Mapping[str, Any],
    resolver: CategoryResolver,
    errors: dict[str, str],
) -> str | None:
    if "category" not in raw:
        errors["category"] = "is required (use null or 'any' for no preference)"
        return None

    value = raw["category"]
    if value is None:
        return None
    if not isinstance(value, str):
        errors["category"] = f"must be a string, got {type(value).__name__}"
        return None
    if value.strip().lower() in ANY_CATEGORY:
        return None

    canonical = resolver.resolve(value)
    if canonical is None:
        errors["category"] = f"unknown category {value!r}; expected one of {', '.join(resolver.categories)}"
    return canonical


def _normalize_ip_rating(value: Any, errors: dict[str, str]) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    parsed = parse_ip_rating(value) if isinstance(value, str) else None
    if parsed is None:
        errors["ip_rating"] = f"must be an IP code like IP54, got {value!r}"
        return None
    solids, liquids = parsed
    return f"IP{'X' if solids is None else solids}{'X' if liquids is None else liquids}"


def _normalize_integration(value: Any, errors: dict[str, str]) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, str):
        for option in INTEGRATION_OPTIONS:
            if option.lower() == value.strip().lower():
                return option
    errors["integration"] = f"must be one of {', '.join(INTEGRATION_OPTIONS)}, got {value!r}"
    return None


def normalize_requirement(
    raw: Mapping[str, Any],
    *,
    resolver: CategoryResolver | None = None,
) -> Requirement:
    """Validate and shape raw buyer input into a canonical Requirement.

    Args:
        raw: Intake payload as submitted (snake_case or camelCase keys)
        resolver: Category resolver (default taxonomy if None)

    Returns:
        Frozen Requirement

    Raises:
        ValidationError: With one message per invalid field
    """
    if isinstance(raw, Requirement):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError(
            "Requirement must be a mapping",
            {"requirement": f"got {type(raw).__name__}"},
        )

    resolver = resolver or CategoryResolver()
    errors: dict[str, str] = {}

    category = _normalize_category(raw, resolver, errors)

    numbers = {
        name: _coerce_number(_pick(raw, keys), name, errors)
        for name, keys in NUMERIC_FIELDS.items()
    }

    uptime = numbers["uptime_target_pct"]
    if uptime is not None and uptime > 100:
        errors["uptime_target_pct"] = "must be between 0 and 100"
        numbers["uptime_target_pct"] = None

    texts: dict[str, str | None] = {}
    for name, keys in TEXT_FIELDS.items():
        value = _pick(raw, keys)
        if value is None:
            texts[name] = None
        elif isinstance(value, str):
            texts[name] = clean_text(value)
        else:
            errors[name] = f"must be a string, got {type(value).__name__}"
            texts[name] = None

    ip_rating = _normalize_ip_rating(_pick(raw, ("ip_rating", "ipRating")), errors)
    integration = _normalize_integration(raw.get("integration"), errors)

    budget_min, budget_max = numbers["budget_min_inr"], numbers["budget_max_inr"]
    budget_text = _pick(raw, ("budget_range", "budgetRange"))
    if budget_text is not None and not isinstance(budget_text, str):
        errors["budget_range"] = f"must be a string, got {type(budget_text).__name__}"
        budget_text = None
    if budget_text and budget_min is None and budget_max is None:
        parsed = parse_budget_range(budget_text)
        if parsed is None:
            logger.debug(f"Budget text {budget_text!r} has no amount; kept as informational")
        else:
            budget_min, budget_max = parsed
    if budget_min is not None and budget_max is not None and budget_min > budget_max:
        budget_min, budget_max = budget_max, budget_min

    specs = raw.get("specs")
    if specs is None:
        specs = {}
    elif not isinstance(specs, Mapping):
        errors["specs"] = f"must be a mapping, got {type(specs).__name__}"
        specs = {}
    elif any(not isinstance(key, str) for key in specs):
        errors["specs"] = "keys must be strings"
        specs = {}

    if errors:
        raise ValidationError("Invalid requirement", errors)

    requirement = Requirement(
        category=category,
        payload_kg=numbers["payload_kg"],
        reach_mm=numbers["reach_mm"],
        repeatability_mm=numbers["repeatability_mm"],
        max_speed_mps=numbers["max_speed_mps"],
        ip_rating=ip_rating,
        controller=texts["controller"],
        integration=integration,
        budget_min_inr=budget_min,
        budget_max_inr=budget_max,
        timeline_weeks=numbers["timeline_weeks"],
        uptime_target_pct=numbers["uptime_target_pct"],
        throughput_per_hr=numbers["throughput_per_hr"],
        use_case=texts["use_case"],
        location=texts["location"],
        budget_text=clean_text(budget_text) if budget_text else None,
        specs=MappingProxyType(dict(specs)),
    )
    logger.debug(f"Normalized requirement for category {requirement.category or 'any'}")
    return requirement

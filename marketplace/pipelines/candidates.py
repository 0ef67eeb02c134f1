"""Candidate product records: read-only supplier listings fed to matching."""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from marketplace.errors import ValidationError
from marketplace.taxonomy import CategoryResolver

LIVE_STATUS = "LIVE"

# attribute -> accepted input keys (ORM rows use snake_case, catalog JSON uses camelCase)
CANDIDATE_NUMERIC_FIELDS: dict[str, tuple[str, ...]] = {
    "payload_kg": ("payload_kg", "payloadKg"),
    "reach_mm": ("reach_mm", "reachMm"),
    "repeatability_mm": ("repeatability_mm", "repeatabilityMm"),
    "max_speed_mps": ("max_speed_mps", "maxSpeedMps"),
    "price_min_inr": ("price_min_inr", "priceMinINR"),
    "price_max_inr": ("price_max_inr", "priceMaxINR"),
    "lead_time_weeks": ("lead_time_weeks", "leadTimeWeeks"),
}

CANDIDATE_TEXT_FIELDS: dict[str, tuple[str, ...]] = {
    "title": ("title",),
    "sku": ("sku",),
    "ip_rating": ("ip_rating", "ipRating"),
    "controller": ("controller",),
}


@dataclass(frozen=True)
class CandidateProduct:
    """Supplier-owned product listing."""
    id: str
    category: str
    org_id: str | None = None
    title: str = ""
    sku: str = ""
    payload_kg: float | None = None
    reach_mm: float | None = None
    repeatability_mm: float | None = None
    max_speed_mps: float | None = None
    ip_rating: str | None = None
    controller: str | None = None
    price_min_inr: float | None = None
    price_max_inr: float | None = None
    lead_time_weeks: float | None = None
    status: str | None = LIVE_STATUS
    supplier_name: str | None = None
    specs: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def is_live(self) -> bool:
        return self.status is None or self.status == LIVE_STATUS

    @property
    def price_mid_inr(self) -> float | None:
        if self.price_min_inr is None and self.price_max_inr is None:
            return None
        low = self.price_min_inr if self.price_min_inr is not None else self.price_max_inr
        high = self.price_max_inr if self.price_max_inr is not None else self.price_min_inr
        return (low + high) / 2

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        position: int = 0,
        resolver: CategoryResolver | None = None,
    ) -> CandidateProduct:
        """Build a candidate from a dict (catalog JSON or ORM-derived).

        Known category spellings ("six axis", "6-axis") are canonicalized with
        ``resolver``; unrecognised categories are kept as listed.

        Raises:
            ValidationError: If identity or category is malformed, a numeric
                attribute is not a number, or a text attribute is not a string
        """
        errors: dict[str, str] = {}
        prefix = f"candidates[{position}]"

        product_id = data.get("id")
        if not isinstance(product_id, str) or not product_id.strip():
            errors[f"{prefix}.id"] = "must be a non-empty string"

        category = data.get("category")
        if not isinstance(category, str) or not category.strip():
            errors[f"{prefix}.category"] = "must be a non-empty string"

        numbers: dict[str, float | None] = {}
        for name, keys in CANDIDATE_NUMERIC_FIELDS.items():
            value = next((data[k] for k in keys if data.get(k) is not None), None)
            if value is None:
                numbers[name] = None
            elif isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                errors[f"{prefix}.{name}"] = f"must be a finite number, got {value!r}"
            else:
                numbers[name] = float(value)

        texts: dict[str, str | None] = {}
        for name, keys in CANDIDATE_TEXT_FIELDS.items():
            value = next((data[k] for k in keys if data.get(k) is not None), None)
            if value is None or isinstance(value, str):
                texts[name] = value
            else:
                errors[f"{prefix}.{name}"] = f"must be a string, got {value!r}"

        specs = data.get("specs") or {}
        if not isinstance(specs, Mapping):
            errors[f"{prefix}.specs"] = "must be a mapping"
            specs = {}

        if errors:
            raise ValidationError("Invalid candidate product", errors)

        org = data.get("org")
        supplier_name = data.get("supplier_name")
        if supplier_name is None and isinstance(org, Mapping):
            supplier_name = org.get("name")

        resolver = resolver or CategoryResolver()
        return cls(
            id=product_id.strip(),
            category=resolver.resolve(category) or category.strip(),
            org_id=data.get("org_id", data.get("orgId")),
            title=texts["title"] or "",
            sku=texts["sku"] or "",
            ip_rating=texts["ip_rating"],
            controller=texts["controller"],
            status=data.get("status", LIVE_STATUS),
            supplier_name=supplier_name,
            specs=MappingProxyType(dict(specs)),
            **numbers,
        )


def coerce_candidates(
    items: Iterable[CandidateProduct | Mapping[str, Any]],
    resolver: CategoryResolver | None = None,
) -> list[CandidateProduct]:
    """Validate a candidate sequence, preserving order.

    Raises:
        ValidationError: On malformed entries or duplicate product ids
    """
    if items is None:
        raise ValidationError("Candidates must be a sequence", {"candidates": "got None"})

    resolver = resolver or CategoryResolver()
    candidates: list[CandidateProduct] = []
    seen: set[str] = set()
    for position, item in enumerate(items):
        if isinstance(item, CandidateProduct):
            candidate = item
            if not isinstance(candidate.id, str) or not candidate.id.strip():
                raise ValidationError(
                    "Invalid candidate product",
                    {f"candidates[{position}].id": "must be a non-empty string"},
                )
            canonical = resolver.resolve(candidate.category)
            if canonical is not None and canonical != candidate.category:
                candidate = replace(candidate, category=canonical)
        elif isinstance(item, Mapping):
            candidate = CandidateProduct.from_mapping(item, position=position, resolver=resolver)
        else:
            raise ValidationError(
                "Invalid candidate product",
                {f"candidates[{position}]": f"expected a mapping, got {type(item).__name__}"},
            )

        if candidate.id in seen:
            raise ValidationError(
                "Duplicate candidate identity",
                {f"candidates[{position}].id": f"duplicate id {candidate.id!r}"},
            )
        seen.add(candidate.id)
        candidates.append(candidate)

    return candidates

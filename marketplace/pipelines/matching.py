"""Matching pipeline: Requirement → ranked supplier products.

Applies hard rules (category, publication status) to discard candidates, soft
rules to score every attribute the buyer specified, and attaches a rationale,
stated assumptions and offer terms to each surviving candidate. Pure and
deterministic: no clock, no randomness, no I/O.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Mapping

from marketplace.config import MatchingSettings, settings as app_settings
from marketplace.errors import ValidationError
from marketplace.rules import RuleEngine, RuleStatus, RuleTrace, default_rules
from marketplace.taxonomy import CategoryResolver

from .candidates import CandidateProduct, coerce_candidates
from .normalization import Requirement, normalize_requirement
from .terms import build_commercials, build_delivery_install, build_sla

logger = logging.getLogger(__name__)

NO_LOCATION_ASSUMPTION = "Service coverage assumed available in major Indian cities"
NO_UPTIME_ASSUMPTION = "Standard uptime requirements (95%+) assumed"
BASELINE_WHY = "Meets basic requirements with room for optimization"


@dataclass(frozen=True)
class MatchingWeights:
    """Relative importance of each soft criterion; keys are rule ids."""
    payload: float = 0.20
    reach: float = 0.10
    repeatability: float = 0.10
    speed: float = 0.10
    ip_rating: float = 0.05
    controller: float = 0.10
    integration: float = 0.10
    price: float = 0.10
    lead_time: float = 0.10
    uptime: float = 0.05

    @classmethod
    def from_settings(cls, config: MatchingSettings) -> MatchingWeights:
        return cls(**{name: getattr(config, f"weight_{name}") for name in cls.__dataclass_fields__})

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass
class MatchResult:
    """Single product match result."""
    product_id: str
    fit_score: float
    rationale: str
    why: list[str] = field(default_factory=list)
    assumptions: list[str] = field(default_factory=list)
    criteria: list[dict] = field(default_factory=list)
    commercials: dict = field(default_factory=dict)
    delivery_install: dict = field(default_factory=dict)
    sla: dict = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MatchingEngine:
    """Scores candidate products against a buyer requirement.

    Holds only immutable configuration, so one instance can serve
    concurrent requests.
    """

    def __init__(
        self,
        weights: MatchingWeights | Mapping[str, float] | None = None,
        settings: MatchingSettings | None = None,
    ):
        self.settings = settings or app_settings.matching
        self.weights = self._resolve_weights(weights)
        self.resolver = CategoryResolver(fuzzy_threshold=self.settings.category_fuzzy_threshold)

        rules = default_rules(self.settings)
        weight_map = self.weights.as_dict()
        for rule in rules:
            if rule.id in weight_map:
                rule.weight = weight_map[rule.id]

        self.rule_engine = RuleEngine(
            rules,
            neutral_score=self.settings.neutral_score,
            good_match_threshold=self.settings.good_match_threshold,
        )

    def _resolve_weights(self, weights: MatchingWeights | Mapping[str, float] | None) -> MatchingWeights:
        if weights is None:
            return MatchingWeights.from_settings(self.settings)
        if isinstance(weights, MatchingWeights):
            resolved = weights
        elif isinstance(weights, Mapping):
            known = set(MatchingWeights.__dataclass_fields__)
            unknown = sorted(set(weights) - known)
            if unknown:
                raise ValidationError(
                    "Unknown matching weights",
                    {name: f"expected one of {', '.join(sorted(known))}" for name in unknown},
                )
            resolved = MatchingWeights(**{**MatchingWeights.from_settings(self.settings).as_dict(), **weights})
        else:
            raise ValidationError("Weights must be a mapping", {"weights": f"got {type(weights).__name__}"})

        errors = {
            name: "must be a non-negative number"
            for name, value in resolved.as_dict().items()
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0
        }
        if errors:
            raise ValidationError("Invalid matching weights", errors)
        return resolved

    def match(
        self,
        requirement: Requirement | Mapping[str, Any],
        candidates: Iterable[CandidateProduct | Mapping[str, Any]],
        max_results: int | None = None,
    ) -> list[MatchResult]:
        """Rank candidates against a requirement.

        Args:
            requirement: Normalized Requirement or raw intake mapping
            candidates: Candidate products in source order
            max_results: Optional cap applied after sorting

        Returns:
            Match results sorted by fit score DESC, product id ASC

        Raises:
            ValidationError: If the requirement or candidates are structurally invalid
        """
        requirement = normalize_requirement(requirement, resolver=self.resolver)
        pool = coerce_candidates(candidates, resolver=self.resolver)
        if max_results is not None and (
            isinstance(max_results, bool) or not isinstance(max_results, int) or max_results < 0
        ):
            raise ValidationError("Invalid max_results", {"max_results": "must be a non-negative integer"})

        results: list[MatchResult] = []
        for candidate in pool:
            passed, hard_traces = self.rule_engine.evaluate_hard_rules(candidate, requirement)
            if not passed:
                logger.debug(f"Product {candidate.id} filtered: {hard_traces[-1].reason}")
                continue

            closeness, soft_traces = self.rule_engine.evaluate_soft_rules(candidate, requirement)
            if closeness is None:
                closeness = self.settings.neutral_score
            fit_score = round(closeness * 100, 1)

            results.append(self._build_result(candidate, requirement, fit_score, hard_traces + soft_traces))

        results.sort(key=lambda r: (-r.fit_score, r.product_id))
        if max_results is not None:
            results = results[:max_results]

        logger.info(
            f"Matched {len(pool)} candidates for category {requirement.category or 'any'}, "
            f"returning {len(results)}"
        )
        return results

    def _build_result(
        self,
        candidate: CandidateProduct,
        requirement: Requirement,
        fit_score: float,
        traces: list[RuleTrace],
    ) -> MatchResult:
        return MatchResult(
            product_id=candidate.id,
            fit_score=fit_score,
            rationale=build_rationale(candidate, traces),
            why=build_why(candidate, requirement, traces),
            assumptions=build_assumptions(requirement, traces),
            criteria=[t.to_dict() for t in traces],
            commercials=build_commercials(candidate),
            delivery_install=build_delivery_install(candidate),
            sla=build_sla(candidate),
        )


def build_rationale(candidate: CandidateProduct, traces: list[RuleTrace]) -> str:
    """Human-readable explanation: matched well, approximated, missing."""
    matched = [t for t in traces if t.scored and t.status == RuleStatus.PASS]
    approximated = [t for t in traces if t.status == RuleStatus.PARTIAL]
    missing = [t for t in traces if t.status == RuleStatus.UNKNOWN]

    label = candidate.title or candidate.id
    parts = []
    if matched:
        parts.append("Matched well: " + "; ".join(f"{t.name} ({t.reason})" for t in matched))
    if approximated:
        parts.append("Approximated: " + "; ".join(f"{t.name} ({t.reason})" for t in approximated))
    if missing:
        parts.append("Missing: " + ", ".join(t.name for t in missing))
    if not parts:
        parts.append("No attribute constraints given; ranked on category only")

    return f"{label} [{candidate.category}]. " + ". ".join(parts) + "."


def build_why(candidate: CandidateProduct, requirement: Requirement, traces: list[RuleTrace]) -> list[str]:
    """Short highlights for the match card."""
    passed = {t.rule_id for t in traces if t.scored and t.status == RuleStatus.PASS}
    reasons = []

    if "payload" in passed:
        reasons.append(f"Excellent spec match - handles {requirement.payload_kg:g}kg payload requirement")
    if "integration" in passed:
        reasons.append(f"Strong integration compatibility with {requirement.integration} systems")
    if "lead_time" in passed:
        reasons.append(
            f"Fast delivery - {candidate.lead_time_weeks:g} weeks meets your "
            f"{requirement.timeline_weeks:g} week timeline"
        )
    if "price" in passed:
        reasons.append("Priced within your budget")
    if candidate.specs.get("prioritySupport") or candidate.specs.get("serviceCoverage"):
        reasons.append("Comprehensive service coverage and support")

    if not reasons:
        reasons.append(BASELINE_WHY)
    return reasons


def build_assumptions(requirement: Requirement, traces: list[RuleTrace]) -> list[str]:
    """Inferences made for attributes either side left unspecified."""
    assumptions = [t.assumption for t in traces if t.assumption]
    if not requirement.location:
        assumptions.append(NO_LOCATION_ASSUMPTION)
    if requirement.uptime_target_pct is None:
        assumptions.append(NO_UPTIME_ASSUMPTION)
    return assumptions


def match(
    requirement: Requirement | Mapping[str, Any],
    candidates: Iterable[CandidateProduct | Mapping[str, Any]],
    max_results: int | None = None,
) -> list[MatchResult]:
    """Rank candidates with the default engine configuration."""
    return MatchingEngine().match(requirement, candidates, max_results=max_results)

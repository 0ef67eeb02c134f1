"""Rule engine for requirement-to-product filtering and scoring.

Implements hard and soft rule evaluation with full audit traces. Hard rules
discard candidates; soft rules produce per-criterion closeness scores that are
combined into a weighted fit score.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from rapidfuzz import fuzz

from .config import MatchingSettings, settings
from .pipelines.candidates import CandidateProduct
from .pipelines.normalization import Requirement
from .pipelines.terms import sla_uptime
from .scoring import at_least, at_most, clamp, ip_rating_fit, parse_ip_rating, price_fit, weighted_mean

logger = logging.getLogger(__name__)

PLC_VENDORS = ("siemens", "abb", "rockwell", "allen-bradley", "allen bradley", "mitsubishi", "omron")
FIELDBUS_PROTOCOLS = ("profinet", "ethercat", "ethernet/ip", "modbus", "profibus", "devicenet", "cc-link")


class RuleType(str, Enum):
    """Rule types."""
    # Hard rules (filters)
    CATEGORY_MATCH = "category_match"
    PUBLISHED = "published"

    # Soft rules (scoring)
    PAYLOAD = "payload"
    REACH = "reach"
    REPEATABILITY = "repeatability"
    SPEED = "speed"
    IP_RATING = "ip_rating"
    CONTROLLER = "controller"
    INTEGRATION = "integration"
    PRICE = "price"
    LEAD_TIME = "lead_time"
    UPTIME = "uptime"


class RuleStatus(str, Enum):
    """Rule evaluation status."""
    PASS = "PASS"        # matched well
    PARTIAL = "PARTIAL"  # approximated
    UNKNOWN = "UNKNOWN"  # candidate attribute missing, neutral score
    SKIP = "SKIP"        # requirement does not constrain this attribute
    FAIL = "FAIL"        # hard rule failed


@dataclass
class RuleTrace:
    """Audit trace for a single rule evaluation."""
    rule_id: str
    name: str
    status: RuleStatus
    reason: str
    score: float | None = None
    weight: float = 0.0
    assumption: str | None = None

    @property
    def scored(self) -> bool:
        return self.score is not None and self.status in (RuleStatus.PASS, RuleStatus.PARTIAL, RuleStatus.UNKNOWN)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "name": self.name,
            "status": self.status.value,
            "reason": self.reason,
            "score": None if self.score is None else round(self.score, 4),
            "weight": self.weight,
        }


@dataclass
class RuleConfig:
    """Configuration for a single rule."""
    id: str
    name: str
    type: RuleType
    params: dict[str, Any] = field(default_factory=dict)
    weight: float = 1.0


HARD_TYPES = {RuleType.CATEGORY_MATCH, RuleType.PUBLISHED}


def default_rules(config: MatchingSettings | None = None) -> list[RuleConfig]:
    """Default rule set with weights taken from MatchingSettings."""
    config = config or settings.matching
    oversize = {
        "oversize_penalty_per_ratio": config.oversize_penalty_per_ratio,
        "max_oversize_penalty": config.max_oversize_penalty,
    }
    return [
        RuleConfig("category_match", "Category", RuleType.CATEGORY_MATCH),
        RuleConfig("published", "Published listing", RuleType.PUBLISHED),
        RuleConfig("payload", "Payload capacity", RuleType.PAYLOAD, dict(oversize), config.weight_payload),
        RuleConfig("reach", "Reach", RuleType.REACH, dict(oversize), config.weight_reach),
        RuleConfig("repeatability", "Repeatability", RuleType.REPEATABILITY, {}, config.weight_repeatability),
        RuleConfig(
            "speed",
            "Speed",
            RuleType.SPEED,
            {"throughput_threshold_per_hr": 100.0, "implied_speed_mps": 1.5},
            config.weight_speed,
        ),
        RuleConfig("ip_rating", "Environmental rating", RuleType.IP_RATING, {}, config.weight_ip_rating),
        RuleConfig(
            "controller",
            "Controller",
            RuleType.CONTROLLER,
            {"fuzzy_threshold": config.controller_fuzzy_threshold},
            config.weight_controller,
        ),
        RuleConfig("integration", "Integration", RuleType.INTEGRATION, {}, config.weight_integration),
        RuleConfig("price", "Price band", RuleType.PRICE, {}, config.weight_price),
        RuleConfig("lead_time", "Lead time", RuleType.LEAD_TIME, {}, config.weight_lead_time),
        RuleConfig("uptime", "Uptime target", RuleType.UPTIME, {}, config.weight_uptime),
    ]


def _fmt(value: float) -> str:
    return f"{value:g}"


class RuleEngine:
    """Config-driven rule engine for product evaluation.

    Evaluates both hard rules (filters) and soft rules (scoring) with
    full audit trails. Stateless after construction.
    """

    def __init__(
        self,
        rules: list[RuleConfig],
        *,
        neutral_score: float | None = None,
        good_match_threshold: float | None = None,
    ):
        self.rules = rules
        self.hard_rules = [r for r in rules if r.type in HARD_TYPES]
        self.soft_rules = [r for r in rules if r.type not in HARD_TYPES]
        self.neutral_score = neutral_score if neutral_score is not None else settings.matching.neutral_score
        self.good_match_threshold = (
            good_match_threshold if good_match_threshold is not None else settings.matching.good_match_threshold
        )

        self._evaluators: dict[RuleType, Callable[[RuleConfig, CandidateProduct, Requirement], RuleTrace]] = {
            RuleType.CATEGORY_MATCH: self._eval_category,
            RuleType.PUBLISHED: self._eval_published,
            RuleType.PAYLOAD: self._eval_payload,
            RuleType.REACH: self._eval_reach,
            RuleType.REPEATABILITY: self._eval_repeatability,
            RuleType.SPEED: self._eval_speed,
            RuleType.IP_RATING: self._eval_ip_rating,
            RuleType.CONTROLLER: self._eval_controller,
            RuleType.INTEGRATION: self._eval_integration,
            RuleType.PRICE: self._eval_price,
            RuleType.LEAD_TIME: self._eval_lead_time,
            RuleType.UPTIME: self._eval_uptime,
        }

        logger.debug(
            f"Initialized rule engine: {len(self.hard_rules)} hard, "
            f"{len(self.soft_rules)} soft rules"
        )

    def evaluate_hard_rules(
        self,
        candidate: CandidateProduct,
        requirement: Requirement,
    ) -> tuple[bool, list[RuleTrace]]:
        """Evaluate hard filtering rules.

        Returns:
            Tuple of (passed, rule_traces); stops at the first failure
        """
        traces = []

        for rule in self.hard_rules:
            trace = self._evaluate_rule(rule, candidate, requirement)
            traces.append(trace)

            if trace.status == RuleStatus.FAIL:
                return False, traces

        return True, traces

    def evaluate_soft_rules(
        self,
        candidate: CandidateProduct,
        requirement: Requirement,
    ) -> tuple[float | None, list[RuleTrace]]:
        """Evaluate soft scoring rules.

        Returns:
            Tuple of (weighted closeness in [0, 1] or None if nothing was scored, rule_traces)
        """
        traces = [self._evaluate_rule(rule, candidate, requirement) for rule in self.soft_rules]
        score = weighted_mean([(t.score, t.weight) for t in traces if t.scored])
        return score, traces

    def _evaluate_rule(
        self,
        rule: RuleConfig,
        candidate: CandidateProduct,
        requirement: Requirement,
    ) -> RuleTrace:
        evaluator = self._evaluators.get(rule.type)
        if evaluator is None:
            logger.warning(f"Unknown rule type: {rule.type}")
            return self._skip(rule, f"Unknown rule type: {rule.type}")
        return evaluator(rule, candidate, requirement)

    # Trace builders

    def _graded(self, rule: RuleConfig, score: float, reason: str, assumption: str | None = None) -> RuleTrace:
        status = RuleStatus.PASS if score >= self.good_match_threshold else RuleStatus.PARTIAL
        return RuleTrace(rule.id, rule.name, status, reason, clamp(score), rule.weight, assumption)

    def _unknown(self, rule: RuleConfig, reason: str, assumption: str) -> RuleTrace:
        return RuleTrace(rule.id, rule.name, RuleStatus.UNKNOWN, reason, self.neutral_score, rule.weight, assumption)

    @staticmethod
    def _skip(rule: RuleConfig, reason: str) -> RuleTrace:
        return RuleTrace(rule.id, rule.name, RuleStatus.SKIP, reason)

    # Hard rules

    def _eval_category(self, rule: RuleConfig, candidate: CandidateProduct, requirement: Requirement) -> RuleTrace:
        if requirement.category is None:
            return RuleTrace(rule.id, rule.name, RuleStatus.PASS, "Any category accepted")
        if candidate.category == requirement.category:
            return RuleTrace(rule.id, rule.name, RuleStatus.PASS, f"Category {candidate.category}")
        return RuleTrace(
            rule.id,
            rule.name,
            RuleStatus.FAIL,
            f"Category {candidate.category} does not match {requirement.category}",
        )

    def _eval_published(self, rule: RuleConfig, candidate: CandidateProduct, requirement: Requirement) -> RuleTrace:
        if candidate.is_live:
            return RuleTrace(rule.id, rule.name, RuleStatus.PASS, "Listing is live")
        return RuleTrace(rule.id, rule.name, RuleStatus.FAIL, f"Listing status is {candidate.status}")

    # Soft rules

    def _eval_payload(self, rule: RuleConfig, candidate: CandidateProduct, requirement: Requirement) -> RuleTrace:
        required = requirement.payload_kg
        if required is None:
            return self._skip(rule, "No payload requirement")
        if candidate.payload_kg is None:
            return self._unknown(
                rule,
                "Payload capacity not listed",
                f"Payload capacity assumed adequate for {candidate.category} based on category",
            )
        score = at_least(required, candidate.payload_kg, **rule.params)
        return self._graded(rule, score, f"{_fmt(candidate.payload_kg)} kg offered vs {_fmt(required)} kg required")

    def _eval_reach(self, rule: RuleConfig, candidate: CandidateProduct, requirement: Requirement) -> RuleTrace:
        required = requirement.reach_mm
        if required is None:
            return self._skip(rule, "No reach requirement")
        if candidate.reach_mm is None:
            return self._unknown(rule, "Reach not listed", "Reach assumed to cover the stated work envelope")
        score = at_least(required, candidate.reach_mm, **rule.params)
        return self._graded(rule, score, f"{_fmt(candidate.reach_mm)} mm reach vs {_fmt(required)} mm required")

    def _eval_repeatability(self, rule: RuleConfig, candidate: CandidateProduct, requirement: Requirement) -> RuleTrace:
        required = requirement.repeatability_mm
        if required is None:
            return self._skip(rule, "No repeatability requirement")
        if candidate.repeatability_mm is None:
            return self._unknown(
                rule,
                "Repeatability not listed",
                "Repeatability assumed typical for the category",
            )
        score = at_most(required, candidate.repeatability_mm)
        return self._graded(
            rule,
            score,
            f"±{_fmt(candidate.repeatability_mm)} mm repeatability vs ±{_fmt(required)} mm required",
        )

    def _eval_speed(self, rule: RuleConfig, candidate: CandidateProduct, requirement: Requirement) -> RuleTrace:
        required = requirement.max_speed_mps
        assumption = None
        threshold = rule.params.get("throughput_threshold_per_hr")
        throughput = requirement.throughput_per_hr
        if required is None and threshold is not None and throughput is not None and throughput > threshold:
            required = rule.params.get("implied_speed_mps", 1.5)
            assumption = (
                f"Speed of at least {_fmt(required)} m/s inferred from throughput of "
                f"{_fmt(throughput)} units/hr"
            )
        if required is None:
            return self._skip(rule, "No speed requirement")
        if candidate.max_speed_mps is None:
            return self._unknown(
                rule,
                "Maximum speed not listed",
                assumption or "Speed assumed sufficient for the stated cycle time",
            )
        score = at_least(required, candidate.max_speed_mps)
        return self._graded(
            rule,
            score,
            f"{_fmt(candidate.max_speed_mps)} m/s vs {_fmt(required)} m/s required",
            assumption,
        )

    def _eval_ip_rating(self, rule: RuleConfig, candidate: CandidateProduct, requirement: Requirement) -> RuleTrace:
        if requirement.ip_rating is None:
            return self._skip(rule, "No environmental rating requirement")
        required = parse_ip_rating(requirement.ip_rating)
        offered = parse_ip_rating(candidate.ip_rating)
        if required is None:
            return self._skip(rule, f"Unrecognised IP rating {requirement.ip_rating}")
        if offered is None:
            return self._unknown(
                rule,
                "IP rating not listed",
                f"Environmental protection assumed to meet {requirement.ip_rating} for an indoor cell",
            )
        score = ip_rating_fit(required, offered)
        return self._graded(rule, score, f"{candidate.ip_rating} offered vs {requirement.ip_rating} required")

    def _eval_controller(self, rule: RuleConfig, candidate: CandidateProduct, requirement: Requirement) -> RuleTrace:
        preference = requirement.controller
        if preference is None:
            return self._skip(rule, "No controller preference")
        if not candidate.controller:
            return self._unknown(
                rule,
                "Controller not listed",
                f"Controller assumed compatible with {preference}",
            )
        similarity = max(
            fuzz.partial_ratio(preference.lower(), candidate.controller.lower()),
            fuzz.token_set_ratio(preference.lower(), candidate.controller.lower()),
        )
        threshold = rule.params.get("fuzzy_threshold", 80)
        score = 1.0 if similarity >= threshold else similarity / 100.0
        return self._graded(rule, score, f"{candidate.controller} vs preferred {preference}")

    def _eval_integration(self, rule: RuleConfig, candidate: CandidateProduct, requirement: Requirement) -> RuleTrace:
        integration = requirement.integration
        if integration is None or integration == "Other":
            return self._skip(rule, "No integration constraint")

        connectivity = candidate.specs.get("connectivity") or []
        if isinstance(connectivity, str):
            connectivity = [connectivity]
        haystack = " ".join([candidate.controller or "", *[str(c) for c in connectivity]]).lower()

        if not haystack.strip():
            return self._unknown(
                rule,
                "Controller and connectivity not listed",
                f"{integration} integration assumed feasible via supplier gateway",
            )

        if integration == "PLC":
            matched = any(vendor in haystack for vendor in PLC_VENDORS)
        elif integration == "Fieldbus":
            matched = any(protocol in haystack for protocol in FIELDBUS_PROTOCOLS)
        else:  # Standalone
            matched = bool(candidate.controller)

        if matched:
            return self._graded(rule, 1.0, f"Compatible with {integration} systems")
        return self._graded(rule, 0.5, f"{integration} integration needs an adapter")

    def _eval_price(self, rule: RuleConfig, candidate: CandidateProduct, requirement: Requirement) -> RuleTrace:
        if requirement.budget_min_inr is None and requirement.budget_max_inr is None:
            return self._skip(rule, "No budget given")
        if candidate.price_mid_inr is None:
            return self._unknown(rule, "Price not listed", "Price assumed within budget pending a quote")
        low = candidate.price_min_inr if candidate.price_min_inr is not None else candidate.price_max_inr
        high = candidate.price_max_inr if candidate.price_max_inr is not None else candidate.price_min_inr
        score = price_fit(requirement.budget_min_inr, requirement.budget_max_inr, low, high)
        return self._graded(rule, score, f"₹{low:,.0f}-₹{high:,.0f} vs budget {self._budget_label(requirement)}")

    @staticmethod
    def _budget_label(requirement: Requirement) -> str:
        if requirement.budget_min_inr is None:
            return f"up to ₹{requirement.budget_max_inr:,.0f}"
        if requirement.budget_max_inr is None:
            return f"from ₹{requirement.budget_min_inr:,.0f}"
        return f"₹{requirement.budget_min_inr:,.0f}-₹{requirement.budget_max_inr:,.0f}"

    def _eval_lead_time(self, rule: RuleConfig, candidate: CandidateProduct, requirement: Requirement) -> RuleTrace:
        tolerance = requirement.timeline_weeks
        if tolerance is None:
            return self._skip(rule, "No timeline given")
        if candidate.lead_time_weeks is None:
            return self._unknown(rule, "Lead time not listed", "Delivery assumed within the requested timeline")
        score = at_most(tolerance, candidate.lead_time_weeks)
        return self._graded(
            rule,
            score,
            f"{_fmt(candidate.lead_time_weeks)} weeks lead time vs {_fmt(tolerance)} week timeline",
        )

    def _eval_uptime(self, rule: RuleConfig, candidate: CandidateProduct, requirement: Requirement) -> RuleTrace:
        target = requirement.uptime_target_pct
        if target is None:
            return self._skip(rule, "No uptime target")
        offered = sla_uptime(candidate)
        score = 1.0 if offered >= target else clamp(1.0 - (target - offered) / 10.0)
        return self._graded(rule, score, f"{_fmt(offered)}% uptime guaranteed vs {_fmt(target)}% target")

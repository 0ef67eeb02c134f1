"""Tests for the matching engine."""

import json

import pytest

from marketplace.config import MatchingSettings
from marketplace.errors import ValidationError
from marketplace.pipelines.candidates import CandidateProduct
from marketplace.pipelines.matching import MatchingEngine, MatchingWeights, match

ARM_10 = {
    "id": "A",
    "category": "SixAxis",
    "payloadKg": 10,
    "reachMm": 1400,
    "repeatabilityMm": 0.03,
    "maxSpeedMps": 2.0,
    "ipRating": "IP54",
    "controller": "ABB IRC5",
    "priceMinINR": 2_500_000,
    "priceMaxINR": 3_500_000,
    "leadTimeWeeks": 8,
    "specs": {"reliabilityRating": "high", "prioritySupport": True, "mttrHours": 4},
}


@pytest.fixture
def scenario_candidates():
    return [
        {"id": "A", "category": "SixAxis", "payloadKg": 10},
        {"id": "B", "category": "SixAxis", "payloadKg": 50},
        {"id": "C", "category": "SCARA", "payloadKg": 10},
    ]


@pytest.fixture
def matcher():
    return MatchingEngine()


class TestScenarios:
    """End-to-end ranking behaviour."""

    def test_payload_scenario(self, scenario_candidates):
        results = match({"category": "SixAxis", "payloadKg": 10}, scenario_candidates)

        assert [r.product_id for r in results] == ["A", "B"]
        assert results[0].fit_score > results[1].fit_score
        assert results[0].fit_score == 100.0

    def test_empty_candidates(self):
        assert match({"category": "SixAxis", "payloadKg": 10}, []) == []

    def test_no_eligible_candidates(self, scenario_candidates):
        assert match({"category": "Conveyor"}, scenario_candidates) == []

    def test_unspecified_category_keeps_all(self, scenario_candidates):
        results = match({"category": None, "payloadKg": 10}, scenario_candidates)

        assert {r.product_id for r in results} == {"A", "B", "C"}

    def test_category_filter_holds(self, scenario_candidates):
        by_id = {c["id"]: c for c in scenario_candidates}
        for result in match({"category": "six axis"}, scenario_candidates):
            assert by_id[result.product_id]["category"] == "SixAxis"

    def test_no_constraints_is_non_discriminating(self, scenario_candidates):
        results = match({"category": "SixAxis"}, scenario_candidates)

        assert [r.product_id for r in results] == ["A", "B"]
        assert {r.fit_score for r in results} == {50.0}
        assert "ranked on category only" in results[0].rationale

    def test_ties_broken_by_product_id(self):
        candidates = [{"id": "z-2", "category": "AMR"}, {"id": "a-1", "category": "AMR"}, {"id": "m-5", "category": "AMR"}]

        assert [r.product_id for r in match({"category": "AMR"}, candidates)] == ["a-1", "m-5", "z-2"]

    def test_sorted_by_non_increasing_fit(self):
        candidates = [
            {"id": f"p{i}", "category": "SixAxis", "payloadKg": payload, "leadTimeWeeks": lead}
            for i, (payload, lead) in enumerate([(5, 4), (10, 20), (12, 8), (80, 2), (9, 9), (None, 6)])
        ]
        results = match({"category": "SixAxis", "payload_kg": 10, "timeline_weeks": 8}, candidates)
        scores = [r.fit_score for r in results]

        assert scores == sorted(scores, reverse=True)
        assert len(results) == len(candidates)

    def test_deterministic_output(self, scenario_candidates):
        requirement = {"category": "SixAxis", "payloadKg": 10, "budget_range": "₹20-40 lakhs"}
        first = json.dumps([r.to_dict() for r in match(requirement, scenario_candidates)], sort_keys=True)
        second = json.dumps([r.to_dict() for r in match(requirement, scenario_candidates)], sort_keys=True)

        assert first == second

    def test_max_results_truncates_after_sorting(self, scenario_candidates):
        results = match({"category": "SixAxis", "payloadKg": 10}, scenario_candidates, max_results=1)

        assert [r.product_id for r in results] == ["A"]

    def test_non_live_candidates_dropped(self):
        candidates = [
            {"id": "live", "category": "SixAxis", "status": "LIVE"},
            {"id": "draft", "category": "SixAxis", "status": "DRAFT"},
        ]

        assert [r.product_id for r in match({"category": "SixAxis"}, candidates)] == ["live"]

    def test_accepts_candidate_objects(self):
        results = match({"category": "SixAxis"}, [CandidateProduct(id="obj", category="SixAxis")])

        assert results[0].product_id == "obj"


class TestExplanations:
    """Rationale, highlights and assumptions."""

    def test_missing_candidate_attribute_is_neutral(self):
        results = match({"category": "SixAxis", "payloadKg": 10}, [{"id": "X", "category": "SixAxis"}])

        assert results[0].fit_score == 50.0
        assert "Missing: Payload capacity" in results[0].rationale
        assert any("Payload capacity assumed adequate" in a for a in results[0].assumptions)

    def test_rationale_lists_matched_and_approximated(self, scenario_candidates):
        a, b = match({"category": "SixAxis", "payloadKg": 10}, scenario_candidates)

        assert "Matched well: Payload capacity" in a.rationale
        assert "Approximated: Payload capacity (50 kg offered vs 10 kg required)" in b.rationale

    def test_default_assumptions_for_omitted_fields(self, scenario_candidates):
        result = match({"category": "SixAxis", "payloadKg": 10}, scenario_candidates)[0]

        assert "Service coverage assumed available in major Indian cities" in result.assumptions
        assert "Standard uptime requirements (95%+) assumed" in result.assumptions

    def test_location_and_uptime_suppress_defaults(self):
        result = match(
            {"category": "SixAxis", "payloadKg": 10, "location": "Pune", "uptime_target_pct": 95},
            [ARM_10],
        )[0]

        assert result.assumptions == []

    def test_full_requirement_highlights(self):
        result = match(
            {
                "category": "SixAxis",
                "payload_kg": 8,
                "integration": "PLC",
                "timeline_weeks": 10,
                "budget_range": "₹25-40 lakhs",
                "controller": "ABB",
            },
            [ARM_10],
        )[0]

        assert "Strong integration compatibility with PLC systems" in result.why
        assert "Fast delivery - 8 weeks meets your 10 week timeline" in result.why
        assert "Comprehensive service coverage and support" in result.why
        assert result.fit_score > 90

    def test_baseline_highlight(self):
        result = match({"category": "SixAxis"}, [{"id": "plain", "category": "SixAxis"}])[0]

        assert result.why == ["Meets basic requirements with room for optimization"]

    def test_speed_inferred_from_throughput(self):
        result = match(
            {"category": "AMR", "throughput_per_hr": 200},
            [{"id": "slow", "category": "AMR", "maxSpeedMps": 1.0}],
        )[0]
        speed = next(c for c in result.criteria if c["rule_id"] == "speed")

        assert speed["status"] == "PARTIAL"
        assert any("inferred from throughput" in a for a in result.assumptions)

    def test_uptime_target_above_guarantee(self):
        result = match({"category": "SixAxis", "uptime_target_pct": 99}, [ARM_10])[0]
        uptime = next(c for c in result.criteria if c["rule_id"] == "uptime")

        assert uptime["score"] == pytest.approx(0.8)
        assert result.fit_score == 80.0

    def test_criteria_trace_covers_every_rule(self, scenario_candidates):
        result = match({"category": "SixAxis", "payloadKg": 10}, scenario_candidates)[0]
        statuses = {c["rule_id"]: c["status"] for c in result.criteria}

        assert statuses["category_match"] == "PASS"
        assert statuses["payload"] == "PASS"
        assert statuses["reach"] == "SKIP"


class TestTerms:
    """Commercial, delivery and SLA sub-objects."""

    def test_terms_from_price_band(self):
        result = match({"category": "SixAxis"}, [ARM_10])[0]

        assert result.commercials["purchase"]["price_inr"] == 3_000_000
        assert result.commercials["lease"] == {
            "monthly_inr": 240_000,
            "term_months": 36,
            "description": "36-month lease with maintenance included, option to purchase",
        }
        assert result.commercials["pilot"]["cost_inr"] == 450_000
        assert result.delivery_install == {"install_window_weeks": 2, "training_hours": 40, "support_included": True}
        assert result.sla == {"uptime_guarantee": 97.0, "response_time_hours": 2.0, "restore_time_hours": 4.0}

    def test_terms_without_price(self):
        result = match({"category": "AMR"}, [{"id": "quote", "category": "AMR", "leadTimeWeeks": 20}])[0]

        assert result.commercials["purchase"]["price_inr"] is None
        assert result.delivery_install["install_window_weeks"] == 4
        assert result.delivery_install["training_hours"] == 24
        assert result.sla == {"uptime_guarantee": 95.0, "response_time_hours": 4.0, "restore_time_hours": 8.0}


class TestValidation:
    """Structurally invalid input."""

    def test_missing_category_key(self, scenario_candidates):
        with pytest.raises(ValidationError):
            match({"payloadKg": 10}, scenario_candidates)

    def test_candidate_without_id(self):
        with pytest.raises(ValidationError) as exc_info:
            match({"category": "SixAxis"}, [{"category": "SixAxis"}])

        assert "candidates[0].id" in exc_info.value.errors

    def test_duplicate_candidate_ids(self):
        with pytest.raises(ValidationError):
            match({"category": "SixAxis"}, [{"id": "A", "category": "SixAxis"}, {"id": "A", "category": "SixAxis"}])

    def test_non_numeric_candidate_attribute(self):
        with pytest.raises(ValidationError) as exc_info:
            match({"category": "SixAxis"}, [{"id": "A", "category": "SixAxis", "payloadKg": "heavy"}])

        assert "candidates[0].payload_kg" in exc_info.value.errors

    @pytest.mark.parametrize(
        "attribute, value, error_key",
        [
            ("ipRating", 65, "candidates[0].ip_rating"),
            ("controller", 5, "candidates[0].controller"),
            ("title", ["arm"], "candidates[0].title"),
            ("sku", 1001, "candidates[0].sku"),
        ],
    )
    def test_non_string_candidate_attribute(self, attribute, value, error_key):
        with pytest.raises(ValidationError) as exc_info:
            match({"category": "SixAxis"}, [{"id": "A", "category": "SixAxis", attribute: value}])

        assert error_key in exc_info.value.errors

    def test_candidate_category_synonym_resolved(self):
        results = match({"category": "SixAxis"}, [{"id": "A", "category": "six axis"}])

        assert [r.product_id for r in results] == ["A"]
        assert "[SixAxis]" in results[0].rationale

    def test_candidate_instance_category_resolved(self):
        results = match({"category": "SixAxis"}, [CandidateProduct(id="A", category="6-axis")])

        assert [r.product_id for r in results] == ["A"]

    def test_negative_max_results(self, scenario_candidates):
        with pytest.raises(ValidationError):
            match({"category": "SixAxis"}, scenario_candidates, max_results=-1)


class TestConfiguration:
    """Weights and settings."""

    def test_zero_weight_falls_back_to_neutral(self, scenario_candidates):
        engine = MatchingEngine(weights={"payload": 0})
        results = engine.match({"category": "SixAxis", "payloadKg": 10}, scenario_candidates)

        assert {r.fit_score for r in results} == {50.0}

    def test_unknown_weight_rejected(self):
        with pytest.raises(ValidationError):
            MatchingEngine(weights={"colour": 1.0})

    def test_negative_weight_rejected(self):
        with pytest.raises(ValidationError):
            MatchingEngine(weights=MatchingWeights(price=-0.5))

    def test_neutral_score_from_settings(self):
        engine = MatchingEngine(settings=MatchingSettings(neutral_score=0.4))

        assert engine.match({"category": "AMR"}, [{"id": "a", "category": "AMR"}])[0].fit_score == 40.0

    def test_engine_reusable(self, matcher, scenario_candidates):
        first = matcher.match({"category": "SixAxis", "payloadKg": 10}, scenario_candidates)
        second = matcher.match({"category": "SCARA", "payloadKg": 10}, scenario_candidates)

        assert [r.product_id for r in first] == ["A", "B"]
        assert [r.product_id for r in second] == ["C"]

"""Commercial, delivery/install and service-level terms attached to each match."""
from __future__ import annotations

import math

from .candidates import CandidateProduct

BASE_UPTIME_PCT = 95.0
HIGH_RELIABILITY_BONUS_PCT = 2.0
DEFAULT_RESTORE_HOURS = 8.0
PRIORITY_RESPONSE_HOURS = 2.0
STANDARD_RESPONSE_HOURS = 4.0

LEASE_MONTHLY_RATE = 0.08
LEASE_TERM_MONTHS = 36
PILOT_COST_RATE = 0.15
PILOT_DURATION_WEEKS = 8


def sla_uptime(product: CandidateProduct) -> float:
    """Uptime the supplier guarantees for this product."""
    bonus = HIGH_RELIABILITY_BONUS_PCT if product.specs.get("reliabilityRating") == "high" else 0.0
    return BASE_UPTIME_PCT + bonus


def build_commercials(product: CandidateProduct) -> dict:
    """Purchase, lease and pilot options derived from the listed price band."""
    base_price = product.price_mid_inr
    if base_price is None:
        return {
            "purchase": {"price_inr": None, "description": "Price on request"},
            "lease": {
                "monthly_inr": None,
                "term_months": LEASE_TERM_MONTHS,
                "description": "Lease terms on request",
            },
            "pilot": {
                "duration_weeks": PILOT_DURATION_WEEKS,
                "cost_inr": None,
                "description": "Pilot terms on request",
            },
        }

    return {
        "purchase": {
            "price_inr": round(base_price),
            "description": "CAPEX purchase including basic installation and 1-year warranty",
        },
        "lease": {
            "monthly_inr": round(base_price * LEASE_MONTHLY_RATE),
            "term_months": LEASE_TERM_MONTHS,
            "description": f"{LEASE_TERM_MONTHS}-month lease with maintenance included, option to purchase",
        },
        "pilot": {
            "duration_weeks": PILOT_DURATION_WEEKS,
            "cost_inr": round(base_price * PILOT_COST_RATE),
            "description": f"{PILOT_DURATION_WEEKS}-week paid pilot program, cost adjustable against purchase",
        },
    }


def build_delivery_install(product: CandidateProduct) -> dict:
    lead_time = product.lead_time_weeks or 0.0
    return {
        "install_window_weeks": max(2, math.ceil(lead_time * 0.2)),
        "training_hours": 40 if product.category == "SixAxis" else 24,
        "support_included": True,
    }


def build_sla(product: CandidateProduct) -> dict:
    mttr = product.specs.get("mttrHours")
    restore = DEFAULT_RESTORE_HOURS
    if isinstance(mttr, (int, float)) and not isinstance(mttr, bool) and mttr > 0:
        restore = float(mttr)
    response = PRIORITY_RESPONSE_HOURS if product.specs.get("prioritySupport") else STANDARD_RESPONSE_HOURS
    return {
        "uptime_guarantee": sla_uptime(product),
        "response_time_hours": response,
        "restore_time_hours": restore,
    }

"""Intake workflow: raw buyer requirement → persisted, matched intake.

Workflow:
1. Normalize the raw requirement (nothing is written on validation failure)
2. Insert the intake as PENDING
3. Load eligible candidates
4. Run the matching engine
5. Write all matches and flip the intake to MATCHED in one transaction

A failure in steps 3-5 leaves the intake PENDING; ``rematch_intake`` retries it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace import models, repository
from marketplace.config import settings
from marketplace.errors import IntakeNotFoundError, IntakeStateError, ValidationError

from .matching import MatchingEngine, MatchResult
from .normalization import Requirement, normalize_requirement

logger = logging.getLogger(__name__)


@dataclass
class IntakeOutcome:
    """Result of a matching run for one intake."""
    intake_id: str
    status: str
    requirement: Requirement
    matches: list[MatchResult] = field(default_factory=list)


async def _match_and_persist(
    session: AsyncSession,
    intake_id: str,
    requirement: Requirement,
    engine: MatchingEngine,
    max_results: int | None,
) -> list[MatchResult]:
    candidates = await repository.load_eligible_products(session)
    limit = max_results if max_results is not None else settings.matching.max_results
    results = engine.match(requirement, candidates, max_results=limit)
    await repository.persist_matches(session, intake_id, results)
    return results


async def submit_intake(
    session: AsyncSession,
    raw: Mapping[str, Any],
    *,
    buyer_org_id: str,
    user_id: str | None,
    engine: MatchingEngine | None = None,
    max_results: int | None = None,
) -> IntakeOutcome:
    """Create an intake and match it against the live catalog.

    Args:
        session: Database session
        raw: Requirement payload as submitted by the buyer
        buyer_org_id: Buyer organization (authenticated upstream)
        user_id: Submitting user (authenticated upstream)
        engine: Matching engine (default configuration if None)
        max_results: Matches to keep (MATCHING_MAX_RESULTS if None)

    Returns:
        IntakeOutcome with the MATCHED intake and its ranked matches

    Raises:
        ValidationError: If the requirement is invalid; nothing is written
        DataUnavailableError: If the catalog cannot be read; intake stays PENDING
        MatchPersistenceError: If matches cannot be written; intake stays PENDING
    """
    if not isinstance(buyer_org_id, str) or not buyer_org_id.strip():
        raise ValidationError("Missing identity", {"buyer_org_id": "must be a non-empty string"})

    engine = engine or MatchingEngine()
    requirement = normalize_requirement(raw, resolver=engine.resolver)

    intake = await repository.create_intake(session, requirement, buyer_org_id=buyer_org_id, user_id=user_id)
    results = await _match_and_persist(session, intake.id, requirement, engine, max_results)

    logger.info(f"Intake {intake.id} matched with {len(results)} products")
    return IntakeOutcome(
        intake_id=intake.id,
        status=models.IntakeStatus.MATCHED.value,
        requirement=requirement,
        matches=results,
    )


async def rematch_intake(
    session: AsyncSession,
    intake_id: str,
    *,
    engine: MatchingEngine | None = None,
    max_results: int | None = None,
) -> IntakeOutcome:
    """Retry matching for an intake left PENDING by an earlier failure.

    Raises:
        IntakeNotFoundError: If the intake does not exist
        IntakeStateError: If the intake is already MATCHED
    """
    intake = await repository.get_intake(session, intake_id)
    if intake is None:
        raise IntakeNotFoundError(f"Intake {intake_id} not found")
    if intake.status != models.IntakeStatus.PENDING.value:
        raise IntakeStateError(f"Intake {intake_id} is {intake.status}, only PENDING intakes can be rematched")

    engine = engine or MatchingEngine()
    requirement = normalize_requirement(intake.data, resolver=engine.resolver)
    results = await _match_and_persist(session, intake.id, requirement, engine, max_results)

    logger.info(f"Intake {intake_id} rematched with {len(results)} products")
    return IntakeOutcome(
        intake_id=intake.id,
        status=models.IntakeStatus.MATCHED.value,
        requirement=requirement,
        matches=results,
    )

"""FastAPI app exposing intake matching, recommendations and tracking.

Identity arrives in the X-User-Id / X-Org-Id headers, set by the upstream
auth layer; this service performs no identity verification.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import Body, Depends, FastAPI, Header, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from . import models, repository
from .config import Environment, settings
from .db import create_all, create_engine_from_settings, create_session_factory, get_session
from .errors import (
    DataUnavailableError,
    IntakeNotFoundError,
    IntakeStateError,
    ProductNotFoundError,
    ValidationError,
)
from .logging_config import setup_logging
from .pipelines.intake import IntakeOutcome, rematch_intake, submit_intake
from .pipelines.matching import MatchResult
from .pipelines.recommendations import Algorithm, RecommendationEngine

logger = logging.getLogger(__name__)


# Pydantic response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None
    fields: dict[str, str] | None = None
    retryable: bool = False


class CriterionDTO(BaseModel):
    """Per-criterion evaluation trace."""
    rule_id: str
    name: str
    status: str
    reason: str
    score: float | None = None
    weight: float = 0.0


class MatchDTO(BaseModel):
    """Single ranked match."""
    product_id: str
    rank: int
    fit_score: float
    rationale: str
    why: list[str]
    assumptions: list[str]
    criteria: list[CriterionDTO]
    commercials: dict[str, Any]
    delivery_install: dict[str, Any]
    sla: dict[str, Any]


class IntakeResponse(BaseModel):
    """Intake matching response."""
    intake_id: str
    status: str
    requirement: dict[str, Any] | None = None
    matches: list[MatchDTO]
    message: str


class RecommendationDTO(BaseModel):
    product_id: str
    score: float
    reason: str
    algorithm: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class RecommendationsResponse(BaseModel):
    """Recommendations response."""
    algorithm: str
    limit: int
    count: int
    recommendations: list[RecommendationDTO]


class TrackViewRequest(BaseModel):
    source: str = Field(default="direct", max_length=50)
    session_id: str | None = Field(default=None, max_length=100)


class TrackViewResponse(BaseModel):
    view_id: int
    product_id: str
    viewed_at: datetime


class TrackClickRequest(BaseModel):
    product_id: str = Field(min_length=1)


class TrackClickResponse(BaseModel):
    product_id: str
    attributed: bool
    clicked_at: datetime


class Identity(BaseModel):
    user_id: str
    org_id: str


async def get_identity(
    x_user_id: str | None = Header(default=None),
    x_org_id: str | None = Header(default=None),
) -> Identity:
    """Identity headers set by the upstream auth layer."""
    errors = {}
    if not x_user_id or not x_user_id.strip():
        errors["X-User-Id"] = "header is required"
    if not x_org_id or not x_org_id.strip():
        errors["X-Org-Id"] = "header is required"
    if errors:
        raise ValidationError("Missing identity", errors)
    return Identity(user_id=x_user_id.strip(), org_id=x_org_id.strip())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    logger.info(f"{settings.app_name} starting up ({settings.environment.value})")

    engine = None
    if getattr(app.state, "session_factory", None) is None:
        engine = create_engine_from_settings()
        if settings.environment != Environment.PRODUCTION:
            await create_all(engine)
        app.state.session_factory = create_session_factory(engine)

    yield

    # Shutdown
    if engine is not None:
        await engine.dispose()
    logger.info("Application shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Buyer requirement matching and product recommendations",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],  # Frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc: ValidationError):
    """Handle malformed input."""
    logger.error(f"Validation error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error="validation_error",
            detail=exc.args[0] if exc.args else str(exc),
            fields=exc.errors or None,
        ).model_dump(),
    )


@app.exception_handler(DataUnavailableError)
async def data_unavailable_handler(request, exc: DataUnavailableError):
    """Handle unreachable data sources and failed match writes."""
    logger.error(f"Data unavailable: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(
            error="data_unavailable",
            detail=str(exc),
            retryable=exc.retryable,
        ).model_dump(),
    )


@app.exception_handler(IntakeNotFoundError)
async def intake_not_found_handler(request, exc: IntakeNotFoundError):
    logger.error(f"Intake not found: {exc}")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=ErrorResponse(error="intake_not_found", detail=str(exc)).model_dump(),
    )


@app.exception_handler(ProductNotFoundError)
async def product_not_found_handler(request, exc: ProductNotFoundError):
    logger.error(f"Product not found: {exc}")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=ErrorResponse(error="product_not_found", detail=str(exc)).model_dump(),
    )


@app.exception_handler(IntakeStateError)
async def intake_state_handler(request, exc: IntakeStateError):
    logger.error(f"Intake state conflict: {exc}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=ErrorResponse(error="intake_state_conflict", detail=str(exc)).model_dump(),
    )


def _match_dto(rank: int, result: MatchResult | models.Match) -> MatchDTO:
    return MatchDTO(
        product_id=result.product_id,
        rank=rank,
        fit_score=result.fit_score,
        rationale=result.rationale,
        why=list(result.why),
        assumptions=list(result.assumptions),
        criteria=[CriterionDTO(**c) for c in result.criteria],
        commercials=result.commercials,
        delivery_install=result.delivery_install,
        sla=result.sla,
    )


def _intake_response(outcome: IntakeOutcome, message: str) -> IntakeResponse:
    return IntakeResponse(
        intake_id=outcome.intake_id,
        status=outcome.status,
        requirement=outcome.requirement.to_dict(),
        matches=[_match_dto(rank, m) for rank, m in enumerate(outcome.matches, start=1)],
        message=message,
    )


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Health check endpoint."""
    configured = getattr(request.app.state, "session_factory", None) is not None
    return HealthResponse(
        status="ok",
        version=settings.version,
        database="configured" if configured else "not_configured",
    )


@app.post(
    "/intakes",
    response_model=IntakeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_intake(
    payload: dict[str, Any] = Body(...),
    max_results: int | None = Query(default=None, ge=0, le=100),
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
) -> IntakeResponse:
    """Submit a buyer requirement and match it against the live catalog.

    This endpoint:
    1. Normalizes the requirement
    2. Creates the intake as PENDING
    3. Scores all live products
    4. Persists the top matches and marks the intake MATCHED
    """
    logger.info(f"Received intake from org {identity.org_id}")
    outcome = await submit_intake(
        session,
        payload,
        buyer_org_id=identity.org_id,
        user_id=identity.user_id,
        max_results=max_results,
    )
    return _intake_response(outcome, f"Found {len(outcome.matches)} matching products")


@app.get("/intakes/{intake_id}", response_model=IntakeResponse)
async def get_intake(
    intake_id: str,
    session: AsyncSession = Depends(get_session),
) -> IntakeResponse:
    """Retrieve an intake with its stored matches."""
    intake = await repository.get_intake(session, intake_id)
    if intake is None:
        raise IntakeNotFoundError(f"Intake {intake_id} not found")

    stored = await repository.load_matches(session, intake_id)
    return IntakeResponse(
        intake_id=intake.id,
        status=intake.status,
        requirement=intake.data,
        matches=[_match_dto(m.rank, m) for m in stored],
        message=f"Intake is {intake.status}",
    )


@app.post("/intakes/{intake_id}/rematch", response_model=IntakeResponse)
async def rematch(
    intake_id: str,
    max_results: int | None = Query(default=None, ge=0, le=100),
    session: AsyncSession = Depends(get_session),
) -> IntakeResponse:
    """Retry matching for an intake left PENDING."""
    outcome = await rematch_intake(session, intake_id, max_results=max_results)
    return _intake_response(outcome, f"Found {len(outcome.matches)} matching products")


@app.get("/recommendations", response_model=RecommendationsResponse)
async def recommendations(
    algorithm: str = Query(default=Algorithm.HYBRID.value),
    limit: str | None = Query(default=None),
    exclude: list[str] | None = Query(default=None),
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
) -> RecommendationsResponse:
    """Personalized product recommendations for the calling buyer."""
    parsed_limit = None
    if limit is not None:
        try:
            parsed_limit = int(limit)
        except ValueError:
            raise ValidationError("Invalid limit", {"limit": f"must be an integer, got {limit!r}"}) from None

    engine = RecommendationEngine(repository.SqlSignalSource(session))
    results = await engine.recommend(
        identity.user_id,
        identity.org_id,
        algorithm=algorithm,
        limit=parsed_limit,
        exclude_ids=exclude or (),
    )

    try:
        await repository.log_recommendations(
            session,
            user_id=identity.user_id,
            org_id=identity.org_id,
            algorithm=algorithm,
            recommendations=results,
        )
    except DataUnavailableError as e:
        logger.warning(f"Recommendations served without analytics log: {e}")

    return RecommendationsResponse(
        algorithm=algorithm,
        limit=engine.clamp_limit(parsed_limit),
        count=len(results),
        recommendations=[RecommendationDTO(**r.to_dict()) for r in results],
    )


@app.post(
    "/products/{product_id}/views",
    response_model=TrackViewResponse,
    status_code=status.HTTP_201_CREATED,
)
async def track_view(
    product_id: str,
    request: TrackViewRequest = TrackViewRequest(),
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
) -> TrackViewResponse:
    """Record that the buyer viewed a product."""
    view = await repository.record_product_view(
        session,
        user_id=identity.user_id,
        org_id=identity.org_id,
        product_id=product_id,
        source=request.source,
        session_id=request.session_id,
    )
    return TrackViewResponse(view_id=view.id, product_id=product_id, viewed_at=view.viewed_at)


@app.post("/recommendations/clicks", response_model=TrackClickResponse)
async def track_click(
    request: TrackClickRequest,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
) -> TrackClickResponse:
    """Attribute a click to the recommendation list that served it."""
    clicked_at = models.utcnow()
    log = await repository.track_recommendation_click(
        session,
        user_id=identity.user_id,
        org_id=identity.org_id,
        product_id=request.product_id,
        now=clicked_at,
    )
    return TrackClickResponse(product_id=request.product_id, attributed=log is not None, clicked_at=clicked_at)

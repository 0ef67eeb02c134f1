"""Data access for the engines: candidate loading, historical signals, persistence.

Reads are retried on transient connection errors with tenacity and then
surface as DataUnavailableError. Writes are one transaction per call and roll
back on any failure.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from . import models
from .config import settings
from .errors import DataUnavailableError, MatchPersistenceError, ProductNotFoundError
from .pipelines.candidates import CandidateProduct
from .pipelines.matching import MatchResult
from .pipelines.normalization import Requirement
from .pipelines.recommendations import ProductSummary, Recommendation

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLICK_ATTRIBUTION_WINDOW = timedelta(hours=24)


async def _read(session: AsyncSession, description: str, query: Callable[[], Awaitable[T]]) -> T:
    """Run a read with retries on transient connection errors."""
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(settings.db.retry_attempts),
        wait=wait_exponential(multiplier=settings.db.retry_backoff_seconds, max=10),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                try:
                    return await query()
                except OperationalError:
                    await session.rollback()
                    raise
    except SQLAlchemyError as e:
        logger.error(f"Failed to {description}: {e}")
        raise DataUnavailableError(f"Failed to {description}: {e}") from e


def product_to_candidate(product: models.Product, supplier_name: str | None = None) -> CandidateProduct:
    return CandidateProduct(
        id=product.id,
        category=product.category,
        org_id=product.org_id,
        title=product.title,
        sku=product.sku,
        payload_kg=product.payload_kg,
        reach_mm=product.reach_mm,
        repeatability_mm=product.repeatability_mm,
        max_speed_mps=product.max_speed_mps,
        ip_rating=product.ip_rating,
        controller=product.controller,
        price_min_inr=product.price_min_inr,
        price_max_inr=product.price_max_inr,
        lead_time_weeks=product.lead_time_weeks,
        status=product.status,
        supplier_name=supplier_name,
        specs=MappingProxyType(dict(product.specs or {})),
    )


async def load_eligible_products(session: AsyncSession) -> list[CandidateProduct]:
    """Load LIVE, non-deleted products as matching candidates, ordered by id.

    Raises:
        DataUnavailableError: If the catalog cannot be read
    """
    async def query() -> list[CandidateProduct]:
        result = await session.execute(
            select(models.Product, models.Org.name)
            .join(models.Org, models.Product.org_id == models.Org.id)
            .where(
                models.Product.status == models.ProductStatus.LIVE.value,
                models.Product.deleted_at.is_(None),
            )
            .order_by(models.Product.id)
        )
        return [product_to_candidate(product, org_name) for product, org_name in result.all()]

    candidates = await _read(session, "load candidate products", query)
    logger.info(f"Loaded {len(candidates)} eligible products")
    return candidates


async def create_intake(
    session: AsyncSession,
    requirement: Requirement,
    *,
    buyer_org_id: str,
    user_id: str | None,
) -> models.Intake:
    """Insert a PENDING intake and commit."""
    intake = models.Intake(
        buyer_org_id=buyer_org_id,
        created_by_user_id=user_id,
        data=requirement.to_dict(),
        status=models.IntakeStatus.PENDING.value,
    )
    try:
        session.add(intake)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to create intake: {e}")
        raise DataUnavailableError(f"Intake creation failed: {e}") from e

    logger.info(f"Created intake {intake.id} for org {buyer_org_id}")
    return intake


async def get_intake(session: AsyncSession, intake_id: str) -> models.Intake | None:
    return await _read(session, f"load intake {intake_id}", lambda: session.get(models.Intake, intake_id))


async def persist_matches(
    session: AsyncSession,
    intake_id: str,
    results: list[MatchResult],
) -> None:
    """Write all matches for a run and mark the intake MATCHED, atomically.

    Args:
        session: Database session
        intake_id: Intake the matches belong to
        results: Ranked match results

    Raises:
        MatchPersistenceError: If any write fails; nothing is committed and the
            intake stays PENDING
    """
    try:
        intake = await session.get(models.Intake, intake_id)
        if intake is None:
            raise MatchPersistenceError(f"Intake {intake_id} disappeared before matches were written")

        for rank, result in enumerate(results, start=1):
            session.add(models.Match(
                intake_id=intake_id,
                product_id=result.product_id,
                rank=rank,
                fit_score=result.fit_score,
                rationale=result.rationale,
                why=list(result.why),
                assumptions=list(result.assumptions),
                criteria=list(result.criteria),
                commercials=result.commercials,
                delivery_install=result.delivery_install,
                sla=result.sla,
            ))

        intake.status = models.IntakeStatus.MATCHED.value
        await session.commit()
        logger.info(f"Persisted {len(results)} matches for intake {intake_id}")

    except MatchPersistenceError:
        await session.rollback()
        raise
    except Exception as e:
        await session.rollback()
        logger.error(f"Failed to persist matches for intake {intake_id}: {e}")
        raise MatchPersistenceError(f"Match persistence failed: {e}") from e


async def load_matches(session: AsyncSession, intake_id: str) -> list[models.Match]:
    async def query() -> list[models.Match]:
        result = await session.execute(
            select(models.Match).where(models.Match.intake_id == intake_id).order_by(models.Match.rank)
        )
        return list(result.scalars().all())

    return await _read(session, f"load matches for intake {intake_id}", query)


def _add_interaction(
    session: AsyncSession,
    *,
    user_id: str,
    org_id: str,
    interaction_type: models.InteractionType,
    product_id: str | None = None,
    intake_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> models.UserInteraction:
    interaction = models.UserInteraction(
        user_id=user_id,
        org_id=org_id,
        product_id=product_id,
        intake_id=intake_id,
        interaction_type=interaction_type.value,
        metadata_=metadata or {},
    )
    session.add(interaction)
    return interaction


async def record_product_view(
    session: AsyncSession,
    *,
    user_id: str,
    org_id: str,
    product_id: str,
    source: str = "direct",
    session_id: str | None = None,
) -> models.ProductView:
    """Upsert the (user, product, org) view and append a VIEW_PRODUCT interaction.

    Raises:
        ProductNotFoundError: If the product does not exist or is not LIVE
        DataUnavailableError: If the write fails
    """
    async def lookup() -> tuple[models.Product | None, models.ProductView | None]:
        product = await session.get(models.Product, product_id)
        result = await session.execute(
            select(models.ProductView).where(
                models.ProductView.user_id == user_id,
                models.ProductView.product_id == product_id,
                models.ProductView.org_id == org_id,
            )
        )
        return product, result.scalar_one_or_none()

    product, view = await _read(session, f"look up product {product_id}", lookup)
    if product is None or product.deleted_at is not None or product.status != models.ProductStatus.LIVE.value:
        raise ProductNotFoundError(f"Product {product_id} not found or not available")

    now = models.utcnow()
    try:
        if view is None:
            view = models.ProductView(
                user_id=user_id,
                org_id=org_id,
                product_id=product_id,
                source=source,
                session_id=session_id,
                viewed_at=now,
            )
            session.add(view)
        else:
            view.viewed_at = now
            view.source = source
            view.session_id = session_id

        _add_interaction(
            session,
            user_id=user_id,
            org_id=org_id,
            interaction_type=models.InteractionType.VIEW_PRODUCT,
            product_id=product_id,
            metadata={"source": source, "session_id": session_id, "timestamp": now.isoformat()},
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to record view of {product_id}: {e}")
        raise DataUnavailableError(f"View tracking failed: {e}") from e

    return view


async def log_recommendations(
    session: AsyncSession,
    *,
    user_id: str,
    org_id: str,
    algorithm: str,
    recommendations: list[Recommendation],
) -> models.RecommendationLog:
    """Record a served recommendation list for analytics."""
    scores = [r.score for r in recommendations]
    log = models.RecommendationLog(
        user_id=user_id,
        org_id=org_id,
        algorithm=algorithm,
        product_ids=[r.product_id for r in recommendations],
        top_score=scores[0] if scores else 0.0,
        metadata_={
            "total_recommendations": len(scores),
            "average_score": sum(scores) / len(scores) if scores else 0.0,
            "served_algorithms": sorted({r.algorithm for r in recommendations}),
        },
    )
    try:
        session.add(log)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to log recommendations for user {user_id}: {e}")
        raise DataUnavailableError(f"Recommendation logging failed: {e}") from e
    return log


async def track_recommendation_click(
    session: AsyncSession,
    *,
    user_id: str,
    org_id: str,
    product_id: str,
    now: datetime | None = None,
) -> models.RecommendationLog | None:
    """Attribute a click to the latest log (last 24h) that served the product.

    Always records a VIEW_PRODUCT interaction with source "recommendation".

    Returns:
        The attributed log, or None if no recent log served the product
    """
    now = now or models.utcnow()

    async def query() -> list[models.RecommendationLog]:
        result = await session.execute(
            select(models.RecommendationLog)
            .where(
                models.RecommendationLog.user_id == user_id,
                models.RecommendationLog.org_id == org_id,
                models.RecommendationLog.created_at >= now - CLICK_ATTRIBUTION_WINDOW,
            )
            .order_by(models.RecommendationLog.created_at.desc(), models.RecommendationLog.id.desc())
        )
        return list(result.scalars().all())

    logs = await _read(session, "load recent recommendation logs", query)
    attributed = next((log for log in logs if product_id in (log.product_ids or [])), None)

    try:
        if attributed is not None:
            attributed.clicked_product_id = product_id
            attributed.clicked_at = now
        _add_interaction(
            session,
            user_id=user_id,
            org_id=org_id,
            interaction_type=models.InteractionType.VIEW_PRODUCT,
            product_id=product_id,
            metadata={"source": "recommendation", "timestamp": now.isoformat()},
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to track recommendation click on {product_id}: {e}")
        raise DataUnavailableError(f"Click tracking failed: {e}") from e

    return attributed


class SqlSignalSource:
    """SignalSource backed by the marketplace tables. Read-only."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _summary(product: models.Product, supplier_name: str | None) -> ProductSummary:
        return ProductSummary(
            id=product.id,
            org_id=product.org_id,
            category=product.category,
            price_min_inr=product.price_min_inr,
            price_max_inr=product.price_max_inr,
            supplier_name=supplier_name,
        )

    async def recent_views(self, user_id: str, org_id: str, since: datetime, limit: int) -> list[ProductSummary]:
        async def query() -> list[ProductSummary]:
            result = await self.session.execute(
                select(models.Product, models.Org.name)
                .join(models.ProductView, models.ProductView.product_id == models.Product.id)
                .join(models.Org, models.Product.org_id == models.Org.id)
                .where(
                    models.ProductView.user_id == user_id,
                    models.ProductView.org_id == org_id,
                    models.ProductView.viewed_at >= since,
                )
                .order_by(models.ProductView.viewed_at.desc(), models.Product.id)
                .limit(limit)
            )
            return [self._summary(product, name) for product, name in result.all()]

        return await _read(self.session, "load browsing history", query)

    async def eligible_products(
        self,
        *,
        categories: Iterable[str] | None = None,
        product_ids: Iterable[str] | None = None,
    ) -> list[ProductSummary]:
        stmt = (
            select(models.Product, models.Org.name)
            .join(models.Org, models.Product.org_id == models.Org.id)
            .where(
                models.Product.status == models.ProductStatus.LIVE.value,
                models.Product.deleted_at.is_(None),
                models.Org.kyc_status == models.KycStatus.VERIFIED.value,
                models.Org.deleted_at.is_(None),
            )
            .order_by(models.Product.id)
        )
        if categories is not None:
            categories = list(categories)
            if not categories:
                return []
            stmt = stmt.where(models.Product.category.in_(categories))
        if product_ids is not None:
            product_ids = list(product_ids)
            if not product_ids:
                return []
            stmt = stmt.where(models.Product.id.in_(product_ids))

        async def query() -> list[ProductSummary]:
            result = await self.session.execute(stmt)
            return [self._summary(product, name) for product, name in result.all()]

        return await _read(self.session, "load eligible products", query)

    async def peer_view_counts(self, org_id: str, since: datetime, sample_size: int) -> dict[str, int]:
        async def query() -> dict[str, int]:
            org = await self.session.get(models.Org, org_id)
            if org is None:
                return {}
            peers = (
                select(models.Org.id)
                .where(
                    models.Org.type == org.type,
                    models.Org.id != org_id,
                    models.Org.deleted_at.is_(None),
                )
                .order_by(models.Org.id)
                .limit(sample_size)
                .scalar_subquery()
            )
            result = await self.session.execute(
                select(models.ProductView.product_id, func.count(models.ProductView.id))
                .where(
                    models.ProductView.org_id.in_(peers),
                    models.ProductView.viewed_at >= since,
                )
                .group_by(models.ProductView.product_id)
            )
            return {product_id: count for product_id, count in result.all()}

        return await _read(self.session, "load industry view counts", query)

    async def view_counts(self, since: datetime | None = None, until: datetime | None = None) -> dict[str, int]:
        stmt = select(models.ProductView.product_id, func.count(models.ProductView.id))
        if since is not None:
            stmt = stmt.where(models.ProductView.viewed_at >= since)
        if until is not None:
            stmt = stmt.where(models.ProductView.viewed_at < until)
        stmt = stmt.group_by(models.ProductView.product_id)

        async def query() -> dict[str, int]:
            result = await self.session.execute(stmt)
            return {product_id: count for product_id, count in result.all()}

        return await _read(self.session, "load view counts", query)

    async def user_interacted_products(self, user_id: str, org_id: str, since: datetime) -> set[str]:
        async def query() -> set[str]:
            result = await self.session.execute(
                select(distinct(models.UserInteraction.product_id)).where(
                    models.UserInteraction.user_id == user_id,
                    models.UserInteraction.org_id == org_id,
                    models.UserInteraction.created_at >= since,
                    models.UserInteraction.product_id.is_not(None),
                )
            )
            return set(result.scalars().all())

        return await _read(self.session, "load user interactions", query)

    async def similar_buyer_counts(
        self,
        user_id: str,
        product_ids: set[str],
        since: datetime,
        interaction_types: tuple[str, ...],
    ) -> dict[str, int]:
        if not product_ids:
            return {}
        similar_users = (
            select(distinct(models.UserInteraction.user_id))
            .where(
                models.UserInteraction.product_id.in_(sorted(product_ids)),
                models.UserInteraction.user_id != user_id,
                models.UserInteraction.created_at >= since,
            )
            .scalar_subquery()
        )

        async def query() -> dict[str, int]:
            result = await self.session.execute(
                select(models.UserInteraction.product_id, func.count(models.UserInteraction.id))
                .where(
                    models.UserInteraction.user_id.in_(similar_users),
                    models.UserInteraction.product_id.is_not(None),
                    models.UserInteraction.product_id.not_in(sorted(product_ids)),
                    models.UserInteraction.interaction_type.in_(interaction_types),
                )
                .group_by(models.UserInteraction.product_id)
            )
            return {product_id: count for product_id, count in result.all()}

        return await _read(self.session, "load similar buyer interactions", query)

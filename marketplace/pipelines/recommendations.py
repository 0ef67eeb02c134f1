"""Recommendation pipeline: buyer identity + interaction history → ranked products.

Five strategies share one output shape. The engine only reads through its
SignalSource; logging served recommendations is the caller's job.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Protocol

from marketplace.config import RecommendationSettings, settings as app_settings
from marketplace.errors import ValidationError
from marketplace.scoring import ratio_similarity

logger = logging.getLogger(__name__)

POPULARITY_FALLBACK = "popular"
SIMILAR_BUYER_INTERACTIONS = ("VIEW_PRODUCT", "REQUEST_QUOTE", "COMPLETE_PAYMENT")


class Algorithm(str, Enum):
    """Selectable recommendation strategies."""
    HYBRID = "hybrid"
    BROWSING = "browsing"
    INDUSTRY = "industry"
    TRENDING = "trending"
    SIMILAR_BUYERS = "similar_buyers"


@dataclass(frozen=True)
class ProductSummary:
    """Eligible product as seen by the recommender."""
    id: str
    org_id: str
    category: str
    price_min_inr: float | None = None
    price_max_inr: float | None = None
    supplier_name: str | None = None

    @property
    def price_mid_inr(self) -> float | None:
        if self.price_min_inr is None or self.price_max_inr is None:
            return self.price_min_inr if self.price_max_inr is None else self.price_max_inr
        return (self.price_min_inr + self.price_max_inr) / 2


@dataclass
class Recommendation:
    """Single recommended product."""
    product_id: str
    score: float
    reason: str
    algorithm: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SignalSource(Protocol):
    """Read-only access to catalog eligibility and historical interactions.

    Eligible means LIVE, not deleted, and owned by a KYC-verified supplier.
    Implementations raise DataUnavailableError when the store is unreachable.
    """

    async def recent_views(
        self, user_id: str, org_id: str, since: datetime, limit: int
    ) -> list[ProductSummary]:
        """Products the user viewed since ``since``, most recent first."""
        ...

    async def eligible_products(
        self,
        *,
        categories: Iterable[str] | None = None,
        product_ids: Iterable[str] | None = None,
    ) -> list[ProductSummary]:
        ...

    async def peer_view_counts(
        self, org_id: str, since: datetime, sample_size: int
    ) -> dict[str, int]:
        """View counts by product across orgs of the same type as ``org_id``."""
        ...

    async def view_counts(
        self, since: datetime | None = None, until: datetime | None = None
    ) -> dict[str, int]:
        ...

    async def user_interacted_products(
        self, user_id: str, org_id: str, since: datetime
    ) -> set[str]:
        ...

    async def similar_buyer_counts(
        self,
        user_id: str,
        product_ids: set[str],
        since: datetime,
        interaction_types: tuple[str, ...],
    ) -> dict[str, int]:
        """Interaction counts on other products by users who touched ``product_ids``."""
        ...


def _rank(recommendations: list[Recommendation]) -> list[Recommendation]:
    return sorted(recommendations, key=lambda r: (-r.score, r.product_id))


class RecommendationEngine:
    """Personalized product recommendations over a SignalSource."""

    def __init__(self, signals: SignalSource, settings: RecommendationSettings | None = None):
        self.signals = signals
        self.settings = settings or app_settings.recommendations

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            limit = self.settings.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ValidationError("Invalid limit", {"limit": f"must be an integer, got {limit!r}"})
        return max(self.settings.min_limit, min(self.settings.max_limit, limit))

    @staticmethod
    def parse_algorithm(algorithm: Algorithm | str) -> Algorithm:
        try:
            return Algorithm(algorithm)
        except ValueError:
            options = ", ".join(a.value for a in Algorithm)
            raise ValidationError(
                "Unknown recommendation algorithm",
                {"algorithm": f"{algorithm!r} is not one of {options}"},
            ) from None

    async def recommend(
        self,
        user_id: str,
        org_id: str,
        algorithm: Algorithm | str = Algorithm.HYBRID,
        limit: int | None = None,
        exclude_ids: Iterable[str] = (),
        now: datetime | None = None,
    ) -> list[Recommendation]:
        """Rank products for a buyer.

        Args:
            user_id: Authenticated buyer user id
            org_id: Buyer organization id
            algorithm: Strategy name
            limit: Requested count, clamped to the configured bounds
            exclude_ids: Product ids never to return
            now: Reference time for history windows (UTC now if None)

        Returns:
            Recommendations sorted by score DESC, product id ASC

        Raises:
            ValidationError: On empty identity, unknown algorithm, non-integer limit
                or a bare string passed as exclude_ids
            DataUnavailableError: If the signal source cannot be read
        """
        errors = {}
        if not isinstance(user_id, str) or not user_id.strip():
            errors["user_id"] = "must be a non-empty string"
        if not isinstance(org_id, str) or not org_id.strip():
            errors["org_id"] = "must be a non-empty string"
        if isinstance(exclude_ids, str):
            errors["exclude_ids"] = "must be a collection of product ids, not a string"
        if errors:
            raise ValidationError("Invalid recommendation request", errors)

        selected = self.parse_algorithm(algorithm)
        limit = self.clamp_limit(limit)
        excluded = set(exclude_ids or ())
        now = now or datetime.now(timezone.utc).replace(tzinfo=None)

        results = await self._run(selected, user_id, org_id, now)
        results = [r for r in results if r.product_id not in excluded]

        if not results and selected != Algorithm.TRENDING:
            logger.info(f"No {selected.value} signal for user {user_id}, falling back to trending")
            results = [r for r in await self.trending(now) if r.product_id not in excluded]
            for rec in results:
                rec.metadata["fallback_from"] = selected.value

        if not results:
            logger.info(f"No trending signal for user {user_id}, falling back to catalog popularity")
            results = [r for r in await self.popular() if r.product_id not in excluded]
            for rec in results:
                rec.metadata["fallback_from"] = selected.value

        results = _rank(results)[:limit]
        logger.info(f"Recommended {len(results)} products to user {user_id} ({selected.value}, limit={limit})")
        return results

    async def _run(self, algorithm: Algorithm, user_id: str, org_id: str, now: datetime) -> list[Recommendation]:
        if algorithm == Algorithm.HYBRID:
            return await self.hybrid(user_id, org_id, now)
        if algorithm == Algorithm.BROWSING:
            return await self.browsing(user_id, org_id, now)
        if algorithm == Algorithm.INDUSTRY:
            return await self.industry(org_id, now)
        if algorithm == Algorithm.TRENDING:
            return await self.trending(now)
        return await self.similar_buyers(user_id, org_id, now)

    async def browsing(self, user_id: str, org_id: str, now: datetime) -> list[Recommendation]:
        """Products in categories the user recently viewed, excluding those already viewed."""
        since = now - timedelta(days=self.settings.browsing_window_days)
        viewed = await self.signals.recent_views(user_id, org_id, since, self.settings.browsing_history_size)
        if not viewed:
            return []

        viewed_ids = {p.id for p in viewed}
        viewed_suppliers = {p.org_id for p in viewed}
        prices = [p.price_mid_inr for p in viewed if p.price_mid_inr is not None]
        avg_price = sum(prices) / len(prices) if prices else None

        candidates = await self.signals.eligible_products(categories=sorted({p.category for p in viewed}))
        results = []
        for product in candidates:
            if product.id in viewed_ids:
                continue

            score = 0.5
            same_supplier = product.org_id in viewed_suppliers
            if same_supplier:
                score += 0.3
            if avg_price is not None and product.price_mid_inr is not None:
                score += 0.2 * ratio_similarity(avg_price, product.price_mid_inr)

            if same_supplier:
                reason = f"From {product.supplier_name or 'this supplier'} - a supplier you've viewed before"
            else:
                reason = "Similar to products you've recently viewed"
            results.append(Recommendation(product.id, score, reason, Algorithm.BROWSING.value))

        return _rank(results)

    async def industry(self, org_id: str, now: datetime) -> list[Recommendation]:
        """Products most viewed by peer organizations of the same type."""
        since = now - timedelta(days=self.settings.industry_window_days)
        counts = await self.signals.peer_view_counts(org_id, since, self.settings.peer_org_sample)
        if not counts:
            return []

        eligible = {p.id for p in await self.signals.eligible_products(product_ids=sorted(counts))}
        results = [
            Recommendation(
                product_id,
                min(count / 10, 1.0),
                f"Popular among {count} similar companies in your industry",
                Algorithm.INDUSTRY.value,
            )
            for product_id, count in counts.items()
            if product_id in eligible and count > 0
        ]
        return _rank(results)

    async def trending(self, now: datetime) -> list[Recommendation]:
        """Products whose view count grew this window versus the previous one."""
        window = timedelta(days=self.settings.trending_window_days)
        recent = await self.signals.view_counts(since=now - window)
        previous = await self.signals.view_counts(since=now - 2 * window, until=now - window)

        growth: dict[str, float] = {}
        for product_id, recent_count in recent.items():
            previous_count = previous.get(product_id, 0)
            trend = (recent_count - previous_count) / previous_count if previous_count > 0 else recent_count / 10
            if trend > 0:
                growth[product_id] = min(trend, 2.0)
        if not growth:
            return []

        eligible = {p.id for p in await self.signals.eligible_products(product_ids=sorted(growth))}
        results = [
            Recommendation(
                product_id,
                min(trend / 2, 1.0),
                f"Trending - {round(trend * 100)}% increase in interest this week",
                Algorithm.TRENDING.value,
            )
            for product_id, trend in growth.items()
            if product_id in eligible
        ]
        return _rank(results)

    async def similar_buyers(self, user_id: str, org_id: str, now: datetime) -> list[Recommendation]:
        """Products engaged with by buyers who share the user's product interests."""
        since = now - timedelta(days=self.settings.similar_buyers_window_days)
        mine = await self.signals.user_interacted_products(user_id, org_id, since)
        if not mine:
            return []

        counts = await self.signals.similar_buyer_counts(user_id, mine, since, SIMILAR_BUYER_INTERACTIONS)
        if not counts:
            return []

        eligible = {p.id for p in await self.signals.eligible_products(product_ids=sorted(counts))}
        results = [
            Recommendation(
                product_id,
                min(count / 5, 1.0),
                f"{count} similar buyers have shown interest in this product",
                Algorithm.SIMILAR_BUYERS.value,
            )
            for product_id, count in counts.items()
            if product_id in eligible and product_id not in mine
        ]
        return _rank(results)

    async def hybrid(self, user_id: str, org_id: str, now: datetime) -> list[Recommendation]:
        """Weighted blend of the four signal-based strategies."""
        sources = [
            (await self.browsing(user_id, org_id, now), self.settings.hybrid_weight_browsing),
            (await self.industry(org_id, now), self.settings.hybrid_weight_industry),
            (await self.trending(now), self.settings.hybrid_weight_trending),
            (await self.similar_buyers(user_id, org_id, now), self.settings.hybrid_weight_similar_buyers),
        ]
        return combine(sources)

    async def popular(self) -> list[Recommendation]:
        """Catalog popularity: all-time views, then product id."""
        products = await self.signals.eligible_products()
        if not products:
            return []
        counts = await self.signals.view_counts()

        results = []
        for product in products:
            count = counts.get(product.id, 0)
            reason = f"Viewed {count} times on the marketplace" if count else "Available from a verified supplier"
            results.append(Recommendation(product.id, min(count / 10, 1.0), reason, POPULARITY_FALLBACK))
        return _rank(results)


def combine(sources: list[tuple[list[Recommendation], float]]) -> list[Recommendation]:
    """Sum weighted scores per product, keeping every contributing reason."""
    combined: dict[str, Recommendation] = {}
    for results, weight in sources:
        for rec in results:
            existing = combined.get(rec.product_id)
            if existing is None:
                combined[rec.product_id] = Recommendation(
                    rec.product_id,
                    rec.score * weight,
                    rec.reason,
                    Algorithm.HYBRID.value,
                    {"all_reasons": [rec.reason], "source_algorithms": [rec.algorithm]},
                )
            else:
                existing.score += rec.score * weight
                existing.metadata["all_reasons"].append(rec.reason)
                existing.metadata["source_algorithms"].append(rec.algorithm)
    return _rank(list(combined.values()))

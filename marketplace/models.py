"""Core SQLAlchemy models (2.x style) for the marketplace schema.

Portable across PostgreSQL and SQLite: string ids, JSON columns for
free-form specs and match sub-objects, naive UTC timestamps.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


class OrgType(str, Enum):
    BUYER = "BUYER"
    SUPPLIER = "SUPPLIER"


class KycStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class ProductStatus(str, Enum):
    DRAFT = "DRAFT"
    LIVE = "LIVE"
    PAUSED = "PAUSED"


class IntakeStatus(str, Enum):
    PENDING = "PENDING"
    MATCHED = "MATCHED"


class InteractionType(str, Enum):
    VIEW_PRODUCT = "VIEW_PRODUCT"
    SAVE_PRODUCT = "SAVE_PRODUCT"
    REQUEST_QUOTE = "REQUEST_QUOTE"
    COMPLETE_PAYMENT = "COMPLETE_PAYMENT"
    CONTACT_SUPPLIER = "CONTACT_SUPPLIER"


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Org(Base):
    """Buyer and supplier organizations."""
    __tablename__ = "orgs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    kyc_status: Mapped[str] = mapped_column(String(20), default=KycStatus.PENDING.value, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column()

    products: Mapped[list[Product]] = relationship("Product", back_populates="org")
    users: Mapped[list[User]] = relationship("User", back_populates="org")


class User(Base):
    """Users; identity itself is owned by the upstream auth provider."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255))
    org_id: Mapped[str | None] = mapped_column(ForeignKey("orgs.id", ondelete="SET NULL"), index=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    org: Mapped[Org | None] = relationship("Org", back_populates="users")


class Product(Base):
    """Supplier catalog listings."""
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    org_id: Mapped[str] = mapped_column(ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    payload_kg: Mapped[float | None] = mapped_column(Float)
    reach_mm: Mapped[float | None] = mapped_column(Float)
    repeatability_mm: Mapped[float | None] = mapped_column(Float)
    max_speed_mps: Mapped[float | None] = mapped_column(Float)
    ip_rating: Mapped[str | None] = mapped_column(String(10))
    controller: Mapped[str | None] = mapped_column(String(255))
    specs: Mapped[dict | None] = mapped_column(JSON)
    price_min_inr: Mapped[float | None] = mapped_column(Float)
    price_max_inr: Mapped[float | None] = mapped_column(Float)
    lead_time_weeks: Mapped[float | None] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(20), default=ProductStatus.DRAFT.value, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column()

    org: Mapped[Org] = relationship("Org", back_populates="products")

    __table_args__ = (
        UniqueConstraint("org_id", "sku", name="uq_products_org_sku"),
        Index("ix_products_status_category", "status", "category"),
    )


class Intake(Base):
    """Buyer requirement submissions."""
    __tablename__ = "intakes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    buyer_org_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_by_user_id: Mapped[str | None] = mapped_column(String(36))
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=IntakeStatus.PENDING.value, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    matches: Mapped[list[Match]] = relationship("Match", back_populates="intake", order_by="Match.rank")


class Match(Base):
    """Scored product matches for an intake, with full audit."""
    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    intake_id: Mapped[str] = mapped_column(ForeignKey("intakes.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    fit_score: Mapped[float] = mapped_column(Float, nullable=False)
    rationale: Mapped[str] = mapped_column(Text, nullable=False)
    why: Mapped[list] = mapped_column(JSON, nullable=False)
    assumptions: Mapped[list] = mapped_column(JSON, nullable=False)
    criteria: Mapped[list] = mapped_column(JSON, nullable=False)
    commercials: Mapped[dict] = mapped_column(JSON, nullable=False)
    delivery_install: Mapped[dict] = mapped_column(JSON, nullable=False)
    sla: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    intake: Mapped[Intake] = relationship("Intake", back_populates="matches")

    __table_args__ = (
        UniqueConstraint("intake_id", "product_id", name="uq_matches_intake_product"),
    )


class ProductView(Base):
    """Latest view of a product per (user, org); upserted on every view."""
    __tablename__ = "product_views"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    org_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(100))
    source: Mapped[str | None] = mapped_column(String(50))
    viewed_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    product: Mapped[Product] = relationship("Product")

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", "org_id", name="uq_product_views_user_product_org"),
        Index("ix_product_views_viewed_at", "viewed_at"),
        Index("ix_product_views_user_viewed", "user_id", "viewed_at"),
    )


class UserInteraction(Base):
    """Append-only interaction events used by similar-buyer recommendations."""
    __tablename__ = "user_interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    product_id: Mapped[str | None] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    intake_id: Mapped[str | None] = mapped_column(String(36))
    interaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False, index=True)


class RecommendationLog(Base):
    """Served recommendation lists and the click that followed, for analytics."""
    __tablename__ = "recommendation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    algorithm: Mapped[str] = mapped_column(String(30), nullable=False)
    product_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    top_score: Mapped[float] = mapped_column(Float, nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)
    clicked_product_id: Mapped[str | None] = mapped_column(String(36))
    clicked_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_recommendation_logs_user_created", "user_id", "created_at"),
    )

"""Shared pytest fixtures: in-memory database and a small seeded catalog."""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from marketplace import models
from marketplace.db import create_all, create_session_factory

NOW = datetime(2024, 6, 1, 12, 0, 0)

SUPPLIERS = [
    {"id": "sup-precision", "name": "Precision Robotics", "kyc_status": "VERIFIED"},
    {"id": "sup-flowline", "name": "FlowLine Systems", "kyc_status": "VERIFIED"},
    {"id": "sup-unverified", "name": "Garage Automation", "kyc_status": "PENDING"},
]

BUYERS = ["buyer-acme", "buyer-bolt", "buyer-crane"]

PRODUCTS = [
    {
        "id": "p-arm-10",
        "org_id": "sup-precision",
        "category": "SixAxis",
        "title": "PR-10 Compact Arm",
        "sku": "PR-10",
        "payload_kg": 10,
        "reach_mm": 1400,
        "repeatability_mm": 0.03,
        "max_speed_mps": 2.0,
        "ip_rating": "IP54",
        "controller": "ABB IRC5",
        "price_min_inr": 2_500_000,
        "price_max_inr": 3_500_000,
        "lead_time_weeks": 8,
        "status": "LIVE",
        "specs": {
            "reliabilityRating": "high",
            "prioritySupport": True,
            "mttrHours": 4,
            "connectivity": ["Profinet", "EtherCAT"],
        },
    },
    {
        "id": "p-arm-50",
        "org_id": "sup-flowline",
        "category": "SixAxis",
        "title": "FL-50 Heavy Arm",
        "sku": "FL-50",
        "payload_kg": 50,
        "reach_mm": 2100,
        "repeatability_mm": 0.05,
        "max_speed_mps": 1.5,
        "ip_rating": "IP65",
        "controller": "Siemens S7-1500",
        "price_min_inr": 6_000_000,
        "price_max_inr": 8_000_000,
        "lead_time_weeks": 12,
        "status": "LIVE",
        "specs": {},
    },
    {
        "id": "p-scara",
        "org_id": "sup-precision",
        "category": "SCARA",
        "title": "PR-S6 SCARA",
        "sku": "PR-S6",
        "payload_kg": 6,
        "reach_mm": 600,
        "repeatability_mm": 0.01,
        "price_min_inr": 1_200_000,
        "price_max_inr": 1_600_000,
        "lead_time_weeks": 6,
        "status": "LIVE",
        "specs": {},
    },
    {
        "id": "p-amr",
        "org_id": "sup-flowline",
        "category": "AMR",
        "title": "FL Tug 300",
        "sku": "FL-T300",
        "payload_kg": 300,
        "max_speed_mps": 1.2,
        "price_min_inr": 1_500_000,
        "price_max_inr": 2_000_000,
        "lead_time_weeks": 6,
        "status": "LIVE",
        "specs": {},
    },
    {
        "id": "p-draft",
        "org_id": "sup-precision",
        "category": "SixAxis",
        "title": "PR-20 Prototype",
        "sku": "PR-20",
        "payload_kg": 20,
        "status": "DRAFT",
        "specs": {},
    },
    {
        "id": "p-unverified",
        "org_id": "sup-unverified",
        "category": "SixAxis",
        "title": "GA Budget Arm",
        "sku": "GA-1",
        "payload_kg": 12,
        "price_min_inr": 900_000,
        "price_max_inr": 1_100_000,
        "lead_time_weeks": 4,
        "status": "LIVE",
        "specs": {},
    },
]


@pytest.fixture
def now():
    return NOW


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory SQLite database with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def catalog(session):
    """Seed supplier and buyer orgs plus the product catalog."""
    for supplier in SUPPLIERS:
        session.add(models.Org(type=models.OrgType.SUPPLIER.value, **supplier))
    for buyer_id in BUYERS:
        session.add(models.Org(
            id=buyer_id,
            name=buyer_id.replace("-", " ").title(),
            type=models.OrgType.BUYER.value,
        ))
    await session.flush()

    for product in PRODUCTS:
        session.add(models.Product(**product))
    session.add(models.Product(
        id="p-deleted",
        org_id="sup-precision",
        category="SixAxis",
        title="PR-08 Retired",
        sku="PR-08",
        payload_kg=8,
        status="LIVE",
        deleted_at=NOW - timedelta(days=30),
    ))
    await session.commit()
    return {p["id"]: p for p in PRODUCTS}


async def add_view(session, *, user_id, org_id, product_id, viewed_at):
    session.add(models.ProductView(user_id=user_id, org_id=org_id, product_id=product_id, viewed_at=viewed_at))
    await session.commit()


async def add_interaction(session, *, user_id, org_id, product_id, interaction_type="VIEW_PRODUCT", created_at):
    session.add(models.UserInteraction(
        user_id=user_id,
        org_id=org_id,
        product_id=product_id,
        interaction_type=interaction_type,
        created_at=created_at,
    ))
    await session.commit()

"""Shared test fixtures for the booking API tests.

Uses an in-memory SQLite async engine so tests run without PostgreSQL.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("APP_ENV", "test")

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.main import app

# Import all models to ensure they're registered with Base.metadata
from app.models.user import User, Role
from app.models.plan import Plan
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.payment_intent import PaymentIntent  # noqa: F401
from app.models.appointment import Appointment  # noqa: F401
from app.models.points_ledger import PointsLedgerEntry  # noqa: F401
from app.models.payment import Payment  # noqa: F401
from app.models.event_log import EventLog  # noqa: F401
from app.models.barber_availability import BarberAvailability  # noqa: F401
from app.services.auth import issue_token


# Use aiosqlite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
TestSession = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Fixed clock for service-level tests: Monday 2030-01-07 08:00 UTC
NOW = datetime(2030, 1, 7, 8, 0)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def override_get_db():
    async with TestSession() as session:
        yield session


app.dependency_overrides[get_db] = override_get_db


@pytest_asyncio.fixture
async def client():
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def db():
    """Direct DB session for test setup/assertions."""
    async with TestSession() as session:
        yield session


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_user(db):
    """Factory: ``await make_user(role=Role.BARBER, email=...)``."""
    counter = {"n": 0}

    async def _make(role: Role = Role.CLIENT, email: str = None, name: str = None) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"{role.value.lower()}{counter['n']}@example.com",
            name=name or f"{role.value.title()} {counter['n']}",
            role=role,
            is_active=True,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def client_user(make_user):
    return await make_user(Role.CLIENT, email="ana@example.com", name="Ana")


@pytest_asyncio.fixture
async def barber(make_user):
    return await make_user(Role.BARBER, email="marco@lafade.com", name="Marco")


@pytest_asyncio.fixture
async def owner(make_user):
    return await make_user(Role.OWNER, email="owner@lafade.com", name="Owner")


@pytest_asyncio.fixture
async def standard_plan(db):
    plan = Plan(
        name="Standard",
        price_monthly_cents=4500,
        cuts_per_month=2,
        gateway_price_id="price_standard",
    )
    db.add(plan)
    await db.commit()
    return plan


@pytest.fixture
def subscribe(db):
    """Factory: give a client an entitled subscription covering ``now``."""

    async def _subscribe(
        user: User,
        plan: Plan,
        at: datetime = NOW,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        gateway_subscription_id: str = "sub_test",
    ) -> Subscription:
        subscription = Subscription(
            user_id=user.id,
            plan_id=plan.id,
            gateway_subscription_id=gateway_subscription_id,
            status=status,
            current_period_start=at - timedelta(days=1),
            renews_at=at + timedelta(days=29),
        )
        db.add(subscription)
        await db.commit()
        return subscription

    return _subscribe


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {issue_token(user.id)}"}


@pytest.fixture
def headers():
    """``headers(user)`` builds a bearer header for that user."""
    return auth_headers

import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base
from main import app
from models.clip_subscription import ClipSubscription
from models.project import Project
from models.user import PAYMENT_PENDING, ROLE_ADMIN, ROLE_BUSINESS, ROLE_CUSTOMER, User
from routers import rate_limit


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_windows.clear()
    yield
    rate_limit._local_windows.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture(autouse=True)
def disable_expiry_sweep(monkeypatch):
    """Sweeps run against the configured database; tests opt back in explicitly."""
    monkeypatch.setattr(settings, "EXPIRY_SWEEP_ENABLED", False)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "clip_ledger.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def make_business(session_maker):
    async def _make(**overrides) -> str:
        business_id = overrides.pop("id", None) or f"business-{uuid.uuid4().hex[:8]}"
        values = {
            "email": f"{business_id}@example.com",
            "role": ROLE_BUSINESS,
            "business_name": f"{business_id} AS",
            "is_active": True,
            "plan_assigned": False,
            "payment_status": PAYMENT_PENDING,
        }
        values.update(overrides)
        async with session_maker() as session:
            session.add(User(id=business_id, **values))
            await session.commit()
        return business_id

    return _make


@pytest.fixture
def make_user(session_maker):
    async def _make(role: str = ROLE_CUSTOMER) -> str:
        user_id = f"{role}-{uuid.uuid4().hex[:8]}"
        async with session_maker() as session:
            session.add(User(id=user_id, email=f"{user_id}@example.com", role=role))
            await session.commit()
        return user_id

    return _make


@pytest.fixture
def make_subscription(session_maker):
    async def _make(**overrides) -> str:
        subscription_id = str(uuid.uuid4())
        values = {
            "package_name": f"Plan {subscription_id[:6]}",
            "package_description": "Monthly clip package",
            "price": 200.0,
            "total_clips": 10,
            "validity_days": "2 month",
            "monthly_duration": 5,
            "is_deleted": False,
        }
        values.update(overrides)
        async with session_maker() as session:
            session.add(ClipSubscription(id=subscription_id, **values))
            await session.commit()
        return subscription_id

    return _make


@pytest.fixture
def make_project(session_maker, make_user):
    async def _make(title: str = "Kitchen renovation") -> str:
        customer_id = await make_user(ROLE_CUSTOMER)
        project_id = str(uuid.uuid4())
        async with session_maker() as session:
            session.add(Project(id=project_id, customer_id=customer_id, title=title))
            await session.commit()
        return project_id

    return _make


@pytest.fixture
def admin_id() -> str:
    return f"{ROLE_ADMIN}-root"

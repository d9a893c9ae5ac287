"""Shared fixtures: in-memory database, users, and a hand-driven dispatcher.

Environment overrides must be in place before ``app.config`` is imported,
since ``settings`` is built at import time.
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["CREDIT_CHECK_RATE_LIMIT"] = "1000/minute"
os.environ["EQUIFAX_WEBHOOK_SECRET"] = "test-webhook-secret"
for _name in ("EQUIFAX_API_KEY", "EQUIFAX_CLIENT_ID", "EQUIFAX_CLIENT_SECRET"):
    os.environ[_name] = ""

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.config import Settings  # noqa: E402
from app.database import Base  # noqa: E402
from app.models import RentalApplication, User, UserRole  # noqa: E402
from app.services.credit_bureau.mock_bureau import SimulatedBureauAdapter  # noqa: E402
from app.services.credit_check import CheckDispatcher, CreditCheckService  # noqa: E402


class RecordingDispatcher(CheckDispatcher):
    """Remembers what was queued; tests run the completion routine themselves."""

    def __init__(self, fail_with: Exception | None = None):
        self.fail_with = fail_with
        self.submitted: list[dict] = []
        self.revoked: list[str] = []

    def submit(self, check_id, *, countdown=0, personal_info=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.submitted.append({
            "check_id": check_id,
            "countdown": countdown,
            "personal_info": personal_info,
        })
        return f"task-{check_id}"

    def revoke(self, task_id):
        self.revoked.append(task_id)


@pytest.fixture
def test_settings():
    return Settings(
        environment="test",
        secret_key="test-secret-key",
        equifax_api_key="",
        equifax_client_id="",
        equifax_client_secret="",
        simulated_seed=1234,
    )


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def service(test_settings, dispatcher):
    return CreditCheckService(
        config=test_settings,
        bureau=SimulatedBureauAdapter(seed=test_settings.simulated_seed),
        dispatcher=dispatcher,
    )


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def tenant(db):
    user = User(
        email="tenant@example.com",
        first_name="Jane",
        last_name="Doe",
        role=UserRole.TENANT,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def landlord(db):
    user = User(
        email="landlord@example.com",
        first_name="Sam",
        last_name="Keys",
        role=UserRole.LANDLORD,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def application(db, tenant, landlord):
    app_row = RentalApplication(tenant_id=tenant.id, landlord_id=landlord.id, property_id=7)
    db.add(app_row)
    await db.commit()
    await db.refresh(app_row)
    return app_row

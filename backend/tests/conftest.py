"""
Test Configuration — Fixtures for async DB, callers, test client and seed data.

Each test gets its own in-memory SQLite database. StaticPool keeps the
single connection alive so every session in the test sees the same schema.
"""

import asyncio
import uuid
from datetime import date, datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

import db.models  # noqa: F401  (register mappers)
from api.deps import get_current_caller, get_db, get_forecast_model
from api.main import app
from core.security import hash_password
from core.tenancy import Caller, Role
from db.models import Company, Offer, User
from db.session import Base
from ml.model_client import BaselineForecastModel, ForecastModel

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

HEADER_A = "Model,Sales_Count,Month,Price_Rs,Region,Discount_Price_Rs,Battery_Life_Days,Display_Type,GPS,Bluetooth\n"

SAMPLE_CSV_A = (
    HEADER_A
    + "Pulse X,100,2025-01,2999,North,2499,7,AMOLED,Yes,Yes\n"
    + "Pulse X,120,2025-02,2999,North,,7,AMOLED,Yes,Yes\n"
    + "Pulse X,140,2025-03,2999,North,,7,AMOLED,Yes,No\n"
    + "Orbit Lite,40,2025-01,1499,South,,5,LCD,No,Yes\n"
    + "Orbit Lite,35,2025-02,1499,South,,5,LCD,No,Yes\n"
    + "Orbit Lite,30,2025-03,1499,South,,5,LCD,No,Yes\n"
).encode()

SAMPLE_CSV_B = (
    "model_name,sales_count,date,price,region,waterproof\n"
    "Pulse X,10,2025-04-15,2999,North,true\n"
    "Nova,5,2025-04-01,999,,false\n"
).encode()


class StubForecastModel(ForecastModel):
    """Deterministic model used by orchestrator and API tests."""

    name = "stub"

    def __init__(self, accuracy: float = 0.87, sales: float = 50.0, confidence: float = 0.8, delay: float = 0.0):
        self.accuracy = accuracy
        self.sales = sales
        self.confidence = confidence
        self.delay = delay
        self.train_calls = 0
        self.predict_calls = []

    async def train(self, dataset):
        self.train_calls += 1
        return self.accuracy

    async def predict(self, history, horizon_months):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.predict_calls.append((list(history), horizon_months))
        return [
            {"month": step, "predicted_sales": self.sales + step, "confidence": self.confidence}
            for step in range(1, horizon_months + 1)
        ]

    async def feature_importance(self, dataset):
        return [
            {"feature": "gps", "importance": 0.5},
            {"feature": "price", "importance": 0.05},
            {"feature": "bluetooth", "importance": 0.15},
        ]


@pytest.fixture
async def test_engine():
    """Create a fresh in-memory database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    async with AsyncSession(bind=test_engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
async def companies(test_db):
    """Two tenants, A and B."""
    company_a = Company(id=uuid.uuid4(), name="Acme Wearables")
    company_b = Company(id=uuid.uuid4(), name="Bolt Devices")
    test_db.add_all([company_a, company_b])
    await test_db.commit()
    return {"a": company_a, "b": company_b}


@pytest.fixture
def admin_caller():
    return Caller(user_id=uuid.uuid4(), role=Role.ADMIN)


@pytest.fixture
def caller_a(companies):
    return Caller(user_id=uuid.uuid4(), role=Role.COMPANY, company_id=companies["a"].id)


@pytest.fixture
def caller_b(companies):
    return Caller(user_id=uuid.uuid4(), role=Role.COMPANY, company_id=companies["b"].id)


@pytest.fixture
def stub_model():
    return StubForecastModel()


@pytest.fixture
async def users(test_db, companies):
    """Persisted admin and company-A accounts (password: 'correct-horse')."""
    admin = User(
        name="Platform Admin",
        email="admin@salescast.test",
        hashed_password=hash_password("correct-horse"),
        role="admin",
    )
    member = User(
        name="Acme Analyst",
        email="analyst@acme.test",
        hashed_password=hash_password("correct-horse"),
        role="company",
        company_id=companies["a"].id,
    )
    test_db.add_all([admin, member])
    await test_db.commit()
    return {"admin": admin, "member": member}


@pytest.fixture
async def offers(test_db):
    """Two overlapping campaigns in April 2025; the second is newer."""
    spring = Offer(
        name="Spring Sale",
        start_date=date(2025, 3, 20),
        end_date=date(2025, 4, 10),
        created_at=datetime(2025, 1, 1),
    )
    mega = Offer(
        name="Mega April",
        start_date=date(2025, 4, 5),
        end_date=date(2025, 4, 30),
        created_at=datetime(2025, 2, 1),
    )
    test_db.add_all([spring, mega])
    await test_db.commit()
    return {"spring": spring, "mega": mega}


@pytest.fixture
def current_caller(caller_a):
    """Caller the API client authenticates as. Override per test module."""
    return caller_a


@pytest.fixture
async def client(test_db, current_caller, stub_model):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_caller():
        return current_caller

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_caller] = override_get_current_caller
    app.dependency_overrides[get_forecast_model] = lambda: stub_model

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def baseline_model():
    return BaselineForecastModel()


@pytest.fixture
def sample_csv_a():
    """Dashboard-export convention: two products over three months."""
    return SAMPLE_CSV_A


@pytest.fixture
def sample_csv_b():
    """Generic-export convention with a day-precision date and a missing region."""
    return SAMPLE_CSV_B

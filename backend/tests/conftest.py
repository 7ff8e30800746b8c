"""Pytest configuration and fixtures for the stock ledger tests.

Every test gets its own in-memory SQLite database (aiosqlite, one shared
connection through StaticPool), so nothing persists between tests.
"""

from datetime import date, datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.deps import Principal
from app.auth.jwt import create_access_token
from app.database import Base, get_db
from app.main import app
from app.models import *  # noqa: F401,F403 — register models on Base.metadata
from app.models.stock import StockEntry
from app.routers.stock import get_clock
from app.services.ledger import LedgerService
from app.utils.locks import LedgerLockRegistry, ledger_locks

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

THEATER_ID = "theater-1"
OTHER_THEATER_ID = "theater-2"
PRODUCT_ID = "popcorn-large"

# Mid-morning on 20 January 2025, business-local
NOW = datetime(2025, 1, 20, 10, 30)


# ── Database ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def _reset_ledger_locks():
    """Locks are bound to the event loop that first waits on them."""
    ledger_locks.clear()
    yield
    ledger_locks.clear()


# ── Clock ────────────────────────────────────────────────────────

class FixedClock:
    """Settable clock for tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


# ── Service ──────────────────────────────────────────────────────

@pytest.fixture
def principal() -> Principal:
    return Principal(user_id="user-1", role="theater_admin", permissions=["*"],
                     theater_ids=[THEATER_ID])


@pytest.fixture
def lock_registry() -> LedgerLockRegistry:
    return LedgerLockRegistry()


@pytest.fixture
def service(db_session, principal, clock, lock_registry) -> LedgerService:
    return LedgerService(
        db_session, principal=principal, clock=clock, locks=lock_registry, lock_timeout=0.2,
    )


@pytest.fixture
def make_entry():
    """Build an unsaved StockEntry for pure aggregation tests."""
    counter = {"n": 0}

    def _make(
        entry_date: date,
        quantity: int,
        used: int = 0,
        damaged: int = 0,
        expire_date: date | None = None,
        batch_number: str | None = None,
    ) -> StockEntry:
        counter["n"] += 1
        return StockEntry(
            id=f"entry-{counter['n']:03d}",
            ledger_id="ledger-1",
            theater_id=THEATER_ID,
            product_id=PRODUCT_ID,
            entry_date=entry_date,
            quantity_added=quantity,
            used_stock=used,
            damage_stock=damaged,
            expire_date=expire_date,
            batch_number=batch_number,
        )

    return _make


# ── HTTP ─────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(db_session, clock) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the database and clock overridden."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def make_token(
    role: str = "theater_admin",
    permissions: list[str] | None = None,
    theater_ids: list[str] | None = None,
    user_id: str = "user-1",
) -> str:
    return create_access_token(
        user_id=user_id,
        role=role,
        permissions=["*"] if permissions is None else permissions,
        theater_ids=[THEATER_ID] if theater_ids is None else theater_ids,
    )


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def readonly_headers() -> dict:
    token = make_token(role="staff", permissions=["stock.read"], user_id="user-2")
    return {"Authorization": f"Bearer {token}"}


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "integration: Service tests against a database")

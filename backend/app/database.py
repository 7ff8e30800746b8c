"""Database engine, session factory, and declarative base.

All stock tables live in one schema; tenant (theater) isolation is done
with a `theater_id` column on every row rather than schema-per-tenant,
because a theater chain shares one catalogue of products.

Session dependency for FastAPI:
  - get_db()  → request-scoped AsyncSession, committed on success
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# ── Base class ──────────────────────────────────────────────

class Base(DeclarativeBase):
    """Declarative base for all stock ledger models."""
    pass


# ── Session dependency ──────────────────────────────────────

async def get_db() -> AsyncSession:
    """Yield a session; commit if the request succeeded, roll back otherwise.

    Ledger mutations commit on their own before returning, so the final
    commit here is usually a no-op.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_all_tables() -> None:
    """Create any missing tables (development / first start)."""
    import app.models  # noqa: F401 — register models on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

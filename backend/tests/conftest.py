"""Shared fixtures: a throwaway SQLite database per test and a small seeded world.

Transactions are opened with BEGIN IMMEDIATE so that concurrent sessions
queue on the database write lock the way row locks queue writers on
PostgreSQL, instead of failing with "database is locked".
"""

from datetime import datetime, timedelta, timezone

import pytest_asyncio
from sqlalchemy import event, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
from app.models import (
    AdminUser,
    AdminRole,
    AdminStatus,
    GuideApplication,
    ApplicationStatus,
)

ADA = 7     # verifier
BEN = 9     # verifier
CLEO = 11   # super admin
FINN = 13   # finance admin, not allowed to review


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'review.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def seeded(session_factory):
    """Four admins and three applications; 'app-1' and 'app-2' are pending."""
    async with session_factory() as s:
        s.add_all([
            AdminUser(id=ADA, name="Ada Okafor", email="ada@example.com", password_hash="x",
                      role=AdminRole.ADMIN_VERIFIER, status=AdminStatus.ACTIVE),
            AdminUser(id=BEN, name="Ben Ruiz", email="ben@example.com", password_hash="x",
                      role=AdminRole.ADMIN_VERIFIER, status=AdminStatus.ACTIVE),
            AdminUser(id=CLEO, name="Cleo Marsh", email="cleo@example.com", password_hash="x",
                      role=AdminRole.SUPER_ADMIN, status=AdminStatus.ACTIVE),
            AdminUser(id=FINN, name="Finn Aberg", email="finn@example.com", password_hash="x",
                      role=AdminRole.ADMIN_FINANCE, status=AdminStatus.ACTIVE),
        ])
        s.add_all([
            GuideApplication(id="app-1", user_id=101, name="Mara Lind",
                             application_status=ApplicationStatus.PENDING),
            GuideApplication(id="app-2", user_id=102, name="Tomas Berg",
                             application_status=ApplicationStatus.PENDING, flagged_for_review=True),
            GuideApplication(id="app-3", user_id=103, name="Ines Vidal",
                             application_status=ApplicationStatus.APPROVED),
        ])
        await s.commit()


@pytest_asyncio.fixture
async def db(session_factory, seeded):
    async with session_factory() as session:
        yield session


async def backdate_lease(session_factory, application_id: str, *, minutes: int = 1) -> None:
    """Push an application's lease expiry into the past."""
    async with session_factory() as s:
        await s.execute(
            update(GuideApplication)
            .where(GuideApplication.id == application_id)
            .values(lock_expiry=datetime.now(timezone.utc) - timedelta(minutes=minutes))
        )
        await s.commit()

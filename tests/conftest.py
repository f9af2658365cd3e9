"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- Both ledger store backends, and a parametrized ``store`` running a test
  against each of them
- Ledger services and the HTTP test client
"""
# Point the app at SQLite before anything imports the engine
import os
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LEDGER_BACKEND"] = "sql"

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from water_ledger.api.dependencies.ledger import init_ledger_state
from water_ledger.db.database import Base, get_db
from water_ledger.domain.clock import MonotonicClock
from water_ledger.domain.services.backup_service import BackupService
from water_ledger.domain.services.cache import LedgerCache
from water_ledger.domain.services.ledger_service import LedgerService
from water_ledger.domain.stores.file_store import FileLedgerStore
from water_ledger.domain.stores.sql_store import SqlLedgerStore
from water_ledger.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# No custom event_loop fixture: pytest-asyncio handles it with asyncio_mode=auto
# and asyncio_default_fixture_loop_scope=function


@asynccontextmanager
async def _sqlite_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


def _session_maker(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    async with _sqlite_engine() as engine:
        yield engine


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with _session_maker(async_engine)() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> MonotonicClock:
    return MonotonicClock()


@pytest.fixture
async def sql_store(db_session, clock) -> SqlLedgerStore:
    return SqlLedgerStore(db_session, clock=clock)


@pytest.fixture
def file_store(tmp_path, clock) -> FileLedgerStore:
    return FileLedgerStore(tmp_path / "ledger.json", clock=clock)


@pytest.fixture(params=["sql", "file"])
async def store(request, tmp_path):
    """Each test using this fixture runs once per backend"""
    if request.param == "file":
        yield FileLedgerStore(tmp_path / "ledger.json")
        return

    async with _sqlite_engine() as engine:
        async with _session_maker(engine)() as session:
            yield SqlLedgerStore(session)
            await session.rollback()


@pytest.fixture
def cache() -> LedgerCache:
    return LedgerCache()


@pytest.fixture
def ledger_service(store, cache) -> LedgerService:
    return LedgerService(store, cache)


@pytest.fixture
def backup_service(store, cache) -> BackupService:
    return BackupService(store, cache)


@pytest.fixture
def customer_factory(ledger_service):
    """Factory for creating customers through the service"""
    async def _create_customer(name: str = "Maria Lopez", initial_balance: str = "0"):
        return await ledger_service.create_customer(name, initial_balance)

    return _create_customer


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override and fresh ledger state"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    init_ledger_state(app, backend="sql")
    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()

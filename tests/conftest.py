"""Pytest fixtures for testing."""
import os
from collections.abc import AsyncGenerator, Generator
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from testcontainers.postgres import PostgresContainer

from core.config import get_settings
from models.base import Base
from schemas.api import ApiCreate, ProcedureCreate
from schemas.role import RoleCreate
from schemas.user import UserCreate
from services.api_service import api_service, procedure_service
from services.role_service import role_service
from services.user_service import user_service

# Cheap hashing and key generation; the production defaults are far slower
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RSA_KEY_SIZE", "1024")


@pytest.fixture(scope="session")
def database_url(request: pytest.FixtureRequest) -> str:
    """
    Get the test database URL and set it in environment.

    DATABASE_URL_AUTH_TEST points the suite at an existing database; otherwise
    a PostgreSQL container is started for the session. This must be set
    before any service calls get_settings().
    """
    url = os.environ.get("DATABASE_URL_AUTH_TEST")
    if url is None:
        url = request.getfixturevalue("postgres_container").get_connection_url()
    os.environ["DATABASE_URL"] = url

    get_settings.cache_clear()
    return url


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer]:
    """Start a PostgreSQL container for the test session."""
    with PostgresContainer("postgres:16", driver="asyncpg") as postgres:
        yield postgres


@pytest.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async engine for testing."""
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_connection(async_engine: AsyncEngine) -> AsyncGenerator[AsyncConnection]:
    """
    Create a connection with a transaction that will be rolled back after the test.

    This provides test isolation - each test runs in its own transaction
    that is rolled back, so tests don't affect each other.
    """
    async with async_engine.connect() as connection:
        transaction = await connection.begin()
        try:
            yield connection
        finally:
            await transaction.rollback()


@pytest.fixture
def session_factory(db_connection: AsyncConnection) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to the test transaction.

    Sessions join the outer transaction through a savepoint, so their
    commit() and rollback() never escape the test.
    """
    return async_sessionmaker(
        bind=db_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create an async session bound to the test transaction."""
    async with session_factory() as session:
        yield session


# =============================================================================
# Registry fixtures
# =============================================================================


@pytest.fixture
async def api_id(db_session: AsyncSession) -> UUID:
    """Create an API named 'Resource1'."""
    return await api_service.create(
        db_session,
        ApiCreate(name="Resource1", address="localhost:9001", category="RESOURCE", password="Ap1_pa$$"),
    )


@pytest.fixture
async def procedure_id(db_session: AsyncSession, api_id: UUID) -> UUID:
    """Create a 'read' procedure under the test API."""
    return await procedure_service.create(
        db_session, ProcedureCreate(api_id=api_id, name="read", description="Read data"),
    )


@pytest.fixture
async def role_id(db_session: AsyncSession, api_id: UUID) -> UUID:
    """Create a single-session 'admin' role under the test API."""
    return await role_service.create(
        db_session,
        RoleCreate(api_id=api_id, name="admin", access_duration=900, refresh_duration=28800),
    )


@pytest.fixture
async def user_id(db_session: AsyncSession) -> UUID:
    """Create the user 'alice'."""
    return await user_service.create(
        db_session,
        UserCreate(name="alice", email="alice@example.com", phone="+62812345678", password="Al1ce_pa$$"),
    )

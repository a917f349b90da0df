"""Tests for database connection, session and schema objects."""
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from models.token import ACCESS_ID_MAX
from services.registry import AuthRegistry


async def test_database_connection(db_session: AsyncSession) -> None:
    """Test that we can connect to the database."""
    result = await db_session.execute(text("SELECT 1"))
    assert result.scalar() == 1


async def test_database_session_is_async(db_session: AsyncSession) -> None:
    """Test that the session is an async session."""
    assert isinstance(db_session, AsyncSession)


async def test_access_id_sequence_does_not_cycle(db_session: AsyncSession) -> None:
    """Test that the access id sequence stops at the 32-bit limit instead of wrapping."""
    result = await db_session.execute(
        text(
            "SELECT max_value, cycle FROM pg_sequences "
            "WHERE sequencename = 'tokens_access_id_seq'",
        ),
    )
    max_value, cycle = result.one()
    assert max_value == ACCESS_ID_MAX
    assert cycle is False


async def test_registry_tables_exist(db_session: AsyncSession) -> None:
    """Test that create_all builds every registry table."""
    result = await db_session.execute(
        text("SELECT tablename FROM pg_tables WHERE schemaname = 'public'"),
    )
    tables = set(result.scalars())
    assert {
        "apis",
        "api_procedures",
        "roles",
        "role_access",
        "users",
        "user_roles",
        "tokens",
        "role_profiles",
        "user_profiles",
    } <= tables


async def test_get_async_session_yields_working_session(async_engine: AsyncEngine) -> None:
    """Test the application session generator against the configured database."""
    from db.session import get_async_session

    async for session in get_async_session():
        result = await session.execute(text("SELECT 1"))
        assert result.scalar() == 1


async def test_registry_from_url_owns_its_engine(
    database_url: str,
    async_engine: AsyncEngine,
) -> None:
    """Test that a standalone registry can query and then dispose its engine."""
    registry = AuthRegistry.from_url(database_url)
    try:
        assert isinstance(await registry.list_apis(name="no-such-api"), list)
    finally:
        await registry.close()

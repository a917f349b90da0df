"""Tests for role -> procedure grants and authorization checks."""
from uuid import UUID

import pytest
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession
from uuid6 import uuid7

from models.role import role_access
from schemas.api import ApiCreate, ProcedureCreate
from schemas.role import RoleCreate
from services import access_service
from services.api_service import api_service, procedure_service
from services.exceptions import DuplicateGrantError, EntityNotFoundError, InvalidGrantError
from services.role_service import role_service
from services.user_service import user_service


@pytest.fixture
async def other_api_id(db_session: AsyncSession) -> UUID:
    """Create a second API for scope tests."""
    return await api_service.create(
        db_session, ApiCreate(name="Resource2", address="localhost:9002", password="pa$$"),
    )


@pytest.fixture
async def other_procedure_id(db_session: AsyncSession, other_api_id: UUID) -> UUID:
    return await procedure_service.create(
        db_session, ProcedureCreate(api_id=other_api_id, name="read"),
    )


# =============================================================================
# grant / revoke Tests
# =============================================================================


async def test__grant__adds_procedure_to_role(
    db_session: AsyncSession,
    procedure_id: UUID,
    role_id: UUID,
) -> None:
    await access_service.grant(db_session, role_id, procedure_id)

    assert await access_service.has_grant(db_session, role_id, procedure_id)
    assert await access_service.granted_procedures(db_session, role_id) == {procedure_id}


async def test__grant__existing_pair_raises_duplicate(
    db_session: AsyncSession,
    procedure_id: UUID,
    role_id: UUID,
) -> None:
    await access_service.grant(db_session, role_id, procedure_id)

    with pytest.raises(DuplicateGrantError) as exc_info:
        await access_service.grant(db_session, role_id, procedure_id)
    assert exc_info.value.role_id == role_id
    assert exc_info.value.procedure_id == procedure_id
    assert await access_service.granted_procedures(db_session, role_id) == {procedure_id}


async def test__grant__cross_api_pair_raises_invalid_grant(
    db_session: AsyncSession,
    role_id: UUID,
    other_procedure_id: UUID,
) -> None:
    with pytest.raises(InvalidGrantError):
        await access_service.grant(db_session, role_id, other_procedure_id)
    assert not await access_service.has_grant(db_session, role_id, other_procedure_id)


async def test__grant__unknown_role_raises_not_found(
    db_session: AsyncSession,
    procedure_id: UUID,
) -> None:
    with pytest.raises(EntityNotFoundError) as exc_info:
        await access_service.grant(db_session, uuid7(), procedure_id)
    assert exc_info.value.entity == "Role"


async def test__grant__unknown_procedure_raises_not_found(
    db_session: AsyncSession,
    role_id: UUID,
) -> None:
    with pytest.raises(EntityNotFoundError) as exc_info:
        await access_service.grant(db_session, role_id, uuid7())
    assert exc_info.value.entity == "Procedure"


async def test__revoke__removes_grant(
    db_session: AsyncSession,
    procedure_id: UUID,
    role_id: UUID,
) -> None:
    await access_service.grant(db_session, role_id, procedure_id)

    assert await access_service.revoke(db_session, role_id, procedure_id) is True
    assert await access_service.granted_procedures(db_session, role_id) == set()


async def test__revoke__absent_grant_is_noop(
    db_session: AsyncSession,
    procedure_id: UUID,
    role_id: UUID,
) -> None:
    assert await access_service.revoke(db_session, role_id, procedure_id) is False
    assert await access_service.revoke(db_session, uuid7(), uuid7()) is False


# =============================================================================
# is_authorized Tests
# =============================================================================


async def test__is_authorized__true_through_assigned_role(
    db_session: AsyncSession,
    procedure_id: UUID,
    role_id: UUID,
    user_id: UUID,
) -> None:
    await access_service.grant(db_session, role_id, procedure_id)
    await user_service.add_role(db_session, user_id, role_id)

    assert await access_service.is_authorized(db_session, user_id, procedure_id)


async def test__is_authorized__false_without_role(
    db_session: AsyncSession,
    procedure_id: UUID,
    role_id: UUID,
    user_id: UUID,
) -> None:
    await access_service.grant(db_session, role_id, procedure_id)

    assert not await access_service.is_authorized(db_session, user_id, procedure_id)


async def test__is_authorized__false_without_grant(
    db_session: AsyncSession,
    procedure_id: UUID,
    role_id: UUID,
    user_id: UUID,
) -> None:
    await user_service.add_role(db_session, user_id, role_id)

    assert not await access_service.is_authorized(db_session, user_id, procedure_id)


async def test__is_authorized__ignores_cross_api_grant_rows(
    db_session: AsyncSession,
    role_id: UUID,
    user_id: UUID,
    other_procedure_id: UUID,
) -> None:
    """Test that a grant row written past grant() still cannot authorize across APIs."""
    await db_session.execute(
        insert(role_access).values(role_id=role_id, procedure_id=other_procedure_id),
    )
    await user_service.add_role(db_session, user_id, role_id)

    assert not await access_service.is_authorized(db_session, user_id, other_procedure_id)
    assert await access_service.user_procedures(db_session, user_id) == set()


async def test__is_authorized_by_name__resolves_api_and_procedure_names(
    db_session: AsyncSession,
    procedure_id: UUID,
    role_id: UUID,
    user_id: UUID,
    other_procedure_id: UUID,
) -> None:
    await access_service.grant(db_session, role_id, procedure_id)
    await user_service.add_role(db_session, user_id, role_id)

    assert await access_service.is_authorized_by_name(db_session, user_id, "Resource1", "read")
    # Same procedure name, different API
    assert not await access_service.is_authorized_by_name(db_session, user_id, "Resource2", "read")
    assert not await access_service.is_authorized_by_name(db_session, user_id, "Resource1", "nope")
    assert not await access_service.is_authorized_by_name(db_session, user_id, "Missing", "read")


async def test__user_procedures__unions_roles_and_filters_by_api(
    db_session: AsyncSession,
    api_id: UUID,
    procedure_id: UUID,
    role_id: UUID,
    user_id: UUID,
    other_api_id: UUID,
    other_procedure_id: UUID,
) -> None:
    write_id = await procedure_service.create(db_session, ProcedureCreate(api_id=api_id, name="write"))
    other_role = await role_service.create(
        db_session,
        RoleCreate(api_id=other_api_id, name="reader", access_duration=60, refresh_duration=600),
    )
    await access_service.grant(db_session, role_id, procedure_id)
    await access_service.grant(db_session, role_id, write_id)
    await access_service.grant(db_session, other_role, other_procedure_id)
    await user_service.add_role(db_session, user_id, role_id)
    await user_service.add_role(db_session, user_id, other_role)

    assert await access_service.user_procedures(db_session, user_id) == {
        procedure_id,
        write_id,
        other_procedure_id,
    }
    assert await access_service.user_procedures(db_session, user_id, api_id=other_api_id) == {
        other_procedure_id,
    }

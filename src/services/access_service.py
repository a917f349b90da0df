"""
Service layer for role -> procedure grants and authorization checks.

A grant only means something inside one API: a role scoped to API A never
authorizes a procedure of API B. grant() refuses such pairs at write time and
is_authorized() re-checks the scope in its query, so a stray cross-API row
inserted behind this service's back still cannot authorize anything.

Re-granting an existing pair is rejected with DuplicateGrantError; revoking a
pair that doesn't exist is a no-op.
"""
import logging
from uuid import UUID

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.api import Api, Procedure
from models.role import Role, role_access
from models.user import user_roles
from services.api_service import procedure_service
from services.exceptions import DuplicateGrantError, InvalidGrantError
from services.role_service import role_service

logger = logging.getLogger(__name__)


async def has_grant(db: AsyncSession, role_id: UUID, procedure_id: UUID) -> bool:
    """Check whether the (role, procedure) grant row exists."""
    query = select(role_access.c.role_id).where(
        role_access.c.role_id == role_id,
        role_access.c.procedure_id == procedure_id,
    )
    result = await db.execute(select(query.exists()))
    return bool(result.scalar())


async def grant(db: AsyncSession, role_id: UUID, procedure_id: UUID) -> None:
    """
    Allow a role to invoke a procedure.

    Args:
        db: Database session.
        role_id: Role receiving the grant.
        procedure_id: Procedure being granted.

    Raises:
        EntityNotFoundError: If the role or procedure doesn't exist.
        InvalidGrantError: If the role and procedure belong to different APIs.
        DuplicateGrantError: If the role already has the grant.
    """
    role = await role_service.get_model(db, role_id)
    procedure = await procedure_service.get_model(db, procedure_id)
    if role.api_id != procedure.api_id:
        logger.warning(
            "Rejected cross-api grant: role %s (api %s) -> procedure %s (api %s)",
            role_id,
            role.api_id,
            procedure_id,
            procedure.api_id,
        )
        raise InvalidGrantError(role_id, procedure_id)
    if await has_grant(db, role_id, procedure_id):
        raise DuplicateGrantError(role_id, procedure_id)

    try:
        async with db.begin_nested():
            await db.execute(
                insert(role_access).values(role_id=role_id, procedure_id=procedure_id),
            )
    except IntegrityError as e:
        # Concurrent grant of the same pair between the check and the insert
        if "role_access_pkey" in str(e):
            raise DuplicateGrantError(role_id, procedure_id) from e
        raise


async def revoke(db: AsyncSession, role_id: UUID, procedure_id: UUID) -> bool:
    """
    Remove a grant.

    Returns:
        True if a grant was removed, False if there was none.
    """
    result = await db.execute(
        delete(role_access).where(
            role_access.c.role_id == role_id,
            role_access.c.procedure_id == procedure_id,
        ),
    )
    return result.rowcount > 0


async def granted_procedures(db: AsyncSession, role_id: UUID) -> set[UUID]:
    """Return the ids of every procedure the role may invoke."""
    result = await db.execute(
        select(role_access.c.procedure_id).where(role_access.c.role_id == role_id),
    )
    return set(result.scalars())


async def is_authorized(db: AsyncSession, user_id: UUID, procedure_id: UUID) -> bool:
    """
    Check whether any of the user's roles grants the procedure.

    The role and the procedure must belong to the same API.
    """
    query = (
        select(user_roles.c.role_id)
        .join(Role, Role.id == user_roles.c.role_id)
        .join(role_access, role_access.c.role_id == user_roles.c.role_id)
        .join(Procedure, Procedure.id == role_access.c.procedure_id)
        .where(
            user_roles.c.user_id == user_id,
            Procedure.id == procedure_id,
            Role.api_id == Procedure.api_id,
        )
    )
    result = await db.execute(select(query.exists()))
    return bool(result.scalar())


async def is_authorized_by_name(
    db: AsyncSession,
    user_id: UUID,
    api_name: str,
    procedure_name: str,
) -> bool:
    """
    Check authorization the way the gateway sees a call: by API and procedure name.

    Unknown API or procedure names are simply unauthorized.
    """
    result = await db.execute(
        select(Procedure.id)
        .join(Api, Api.id == Procedure.api_id)
        .where(Api.name == api_name, Procedure.name == procedure_name),
    )
    procedure_id = result.scalar_one_or_none()
    if procedure_id is None:
        return False
    return await is_authorized(db, user_id, procedure_id)


async def user_procedures(
    db: AsyncSession,
    user_id: UUID,
    api_id: UUID | None = None,
) -> set[UUID]:
    """Return every procedure id the user may invoke, optionally within one API."""
    query = (
        select(Procedure.id)
        .join(role_access, role_access.c.procedure_id == Procedure.id)
        .join(user_roles, user_roles.c.role_id == role_access.c.role_id)
        .join(Role, Role.id == user_roles.c.role_id)
        .where(user_roles.c.user_id == user_id, Role.api_id == Procedure.api_id)
    )
    if api_id is not None:
        query = query.where(Procedure.api_id == api_id)
    result = await db.execute(query)
    return set(result.scalars())

"""Service layer for role operations."""
import logging
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.crypto import generate_access_key
from models.profile import RoleProfile
from models.role import Role, role_access
from models.user import user_roles
from schemas.role import RoleCreate, RoleSchema, RoleUpdate
from services.api_service import api_service
from services.base_entity_service import BaseEntityService
from services.exceptions import EntityNotFoundError
from services.materializer import JoinLevel, Row, flatten_join_rows, flatten_one
from services.utils import contains_pattern

logger = logging.getLogger(__name__)


def _role_from_row(row: Row) -> RoleSchema:
    return RoleSchema(
        id=row["role_id"],
        api_id=row["api_id"],
        name=row["role_name"],
        multi=row["multi"],
        ip_lock=row["ip_lock"],
        access_duration=row["access_duration"],
        refresh_duration=row["refresh_duration"],
        access_key=row["access_key"],
    )


# Role -> ids of granted procedures
ROLE_LEVEL = JoinLevel(id_key="role_id", build=_role_from_row, children="procedures")
GRANTED_PROCEDURE_LEVEL = JoinLevel(id_key="procedure_id", build=lambda row: row["procedure_id"])


def _role_join_query() -> Select:
    return (
        select(
            Role.id.label("role_id"),
            Role.api_id,
            Role.name.label("role_name"),
            Role.multi,
            Role.ip_lock,
            Role.access_duration,
            Role.refresh_duration,
            Role.access_key,
            role_access.c.procedure_id,
        )
        .select_from(Role)
        .outerjoin(role_access, role_access.c.role_id == Role.id)
        .order_by(Role.id, role_access.c.procedure_id)
    )


class RoleService(BaseEntityService[Role]):
    """CRUD for roles. Reads return the ids of granted procedures."""

    model = Role
    entity_name = "Role"
    unique_keys = {"uq_roles_api_id_name": "name"}

    def _dependent_queries(self, entity_id: UUID) -> dict[str, Select]:
        return {
            "role access": select(role_access.c.procedure_id).where(
                role_access.c.role_id == entity_id,
            ),
            "user roles": select(user_roles.c.user_id).where(user_roles.c.role_id == entity_id),
            "role profiles": select(RoleProfile.id).where(RoleProfile.role_id == entity_id),
        }

    async def create(self, db: AsyncSession, data: RoleCreate) -> UUID:
        """
        Create a role under an API.

        Raises:
            EntityNotFoundError: If the API doesn't exist.
            DuplicateKeyError: If the API already has a role with that name.
        """
        if not await api_service.entity_exists(db, data.api_id):
            raise EntityNotFoundError("Api", data.api_id)
        values = data.model_dump()
        if values["access_key"] is None:
            values["access_key"] = generate_access_key(get_settings().access_key_length)
        role = await self._insert(db, values)
        logger.info("Created role %s (%s) for api %s", role.id, role.name, role.api_id)
        return role.id

    async def read(self, db: AsyncSession, role_id: UUID) -> RoleSchema:
        """
        Read a role with its granted procedure ids.

        Raises:
            EntityNotFoundError: If the role doesn't exist.
        """
        result = await db.execute(_role_join_query().where(Role.id == role_id))
        return flatten_one(
            result.mappings(), self.entity_name, role_id, ROLE_LEVEL, GRANTED_PROCEDURE_LEVEL,
        )

    async def read_by_name(self, db: AsyncSession, api_id: UUID, name: str) -> RoleSchema:
        result = await db.execute(
            _role_join_query().where(Role.api_id == api_id, Role.name == name),
        )
        return flatten_one(
            result.mappings(), self.entity_name, f"{api_id}/{name}",
            ROLE_LEVEL, GRANTED_PROCEDURE_LEVEL,
        )

    async def list_roles(
        self,
        db: AsyncSession,
        api_id: UUID | None = None,
        user_id: UUID | None = None,
        name: str | None = None,
    ) -> list[RoleSchema]:
        """
        List roles, optionally filtered.

        Args:
            db: Database session.
            api_id: Only roles scoped to this API.
            user_id: Only roles assigned to this user.
            name: Case-insensitive substring of the role name.

        Returns:
            Roles ordered by id, each with granted procedure ids.
        """
        query = _role_join_query()
        if api_id is not None:
            query = query.where(Role.api_id == api_id)
        if user_id is not None:
            query = query.where(
                Role.id.in_(select(user_roles.c.role_id).where(user_roles.c.user_id == user_id)),
            )
        if name is not None:
            query = query.where(Role.name.ilike(contains_pattern(name)))
        result = await db.execute(query)
        return flatten_join_rows(result.mappings(), ROLE_LEVEL, GRANTED_PROCEDURE_LEVEL)

    async def update(self, db: AsyncSession, role_id: UUID, data: RoleUpdate) -> None:
        """
        Update the fields set on data.

        Policy changes (multi, ip_lock, durations) apply to tokens issued
        afterwards; existing token rows are not touched.
        """
        await self._update(db, role_id, data.model_dump(exclude_unset=True, exclude_none=True))


role_service = RoleService()

"""Service layer for API and procedure operations."""
import logging
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.crypto import generate_access_key, generate_keypair, hash_password
from models.api import Api, Procedure
from models.role import Role, role_access
from schemas.api import (
    ApiCreate,
    ApiSchema,
    ApiUpdate,
    ProcedureCreate,
    ProcedureSchema,
    ProcedureUpdate,
)
from services.base_entity_service import BaseEntityService
from services.exceptions import EntityNotFoundError
from services.materializer import JoinLevel, Row, flatten_join_rows, flatten_one
from services.utils import contains_pattern

logger = logging.getLogger(__name__)


def _api_from_row(row: Row) -> ApiSchema:
    return ApiSchema(
        id=row["api_id"],
        name=row["api_name"],
        address=row["address"],
        category=row["category"],
        description=row["api_description"],
        password_digest=row["password_digest"],
        access_key=row["access_key"],
        public_key=row["public_key"],
    )


def _procedure_from_row(row: Row) -> ProcedureSchema:
    return ProcedureSchema(
        id=row["procedure_id"],
        api_id=row["procedure_api_id"],
        name=row["procedure_name"],
        description=row["procedure_description"],
    )


def _role_name_from_row(row: Row) -> str:
    return row["role_name"]


# API -> procedures -> names of roles granted each procedure
API_LEVEL = JoinLevel(id_key="api_id", build=_api_from_row, children="procedures")
API_PROCEDURE_LEVEL = JoinLevel(
    id_key="procedure_id", build=_procedure_from_row, children="roles",
)
GRANTED_ROLE_LEVEL = JoinLevel(id_key="role_id", build=_role_name_from_row)

# Procedure -> names of roles granted it
PROCEDURE_LEVEL = JoinLevel(id_key="procedure_id", build=_procedure_from_row, children="roles")


def _api_join_query() -> Select:
    """SELECT apis LEFT JOIN procedures LEFT JOIN grants LEFT JOIN roles, sorted for folding."""
    return (
        select(
            Api.id.label("api_id"),
            Api.name.label("api_name"),
            Api.address,
            Api.category,
            Api.description.label("api_description"),
            Api.password_digest,
            Api.access_key,
            Api.public_key,
            Procedure.id.label("procedure_id"),
            Procedure.api_id.label("procedure_api_id"),
            Procedure.name.label("procedure_name"),
            Procedure.description.label("procedure_description"),
            Role.id.label("role_id"),
            Role.name.label("role_name"),
        )
        .select_from(Api)
        .outerjoin(Procedure, Procedure.api_id == Api.id)
        .outerjoin(role_access, role_access.c.procedure_id == Procedure.id)
        .outerjoin(Role, Role.id == role_access.c.role_id)
        .order_by(Api.id, Procedure.id, Role.id)
    )


def _procedure_join_query() -> Select:
    return (
        select(
            Procedure.id.label("procedure_id"),
            Procedure.api_id.label("procedure_api_id"),
            Procedure.name.label("procedure_name"),
            Procedure.description.label("procedure_description"),
            Role.id.label("role_id"),
            Role.name.label("role_name"),
        )
        .select_from(Procedure)
        .outerjoin(role_access, role_access.c.procedure_id == Procedure.id)
        .outerjoin(Role, Role.id == role_access.c.role_id)
        .order_by(Procedure.id, Role.id)
    )


class ApiService(BaseEntityService[Api]):
    """CRUD for registered APIs. Reads return procedures and their granted role names."""

    model = Api
    entity_name = "Api"
    unique_keys = {"ix_apis_name": "name"}

    def _dependent_queries(self, entity_id: UUID) -> dict[str, Select]:
        return {
            "procedures": select(Procedure.id).where(Procedure.api_id == entity_id),
            "roles": select(Role.id).where(Role.api_id == entity_id),
        }

    async def create(self, db: AsyncSession, data: ApiCreate) -> UUID:
        """
        Register an API.

        The password is stored as a bcrypt digest. An access key is generated
        unless supplied, and an RSA keypair when data.generate_keypair is set.

        Returns:
            The new API id (data.id when supplied).

        Raises:
            DuplicateKeyError: If the id or name is already taken.
            SecretGenerationError: If keypair generation fails.
        """
        settings = get_settings()
        private_key = public_key = None
        if data.generate_keypair:
            private_key, public_key = generate_keypair(settings.rsa_key_size)

        api = await self._insert(
            db,
            {
                "id": data.id,
                "name": data.name,
                "address": data.address,
                "category": data.category,
                "description": data.description,
                "password_digest": hash_password(data.password, settings.bcrypt_rounds),
                "access_key": data.access_key or generate_access_key(settings.access_key_length),
                "public_key": public_key,
                "private_key": private_key,
            },
        )
        logger.info("Created api %s (%s)", api.id, api.name)
        return api.id

    async def read(self, db: AsyncSession, api_id: UUID) -> ApiSchema:
        """
        Read an API with its procedures.

        Raises:
            EntityNotFoundError: If the API doesn't exist.
        """
        result = await db.execute(_api_join_query().where(Api.id == api_id))
        return flatten_one(
            result.mappings(), self.entity_name, api_id,
            API_LEVEL, API_PROCEDURE_LEVEL, GRANTED_ROLE_LEVEL,
        )

    async def read_by_name(self, db: AsyncSession, name: str) -> ApiSchema:
        """Read an API by its unique name. Raises EntityNotFoundError if absent."""
        result = await db.execute(_api_join_query().where(Api.name == name))
        return flatten_one(
            result.mappings(), self.entity_name, name,
            API_LEVEL, API_PROCEDURE_LEVEL, GRANTED_ROLE_LEVEL,
        )

    async def list_apis(
        self,
        db: AsyncSession,
        category: str | None = None,
        name: str | None = None,
        ids: list[UUID] | None = None,
    ) -> list[ApiSchema]:
        """
        List APIs, each with its procedures.

        Args:
            db: Database session.
            category: Exact category match.
            name: Case-insensitive substring of the API name.
            ids: Restrict to these ids.

        Returns:
            APIs ordered by id. Empty list when nothing matches.
        """
        query = _api_join_query()
        if category is not None:
            query = query.where(Api.category == category)
        if name is not None:
            query = query.where(Api.name.ilike(contains_pattern(name)))
        if ids is not None:
            query = query.where(Api.id.in_(ids))
        result = await db.execute(query)
        return flatten_join_rows(
            result.mappings(), API_LEVEL, API_PROCEDURE_LEVEL, GRANTED_ROLE_LEVEL,
        )

    async def update(self, db: AsyncSession, api_id: UUID, data: ApiUpdate) -> None:
        """
        Update the fields set on data. A new password is re-hashed.

        Raises:
            EntityNotFoundError: If the API doesn't exist.
            DuplicateKeyError: If the new name is taken.
        """
        values = data.model_dump(exclude_unset=True, exclude_none=True)
        password = values.pop("password", None)
        if password is not None:
            values["password_digest"] = hash_password(password, get_settings().bcrypt_rounds)
        await self._update(db, api_id, values)


class ProcedureService(BaseEntityService[Procedure]):
    """CRUD for procedures. Each procedure belongs to exactly one API."""

    model = Procedure
    entity_name = "Procedure"
    unique_keys = {"uq_api_procedures_api_id_name": "name"}

    def _dependent_queries(self, entity_id: UUID) -> dict[str, Select]:
        return {
            "role access": select(role_access.c.role_id).where(
                role_access.c.procedure_id == entity_id,
            ),
        }

    async def create(self, db: AsyncSession, data: ProcedureCreate) -> UUID:
        """
        Add a procedure to an API.

        Raises:
            EntityNotFoundError: If the API doesn't exist.
            DuplicateKeyError: If the API already has a procedure with that name.
        """
        if not await api_service.entity_exists(db, data.api_id):
            raise EntityNotFoundError("Api", data.api_id)
        procedure = await self._insert(db, data.model_dump())
        return procedure.id

    async def read(self, db: AsyncSession, procedure_id: UUID) -> ProcedureSchema:
        result = await db.execute(_procedure_join_query().where(Procedure.id == procedure_id))
        return flatten_one(
            result.mappings(), self.entity_name, procedure_id,
            PROCEDURE_LEVEL, GRANTED_ROLE_LEVEL,
        )

    async def read_by_name(self, db: AsyncSession, api_id: UUID, name: str) -> ProcedureSchema:
        """Read a procedure by (api_id, name). Raises EntityNotFoundError if absent."""
        result = await db.execute(
            _procedure_join_query().where(Procedure.api_id == api_id, Procedure.name == name),
        )
        return flatten_one(
            result.mappings(), self.entity_name, f"{api_id}/{name}",
            PROCEDURE_LEVEL, GRANTED_ROLE_LEVEL,
        )

    async def list_by_api(self, db: AsyncSession, api_id: UUID) -> list[ProcedureSchema]:
        """List an API's procedures ordered by id, each with granted role names."""
        result = await db.execute(_procedure_join_query().where(Procedure.api_id == api_id))
        return flatten_join_rows(result.mappings(), PROCEDURE_LEVEL, GRANTED_ROLE_LEVEL)

    async def update(self, db: AsyncSession, procedure_id: UUID, data: ProcedureUpdate) -> None:
        await self._update(
            db, procedure_id, data.model_dump(exclude_unset=True, exclude_none=True),
        )


api_service = ApiService()
procedure_service = ProcedureService()

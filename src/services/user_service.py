"""Service layer for users and their role assignments."""
import logging
from uuid import UUID

from sqlalchemy import Select, delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.crypto import generate_keypair, hash_password, verify_password
from models.profile import UserProfile
from models.role import Role
from models.token import Token
from models.user import User, user_roles
from schemas.user import UserCreate, UserRoleSchema, UserSchema, UserUpdate
from services.base_entity_service import BaseEntityService
from services.exceptions import DuplicateKeyError, EntityNotFoundError
from services.materializer import JoinLevel, Row, flatten_join_rows, flatten_one
from services.role_service import role_service
from services.utils import contains_pattern

logger = logging.getLogger(__name__)


def _user_from_row(row: Row) -> UserSchema:
    return UserSchema(
        id=row["user_id"],
        name=row["user_name"],
        password_digest=row["password_digest"],
        email=row["email"],
        phone=row["phone"],
        public_key=row["public_key"],
    )


def _user_role_from_row(row: Row) -> UserRoleSchema:
    return UserRoleSchema(
        id=row["role_id"],
        api_id=row["api_id"],
        name=row["role_name"],
        multi=row["multi"],
        ip_lock=row["ip_lock"],
        access_duration=row["access_duration"],
        refresh_duration=row["refresh_duration"],
        access_key=row["access_key"],
    )


# User -> assigned roles, each carrying its API's shared access key
USER_LEVEL = JoinLevel(id_key="user_id", build=_user_from_row, children="roles")
USER_ROLE_LEVEL = JoinLevel(id_key="role_id", build=_user_role_from_row)


def _user_join_query() -> Select:
    return (
        select(
            User.id.label("user_id"),
            User.name.label("user_name"),
            User.password_digest,
            User.email,
            User.phone,
            User.public_key,
            Role.id.label("role_id"),
            Role.api_id,
            Role.name.label("role_name"),
            Role.multi,
            Role.ip_lock,
            Role.access_duration,
            Role.refresh_duration,
            Role.access_key,
        )
        .select_from(User)
        .outerjoin(user_roles, user_roles.c.user_id == User.id)
        .outerjoin(Role, Role.id == user_roles.c.role_id)
        .order_by(User.id, Role.id)
    )


class UserService(BaseEntityService[User]):
    """CRUD for users plus user -> role assignment."""

    model = User
    entity_name = "User"
    unique_keys = {"ix_users_name": "name"}

    def _dependent_queries(self, entity_id: UUID) -> dict[str, Select]:
        return {
            "user roles": select(user_roles.c.role_id).where(user_roles.c.user_id == entity_id),
            "tokens": select(Token.access_id).where(Token.user_id == entity_id),
            "user profiles": select(UserProfile.id).where(UserProfile.user_id == entity_id),
        }

    async def create(self, db: AsyncSession, data: UserCreate) -> UUID:
        """
        Create a user with a hashed password and, optionally, an RSA keypair.

        Raises:
            DuplicateKeyError: If the id or name is already taken.
            SecretGenerationError: If keypair generation fails.
        """
        settings = get_settings()
        private_key = public_key = None
        if data.generate_keypair:
            private_key, public_key = generate_keypair(settings.rsa_key_size)

        user = await self._insert(
            db,
            {
                "id": data.id,
                "name": data.name,
                "email": data.email,
                "phone": data.phone,
                "password_digest": hash_password(data.password, settings.bcrypt_rounds),
                "public_key": public_key,
                "private_key": private_key,
            },
        )
        logger.info("Created user %s (%s)", user.id, user.name)
        return user.id

    async def read(self, db: AsyncSession, user_id: UUID) -> UserSchema:
        """
        Read a user with assigned roles.

        Raises:
            EntityNotFoundError: If the user doesn't exist.
        """
        result = await db.execute(_user_join_query().where(User.id == user_id))
        return flatten_one(result.mappings(), self.entity_name, user_id, USER_LEVEL, USER_ROLE_LEVEL)

    async def read_by_name(self, db: AsyncSession, name: str) -> UserSchema:
        result = await db.execute(_user_join_query().where(User.name == name))
        return flatten_one(result.mappings(), self.entity_name, name, USER_LEVEL, USER_ROLE_LEVEL)

    async def list_users(
        self,
        db: AsyncSession,
        role_id: UUID | None = None,
        api_id: UUID | None = None,
        name: str | None = None,
    ) -> list[UserSchema]:
        """
        List users, optionally filtered.

        Args:
            db: Database session.
            role_id: Only users holding this role.
            api_id: Only users holding at least one role of this API.
            name: Case-insensitive substring of the user name.

        Returns:
            Users ordered by id, each with all of their roles (filters select
            users, they do not trim the role lists).
        """
        query = _user_join_query()
        if role_id is not None:
            query = query.where(
                User.id.in_(select(user_roles.c.user_id).where(user_roles.c.role_id == role_id)),
            )
        if api_id is not None:
            query = query.where(
                User.id.in_(
                    select(user_roles.c.user_id)
                    .join(Role, Role.id == user_roles.c.role_id)
                    .where(Role.api_id == api_id),
                ),
            )
        if name is not None:
            query = query.where(User.name.ilike(contains_pattern(name)))
        result = await db.execute(query)
        return flatten_join_rows(result.mappings(), USER_LEVEL, USER_ROLE_LEVEL)

    async def update(self, db: AsyncSession, user_id: UUID, data: UserUpdate) -> None:
        """Update the fields set on data. A new password is re-hashed."""
        values = data.model_dump(exclude_unset=True, exclude_none=True)
        password = values.pop("password", None)
        if password is not None:
            values["password_digest"] = hash_password(password, get_settings().bcrypt_rounds)
        await self._update(db, user_id, values)

    async def authenticate(self, db: AsyncSession, name: str, password: str) -> UserSchema | None:
        """
        Check a login.

        Returns:
            The user with roles if the name exists and the password matches,
            None otherwise.
        """
        try:
            user = await self.read_by_name(db, name)
        except EntityNotFoundError:
            return None
        if not verify_password(password, user.password_digest):
            logger.warning("Password mismatch for user %s", user.id)
            return None
        return user

    # --- Role assignment ---

    async def add_role(self, db: AsyncSession, user_id: UUID, role_id: UUID) -> None:
        """
        Assign a role to a user.

        Raises:
            EntityNotFoundError: If the user or role doesn't exist.
            DuplicateKeyError: If the user already holds the role.
        """
        if not await self.entity_exists(db, user_id):
            raise EntityNotFoundError(self.entity_name, user_id)
        if not await role_service.entity_exists(db, role_id):
            raise EntityNotFoundError("Role", role_id)
        try:
            async with db.begin_nested():
                await db.execute(insert(user_roles).values(user_id=user_id, role_id=role_id))
        except IntegrityError as e:
            if "user_roles_pkey" in str(e):
                raise DuplicateKeyError("UserRole", "role_id", role_id) from e
            raise

    async def has_role(self, db: AsyncSession, user_id: UUID, role_id: UUID) -> bool:
        """Check whether the user holds the role."""
        result = await db.execute(
            select(user_roles.c.role_id).where(
                user_roles.c.user_id == user_id,
                user_roles.c.role_id == role_id,
            ),
        )
        return result.first() is not None

    async def remove_role(self, db: AsyncSession, user_id: UUID, role_id: UUID) -> bool:
        """
        Remove a role from a user.

        Returns:
            True if an assignment was removed, False if there was none.
        """
        result = await db.execute(
            delete(user_roles).where(
                user_roles.c.user_id == user_id,
                user_roles.c.role_id == role_id,
            ),
        )
        return result.rowcount > 0


user_service = UserService()

"""
One-call-per-operation facade over the service layer.

Each AuthRegistry method runs in its own session: it opens one from the
factory, calls the service, commits, and rolls back if the service raises.
Callers that need several operations in one transaction should use the
services directly with a session from db.session.get_async_session().
"""
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.config import get_settings
from schemas.api import (
    ApiCreate,
    ApiSchema,
    ApiUpdate,
    ProcedureCreate,
    ProcedureSchema,
    ProcedureUpdate,
)
from schemas.profile import (
    RoleProfileCreate,
    RoleProfileSchema,
    RoleProfileUpdate,
    UserProfileCreate,
    UserProfileSchema,
    UserProfileUpdate,
)
from schemas.role import RoleCreate, RoleSchema, RoleUpdate
from schemas.token import IssuedToken, TokenSchema
from schemas.user import UserCreate, UserSchema, UserUpdate
from services import access_service, token_service
from services.api_service import api_service, procedure_service
from services.profile_service import role_profile_service, user_profile_service
from services.role_service import role_service
from services.user_service import user_service


class AuthRegistry:
    """Async API for the access registry, one transaction per call."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_url(cls, database_url: str | None = None) -> "AuthRegistry":
        """Build a registry with its own engine (DATABASE_URL from settings by default)."""
        settings = get_settings()
        engine = create_async_engine(
            database_url or settings.database_url,
            echo=settings.db_echo,
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return cls(factory, engine)

    async def close(self) -> None:
        """Dispose the engine created by from_url(). No-op for a borrowed factory."""
        if self._engine is not None:
            await self._engine.dispose()

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncGenerator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # --- Api ---

    async def create_api(self, data: ApiCreate) -> UUID:
        async with self._unit_of_work() as db:
            return await api_service.create(db, data)

    async def read_api(self, api_id: UUID) -> ApiSchema:
        async with self._unit_of_work() as db:
            return await api_service.read(db, api_id)

    async def read_api_by_name(self, name: str) -> ApiSchema:
        async with self._unit_of_work() as db:
            return await api_service.read_by_name(db, name)

    async def list_apis(
        self,
        category: str | None = None,
        name: str | None = None,
        ids: list[UUID] | None = None,
    ) -> list[ApiSchema]:
        async with self._unit_of_work() as db:
            return await api_service.list_apis(db, category=category, name=name, ids=ids)

    async def update_api(self, api_id: UUID, data: ApiUpdate) -> None:
        async with self._unit_of_work() as db:
            await api_service.update(db, api_id, data)

    async def delete_api(self, api_id: UUID) -> None:
        async with self._unit_of_work() as db:
            await api_service.delete(db, api_id)

    # --- Procedure ---

    async def create_procedure(self, data: ProcedureCreate) -> UUID:
        async with self._unit_of_work() as db:
            return await procedure_service.create(db, data)

    async def read_procedure(self, procedure_id: UUID) -> ProcedureSchema:
        async with self._unit_of_work() as db:
            return await procedure_service.read(db, procedure_id)

    async def read_procedure_by_name(self, api_id: UUID, name: str) -> ProcedureSchema:
        async with self._unit_of_work() as db:
            return await procedure_service.read_by_name(db, api_id, name)

    async def list_procedures(self, api_id: UUID) -> list[ProcedureSchema]:
        async with self._unit_of_work() as db:
            return await procedure_service.list_by_api(db, api_id)

    async def update_procedure(self, procedure_id: UUID, data: ProcedureUpdate) -> None:
        async with self._unit_of_work() as db:
            await procedure_service.update(db, procedure_id, data)

    async def delete_procedure(self, procedure_id: UUID) -> None:
        async with self._unit_of_work() as db:
            await procedure_service.delete(db, procedure_id)

    # --- Role ---

    async def create_role(self, data: RoleCreate) -> UUID:
        async with self._unit_of_work() as db:
            return await role_service.create(db, data)

    async def read_role(self, role_id: UUID) -> RoleSchema:
        async with self._unit_of_work() as db:
            return await role_service.read(db, role_id)

    async def read_role_by_name(self, api_id: UUID, name: str) -> RoleSchema:
        async with self._unit_of_work() as db:
            return await role_service.read_by_name(db, api_id, name)

    async def list_roles(
        self,
        api_id: UUID | None = None,
        user_id: UUID | None = None,
        name: str | None = None,
    ) -> list[RoleSchema]:
        async with self._unit_of_work() as db:
            return await role_service.list_roles(db, api_id=api_id, user_id=user_id, name=name)

    async def update_role(self, role_id: UUID, data: RoleUpdate) -> None:
        async with self._unit_of_work() as db:
            await role_service.update(db, role_id, data)

    async def delete_role(self, role_id: UUID) -> None:
        async with self._unit_of_work() as db:
            await role_service.delete(db, role_id)

    # --- Grants ---

    async def add_role_access(self, role_id: UUID, procedure_id: UUID) -> None:
        async with self._unit_of_work() as db:
            await access_service.grant(db, role_id, procedure_id)

    async def remove_role_access(self, role_id: UUID, procedure_id: UUID) -> bool:
        async with self._unit_of_work() as db:
            return await access_service.revoke(db, role_id, procedure_id)

    async def is_authorized(self, user_id: UUID, procedure_id: UUID) -> bool:
        async with self._unit_of_work() as db:
            return await access_service.is_authorized(db, user_id, procedure_id)

    async def is_authorized_by_name(
        self,
        user_id: UUID,
        api_name: str,
        procedure_name: str,
    ) -> bool:
        async with self._unit_of_work() as db:
            return await access_service.is_authorized_by_name(
                db, user_id, api_name, procedure_name,
            )

    async def granted_procedures(self, role_id: UUID) -> set[UUID]:
        async with self._unit_of_work() as db:
            return await access_service.granted_procedures(db, role_id)

    async def user_procedures(self, user_id: UUID, api_id: UUID | None = None) -> set[UUID]:
        async with self._unit_of_work() as db:
            return await access_service.user_procedures(db, user_id, api_id=api_id)

    # --- User ---

    async def create_user(self, data: UserCreate) -> UUID:
        async with self._unit_of_work() as db:
            return await user_service.create(db, data)

    async def read_user(self, user_id: UUID) -> UserSchema:
        async with self._unit_of_work() as db:
            return await user_service.read(db, user_id)

    async def read_user_by_name(self, name: str) -> UserSchema:
        async with self._unit_of_work() as db:
            return await user_service.read_by_name(db, name)

    async def list_users(
        self,
        role_id: UUID | None = None,
        api_id: UUID | None = None,
        name: str | None = None,
    ) -> list[UserSchema]:
        async with self._unit_of_work() as db:
            return await user_service.list_users(db, role_id=role_id, api_id=api_id, name=name)

    async def update_user(self, user_id: UUID, data: UserUpdate) -> None:
        async with self._unit_of_work() as db:
            await user_service.update(db, user_id, data)

    async def delete_user(self, user_id: UUID) -> None:
        async with self._unit_of_work() as db:
            await user_service.delete(db, user_id)

    async def authenticate_user(self, name: str, password: str) -> UserSchema | None:
        async with self._unit_of_work() as db:
            return await user_service.authenticate(db, name, password)

    async def add_user_role(self, user_id: UUID, role_id: UUID) -> None:
        async with self._unit_of_work() as db:
            await user_service.add_role(db, user_id, role_id)

    async def remove_user_role(self, user_id: UUID, role_id: UUID) -> bool:
        async with self._unit_of_work() as db:
            return await user_service.remove_role(db, user_id, role_id)

    # --- Token ---

    async def login(
        self,
        user_id: UUID,
        role_id: UUID,
        ip: bytes = b"",
        number: int = 1,
    ) -> list[IssuedToken]:
        """
        Issue sessions under the policy of one of the user's roles.

        The expire time is computed from the role's refresh duration.

        Raises:
            EntityNotFoundError: If the user does not hold the role.
        """
        async with self._unit_of_work() as db:
            policy = await token_service.session_policy(db, [user_id], role_id)
            return await token_service.create_auth_token(
                db, user_id, policy.refresh_expiry(), ip, number=number, policy=policy,
            )

    async def create_access_token(
        self,
        user_id: UUID,
        auth_token: str,
        expire: datetime,
        ip: bytes = b"",
    ) -> IssuedToken:
        async with self._unit_of_work() as db:
            return await token_service.create_access_token(db, user_id, auth_token, expire, ip)

    async def create_auth_token(
        self,
        user_id: UUID,
        expire: datetime,
        ip: bytes = b"",
        number: int = 1,
    ) -> list[IssuedToken]:
        async with self._unit_of_work() as db:
            return await token_service.create_auth_token(db, user_id, expire, ip, number=number)

    async def read_access_token(self, access_id: int) -> TokenSchema:
        async with self._unit_of_work() as db:
            return await token_service.read_access_token(db, access_id)

    async def read_refresh_token(self, refresh_token: str) -> TokenSchema:
        async with self._unit_of_work() as db:
            return await token_service.read_refresh_token(db, refresh_token)

    async def list_auth_token(self, auth_token: str) -> list[TokenSchema]:
        async with self._unit_of_work() as db:
            return await token_service.list_auth_token(db, auth_token)

    async def list_token_by_user(self, user_id: UUID) -> list[TokenSchema]:
        async with self._unit_of_work() as db:
            return await token_service.list_token_by_user(db, user_id)

    async def validate_token(
        self,
        access_id: int,
        ip: bytes | None = None,
        role_id: UUID | None = None,
    ) -> TokenSchema:
        """Check a session under the owner's role policy (role_id, or all their roles)."""
        async with self._unit_of_work() as db:
            token = await token_service.read_access_token(db, access_id)
            policy = await token_service.session_policy(db, [token.user_id], role_id)
            return await token_service.validate_token(db, access_id, ip=ip, policy=policy)

    async def update_access_token(
        self,
        access_id: int,
        expire: datetime | None = None,
        ip: bytes | None = None,
        auth_token: str | None = None,
        role_id: UUID | None = None,
    ) -> IssuedToken:
        async with self._unit_of_work() as db:
            token = await token_service.read_access_token(db, access_id)
            policy = await token_service.session_policy(db, [token.user_id], role_id)
            return await token_service.rotate_access_token(
                db, access_id, expire=expire, ip=ip, auth_token=auth_token, policy=policy,
            )

    async def update_auth_token(
        self,
        auth_token: str,
        expire: datetime | None = None,
        ip: bytes | None = None,
        new_auth_token: str | None = None,
        role_id: UUID | None = None,
    ) -> list[IssuedToken]:
        async with self._unit_of_work() as db:
            tokens = await token_service.list_auth_token(db, auth_token)
            policy = await token_service.session_policy(db, [t.user_id for t in tokens], role_id)
            return await token_service.rotate_auth_token(
                db, auth_token, expire=expire, ip=ip, policy=policy, new_auth_token=new_auth_token,
            )

    async def refresh_session(
        self,
        refresh_token: str,
        expire: datetime | None = None,
        ip: bytes | None = None,
        role_id: UUID | None = None,
    ) -> IssuedToken:
        async with self._unit_of_work() as db:
            token = await token_service.read_refresh_token(db, refresh_token)
            policy = await token_service.session_policy(db, [token.user_id], role_id)
            return await token_service.refresh_session(
                db, refresh_token, expire=expire, ip=ip, policy=policy,
            )

    async def delete_access_token(self, access_id: int) -> int:
        async with self._unit_of_work() as db:
            return await token_service.revoke_access_token(db, access_id)

    async def delete_access_tokens(self, access_ids: Sequence[int]) -> int:
        async with self._unit_of_work() as db:
            return await token_service.revoke_access_tokens(db, access_ids)

    async def delete_auth_token(self, auth_token: str) -> int:
        async with self._unit_of_work() as db:
            return await token_service.revoke_auth_token(db, auth_token)

    async def delete_token_by_refresh(self, refresh_token: str) -> int:
        async with self._unit_of_work() as db:
            return await token_service.revoke_refresh_token(db, refresh_token)

    async def delete_token_by_user(self, user_id: UUID) -> int:
        async with self._unit_of_work() as db:
            return await token_service.revoke_user_tokens(db, user_id)

    # --- Profile ---

    async def create_role_profile(self, data: RoleProfileCreate) -> int:
        async with self._unit_of_work() as db:
            return await role_profile_service.create(db, data)

    async def read_role_profile(self, profile_id: int) -> RoleProfileSchema:
        async with self._unit_of_work() as db:
            return await role_profile_service.read(db, profile_id)

    async def list_role_profiles(self, role_id: UUID) -> list[RoleProfileSchema]:
        async with self._unit_of_work() as db:
            return await role_profile_service.list_by_role(db, role_id)

    async def update_role_profile(self, profile_id: int, data: RoleProfileUpdate) -> None:
        async with self._unit_of_work() as db:
            await role_profile_service.update(db, profile_id, data)

    async def delete_role_profile(self, profile_id: int) -> None:
        async with self._unit_of_work() as db:
            await role_profile_service.delete(db, profile_id)

    async def create_user_profile(self, user_id: UUID, name: str, value: Any) -> int:
        async with self._unit_of_work() as db:
            return await user_profile_service.create(
                db, UserProfileCreate(user_id=user_id, name=name, value=value),
            )

    async def read_user_profile(self, profile_id: int) -> UserProfileSchema:
        async with self._unit_of_work() as db:
            return await user_profile_service.read(db, profile_id)

    async def list_user_profiles(
        self,
        user_id: UUID,
        name: str | None = None,
    ) -> list[UserProfileSchema]:
        async with self._unit_of_work() as db:
            return await user_profile_service.list_by_user(db, user_id, name=name)

    async def update_user_profile(self, profile_id: int, data: UserProfileUpdate) -> None:
        async with self._unit_of_work() as db:
            await user_profile_service.update(db, profile_id, data)

    async def delete_user_profile(self, profile_id: int) -> None:
        async with self._unit_of_work() as db:
            await user_profile_service.delete(db, profile_id)

    async def swap_user_profile(
        self,
        user_id: UUID,
        name: str,
        order_1: int,
        order_2: int,
    ) -> None:
        async with self._unit_of_work() as db:
            await user_profile_service.swap(db, user_id, name, order_1, order_2)

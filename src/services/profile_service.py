"""
Service layer for role and user profiles.

A role profile declares a typed field (e.g. "phone" as a string, any number of
values). A user profile row holds one value of such a field; values sharing
a name are ranked by order, starting at 0.
"""
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.profile import ProfileValueType, RoleProfile, UserProfile
from schemas.profile import (
    RoleProfileCreate,
    RoleProfileSchema,
    RoleProfileUpdate,
    UserProfileCreate,
    UserProfileSchema,
    UserProfileUpdate,
)
from services.base_entity_service import BaseEntityService
from services.exceptions import EntityNotFoundError
from services.role_service import role_service
from services.user_service import user_service

logger = logging.getLogger(__name__)

# Temporary order used while swapping two values under the unique constraint
_SWAP_ORDER = -1


def infer_value_type(value: Any) -> ProfileValueType:
    """
    Map a JSON-compatible Python value to its profile type tag.

    Raises:
        ValueError: If the value cannot be stored as JSON.
    """
    # bool is a subclass of int, so it must be checked first
    if value is None:
        return ProfileValueType.NULL
    if isinstance(value, bool):
        return ProfileValueType.BOOL
    if isinstance(value, int):
        return ProfileValueType.INT
    if isinstance(value, float):
        return ProfileValueType.FLOAT
    if isinstance(value, str):
        return ProfileValueType.STRING
    if isinstance(value, (list, tuple)):
        return ProfileValueType.LIST
    if isinstance(value, dict):
        return ProfileValueType.OBJECT
    raise ValueError(f"Unsupported profile value type: {type(value).__name__}")


class RoleProfileService(BaseEntityService[RoleProfile]):
    """CRUD for the profile fields a role declares."""

    model = RoleProfile
    entity_name = "RoleProfile"
    unique_keys = {"uq_role_profiles_role_id_name": "name"}

    def _dependent_queries(self, entity_id: int) -> dict[str, Select]:
        return {}

    async def create(self, db: AsyncSession, data: RoleProfileCreate) -> int:
        """
        Declare a profile field on a role.

        Raises:
            EntityNotFoundError: If the role doesn't exist.
            DuplicateKeyError: If the role already declares a field with that name.
        """
        if not await role_service.entity_exists(db, data.role_id):
            raise EntityNotFoundError("Role", data.role_id)
        profile = await self._insert(db, data.model_dump())
        return profile.id

    async def read(self, db: AsyncSession, profile_id: int) -> RoleProfileSchema:
        return RoleProfileSchema.model_validate(await self.get_model(db, profile_id))

    async def list_by_role(self, db: AsyncSession, role_id: UUID) -> list[RoleProfileSchema]:
        result = await db.execute(
            select(RoleProfile).where(RoleProfile.role_id == role_id).order_by(RoleProfile.id),
        )
        return [RoleProfileSchema.model_validate(p) for p in result.scalars().all()]

    async def update(self, db: AsyncSession, profile_id: int, data: RoleProfileUpdate) -> None:
        await self._update(db, profile_id, data.model_dump(exclude_unset=True, exclude_none=True))


class UserProfileService(BaseEntityService[UserProfile]):
    """CRUD for user profile values, including reordering values of one field."""

    model = UserProfile
    entity_name = "UserProfile"
    unique_keys = {"uq_user_profiles_user_id_name_order": "order"}

    def _dependent_queries(self, entity_id: int) -> dict[str, Select]:
        return {}

    async def _next_order(self, db: AsyncSession, user_id: UUID, name: str) -> int:
        result = await db.execute(
            select(func.max(UserProfile.order)).where(
                UserProfile.user_id == user_id,
                UserProfile.name == name,
            ),
        )
        current = result.scalar()
        return 0 if current is None else current + 1

    async def create(self, db: AsyncSession, data: UserProfileCreate) -> int:
        """
        Append a value to a user's profile field.

        The new row's order is one past the highest existing order for the
        same user and name, or 0 for the first value.

        Raises:
            EntityNotFoundError: If the user doesn't exist.
            ValueError: If the value is not JSON-compatible.
            DuplicateKeyError: If a concurrent create took the same order.
        """
        if not await user_service.entity_exists(db, data.user_id):
            raise EntityNotFoundError("User", data.user_id)
        value_type = infer_value_type(data.value)
        order = await self._next_order(db, data.user_id, data.name)
        profile = await self._insert(
            db,
            {
                "user_id": data.user_id,
                "name": data.name,
                "order": order,
                "value": data.value,
                "value_type": value_type,
            },
        )
        return profile.id

    async def read(self, db: AsyncSession, profile_id: int) -> UserProfileSchema:
        return UserProfileSchema.model_validate(await self.get_model(db, profile_id))

    async def list_by_user(
        self,
        db: AsyncSession,
        user_id: UUID,
        name: str | None = None,
    ) -> list[UserProfileSchema]:
        """List a user's profile values ordered by field name then order."""
        query = select(UserProfile).where(UserProfile.user_id == user_id)
        if name is not None:
            query = query.where(UserProfile.name == name)
        result = await db.execute(query.order_by(UserProfile.name, UserProfile.order))
        return [UserProfileSchema.model_validate(p) for p in result.scalars().all()]

    async def update(self, db: AsyncSession, profile_id: int, data: UserProfileUpdate) -> None:
        """
        Rename a value's field or replace the value.

        The value is only written when it was explicitly set on data, so a
        value can be cleared to None. Its type tag follows the new value.
        """
        values: dict[str, Any] = {}
        if data.name is not None:
            values["name"] = data.name
        if "value" in data.model_fields_set:
            values["value"] = data.value
            values["value_type"] = infer_value_type(data.value)
        await self._update(db, profile_id, values)

    async def swap(
        self,
        db: AsyncSession,
        user_id: UUID,
        name: str,
        order_1: int,
        order_2: int,
    ) -> None:
        """
        Exchange the order of two values of one field.

        Raises:
            EntityNotFoundError: If either order has no value.
        """
        if order_1 == order_2:
            return
        key = (UserProfile.user_id == user_id, UserProfile.name == name)
        result = await db.execute(
            select(UserProfile.order).where(*key, UserProfile.order.in_([order_1, order_2])),
        )
        found = set(result.scalars())
        for order in (order_1, order_2):
            if order not in found:
                raise EntityNotFoundError(self.entity_name, f"{user_id}/{name}/{order}")

        async with db.begin_nested():
            for old, new in ((order_1, _SWAP_ORDER), (order_2, order_1), (_SWAP_ORDER, order_2)):
                await db.execute(
                    update(UserProfile)
                    .where(*key, UserProfile.order == old)
                    .values(order=new)
                    .execution_options(synchronize_session="fetch"),
                )
        logger.info("Swapped profile %s orders %d and %d for user %s", name, order_1, order_2, user_id)


role_profile_service = RoleProfileService()
user_profile_service = UserProfileService()

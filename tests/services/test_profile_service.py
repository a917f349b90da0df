"""Tests for role and user profile service layer functionality."""
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from uuid6 import uuid7

from models.profile import ProfileMode, ProfileValueType
from schemas.profile import (
    RoleProfileCreate,
    RoleProfileUpdate,
    UserProfileCreate,
    UserProfileUpdate,
)
from services.exceptions import DuplicateKeyError, EntityNotFoundError
from services.profile_service import (
    infer_value_type,
    role_profile_service,
    user_profile_service,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, ProfileValueType.NULL),
        (True, ProfileValueType.BOOL),
        (3, ProfileValueType.INT),
        (2.5, ProfileValueType.FLOAT),
        ("+62", ProfileValueType.STRING),
        ([1, 2], ProfileValueType.LIST),
        ({"city": "Bandung"}, ProfileValueType.OBJECT),
    ],
)
def test__infer_value_type(value: object, expected: ProfileValueType) -> None:
    assert infer_value_type(value) == expected


def test__infer_value_type__rejects_non_json_values() -> None:
    with pytest.raises(ValueError, match="bytes"):
        infer_value_type(b"raw")


# =============================================================================
# RoleProfileService Tests
# =============================================================================


async def test__create_role_profile__and_read(db_session: AsyncSession, role_id: UUID) -> None:
    profile_id = await role_profile_service.create(
        db_session,
        RoleProfileCreate(
            role_id=role_id, name="phone", value_type=ProfileValueType.STRING,
            mode=ProfileMode.MULTIPLE_OPTIONAL,
        ),
    )

    profile = await role_profile_service.read(db_session, profile_id)
    assert profile.role_id == role_id
    assert profile.name == "phone"
    assert profile.value_type == ProfileValueType.STRING
    assert profile.mode == ProfileMode.MULTIPLE_OPTIONAL


async def test__create_role_profile__unknown_role_raises(db_session: AsyncSession) -> None:
    with pytest.raises(EntityNotFoundError) as exc_info:
        await role_profile_service.create(
            db_session,
            RoleProfileCreate(role_id=uuid7(), name="phone", value_type=ProfileValueType.STRING),
        )
    assert exc_info.value.entity == "Role"


async def test__create_role_profile__duplicate_name_raises(
    db_session: AsyncSession,
    role_id: UUID,
) -> None:
    data = RoleProfileCreate(role_id=role_id, name="phone", value_type=ProfileValueType.STRING)
    await role_profile_service.create(db_session, data)

    with pytest.raises(DuplicateKeyError):
        await role_profile_service.create(db_session, data)


async def test__role_profile__list_update_delete(db_session: AsyncSession, role_id: UUID) -> None:
    phone_id = await role_profile_service.create(
        db_session,
        RoleProfileCreate(role_id=role_id, name="phone", value_type=ProfileValueType.STRING),
    )
    age_id = await role_profile_service.create(
        db_session,
        RoleProfileCreate(role_id=role_id, name="age", value_type=ProfileValueType.INT),
    )

    await role_profile_service.update(
        db_session, age_id, RoleProfileUpdate(mode=ProfileMode.SINGLE_REQUIRED),
    )
    profiles = await role_profile_service.list_by_role(db_session, role_id)
    assert [p.name for p in profiles] == ["phone", "age"]
    assert profiles[1].mode == ProfileMode.SINGLE_REQUIRED
    assert profiles[1].value_type == ProfileValueType.INT

    await role_profile_service.delete(db_session, phone_id)
    assert [p.id for p in await role_profile_service.list_by_role(db_session, role_id)] == [age_id]


# =============================================================================
# UserProfileService Tests
# =============================================================================


async def test__create_user_profile__orders_values_per_name(
    db_session: AsyncSession,
    user_id: UUID,
) -> None:
    first = await user_profile_service.create(
        db_session, UserProfileCreate(user_id=user_id, name="phone", value="+62 1"),
    )
    second = await user_profile_service.create(
        db_session, UserProfileCreate(user_id=user_id, name="phone", value="+62 2"),
    )
    other = await user_profile_service.create(
        db_session, UserProfileCreate(user_id=user_id, name="address", value={"city": "Bandung"}),
    )

    assert (await user_profile_service.read(db_session, first)).order == 0
    assert (await user_profile_service.read(db_session, second)).order == 1
    address = await user_profile_service.read(db_session, other)
    assert address.order == 0
    assert address.value == {"city": "Bandung"}
    assert address.value_type == ProfileValueType.OBJECT


async def test__create_user_profile__unknown_user_raises(db_session: AsyncSession) -> None:
    with pytest.raises(EntityNotFoundError) as exc_info:
        await user_profile_service.create(
            db_session, UserProfileCreate(user_id=uuid7(), name="phone", value="+62"),
        )
    assert exc_info.value.entity == "User"


async def test__list_user_profiles__ordered_and_filtered(
    db_session: AsyncSession,
    user_id: UUID,
) -> None:
    for value in ("+62 1", "+62 2"):
        await user_profile_service.create(
            db_session, UserProfileCreate(user_id=user_id, name="phone", value=value),
        )
    await user_profile_service.create(
        db_session, UserProfileCreate(user_id=user_id, name="age", value=30),
    )

    profiles = await user_profile_service.list_by_user(db_session, user_id)
    assert [(p.name, p.order) for p in profiles] == [("age", 0), ("phone", 0), ("phone", 1)]

    phones = await user_profile_service.list_by_user(db_session, user_id, name="phone")
    assert [p.value for p in phones] == ["+62 1", "+62 2"]


async def test__update_user_profile__value_and_type_follow_new_value(
    db_session: AsyncSession,
    user_id: UUID,
) -> None:
    profile_id = await user_profile_service.create(
        db_session, UserProfileCreate(user_id=user_id, name="age", value="thirty"),
    )

    await user_profile_service.update(db_session, profile_id, UserProfileUpdate(value=30))

    profile = await user_profile_service.read(db_session, profile_id)
    assert profile.value == 30
    assert profile.value_type == ProfileValueType.INT


async def test__update_user_profile__name_only_keeps_value(
    db_session: AsyncSession,
    user_id: UUID,
) -> None:
    profile_id = await user_profile_service.create(
        db_session, UserProfileCreate(user_id=user_id, name="mobile", value="+62"),
    )

    await user_profile_service.update(db_session, profile_id, UserProfileUpdate(name="phone"))

    profile = await user_profile_service.read(db_session, profile_id)
    assert profile.name == "phone"
    assert profile.value == "+62"


async def test__update_user_profile__explicit_none_clears_value(
    db_session: AsyncSession,
    user_id: UUID,
) -> None:
    profile_id = await user_profile_service.create(
        db_session, UserProfileCreate(user_id=user_id, name="phone", value="+62"),
    )

    await user_profile_service.update(db_session, profile_id, UserProfileUpdate(value=None))

    profile = await user_profile_service.read(db_session, profile_id)
    assert profile.value is None
    assert profile.value_type == ProfileValueType.NULL


async def test__swap_user_profile__exchanges_orders(db_session: AsyncSession, user_id: UUID) -> None:
    first = await user_profile_service.create(
        db_session, UserProfileCreate(user_id=user_id, name="phone", value="+62 1"),
    )
    second = await user_profile_service.create(
        db_session, UserProfileCreate(user_id=user_id, name="phone", value="+62 2"),
    )

    await user_profile_service.swap(db_session, user_id, "phone", 0, 1)

    phones = await user_profile_service.list_by_user(db_session, user_id, name="phone")
    assert [p.id for p in phones] == [second, first]
    assert [p.value for p in phones] == ["+62 2", "+62 1"]


async def test__swap_user_profile__missing_order_raises(
    db_session: AsyncSession,
    user_id: UUID,
) -> None:
    await user_profile_service.create(
        db_session, UserProfileCreate(user_id=user_id, name="phone", value="+62"),
    )

    with pytest.raises(EntityNotFoundError):
        await user_profile_service.swap(db_session, user_id, "phone", 0, 5)


async def test__delete_user_profile(db_session: AsyncSession, user_id: UUID) -> None:
    profile_id = await user_profile_service.create(
        db_session, UserProfileCreate(user_id=user_id, name="phone", value="+62"),
    )

    await user_profile_service.delete(db_session, profile_id)

    with pytest.raises(EntityNotFoundError):
        await user_profile_service.read(db_session, profile_id)

"""Pydantic schemas for role and user profiles."""
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from models.profile import ProfileMode, ProfileValueType


class RoleProfileCreate(BaseModel):
    role_id: UUID
    name: str = Field(..., min_length=1, max_length=128)
    value_type: ProfileValueType
    mode: ProfileMode = ProfileMode.SINGLE_OPTIONAL


class RoleProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    value_type: ProfileValueType | None = None
    mode: ProfileMode | None = None


class RoleProfileSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    role_id: UUID
    name: str
    value_type: ProfileValueType
    mode: ProfileMode


class UserProfileSchema(BaseModel):
    """One stored value of a user profile field; order ranks values sharing a name."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: UUID
    name: str
    order: int
    value: Any
    value_type: ProfileValueType


class UserProfileCreate(BaseModel):
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=128)
    value: Any = None


class UserProfileUpdate(BaseModel):
    """Set value explicitly (even to None) to change it; omit it to keep the stored one."""

    name: str | None = Field(default=None, min_length=1, max_length=128)
    value: Any = None

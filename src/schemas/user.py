"""Pydantic schemas for users and their role assignments."""
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UserCreate(BaseModel):
    """Schema for creating a user."""

    id: UUID | None = None
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(default="", max_length=255)
    phone: str = Field(default="", max_length=64)
    password: str = Field(..., min_length=1)
    generate_keypair: bool = False


class UserUpdate(BaseModel):
    """Partial update of a user. A new password is re-hashed."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=64)
    password: str | None = Field(default=None, min_length=1)


class UserRoleSchema(BaseModel):
    """
    A role assigned to a user, flattened with the session policy the gateway
    needs at login and the access key shared with the role's API.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    api_id: UUID
    name: str
    multi: bool
    ip_lock: bool
    access_duration: int
    refresh_duration: int
    access_key: bytes


class UserSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    password_digest: str
    email: str
    phone: str
    public_key: str | None = None
    roles: list[UserRoleSchema] = Field(default_factory=list)

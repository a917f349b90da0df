"""Pydantic schemas for roles."""
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class RoleCreate(BaseModel):
    """Schema for creating a role under an API."""

    id: UUID | None = None
    api_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    multi: bool = False
    ip_lock: bool = False
    access_duration: int = Field(..., ge=1, description="Access token lifetime in seconds")
    refresh_duration: int = Field(..., ge=1, description="Refresh token lifetime in seconds")
    access_key: bytes | None = None


class RoleUpdate(BaseModel):
    """Partial update of a role."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    multi: bool | None = None
    ip_lock: bool | None = None
    access_duration: int | None = Field(default=None, ge=1)
    refresh_duration: int | None = Field(default=None, ge=1)
    access_key: bytes | None = None


class RoleSchema(BaseModel):
    """A role with the ids of the procedures it has been granted."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    api_id: UUID
    name: str
    multi: bool
    ip_lock: bool
    access_duration: int
    refresh_duration: int
    access_key: bytes
    procedures: list[UUID] = Field(default_factory=list)

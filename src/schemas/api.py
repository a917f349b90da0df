"""Pydantic schemas for APIs and their procedures."""
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ApiCreate(BaseModel):
    """Schema for registering a new API."""

    id: UUID | None = Field(
        default=None,
        description="Caller-chosen id. Generated (UUIDv7) when omitted.",
    )
    name: str = Field(..., min_length=1, max_length=255)
    address: str = Field(..., min_length=1, max_length=255)
    category: str = Field(default="", max_length=64)
    description: str = ""
    password: str = Field(..., min_length=1, description="Plaintext, stored as a digest")
    access_key: bytes | None = Field(
        default=None,
        description="Shared signing key. Generated when omitted.",
    )
    generate_keypair: bool = False


class ApiUpdate(BaseModel):
    """Partial update: only fields explicitly set are written."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    address: str | None = Field(default=None, min_length=1, max_length=255)
    category: str | None = Field(default=None, max_length=64)
    description: str | None = None
    password: str | None = Field(default=None, min_length=1)
    access_key: bytes | None = None


class ProcedureCreate(BaseModel):
    """Schema for adding a procedure to an API."""

    id: UUID | None = None
    api_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""


class ProcedureUpdate(BaseModel):
    """Partial update of a procedure. The owning API cannot change."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None


class ProcedureSchema(BaseModel):
    """A procedure with the names of the roles allowed to invoke it."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    api_id: UUID
    name: str
    description: str
    roles: list[str] = Field(default_factory=list)


class ApiSchema(BaseModel):
    """An API with its procedures, as rebuilt from the api/procedure/role join."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    address: str
    category: str
    description: str
    password_digest: str
    access_key: bytes
    public_key: str | None = None
    procedures: list[ProcedureSchema] = Field(default_factory=list)

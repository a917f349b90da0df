"""Pydantic schemas for session tokens."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class TokenSchema(BaseModel):
    """A stored token row. Expired rows are returned as-is; callers compare expire."""

    model_config = ConfigDict(from_attributes=True)

    access_id: int
    user_id: UUID
    refresh_token: str
    auth_token: str
    expire: datetime
    ip: bytes


class IssuedToken(BaseModel):
    """
    Credentials handed back once at issue or rotation time.

    refresh_token is the only copy of the new secret; auth_token is the
    login label shared by the whole batch.
    """

    access_id: int
    refresh_token: str
    auth_token: str

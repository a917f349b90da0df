"""User model and the user_roles assignment table."""
from sqlalchemy import Column, ForeignKey, Index, String, Table, Text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin, UUIDv7Mixin


# Junction table for user -> role assignments
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column(
        "user_id",
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        primary_key=True,
    ),
    Column(
        "role_id",
        PG_UUID(as_uuid=True),
        ForeignKey("roles.id", ondelete="RESTRICT"),
        primary_key=True,
    ),
    Index("ix_user_roles_role_id", "role_id"),
)


class User(Base, UUIDv7Mixin, TimestampMixin):
    """A gateway user. Holds roles through user_roles and sessions through tokens."""

    __tablename__ = "users"

    # id provided by UUIDv7Mixin
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_digest: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), default="")
    phone: Mapped[str] = mapped_column(String(64), default="")
    public_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    private_key: Mapped[str | None] = mapped_column(Text, nullable=True)

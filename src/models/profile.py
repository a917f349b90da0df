"""Role and user profile models: typed per-user attributes declared by roles."""
from enum import StrEnum
from typing import Any
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, SmallInteger, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class ProfileValueType(StrEnum):
    """Type tag stored next to a profile value."""

    NULL = "null"
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    LIST = "list"
    OBJECT = "object"


class ProfileMode(StrEnum):
    """How many values of a declared profile field a user may (or must) hold."""

    SINGLE_OPTIONAL = "single_optional"
    SINGLE_REQUIRED = "single_required"
    MULTIPLE_OPTIONAL = "multiple_optional"
    MULTIPLE_REQUIRED = "multiple_required"


class RoleProfile(Base):
    """A profile field declared by a role, e.g. 'name' as a required string."""

    __tablename__ = "role_profiles"
    __table_args__ = (
        UniqueConstraint("role_id", "name", name="uq_role_profiles_role_id_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    role_id: Mapped[UUID] = mapped_column(
        ForeignKey("roles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(128))
    value_type: Mapped[str] = mapped_column(String(16))
    mode: Mapped[str] = mapped_column(String(32), default=ProfileMode.SINGLE_OPTIONAL)


class UserProfile(Base):
    """
    One value of a user profile field.

    Multi-valued fields are stored as several rows with the same name,
    ordered by the order column (0, 1, 2, ...).
    """

    __tablename__ = "user_profiles"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "name", "order", name="uq_user_profiles_user_id_name_order",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(128))
    order: Mapped[int] = mapped_column(SmallInteger, default=0)
    value: Mapped[Any] = mapped_column(JSONB, nullable=True)
    value_type: Mapped[str] = mapped_column(String(16))

"""Role model and the role_access grant table."""
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin, UUIDv7Mixin

if TYPE_CHECKING:
    from models.api import Api


# Junction table for role -> procedure grants. RESTRICT on both ends: a grant
# must be revoked before either side can be deleted.
role_access = Table(
    "role_access",
    Base.metadata,
    Column(
        "role_id",
        PG_UUID(as_uuid=True),
        ForeignKey("roles.id", ondelete="RESTRICT"),
        primary_key=True,
    ),
    Column(
        "procedure_id",
        PG_UUID(as_uuid=True),
        ForeignKey("api_procedures.id", ondelete="RESTRICT"),
        primary_key=True,
    ),
    Index("ix_role_access_procedure_id", "procedure_id"),
)


class Role(Base, UUIDv7Mixin, TimestampMixin):
    """
    A named permission bundle scoped to one Api.

    multi allows more than one concurrent session per user; ip_lock binds a
    session to the address it was issued for. Durations are in seconds.
    """

    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("api_id", "name", name="uq_roles_api_id_name"),
    )

    # id provided by UUIDv7Mixin
    api_id: Mapped[UUID] = mapped_column(
        ForeignKey("apis.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255))
    multi: Mapped[bool] = mapped_column(Boolean, default=False)
    ip_lock: Mapped[bool] = mapped_column(Boolean, default=False)
    access_duration: Mapped[int] = mapped_column(Integer)
    refresh_duration: Mapped[int] = mapped_column(Integer)
    access_key: Mapped[bytes] = mapped_column(LargeBinary)

    api: Mapped["Api"] = relationship(back_populates="roles")

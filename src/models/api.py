"""Api and Procedure models: registered services and their invokable operations."""
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, LargeBinary, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin, UUIDv7Mixin

if TYPE_CHECKING:
    from models.role import Role


class Api(Base, UUIDv7Mixin, TimestampMixin):
    """
    A registered remote API (tenant) whose procedures are access-controlled.

    The access_key is shared with the API process so it can validate request
    signatures; the optional keypair is used by APIs that sign with RSA instead.
    """

    __tablename__ = "apis"

    # id provided by UUIDv7Mixin
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    address: Mapped[str] = mapped_column(String(255))
    category: Mapped[str] = mapped_column(
        String(64),
        default="",
        comment="Free-form grouping, e.g. 'RESOURCE' or 'APPLICATION'",
    )
    description: Mapped[str] = mapped_column(Text, default="")
    password_digest: Mapped[str] = mapped_column(String(255))
    access_key: Mapped[bytes] = mapped_column(LargeBinary)
    public_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    private_key: Mapped[str | None] = mapped_column(Text, nullable=True)

    procedures: Mapped[list["Procedure"]] = relationship(back_populates="api")
    roles: Mapped[list["Role"]] = relationship(back_populates="api")


class Procedure(Base, UUIDv7Mixin, TimestampMixin):
    """One invokable operation of an Api."""

    __tablename__ = "api_procedures"
    __table_args__ = (
        UniqueConstraint("api_id", "name", name="uq_api_procedures_api_id_name"),
    )

    # id provided by UUIDv7Mixin
    api_id: Mapped[UUID] = mapped_column(
        ForeignKey("apis.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="")

    api: Mapped["Api"] = relationship(back_populates="procedures")

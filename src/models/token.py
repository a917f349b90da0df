"""Token model for user sessions (access/refresh pairs grouped by auth token)."""
from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Integer, LargeBinary, Sequence, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base

# Largest value a signed 32-bit access id can take
ACCESS_ID_MAX = 2**31 - 1

# NO CYCLE: nextval() errors at the maximum instead of wrapping onto live ids
access_id_seq = Sequence(
    "tokens_access_id_seq",
    start=1,
    minvalue=1,
    maxvalue=ACCESS_ID_MAX,
    cycle=False,
    metadata=Base.metadata,
)


class Token(Base):
    """
    One session credential.

    access_id identifies the short-lived access token. refresh_token is the
    opaque secret exchanged for a new access token and rotates on every use.
    auth_token is the login label shared by every row issued in one
    multi-session batch.
    """

    __tablename__ = "tokens"

    access_id: Mapped[int] = mapped_column(Integer, access_id_seq, primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    refresh_token: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    auth_token: Mapped[str] = mapped_column(String(255), index=True)
    expire: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    ip: Mapped[bytes] = mapped_column(
        LargeBinary,
        default=b"",
        comment="Packed IPv4/IPv6 address the token was issued for, empty if unbound",
    )

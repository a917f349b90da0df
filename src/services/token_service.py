"""
Service layer for session tokens.

Each row is one session: an integer access id, an opaque refresh token that
rotates every time it is used, and an auth token labelling the login the
session belongs to. A multi-session login issues several rows that share one
auth token, so the whole group can be rotated or revoked together.

Expired rows are not swept. Reads return them and callers (or
validate_token) compare expire against the current time.
"""
import logging
from collections.abc import Sequence as SequenceABC
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy import Sequence, delete, func, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.crypto import random_opaque_string
from models.role import Role
from models.token import Token, access_id_seq
from schemas.role import RoleSchema
from schemas.token import IssuedToken, TokenSchema
from schemas.user import UserRoleSchema
from services.exceptions import (
    AccessIdExhaustedError,
    EntityNotFoundError,
    IpLockError,
    SessionPolicyError,
    TokenExpiredError,
    TokenNotFoundError,
)
from services.role_service import role_service
from services.user_service import user_service

logger = logging.getLogger(__name__)

# SQLSTATE raised by nextval() on a NO CYCLE sequence at its limit
SEQUENCE_LIMIT_EXCEEDED = "2200H"


# =============================================================================
# Access id allocation
# =============================================================================


class IdAllocator(Protocol):
    """Produces fresh, globally unique, strictly increasing access ids."""

    async def allocate(self, db: AsyncSession, count: int) -> list[int]:
        ...


def _is_sequence_exhausted(error: DBAPIError) -> bool:
    sqlstate = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
    return sqlstate == SEQUENCE_LIMIT_EXCEEDED or "reached maximum value" in str(error)


class SequenceIdAllocator:
    """
    Allocates access ids from a PostgreSQL sequence.

    nextval() is atomic across sessions, so concurrent issuers never receive
    the same id. The sequence is NO CYCLE: at its maximum, allocation fails
    with AccessIdExhaustedError instead of wrapping onto ids still in use.
    """

    def __init__(self, sequence: Sequence = access_id_seq) -> None:
        self.sequence = sequence

    async def allocate(self, db: AsyncSession, count: int) -> list[int]:
        """
        Draw count ids in one round trip.

        Ids from one call are strictly increasing. They may not be contiguous
        when other sessions allocate concurrently.

        Raises:
            ValueError: If count is less than 1.
            AccessIdExhaustedError: If the sequence has reached its maximum.
        """
        if count < 1:
            raise ValueError(f"count must be at least 1, got {count}")
        query = select(self.sequence.next_value()).select_from(func.generate_series(1, count))
        try:
            # Savepoint: a failed nextval() must not abort the caller's transaction
            async with db.begin_nested():
                result = await db.execute(query)
                ids = list(result.scalars())
        except DBAPIError as e:
            if _is_sequence_exhausted(e):
                logger.error("Access id sequence %s is exhausted", self.sequence.name)
                raise AccessIdExhaustedError() from e
            raise
        return sorted(ids)


access_id_allocator = SequenceIdAllocator()


# =============================================================================
# Role policy
# =============================================================================


@dataclass(frozen=True)
class TokenPolicy:
    """Session policy taken from the role a user logs in with."""

    multi: bool = False
    ip_lock: bool = False
    access_duration: int = 900
    refresh_duration: int = 28800

    @classmethod
    def from_role(cls, role: Role | RoleSchema | UserRoleSchema) -> "TokenPolicy":
        return cls(
            multi=role.multi,
            ip_lock=role.ip_lock,
            access_duration=role.access_duration,
            refresh_duration=role.refresh_duration,
        )

    @classmethod
    def strictest(cls, policies: SequenceABC["TokenPolicy"]) -> "TokenPolicy | None":
        """
        Combine the policies of several roles into the tightest one.

        multi holds only if every role allows it, ip_lock if any role
        requires it, and durations take the shortest. None when empty.
        """
        if not policies:
            return None
        return cls(
            multi=all(p.multi for p in policies),
            ip_lock=any(p.ip_lock for p in policies),
            access_duration=min(p.access_duration for p in policies),
            refresh_duration=min(p.refresh_duration for p in policies),
        )

    def access_expiry(self, now: datetime | None = None) -> datetime:
        """Expire time for an access token issued at now."""
        return (now or datetime.now(UTC)) + timedelta(seconds=self.access_duration)

    def refresh_expiry(self, now: datetime | None = None) -> datetime:
        """Expire time for a refresh token (the stored row) issued at now."""
        return (now or datetime.now(UTC)) + timedelta(seconds=self.refresh_duration)


async def session_policy(
    db: AsyncSession,
    user_ids: SequenceABC[UUID],
    role_id: UUID | None = None,
) -> TokenPolicy | None:
    """
    Resolve the policy that governs sessions owned by user_ids.

    With role_id, every user must hold that role and its policy is used.
    Without it, the strictest policy over all of the users' roles applies.
    Users without roles have no policy (None).

    Raises:
        EntityNotFoundError: If role_id is given and a user does not hold it
            (entity "UserRole"), or a user doesn't exist.
    """
    if role_id is not None:
        for user_id in user_ids:
            if not await user_service.has_role(db, user_id, role_id):
                logger.warning("User %s does not hold role %s", user_id, role_id)
                raise EntityNotFoundError("UserRole", (user_id, role_id))
        return TokenPolicy.from_role(await role_service.read(db, role_id))

    policies = []
    for user_id in dict.fromkeys(user_ids):
        user = await user_service.read(db, user_id)
        policies.extend(TokenPolicy.from_role(role) for role in user.roles)
    return TokenPolicy.strictest(policies)


async def _enforce_session_policy(
    db: AsyncSession,
    user_id: UUID,
    count: int,
    policy: TokenPolicy,
    now: datetime,
) -> None:
    if policy.multi:
        return
    if count > 1:
        raise SessionPolicyError(
            f"Role does not allow multiple sessions; requested {count}",
        )
    result = await db.execute(
        select(func.count())
        .select_from(Token)
        .where(Token.user_id == user_id, Token.expire > now),
    )
    active = result.scalar_one()
    if active:
        logger.warning(
            "Refusing new session for user %s: %d active session(s) on a single-session role",
            user_id,
            active,
        )
        raise SessionPolicyError(
            f"User {user_id} already has an active session and the role does not allow more",
        )


def _check_ip(token: Token, ip: bytes | None, policy: TokenPolicy | None) -> None:
    # Under ip lock an absent address counts as a mismatch
    if policy is not None and policy.ip_lock and ip != token.ip:
        logger.warning("Ip mismatch on locked token %s", token.access_id)
        raise IpLockError(token.access_id)


# =============================================================================
# Issue
# =============================================================================


async def issue_tokens(
    db: AsyncSession,
    user_id: UUID,
    expire: datetime,
    ip: bytes = b"",
    count: int = 1,
    auth_token: str | None = None,
    policy: TokenPolicy | None = None,
    allocator: IdAllocator = access_id_allocator,
) -> list[IssuedToken]:
    """
    Issue count sessions for a user.

    Args:
        db: Database session.
        user_id: Owner of the sessions.
        expire: Expire time stored on every row (see TokenPolicy.refresh_expiry).
        ip: Packed address the sessions are bound to; empty for unbound.
        count: Number of sessions. All rows share one auth token.
        auth_token: Existing login label to add a single session under.
            Only allowed when count is 1; otherwise a fresh label is generated.
        policy: Role policy to enforce. None skips policy checks.
        allocator: Source of access ids.

    Returns:
        One IssuedToken per row, in increasing access id order.

    Raises:
        ValueError: If count < 1, or auth_token is given with count > 1.
        EntityNotFoundError: If the user doesn't exist.
        SessionPolicyError: If a single-session role refuses the issuance.
        AccessIdExhaustedError: If no access ids remain.

    Note:
        Does not commit. Caller (session generator) handles commit at request end.
    """
    if count < 1:
        raise ValueError(f"count must be at least 1, got {count}")
    if auth_token is not None and count > 1:
        raise ValueError("A supplied auth token can only label a single session")
    if not await user_service.entity_exists(db, user_id):
        raise EntityNotFoundError("User", user_id)
    if policy is not None:
        await _enforce_session_policy(db, user_id, count, policy, datetime.now(UTC))

    settings = get_settings()
    access_ids = await allocator.allocate(db, count)
    label = auth_token or random_opaque_string(settings.auth_token_length)
    tokens = [
        Token(
            access_id=access_id,
            user_id=user_id,
            refresh_token=random_opaque_string(settings.refresh_token_length),
            auth_token=label,
            expire=expire,
            ip=ip,
        )
        for access_id in access_ids
    ]
    db.add_all(tokens)
    await db.flush()

    logger.info("Issued %d session(s) %s for user %s", count, access_ids, user_id)
    return [
        IssuedToken(
            access_id=token.access_id,
            refresh_token=token.refresh_token,
            auth_token=token.auth_token,
        )
        for token in tokens
    ]


async def create_access_token(
    db: AsyncSession,
    user_id: UUID,
    auth_token: str,
    expire: datetime,
    ip: bytes = b"",
    policy: TokenPolicy | None = None,
) -> IssuedToken:
    """Add one session under an existing login label."""
    issued = await issue_tokens(
        db, user_id, expire, ip, count=1, auth_token=auth_token, policy=policy,
    )
    return issued[0]


async def create_auth_token(
    db: AsyncSession,
    user_id: UUID,
    expire: datetime,
    ip: bytes = b"",
    number: int = 1,
    policy: TokenPolicy | None = None,
) -> list[IssuedToken]:
    """Log in: issue number sessions under a freshly generated auth token."""
    return await issue_tokens(db, user_id, expire, ip, count=number, policy=policy)


# =============================================================================
# Read
# =============================================================================


async def _get_token(db: AsyncSession, access_id: int) -> Token:
    token = await db.get(Token, access_id)
    if token is None:
        raise TokenNotFoundError(access_id)
    return token


async def _select_tokens(db: AsyncSession, *criteria) -> list[Token]:
    result = await db.execute(select(Token).where(*criteria).order_by(Token.access_id))
    return list(result.scalars().all())


async def read_access_token(db: AsyncSession, access_id: int) -> TokenSchema:
    """
    Read a session by access id.

    Raises:
        TokenNotFoundError: If no session has that id.
    """
    return TokenSchema.model_validate(await _get_token(db, access_id))


async def read_refresh_token(db: AsyncSession, refresh_token: str) -> TokenSchema:
    """Read a session by its current refresh token. Rotated-away tokens are not found."""
    tokens = await _select_tokens(db, Token.refresh_token == refresh_token)
    if not tokens:
        raise TokenNotFoundError("refresh token")
    return TokenSchema.model_validate(tokens[0])


async def list_auth_token(db: AsyncSession, auth_token: str) -> list[TokenSchema]:
    """List every session issued under a login label."""
    tokens = await _select_tokens(db, Token.auth_token == auth_token)
    return [TokenSchema.model_validate(token) for token in tokens]


async def list_token_by_user(db: AsyncSession, user_id: UUID) -> list[TokenSchema]:
    """List a user's sessions, expired ones included."""
    tokens = await _select_tokens(db, Token.user_id == user_id)
    return [TokenSchema.model_validate(token) for token in tokens]


async def validate_token(
    db: AsyncSession,
    access_id: int,
    ip: bytes | None = None,
    policy: TokenPolicy | None = None,
    now: datetime | None = None,
) -> TokenSchema:
    """
    Check that a session may be used.

    Args:
        db: Database session.
        access_id: Session presented by the caller.
        ip: Caller's packed address. Checked only under an ip-locked policy,
            where a missing address is a mismatch.
        policy: Role policy. None skips the ip check.
        now: Reference time; defaults to the current UTC time.

    Raises:
        TokenNotFoundError: If the session doesn't exist (or was revoked).
        TokenExpiredError: If expire is not in the future.
        IpLockError: If the policy is ip-locked and ip is missing or differs
            from the stored one.
    """
    token = await _get_token(db, access_id)
    if token.expire <= (now or datetime.now(UTC)):
        raise TokenExpiredError(access_id)
    _check_ip(token, ip, policy)
    return TokenSchema.model_validate(token)


# =============================================================================
# Rotate
# =============================================================================


async def rotate_access_token(
    db: AsyncSession,
    access_id: int,
    expire: datetime | None = None,
    ip: bytes | None = None,
    auth_token: str | None = None,
    policy: TokenPolicy | None = None,
) -> IssuedToken:
    """
    Replace a session's refresh token.

    The old refresh token stops matching immediately. expire and ip are
    updated when given; the auth token is relabelled only when auth_token is
    supplied. access_id and user_id never change.

    Raises:
        TokenNotFoundError: If the session doesn't exist.
        IpLockError: If the policy is ip-locked and ip is missing or differs
            from the stored one.
    """
    token = await _get_token(db, access_id)
    _check_ip(token, ip, policy)

    token.refresh_token = random_opaque_string(get_settings().refresh_token_length)
    if expire is not None:
        token.expire = expire
    if ip is not None:
        token.ip = ip
    if auth_token is not None:
        token.auth_token = auth_token
    await db.flush()

    return IssuedToken(
        access_id=token.access_id,
        refresh_token=token.refresh_token,
        auth_token=token.auth_token,
    )


async def refresh_session(
    db: AsyncSession,
    refresh_token: str,
    expire: datetime | None = None,
    ip: bytes | None = None,
    policy: TokenPolicy | None = None,
) -> IssuedToken:
    """
    Exchange a refresh token for a new one (rotation on use).

    Raises:
        TokenNotFoundError: If the refresh token is unknown or already rotated.
        IpLockError: If the policy is ip-locked and ip is missing or differs.
    """
    tokens = await _select_tokens(db, Token.refresh_token == refresh_token)
    if not tokens:
        raise TokenNotFoundError("refresh token")
    return await rotate_access_token(
        db, tokens[0].access_id, expire=expire, ip=ip, policy=policy,
    )


async def rotate_auth_token(
    db: AsyncSession,
    auth_token: str,
    expire: datetime | None = None,
    ip: bytes | None = None,
    policy: TokenPolicy | None = None,
    new_auth_token: str | None = None,
) -> list[IssuedToken]:
    """
    Rotate every session under a login label.

    Each row gets its own new refresh token. The label is kept unless
    new_auth_token is given, in which case the whole group moves to it.

    Raises:
        TokenNotFoundError: If no session carries the label.
        IpLockError: If the policy is ip-locked and any row's ip is missing
            or differs.
    """
    tokens = await _select_tokens(db, Token.auth_token == auth_token)
    if not tokens:
        raise TokenNotFoundError("auth token")
    for token in tokens:
        _check_ip(token, ip, policy)

    length = get_settings().refresh_token_length
    for token in tokens:
        token.refresh_token = random_opaque_string(length)
        if expire is not None:
            token.expire = expire
        if ip is not None:
            token.ip = ip
        if new_auth_token is not None:
            token.auth_token = new_auth_token
    await db.flush()

    return [
        IssuedToken(
            access_id=token.access_id,
            refresh_token=token.refresh_token,
            auth_token=token.auth_token,
        )
        for token in tokens
    ]


# =============================================================================
# Revoke
# =============================================================================


async def _delete_tokens(db: AsyncSession, description: str, *criteria) -> int:
    result = await db.execute(delete(Token).where(*criteria))
    removed = result.rowcount
    logger.info("Revoked %d session(s) by %s", removed, description)
    return removed


async def revoke_access_token(db: AsyncSession, access_id: int) -> int:
    """Delete one session. Returns the number of rows removed (0 or 1)."""
    return await _delete_tokens(db, f"access id {access_id}", Token.access_id == access_id)


async def revoke_auth_token(db: AsyncSession, auth_token: str) -> int:
    """Delete every session under a login label. Returns the number of rows removed."""
    return await _delete_tokens(db, "auth token", Token.auth_token == auth_token)


async def revoke_user_tokens(db: AsyncSession, user_id: UUID) -> int:
    """Delete all of a user's sessions, e.g. before deleting the user."""
    return await _delete_tokens(db, f"user {user_id}", Token.user_id == user_id)


async def revoke_access_tokens(db: AsyncSession, access_ids: SequenceABC[int]) -> int:
    """Delete several sessions at once. Unknown ids are ignored."""
    if not access_ids:
        return 0
    return await _delete_tokens(
        db, f"access ids {list(access_ids)}", Token.access_id.in_(access_ids),
    )


async def revoke_refresh_token(db: AsyncSession, refresh_token: str) -> int:
    """Delete the session holding a refresh token. Rotated-away tokens match nothing."""
    return await _delete_tokens(db, "refresh token", Token.refresh_token == refresh_token)

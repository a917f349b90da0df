"""Shared exceptions for service layer operations."""
from typing import Any


class EntityNotFoundError(Exception):
    """
    Raised when a single-entity read matches no row.

    Also raised when a join query materializes zero parent objects for an id
    or name lookup, and when a mutation targets a row that does not exist.
    """

    def __init__(self, entity: str, key: Any) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class TokenNotFoundError(EntityNotFoundError):
    """Raised when no token row matches an access id, refresh token or auth token."""

    def __init__(self, key: Any) -> None:
        super().__init__("Token", key)


class ConflictError(Exception):
    """Base exception for writes refused because of existing rows."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class DependentRowsError(ConflictError):
    """
    Raised when deleting an entity that still has dependents.

    Callers must remove procedures, roles, grants, assignments, tokens and
    profiles that reference the entity before deleting it.
    """

    def __init__(self, entity: str, key: Any, dependents: list[str]) -> None:
        self.entity = entity
        self.key = key
        self.dependents = dependents
        super().__init__(
            f"{entity} {key} still has dependent rows: {', '.join(dependents)}",
        )


class DuplicateKeyError(ConflictError):
    """Raised when a create or update collides with a unique key."""

    def __init__(self, entity: str, field: str, value: Any) -> None:
        self.entity = entity
        self.field = field
        self.value = value
        super().__init__(f"{entity} with {field} '{value}' already exists")


class DuplicateGrantError(ConflictError):
    """Raised when granting a procedure a role already has."""

    def __init__(self, role_id: Any, procedure_id: Any) -> None:
        self.role_id = role_id
        self.procedure_id = procedure_id
        super().__init__(f"Role {role_id} already has access to procedure {procedure_id}")


class InvalidGrantError(Exception):
    """Raised when a role and a procedure belong to different APIs."""

    def __init__(self, role_id: Any, procedure_id: Any) -> None:
        self.role_id = role_id
        self.procedure_id = procedure_id
        super().__init__(
            f"Role {role_id} and procedure {procedure_id} belong to different APIs",
        )


class SecretGenerationError(Exception):
    """Raised when password hashing, key generation or random material fails."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class SessionPolicyError(Exception):
    """Raised when a role's multi-session policy refuses a token issuance."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class IpLockError(Exception):
    """Raised when an ip-locked token is used or rotated from a different address."""

    def __init__(self, access_id: int) -> None:
        self.access_id = access_id
        super().__init__(f"Token {access_id} is bound to a different ip address")


class TokenExpiredError(Exception):
    """Raised by validation when a token's expire time has passed."""

    def __init__(self, access_id: int) -> None:
        self.access_id = access_id
        super().__init__(f"Token {access_id} has expired")


class AccessIdExhaustedError(Exception):
    """Raised when the access id sequence reaches its maximum value."""

    def __init__(self) -> None:
        super().__init__("Access id sequence is exhausted")

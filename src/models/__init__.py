"""SQLAlchemy models."""
from models.base import Base, TimestampMixin, UUIDv7Mixin
from models.api import Api, Procedure
from models.role import Role, role_access
from models.user import User, user_roles
from models.token import ACCESS_ID_MAX, Token, access_id_seq
from models.profile import ProfileMode, ProfileValueType, RoleProfile, UserProfile

__all__ = [
    "ACCESS_ID_MAX",
    "Api",
    "Base",
    "Procedure",
    "ProfileMode",
    "ProfileValueType",
    "Role",
    "RoleProfile",
    "TimestampMixin",
    "Token",
    "UUIDv7Mixin",
    "User",
    "UserProfile",
    "access_id_seq",
    "role_access",
    "user_roles",
]

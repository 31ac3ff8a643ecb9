"""Roles, authorization checks and bearer token verification"""

import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Dict, Optional, Any, Union
import logging

import jwt

from .exceptions import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)


class Role(IntEnum):
    """Ordered authorization tiers"""
    READ_ONLY = 1
    USER = 2
    ADMIN = 3

    @classmethod
    def parse(cls, value: Union[str, int, "Role", None]) -> "Role":
        """Map a role name (or tier number) to a Role. Unknown names get the lowest tier."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                return cls.READ_ONLY
        if isinstance(value, str):
            return _ROLE_ALIASES.get(value.strip().lower(), cls.READ_ONLY)
        return cls.READ_ONLY


_ROLE_ALIASES: Dict[str, Role] = {
    "readonly": Role.READ_ONLY,
    "read_only": Role.READ_ONLY,
    "read-only": Role.READ_ONLY,
    "viewer": Role.READ_ONLY,
    "user": Role.USER,
    "admin": Role.ADMIN,
    "administrator": Role.ADMIN,
    "cfo": Role.ADMIN,
    "head of cloud platform": Role.ADMIN,
}


@dataclass(frozen=True)
class User:
    """The acting principal behind an approve/reject call"""
    username: str
    role: Role = Role.READ_ONLY

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "User":
        username = claims.get("sub") or claims.get("username")
        if not isinstance(username, str) or not username:
            raise AuthenticationError("Token carries no subject")
        return cls(username=username, role=Role.parse(claims.get("role")))


class Authorizer(ABC):
    """Decides whether a user meets a minimum role"""

    @abstractmethod
    def check_role(self, user: Optional[User], minimum_role: Role) -> bool:
        pass

    def require_role(self, user: Optional[User], minimum_role: Role) -> None:
        """Raise ``AuthorizationError`` unless ``check_role`` passes"""
        if not self.check_role(user, minimum_role):
            name = user.username if user else "anonymous"
            raise AuthorizationError(
                f"User '{name}' requires role {minimum_role.name.lower()} or higher"
            )


class RoleAuthorizer(Authorizer):
    """Compare the user's role against the minimum tier"""

    def check_role(self, user: Optional[User], minimum_role: Role) -> bool:
        if user is None:
            return False
        return Role.parse(user.role) >= minimum_role


class TokenManager:
    """JWT bearer token management"""

    def __init__(self, secret_key: Optional[str] = None, algorithm: str = 'HS256'):
        self.secret_key = secret_key or secrets.token_urlsafe(32)
        self.algorithm = algorithm

    def generate_token(self, user: User, expires_in: int = 3600) -> str:
        """Generate JWT token for a user"""
        now = datetime.now(timezone.utc)
        payload = {
            'sub': user.username,
            'role': user.role.name.lower(),
            'iat': now,
            'exp': now + timedelta(seconds=expires_in),
            'jti': secrets.token_urlsafe(16),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Verify and decode JWT token"""
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(f"Invalid token: {e}")

    def authenticate(self, token: str) -> User:
        """Verify a token and return the user it names"""
        return User.from_claims(self.verify_token(token))

"""Identity assertion and authorization guards.

Credentials are HS256 JWTs read from the auth cookie first and the
``Authorization: Bearer`` header second. The ``roles`` claim is advisory;
every guard re-reads live grants through the permission resolver.
"""

import bcrypt
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from gatekeepr.core.config import settings
from gatekeepr.core.exceptions import AuthenticationError, AuthorizationError
from gatekeepr.db.session import get_db
from gatekeepr.services import permission_resolver


@dataclass(frozen=True)
class Identity:
    """Verified caller identity extracted from a token."""
    user_id: int
    email: str
    roles: list[str] = field(default_factory=list)
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class RequestContext:
    """Caller network attributes recorded on audit rows."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        ip = request.client.host if request.client else None
        ua = request.headers.get("user-agent", "")[:500]
        return cls(ip_address=ip, user_agent=ua or None)


def request_context(request: Request) -> RequestContext:
    """FastAPI dependency building the audit context for a request."""
    return RequestContext.from_request(request)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    pwd_bytes = password.encode("utf-8")
    hashed = bcrypt.hashpw(pwd_bytes, bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(
    user_id: int,
    email: str,
    roles: list[str],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Issue a signed token for a user."""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_EXPIRY_MINUTES)
    )
    to_encode = {
        "sub": str(user_id),
        "email": email,
        "roles": list(roles),
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Identity:
    """Decode and validate a token.

    Raises:
        AuthenticationError: On a bad signature, expiry or malformed claims.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        user_id = int(payload["sub"])
    except (JWTError, KeyError, TypeError, ValueError):
        raise AuthenticationError("Invalid or expired token")

    exp = payload.get("exp")
    return Identity(
        user_id=user_id,
        email=payload.get("email", ""),
        roles=list(payload.get("roles") or []),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
    )


def extract_credential(request: Request) -> str:
    """Return the raw token, preferring the auth cookie over the header."""
    token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if token:
        return token

    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise AuthenticationError("Authorization required")

    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise AuthenticationError("Invalid authorization header format")
    return parts[1]


def get_current_identity(request: Request) -> Identity:
    """Authenticate the caller without any authorization check."""
    return verify_token(extract_credential(request))


class RequireRoles:
    """Dependency that passes when the caller holds any of the named roles."""

    def __init__(self, *role_names: str):
        self.role_names = list(role_names)

    def __call__(
        self,
        identity: Identity = Depends(get_current_identity),
        db: Session = Depends(get_db),
    ) -> Identity:
        if not permission_resolver.has_role(db, identity.user_id, self.role_names):
            raise AuthorizationError("Insufficient permissions")
        return identity


class RequirePermission:
    """Dependency that passes when the caller holds one named permission."""

    def __init__(self, permission: str):
        self.permission = permission

    def __call__(
        self,
        identity: Identity = Depends(get_current_identity),
        db: Session = Depends(get_db),
    ) -> Identity:
        if not permission_resolver.has_permission(db, identity.user_id, self.permission):
            raise AuthorizationError("Insufficient permissions")
        return identity


class RequireHierarchy:
    """Dependency that passes when the caller's highest role level is >= ``min_level``."""

    def __init__(self, min_level: int):
        self.min_level = min_level

    def __call__(
        self,
        identity: Identity = Depends(get_current_identity),
        db: Session = Depends(get_db),
    ) -> Identity:
        if not permission_resolver.meets_hierarchy(db, identity.user_id, self.min_level):
            raise AuthorizationError("Insufficient hierarchy level")
        return identity


# Convenience dependencies
require_admin = RequireRoles("super_admin", "admin")
require_manager_level = RequireHierarchy(50)

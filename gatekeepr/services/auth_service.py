"""Auth service: first-boot setup, login and caller profile."""

import logging
from typing import Optional, Dict, Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from gatekeepr.core.exceptions import (
    AuthenticationError, AuthorizationError, ResourceNotFoundError, StorageError, ValidationError,
)
from gatekeepr.core.security import (
    RequestContext, hash_password, verify_password, create_access_token,
)
from gatekeepr.models.role import Role, UserRole
from gatekeepr.models.user import User
from gatekeepr.schemas.schemas import MeResponse, SetupRequest, UserOut
from gatekeepr.services import permission_resolver
from gatekeepr.services.audit_service import audit_service

logger = logging.getLogger("gatekeepr.auth")

MIN_PASSWORD_LENGTH = 8
BOOTSTRAP_ROLE = "super_admin"


class AuthService:
    """Handles setup and authentication."""

    @staticmethod
    def setup_required(db: Session) -> bool:
        """True until the first user exists."""
        return db.query(User.id).first() is None

    @staticmethod
    def setup(db: Session, body: SetupRequest, context: Optional[RequestContext] = None) -> Dict[str, Any]:
        """Create the first user as super admin and log them in.

        Raises:
            AuthorizationError: If any user already exists.
            ValidationError: If the password is too short.
        """
        if not AuthService.setup_required(db):
            raise AuthorizationError("System already initialized")
        if len(body.password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        role = db.query(Role).filter(Role.name == BOOTSTRAP_ROLE).first()
        if not role:
            raise StorageError(f"Failed to find {BOOTSTRAP_ROLE} role")

        user = User(
            email=body.email,
            hashed_password=hash_password(body.password),
            first_name=body.first_name,
            last_name=body.last_name,
            is_active=True,
        )
        try:
            db.add(user)
            db.flush()
            db.add(UserRole(user_id=user.id, role_id=role.id))
            db.commit()
        except IntegrityError:
            db.rollback()
            # Same email inserted by a concurrent setup. Setups with different
            # emails are not serialized and can both succeed.
            raise AuthorizationError("System already initialized")
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Setup failed")
            raise StorageError("Failed to create user")

        logger.info("System initialized by %s", user.email)
        audit_service.record(
            db, user.id, "auth.setup", "user",
            target_id=user.id, target_name=user.email, context=context,
        )
        roles = [BOOTSTRAP_ROLE]
        return {
            "token": create_access_token(user.id, user.email, roles),
            "user": UserOut.model_validate(user).model_dump(mode="json"),
            "roles": roles,
        }

    @staticmethod
    def authenticate(
        db: Session, email: str, password: str, context: Optional[RequestContext] = None
    ) -> Dict[str, Any]:
        """Verify credentials of an active user and issue a token.

        Raises:
            AuthenticationError: If credentials are invalid or the user is inactive.
        """
        user = db.query(User).filter(User.email == email, User.is_active.is_(True)).first()
        if not user or not verify_password(password, user.hashed_password):
            raise AuthenticationError("Invalid credentials")

        roles = permission_resolver.user_role_names(db, user.id)
        token = create_access_token(user.id, user.email, roles)

        audit_service.record(
            db, user.id, "auth.login", "user",
            target_id=user.id, target_name=user.email, context=context,
        )
        return {
            "token": token,
            "user": UserOut.model_validate(user).model_dump(mode="json"),
            "roles": roles,
        }

    @staticmethod
    def me(db: Session, user_id: int) -> MeResponse:
        """Profile with live roles and effective permissions."""
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise ResourceNotFoundError("User not found")
        return MeResponse(
            user=UserOut.model_validate(user),
            roles=permission_resolver.user_role_names(db, user_id),
            permissions=sorted(permission_resolver.effective_permissions(db, user_id)),
        )


auth_service = AuthService()

"""Role administration: CRUD, permission sets and user assignment."""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from gatekeepr.core.exceptions import (
    AuthorizationError, ResourceConflictError, ResourceNotFoundError,
    StorageError, ValidationError,
)
from gatekeepr.core.security import RequestContext
from gatekeepr.models.role import Role, RolePermission, UserRole
from gatekeepr.models.user import User
from gatekeepr.schemas.schemas import ActionResult, RoleCreate, RoleDetail, RoleOut, RolePatch
from gatekeepr.services.audit_service import audit_service, utcnow
from gatekeepr.services.bulk_service import insert_or_ignore
from gatekeepr.services.patching import apply_patch

logger = logging.getLogger("gatekeepr.roles")


class RoleService:
    """Roles and their links. Seeded system roles are read-only."""

    @staticmethod
    def _get(db: Session, role_id: int) -> Role:
        role = db.query(Role).filter(Role.id == role_id).first()
        if not role:
            raise ResourceNotFoundError("Role not found")
        return role

    @staticmethod
    def list_roles(db: Session) -> list[RoleOut]:
        """All roles, most privileged first, with assigned-user counts."""
        rows = (
            db.query(Role, func.count(UserRole.user_id))
            .outerjoin(UserRole, UserRole.role_id == Role.id)
            .group_by(Role.id)
            .order_by(Role.hierarchy_level.desc(), Role.name)
            .all()
        )
        result = []
        for role, user_count in rows:
            out = RoleOut.model_validate(role)
            out.user_count = user_count
            result.append(out)
        return result

    @staticmethod
    def get_role(db: Session, role_id: int) -> RoleDetail:
        return RoleDetail.model_validate(RoleService._get(db, role_id))

    @staticmethod
    def hierarchy(db: Session) -> list[dict]:
        roles = db.query(Role).order_by(Role.hierarchy_level.desc(), Role.name).all()
        return [
            {
                "id": r.id,
                "name": r.name,
                "display_name": r.display_name,
                "hierarchy_level": r.hierarchy_level,
                "can_grant_access": r.can_grant_access,
                "can_approve_requests": r.can_approve_requests,
            }
            for r in roles
        ]

    @staticmethod
    def create_role(
        db: Session, actor_id: int, body: RoleCreate, context: Optional[RequestContext] = None
    ) -> ActionResult:
        role = Role(**body.model_dump(), is_system_role=False)
        db.add(role)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceConflictError(f"Role '{body.name}' already exists")

        audit_service.record(
            db, actor_id, "role.create", "role",
            target_id=role.id, target_name=role.name, new_value=body, context=context,
        )
        return ActionResult(id=role.id, message="Role created successfully")

    @staticmethod
    def update_role(
        db: Session, actor_id: int, role_id: int, patch: RolePatch,
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        role = RoleService._get(db, role_id)
        if role.is_system_role:
            raise AuthorizationError("Cannot modify system roles")

        old, new = apply_patch(role, patch)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to update role %s", role_id)
            raise StorageError("Failed to update role")

        audit_service.record(
            db, actor_id, "role.update", "role",
            target_id=role_id, target_name=role.name, old_value=old, new_value=new, context=context,
        )
        return ActionResult(id=role_id, message="Role updated successfully")

    @staticmethod
    def delete_role(
        db: Session, actor_id: int, role_id: int, context: Optional[RequestContext] = None
    ) -> ActionResult:
        role = RoleService._get(db, role_id)
        if role.is_system_role:
            raise AuthorizationError("Cannot delete system roles")

        role_name = role.name
        try:
            db.query(UserRole).filter(UserRole.role_id == role_id).delete(synchronize_session=False)
            db.query(RolePermission).filter(RolePermission.role_id == role_id).delete(synchronize_session=False)
            db.delete(role)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to delete role %s", role_id)
            raise StorageError("Failed to delete role")

        audit_service.record(
            db, actor_id, "role.delete", "role",
            target_id=role_id, target_name=role_name, context=context,
        )
        return ActionResult(id=role_id, message="Role deleted successfully")

    @staticmethod
    def set_permissions(
        db: Session, actor_id: int, role_id: int, permission_ids: list[int],
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        """Replace the role's permission set; ``[]`` clears it."""
        role = RoleService._get(db, role_id)
        old_ids = sorted(
            pid for (pid,) in db.query(RolePermission.permission_id).filter(RolePermission.role_id == role_id)
        )
        new_ids = sorted(set(permission_ids))
        try:
            db.query(RolePermission).filter(RolePermission.role_id == role_id).delete(synchronize_session=False)
            db.add_all(RolePermission(role_id=role_id, permission_id=pid) for pid in new_ids)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ValidationError("Unknown permission id in request")
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to set permissions for role %s", role_id)
            raise StorageError("Failed to update permissions")

        audit_service.record(
            db, actor_id, "role.permissions.update", "role",
            target_id=role_id, target_name=role.name,
            old_value={"permission_ids": old_ids}, new_value={"permission_ids": new_ids},
            context=context,
        )
        return ActionResult(id=role_id, message="Permissions updated successfully")

    @staticmethod
    def assign_role(
        db: Session, actor_id: int, user_id: int, role_id: int,
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        role = RoleService._get(db, role_id)
        if not db.query(User.id).filter(User.id == user_id).first():
            raise ResourceNotFoundError("User not found")

        try:
            affected = insert_or_ignore(
                db, UserRole,
                [{"user_id": user_id, "role_id": role_id, "granted_by": actor_id, "granted_at": utcnow()}],
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to assign role %s to user %s", role_id, user_id)
            raise StorageError("Failed to assign role")

        audit_service.record(
            db, actor_id, "role.assign", "user",
            target_id=user_id, target_name=role.name,
            new_value={"user_id": user_id, "role_id": role_id}, context=context,
        )
        return ActionResult(id=role_id, message="Role assigned successfully", affected=affected)

    @staticmethod
    def unassign_role(
        db: Session, actor_id: int, user_id: int, role_id: int,
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        role = RoleService._get(db, role_id)
        try:
            affected = (
                db.query(UserRole)
                .filter(UserRole.user_id == user_id, UserRole.role_id == role_id)
                .delete(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to remove role %s from user %s", role_id, user_id)
            raise StorageError("Failed to remove role")

        audit_service.record(
            db, actor_id, "role.unassign", "user",
            target_id=user_id, target_name=role.name,
            old_value={"user_id": user_id, "role_id": role_id}, context=context,
        )
        return ActionResult(id=role_id, message="Role removed successfully", affected=affected)


role_service = RoleService()

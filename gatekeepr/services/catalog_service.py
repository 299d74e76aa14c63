"""Permission and tool catalogs."""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from gatekeepr.core.exceptions import ResourceConflictError, ResourceNotFoundError, StorageError
from gatekeepr.core.security import RequestContext
from gatekeepr.models.group import GroupPermission
from gatekeepr.models.role import Permission, RolePermission
from gatekeepr.models.tool import Tool
from gatekeepr.schemas.schemas import (
    ActionResult, PermissionCreate, PermissionOut, PermissionPatch, ToolCreate, ToolOut, ToolPatch,
)
from gatekeepr.services.audit_service import audit_service
from gatekeepr.services.patching import apply_patch

logger = logging.getLogger("gatekeepr.catalog")


def _commit(db: Session, failure: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(failure)
        raise StorageError(failure)


class PermissionService:
    """Permission catalog. Deleting a permission strips it from every grant."""

    @staticmethod
    def _get(db: Session, permission_id: int) -> Permission:
        permission = db.query(Permission).filter(Permission.id == permission_id).first()
        if not permission:
            raise ResourceNotFoundError("Permission not found")
        return permission

    @staticmethod
    def list_permissions(db: Session, category: Optional[str] = None) -> list[PermissionOut]:
        query = db.query(Permission)
        if category:
            query = query.filter(Permission.category == category)
        return [PermissionOut.model_validate(p) for p in query.order_by(Permission.category, Permission.name)]

    @staticmethod
    def categories(db: Session) -> list[str]:
        rows = db.query(Permission.category).distinct().order_by(Permission.category).all()
        return [category for (category,) in rows]

    @staticmethod
    def get_permission(db: Session, permission_id: int) -> PermissionOut:
        return PermissionOut.model_validate(PermissionService._get(db, permission_id))

    @staticmethod
    def create_permission(
        db: Session, actor_id: int, body: PermissionCreate, context: Optional[RequestContext] = None
    ) -> ActionResult:
        permission = Permission(**body.model_dump())
        db.add(permission)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceConflictError(f"Permission '{body.name}' already exists")

        audit_service.record(
            db, actor_id, "permission.create", "permission",
            target_id=permission.id, target_name=permission.name, new_value=body, context=context,
        )
        return ActionResult(id=permission.id, message="Permission created successfully")

    @staticmethod
    def update_permission(
        db: Session, actor_id: int, permission_id: int, patch: PermissionPatch,
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        permission = PermissionService._get(db, permission_id)
        old, new = apply_patch(permission, patch)
        _commit(db, "Failed to update permission")

        audit_service.record(
            db, actor_id, "permission.update", "permission",
            target_id=permission_id, target_name=permission.name,
            old_value=old, new_value=new, context=context,
        )
        return ActionResult(id=permission_id, message="Permission updated successfully")

    @staticmethod
    def delete_permission(
        db: Session, actor_id: int, permission_id: int, context: Optional[RequestContext] = None
    ) -> ActionResult:
        permission = PermissionService._get(db, permission_id)
        name = permission.name
        try:
            db.query(RolePermission).filter(RolePermission.permission_id == permission_id).delete(
                synchronize_session=False
            )
            db.query(GroupPermission).filter(GroupPermission.permission_id == permission_id).delete(
                synchronize_session=False
            )
            db.delete(permission)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to delete permission %s", permission_id)
            raise StorageError("Failed to delete permission")

        audit_service.record(
            db, actor_id, "permission.delete", "permission",
            target_id=permission_id, target_name=name, context=context,
        )
        return ActionResult(id=permission_id, message="Permission deleted successfully")


class ToolService:
    """Tool catalog; tools are the usual targets of access requests."""

    @staticmethod
    def _get(db: Session, tool_id: int) -> Tool:
        tool = db.query(Tool).filter(Tool.id == tool_id).first()
        if not tool:
            raise ResourceNotFoundError("Tool not found")
        return tool

    @staticmethod
    def list_tools(db: Session, category: Optional[str] = None, active_only: bool = False) -> list[ToolOut]:
        query = db.query(Tool)
        if category:
            query = query.filter(Tool.category == category)
        if active_only:
            query = query.filter(Tool.is_active.is_(True))
        return [ToolOut.model_validate(t) for t in query.order_by(Tool.category, Tool.name)]

    @staticmethod
    def categories(db: Session) -> list[str]:
        rows = (
            db.query(Tool.category)
            .filter(Tool.category.isnot(None))
            .distinct()
            .order_by(Tool.category)
            .all()
        )
        return [category for (category,) in rows]

    @staticmethod
    def get_tool(db: Session, tool_id: int) -> ToolOut:
        return ToolOut.model_validate(ToolService._get(db, tool_id))

    @staticmethod
    def create_tool(
        db: Session, actor_id: int, body: ToolCreate, context: Optional[RequestContext] = None
    ) -> ActionResult:
        tool = Tool(**body.model_dump(), is_active=True)
        db.add(tool)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceConflictError(f"Tool '{body.name}' already exists")

        audit_service.record(
            db, actor_id, "tool.create", "tool",
            target_id=tool.id, target_name=tool.name, new_value=body, context=context,
        )
        return ActionResult(id=tool.id, message="Tool created successfully")

    @staticmethod
    def update_tool(
        db: Session, actor_id: int, tool_id: int, patch: ToolPatch,
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        tool = ToolService._get(db, tool_id)
        old, new = apply_patch(tool, patch)
        _commit(db, "Failed to update tool")

        audit_service.record(
            db, actor_id, "tool.update", "tool",
            target_id=tool_id, target_name=tool.name, old_value=old, new_value=new, context=context,
        )
        return ActionResult(id=tool_id, message="Tool updated successfully")

    @staticmethod
    def delete_tool(
        db: Session, actor_id: int, tool_id: int, context: Optional[RequestContext] = None
    ) -> ActionResult:
        tool = ToolService._get(db, tool_id)
        name = tool.name
        db.delete(tool)
        _commit(db, "Failed to delete tool")

        audit_service.record(
            db, actor_id, "tool.delete", "tool",
            target_id=tool_id, target_name=name, context=context,
        )
        return ActionResult(id=tool_id, message="Tool deleted successfully")


permission_service = PermissionService()
tool_service = ToolService()

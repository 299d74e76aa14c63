"""Bulk assignment operations.

Each batch runs in one transaction: either every row lands or none does,
and one audit entry is written for the whole batch. Link inserts skip
pairs that already exist, so the returned counts only include new rows.
"""

import logging
from typing import Optional

from sqlalchemy import insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from gatekeepr.core.exceptions import AuthorizationError, StorageError, ValidationError
from gatekeepr.core.security import RequestContext
from gatekeepr.models.access_request import AccessRequest, AccessStatus
from gatekeepr.models.group import Group, GroupMember, GroupPermission
from gatekeepr.models.role import Permission, Role, UserRole
from gatekeepr.models.user import User
from gatekeepr.schemas.schemas import (
    BulkGrantRequest, BulkGroupsRequest, BulkPermissionsRequest, BulkResult, BulkRolesRequest,
)
from gatekeepr.services import permission_resolver
from gatekeepr.services.access_service import REQUEST_TYPE
from gatekeepr.services.audit_service import audit_service, utcnow

logger = logging.getLogger("gatekeepr.bulk")


def insert_or_ignore(db: Session, model, rows: list[dict]) -> int:
    """Insert ``rows`` skipping primary-key duplicates; returns rows inserted."""
    if not rows:
        return 0
    table = model.__table__
    conn = db.connection()
    dialect = conn.dialect.name
    if dialect == "sqlite":
        stmt = sqlite.insert(table).on_conflict_do_nothing()
    elif dialect == "postgresql":
        stmt = postgresql.insert(table).on_conflict_do_nothing()
    else:
        # MySQL / MariaDB. IGNORE also skips FK failures, so callers check ids first.
        stmt = insert(table).prefix_with("IGNORE")

    inserted = 0
    for row in rows:
        result = conn.execute(stmt, row)
        inserted += max(result.rowcount, 0)
    return inserted


def _require_ids(failure: str, *id_lists: list[int]) -> None:
    if any(not ids for ids in id_lists):
        raise ValidationError(failure)


def require_existing(db: Session, model, ids: list[int], label: str) -> None:
    """Raise ValidationError when any of ``ids`` has no row in ``model``."""
    found = {row_id for (row_id,) in db.query(model.id).filter(model.id.in_(ids))}
    missing = sorted(set(ids) - found)
    if missing:
        raise ValidationError(f"Unknown {label} id(s): {', '.join(map(str, missing))}")


def _run_batch(db: Session, work, failure: str) -> int:
    """Run ``work(db)`` and commit, rolling the whole batch back on any error."""
    try:
        count = work(db)
        db.commit()
        return count
    except IntegrityError:
        db.rollback()
        logger.warning("%s: unknown referenced id", failure)
        raise ValidationError(f"{failure}: unknown id in request")
    except SQLAlchemyError:
        db.rollback()
        logger.exception(failure)
        raise StorageError(failure)


class BulkService:
    """Cross-product assignments over users, roles, groups, permissions and tools."""

    @staticmethod
    def bulk_assign_roles(
        db: Session, actor_id: int, body: BulkRolesRequest,
        context: Optional[RequestContext] = None,
    ) -> BulkResult:
        _require_ids("user_ids and role_ids are required", body.user_ids, body.role_ids)
        require_existing(db, User, body.user_ids, "user")
        require_existing(db, Role, body.role_ids, "role")
        rows = [
            {"user_id": user_id, "role_id": role_id, "granted_by": actor_id, "granted_at": utcnow()}
            for user_id in body.user_ids
            for role_id in body.role_ids
        ]
        count = _run_batch(db, lambda s: insert_or_ignore(s, UserRole, rows), "Failed to assign roles")

        audit_service.record(db, actor_id, "bulk.roles.assign", "user_role", new_value=body, context=context)
        return BulkResult(
            message="Roles assigned successfully",
            assignments=count,
            users_affected=len(body.user_ids),
        )

    @staticmethod
    def bulk_remove_roles(
        db: Session, actor_id: int, body: BulkRolesRequest,
        context: Optional[RequestContext] = None,
    ) -> BulkResult:
        _require_ids("user_ids and role_ids are required", body.user_ids, body.role_ids)

        def work(s: Session) -> int:
            return (
                s.query(UserRole)
                .filter(UserRole.user_id.in_(body.user_ids), UserRole.role_id.in_(body.role_ids))
                .delete(synchronize_session=False)
            )

        count = _run_batch(db, work, "Failed to remove roles")

        audit_service.record(db, actor_id, "bulk.roles.remove", "user_role", old_value=body, context=context)
        return BulkResult(message="Roles removed successfully", removals=count)

    @staticmethod
    def bulk_add_to_groups(
        db: Session, actor_id: int, body: BulkGroupsRequest,
        context: Optional[RequestContext] = None,
    ) -> BulkResult:
        _require_ids("user_ids and group_ids are required", body.user_ids, body.group_ids)
        require_existing(db, User, body.user_ids, "user")
        require_existing(db, Group, body.group_ids, "group")
        rows = [
            {"user_id": user_id, "group_id": group_id, "added_by": actor_id, "added_at": utcnow()}
            for user_id in body.user_ids
            for group_id in body.group_ids
        ]
        count = _run_batch(db, lambda s: insert_or_ignore(s, GroupMember, rows), "Failed to add users to groups")

        audit_service.record(db, actor_id, "bulk.groups.add", "group_member", new_value=body, context=context)
        return BulkResult(
            message="Users added to groups successfully",
            memberships=count,
            users_affected=len(body.user_ids),
        )

    @staticmethod
    def bulk_assign_permissions(
        db: Session, actor_id: int, body: BulkPermissionsRequest,
        context: Optional[RequestContext] = None,
    ) -> BulkResult:
        _require_ids("group_ids and permission_ids are required", body.group_ids, body.permission_ids)
        require_existing(db, Group, body.group_ids, "group")
        require_existing(db, Permission, body.permission_ids, "permission")
        rows = [
            {"group_id": group_id, "permission_id": permission_id}
            for group_id in body.group_ids
            for permission_id in body.permission_ids
        ]
        count = _run_batch(
            db, lambda s: insert_or_ignore(s, GroupPermission, rows), "Failed to assign permissions"
        )

        audit_service.record(
            db, actor_id, "bulk.permissions.assign", "group_permission", new_value=body, context=context
        )
        return BulkResult(
            message="Permissions assigned successfully",
            assignments=count,
            groups_affected=len(body.group_ids),
        )

    @staticmethod
    def bulk_grant_access(
        db: Session, actor_id: int, body: BulkGrantRequest,
        context: Optional[RequestContext] = None,
    ) -> BulkResult:
        """Direct-grant every tool to every user as APPROVED rows."""
        _require_ids("user_ids and tool_ids are required", body.user_ids, body.tool_ids)
        if not permission_resolver.can_grant_access(db, actor_id):
            raise AuthorizationError("You do not have permission to grant access")

        now = utcnow()

        def work(s: Session) -> int:
            grants = [
                AccessRequest(
                    user_id=user_id,
                    request_type=REQUEST_TYPE,
                    target_type="tool",
                    target_id=tool_id,
                    access_level=body.access_level or "read",
                    status=AccessStatus.APPROVED,
                    approved_by=actor_id,
                    approved_at=now,
                    created_at=now,
                )
                for user_id in body.user_ids
                for tool_id in body.tool_ids
            ]
            s.add_all(grants)
            s.flush()
            return len(grants)

        count = _run_batch(db, work, "Failed to grant access")

        audit_service.record(db, actor_id, "bulk.access.grant", "access", new_value=body, context=context)
        return BulkResult(
            message="Access granted successfully",
            grants=count,
            users_affected=len(body.user_ids),
        )


bulk_service = BulkService()

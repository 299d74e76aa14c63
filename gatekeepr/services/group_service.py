"""Group administration: CRUD, membership and group permission sets."""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from gatekeepr.core.exceptions import (
    ResourceConflictError, ResourceNotFoundError, StorageError, ValidationError,
)
from gatekeepr.core.security import RequestContext
from gatekeepr.models.group import Group, GroupMember, GroupPermission
from gatekeepr.models.user import User
from gatekeepr.schemas.schemas import (
    ActionResult, GroupCreate, GroupDetail, GroupMemberOut, GroupOut, GroupPatch,
)
from gatekeepr.services.audit_service import audit_service, utcnow
from gatekeepr.services.bulk_service import insert_or_ignore, require_existing
from gatekeepr.services.patching import apply_patch

logger = logging.getLogger("gatekeepr.groups")


class GroupService:

    @staticmethod
    def _get(db: Session, group_id: int) -> Group:
        group = db.query(Group).filter(Group.id == group_id).first()
        if not group:
            raise ResourceNotFoundError("Group not found")
        return group

    @staticmethod
    def list_groups(db: Session) -> list[GroupOut]:
        rows = (
            db.query(Group, func.count(GroupMember.user_id))
            .outerjoin(GroupMember, GroupMember.group_id == Group.id)
            .group_by(Group.id)
            .order_by(Group.name)
            .all()
        )
        result = []
        for group, member_count in rows:
            out = GroupOut.model_validate(group)
            out.member_count = member_count
            result.append(out)
        return result

    @staticmethod
    def get_group(db: Session, group_id: int) -> GroupDetail:
        return GroupDetail.model_validate(GroupService._get(db, group_id))

    @staticmethod
    def create_group(
        db: Session, actor_id: int, body: GroupCreate, context: Optional[RequestContext] = None
    ) -> ActionResult:
        group = Group(**body.model_dump())
        db.add(group)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceConflictError(f"Group '{body.name}' already exists")

        audit_service.record(
            db, actor_id, "group.create", "group",
            target_id=group.id, target_name=group.name, new_value=body, context=context,
        )
        return ActionResult(id=group.id, message="Group created successfully")

    @staticmethod
    def update_group(
        db: Session, actor_id: int, group_id: int, patch: GroupPatch,
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        group = GroupService._get(db, group_id)
        old, new = apply_patch(group, patch)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to update group %s", group_id)
            raise StorageError("Failed to update group")

        audit_service.record(
            db, actor_id, "group.update", "group",
            target_id=group_id, target_name=group.name, old_value=old, new_value=new, context=context,
        )
        return ActionResult(id=group_id, message="Group updated successfully")

    @staticmethod
    def delete_group(
        db: Session, actor_id: int, group_id: int, context: Optional[RequestContext] = None
    ) -> ActionResult:
        group = GroupService._get(db, group_id)
        group_name = group.name
        try:
            db.query(GroupMember).filter(GroupMember.group_id == group_id).delete(synchronize_session=False)
            db.query(GroupPermission).filter(GroupPermission.group_id == group_id).delete(synchronize_session=False)
            db.delete(group)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to delete group %s", group_id)
            raise StorageError("Failed to delete group")

        audit_service.record(
            db, actor_id, "group.delete", "group",
            target_id=group_id, target_name=group_name, context=context,
        )
        return ActionResult(id=group_id, message="Group deleted successfully")

    @staticmethod
    def list_members(db: Session, group_id: int) -> list[GroupMemberOut]:
        GroupService._get(db, group_id)
        rows = (
            db.query(GroupMember, User.email)
            .join(User, User.id == GroupMember.user_id)
            .filter(GroupMember.group_id == group_id)
            .order_by(User.email)
            .all()
        )
        return [
            GroupMemberOut(
                user_id=m.user_id,
                group_id=m.group_id,
                user_email=email,
                added_by=m.added_by,
                added_at=m.added_at,
            )
            for m, email in rows
        ]

    @staticmethod
    def add_members(
        db: Session, actor_id: int, group_id: int, user_ids: list[int],
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        """Add users in one transaction; existing members are skipped."""
        group = GroupService._get(db, group_id)
        if not user_ids:
            raise ValidationError("user_ids are required")
        require_existing(db, User, user_ids, "user")

        rows = [
            {"user_id": user_id, "group_id": group_id, "added_by": actor_id, "added_at": utcnow()}
            for user_id in user_ids
        ]
        try:
            added = insert_or_ignore(db, GroupMember, rows)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ValidationError("Unknown user id in request")
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to add members to group %s", group_id)
            raise StorageError("Failed to add member")

        audit_service.record(
            db, actor_id, "group.members.add", "group",
            target_id=group_id, target_name=group.name, new_value={"user_ids": user_ids}, context=context,
        )
        return ActionResult(id=group_id, message="Members added successfully", affected=added)

    @staticmethod
    def remove_member(
        db: Session, actor_id: int, group_id: int, user_id: int,
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        group = GroupService._get(db, group_id)
        try:
            removed = (
                db.query(GroupMember)
                .filter(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
                .delete(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to remove user %s from group %s", user_id, group_id)
            raise StorageError("Failed to remove member")

        audit_service.record(
            db, actor_id, "group.members.remove", "group",
            target_id=group_id, target_name=group.name, old_value={"user_id": user_id}, context=context,
        )
        return ActionResult(id=group_id, message="Member removed successfully", affected=removed)

    @staticmethod
    def set_permissions(
        db: Session, actor_id: int, group_id: int, permission_ids: list[int],
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        """Replace the group's permission set; ``[]`` clears it."""
        group = GroupService._get(db, group_id)
        old_ids = sorted(
            pid for (pid,) in db.query(GroupPermission.permission_id).filter(GroupPermission.group_id == group_id)
        )
        new_ids = sorted(set(permission_ids))
        try:
            db.query(GroupPermission).filter(GroupPermission.group_id == group_id).delete(synchronize_session=False)
            db.add_all(GroupPermission(group_id=group_id, permission_id=pid) for pid in new_ids)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ValidationError("Unknown permission id in request")
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to set permissions for group %s", group_id)
            raise StorageError("Failed to update permissions")

        audit_service.record(
            db, actor_id, "group.permissions.update", "group",
            target_id=group_id, target_name=group.name,
            old_value={"permission_ids": old_ids}, new_value={"permission_ids": new_ids},
            context=context,
        )
        return ActionResult(id=group_id, message="Permissions updated successfully")


group_service = GroupService()

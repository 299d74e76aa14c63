"""Permission resolver: read-only authorization predicates.

A user holds a permission when any assigned role grants it or any group
they belong to grants it. Role capability flags (grant/approve) are ORed
across all assigned roles and are independent of hierarchy level.

Nothing here is cached: every call re-reads the link tables, so a grant
or revocation is visible to the very next check.
"""

from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from gatekeepr.models.role import Role, Permission, RolePermission, UserRole
from gatekeepr.models.group import GroupMember, GroupPermission


def _role_permission_names(db: Session, user_id: int):
    return (
        db.query(Permission.name)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
    )


def _group_permission_names(db: Session, user_id: int):
    return (
        db.query(Permission.name)
        .join(GroupPermission, GroupPermission.permission_id == Permission.id)
        .join(GroupMember, GroupMember.group_id == GroupPermission.group_id)
        .filter(GroupMember.user_id == user_id)
    )


def has_permission(db: Session, user_id: Optional[int], permission_name: str) -> bool:
    """Check one named permission through role grants or group grants."""
    if not user_id:
        return False
    via_role = _role_permission_names(db, user_id).filter(Permission.name == permission_name)
    if db.query(via_role.exists()).scalar():
        return True
    via_group = _group_permission_names(db, user_id).filter(Permission.name == permission_name)
    return bool(db.query(via_group.exists()).scalar())


def effective_permissions(db: Session, user_id: Optional[int]) -> set[str]:
    """Union of permission names reachable through roles and groups."""
    if not user_id:
        return set()
    rows = _role_permission_names(db, user_id).union(_group_permission_names(db, user_id)).all()
    return {name for (name,) in rows}


def has_role(db: Session, user_id: Optional[int], role_names: Iterable[str]) -> bool:
    """True when the user is assigned any of ``role_names``."""
    names = list(role_names)
    if not user_id or not names:
        return False
    query = (
        db.query(UserRole)
        .join(Role, Role.id == UserRole.role_id)
        .filter(UserRole.user_id == user_id, Role.name.in_(names))
    )
    return bool(db.query(query.exists()).scalar())


def max_hierarchy_level(db: Session, user_id: Optional[int]) -> int:
    """Highest hierarchy level across assigned roles, 0 when none."""
    if not user_id:
        return 0
    level = (
        db.query(func.coalesce(func.max(Role.hierarchy_level), 0))
        .select_from(Role)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .scalar()
    )
    return int(level or 0)


def meets_hierarchy(db: Session, user_id: Optional[int], min_level: int) -> bool:
    return max_hierarchy_level(db, user_id) >= min_level


def _has_role_flag(db: Session, user_id: Optional[int], flag) -> bool:
    if not user_id:
        return False
    query = (
        db.query(UserRole)
        .join(Role, Role.id == UserRole.role_id)
        .filter(UserRole.user_id == user_id, flag.is_(True))
    )
    return bool(db.query(query.exists()).scalar())


def can_grant_access(db: Session, user_id: Optional[int]) -> bool:
    """True if any assigned role carries ``can_grant_access``."""
    return _has_role_flag(db, user_id, Role.can_grant_access)


def can_approve_requests(db: Session, user_id: Optional[int]) -> bool:
    """True if any assigned role carries ``can_approve_requests``."""
    return _has_role_flag(db, user_id, Role.can_approve_requests)


def user_role_names(db: Session, user_id: int) -> list[str]:
    """Assigned role names, most privileged first."""
    rows = (
        db.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .order_by(Role.hierarchy_level.desc(), Role.name)
        .all()
    )
    return [name for (name,) in rows]

"""Models package: import all models so metadata.create_all can discover them."""

from gatekeepr.models.user import User
from gatekeepr.models.role import Role, Permission, RolePermission, UserRole
from gatekeepr.models.group import Group, GroupMember, GroupPermission
from gatekeepr.models.tool import Tool
from gatekeepr.models.access_request import AccessRequest, AccessStatus
from gatekeepr.models.audit_log import AuditLog

__all__ = [
    "User", "Role", "Permission", "RolePermission", "UserRole",
    "Group", "GroupMember", "GroupPermission", "Tool",
    "AccessRequest", "AccessStatus", "AuditLog",
]

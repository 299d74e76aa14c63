"""Seed system roles, the permission catalog and default role grants."""

from sqlalchemy.orm import Session
from gatekeepr.models.role import Role, Permission, RolePermission

SYSTEM_ROLES = [
    {
        "name": "super_admin",
        "display_name": "Super Admin",
        "description": "Full system access",
        "hierarchy_level": 100,
        "can_grant_access": True,
        "can_approve_requests": True,
    },
    {
        "name": "admin",
        "display_name": "Administrator",
        "description": "Manage users, roles, groups and tools",
        "hierarchy_level": 80,
        "can_grant_access": True,
        "can_approve_requests": True,
    },
    {
        "name": "manager",
        "display_name": "Manager",
        "description": "Approve or reject access requests",
        "hierarchy_level": 50,
        "can_grant_access": False,
        "can_approve_requests": True,
    },
    {
        "name": "user",
        "display_name": "User",
        "description": "Request access to tools",
        "hierarchy_level": 10,
        "can_grant_access": False,
        "can_approve_requests": False,
    },
]

# (name, display_name)
PERMISSIONS = [
    ("users.create", "Create Users"),
    ("users.read", "View Users"),
    ("users.update", "Update Users"),
    ("users.delete", "Delete Users"),
    ("roles.create", "Create Roles"),
    ("roles.read", "View Roles"),
    ("roles.update", "Update Roles"),
    ("roles.delete", "Delete Roles"),
    ("roles.assign", "Assign Roles"),
    ("groups.create", "Create Groups"),
    ("groups.read", "View Groups"),
    ("groups.update", "Update Groups"),
    ("groups.delete", "Delete Groups"),
    ("groups.manage_members", "Manage Group Members"),
    ("tools.create", "Create Tools"),
    ("tools.read", "View Tools"),
    ("tools.update", "Update Tools"),
    ("tools.delete", "Delete Tools"),
    ("tools.manage_access", "Manage Tool Access"),
    ("access.request", "Request Access"),
    ("access.approve", "Approve Access"),
    ("access.reject", "Reject Access"),
    ("access.grant", "Grant Access"),
    ("access.revoke", "Revoke Access"),
    ("audit.read", "View Audit Logs"),
    ("audit.export", "Export Audit Logs"),
]

ALL_PERMISSIONS = [name for name, _ in PERMISSIONS]

ROLE_GRANTS = {
    "super_admin": ALL_PERMISSIONS,
    "admin": [p for p in ALL_PERMISSIONS if p not in ("roles.delete", "audit.export")],
    "manager": [
        "users.read", "roles.read", "groups.read", "tools.read",
        "access.approve", "access.reject", "audit.read",
    ],
    "user": ["users.read", "tools.read", "access.request"],
}


def seed_roles(db: Session, verbose: bool = True) -> None:
    """Insert system roles, permissions and their links if missing."""
    roles = {}
    for role_data in SYSTEM_ROLES:
        role = db.query(Role).filter(Role.name == role_data["name"]).first()
        if not role:
            role = Role(**role_data, is_system_role=True)
            db.add(role)
        roles[role_data["name"]] = role

    permissions = {}
    for name, display_name in PERMISSIONS:
        permission = db.query(Permission).filter(Permission.name == name).first()
        if not permission:
            permission = Permission(
                name=name,
                display_name=display_name,
                category=name.split(".", 1)[0],
            )
            db.add(permission)
        permissions[name] = permission

    db.flush()

    for role_name, granted in ROLE_GRANTS.items():
        role_id = roles[role_name].id
        existing = {
            pid for (pid,) in db.query(RolePermission.permission_id).filter(RolePermission.role_id == role_id)
        }
        for name in granted:
            if permissions[name].id not in existing:
                db.add(RolePermission(role_id=role_id, permission_id=permissions[name].id))

    db.commit()
    if verbose:
        print(f"✅ Seeded {len(SYSTEM_ROLES)} roles and {len(PERMISSIONS)} permissions")

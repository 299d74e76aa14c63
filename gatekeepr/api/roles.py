"""Roles API router."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from gatekeepr.core.security import (
    Identity, RequestContext, RequirePermission, get_current_identity, request_context,
)
from gatekeepr.db.session import get_db
from gatekeepr.schemas.schemas import (
    ActionResult, PermissionIds, PermissionOut, RoleAssignment, RoleCreate, RoleDetail, RoleOut, RolePatch,
)
from gatekeepr.services.role_service import role_service

router = APIRouter(prefix="/roles", tags=["roles"])


@router.get("/", response_model=list[RoleOut])
def list_roles(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """All roles by hierarchy level, highest first."""
    return role_service.list_roles(db)


@router.get("/hierarchy")
def role_hierarchy(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return role_service.hierarchy(db)


@router.get("/{role_id}", response_model=RoleDetail)
def get_role(
    role_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return role_service.get_role(db, role_id)


@router.get("/{role_id}/permissions", response_model=list[PermissionOut])
def get_role_permissions(
    role_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return role_service.get_role(db, role_id).permissions


@router.post("/", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def create_role(
    body: RoleCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("roles.create")),
    ctx: RequestContext = Depends(request_context),
):
    return role_service.create_role(db, identity.user_id, body, ctx)


@router.put("/{role_id}", response_model=ActionResult)
def update_role(
    role_id: int,
    body: RolePatch,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("roles.update")),
    ctx: RequestContext = Depends(request_context),
):
    """Update the fields present in the body. System roles are read-only."""
    return role_service.update_role(db, identity.user_id, role_id, body, ctx)


@router.put("/{role_id}/permissions", response_model=ActionResult)
def set_role_permissions(
    role_id: int,
    body: PermissionIds,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("roles.update")),
    ctx: RequestContext = Depends(request_context),
):
    """Replace the role's whole permission set."""
    return role_service.set_permissions(db, identity.user_id, role_id, body.permission_ids, ctx)


@router.delete("/{role_id}", response_model=ActionResult)
def delete_role(
    role_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("roles.delete")),
    ctx: RequestContext = Depends(request_context),
):
    return role_service.delete_role(db, identity.user_id, role_id, ctx)


@router.post("/assign", response_model=ActionResult)
def assign_role(
    body: RoleAssignment,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("roles.assign")),
    ctx: RequestContext = Depends(request_context),
):
    return role_service.assign_role(db, identity.user_id, body.user_id, body.role_id, ctx)


@router.post("/unassign", response_model=ActionResult)
def unassign_role(
    body: RoleAssignment,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("roles.assign")),
    ctx: RequestContext = Depends(request_context),
):
    return role_service.unassign_role(db, identity.user_id, body.user_id, body.role_id, ctx)

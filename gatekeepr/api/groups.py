"""Groups API router."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from gatekeepr.core.security import (
    Identity, RequestContext, RequirePermission, get_current_identity, request_context,
)
from gatekeepr.db.session import get_db
from gatekeepr.schemas.schemas import (
    ActionResult, GroupCreate, GroupDetail, GroupMemberOut, GroupMembersAdd, GroupOut, GroupPatch,
    PermissionIds,
)
from gatekeepr.services.group_service import group_service

router = APIRouter(prefix="/groups", tags=["groups"])


@router.get("/", response_model=list[GroupOut])
def list_groups(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return group_service.list_groups(db)


@router.get("/{group_id}", response_model=GroupDetail)
def get_group(
    group_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return group_service.get_group(db, group_id)


@router.get("/{group_id}/members", response_model=list[GroupMemberOut])
def list_members(
    group_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return group_service.list_members(db, group_id)


@router.post("/", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def create_group(
    body: GroupCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("groups.create")),
    ctx: RequestContext = Depends(request_context),
):
    return group_service.create_group(db, identity.user_id, body, ctx)


@router.put("/{group_id}", response_model=ActionResult)
def update_group(
    group_id: int,
    body: GroupPatch,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("groups.update")),
    ctx: RequestContext = Depends(request_context),
):
    return group_service.update_group(db, identity.user_id, group_id, body, ctx)


@router.put("/{group_id}/permissions", response_model=ActionResult)
def set_group_permissions(
    group_id: int,
    body: PermissionIds,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("groups.update")),
    ctx: RequestContext = Depends(request_context),
):
    """Replace the group's whole permission set."""
    return group_service.set_permissions(db, identity.user_id, group_id, body.permission_ids, ctx)


@router.post("/{group_id}/members", response_model=ActionResult)
def add_members(
    group_id: int,
    body: GroupMembersAdd,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("groups.manage_members")),
    ctx: RequestContext = Depends(request_context),
):
    return group_service.add_members(db, identity.user_id, group_id, body.user_ids, ctx)


@router.delete("/{group_id}/members/{user_id}", response_model=ActionResult)
def remove_member(
    group_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("groups.manage_members")),
    ctx: RequestContext = Depends(request_context),
):
    return group_service.remove_member(db, identity.user_id, group_id, user_id, ctx)


@router.delete("/{group_id}", response_model=ActionResult)
def delete_group(
    group_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("groups.delete")),
    ctx: RequestContext = Depends(request_context),
):
    return group_service.delete_group(db, identity.user_id, group_id, ctx)

"""Permissions API router."""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from gatekeepr.core.security import (
    Identity, RequestContext, get_current_identity, request_context, require_admin,
)
from gatekeepr.db.session import get_db
from gatekeepr.schemas.schemas import ActionResult, PermissionCreate, PermissionOut, PermissionPatch
from gatekeepr.services.catalog_service import permission_service

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get("/", response_model=list[PermissionOut])
def list_permissions(
    category: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return permission_service.list_permissions(db, category)


@router.get("/categories", response_model=list[str])
def permission_categories(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return permission_service.categories(db)


@router.get("/{permission_id}", response_model=PermissionOut)
def get_permission(
    permission_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return permission_service.get_permission(db, permission_id)


@router.post("/", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def create_permission(
    body: PermissionCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_admin),
    ctx: RequestContext = Depends(request_context),
):
    return permission_service.create_permission(db, identity.user_id, body, ctx)


@router.put("/{permission_id}", response_model=ActionResult)
def update_permission(
    permission_id: int,
    body: PermissionPatch,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_admin),
    ctx: RequestContext = Depends(request_context),
):
    return permission_service.update_permission(db, identity.user_id, permission_id, body, ctx)


@router.delete("/{permission_id}", response_model=ActionResult)
def delete_permission(
    permission_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_admin),
    ctx: RequestContext = Depends(request_context),
):
    """Delete a permission and strip it from every role and group."""
    return permission_service.delete_permission(db, identity.user_id, permission_id, ctx)

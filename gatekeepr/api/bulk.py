"""Bulk operations API router (super_admin / admin only)."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gatekeepr.core.security import Identity, RequestContext, request_context, require_admin
from gatekeepr.db.session import get_db
from gatekeepr.schemas.schemas import (
    BulkGrantRequest, BulkGroupsRequest, BulkPermissionsRequest, BulkResult, BulkRolesRequest,
)
from gatekeepr.services.bulk_service import bulk_service

router = APIRouter(prefix="/bulk", tags=["bulk"])


@router.post("/users/roles", response_model=BulkResult, response_model_exclude_none=True)
def bulk_assign_roles(
    body: BulkRolesRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_admin),
    ctx: RequestContext = Depends(request_context),
):
    return bulk_service.bulk_assign_roles(db, identity.user_id, body, ctx)


@router.delete("/users/roles", response_model=BulkResult, response_model_exclude_none=True)
def bulk_remove_roles(
    body: BulkRolesRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_admin),
    ctx: RequestContext = Depends(request_context),
):
    return bulk_service.bulk_remove_roles(db, identity.user_id, body, ctx)


@router.post("/users/groups", response_model=BulkResult, response_model_exclude_none=True)
def bulk_add_to_groups(
    body: BulkGroupsRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_admin),
    ctx: RequestContext = Depends(request_context),
):
    return bulk_service.bulk_add_to_groups(db, identity.user_id, body, ctx)


@router.post("/groups/permissions", response_model=BulkResult, response_model_exclude_none=True)
def bulk_assign_permissions(
    body: BulkPermissionsRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_admin),
    ctx: RequestContext = Depends(request_context),
):
    return bulk_service.bulk_assign_permissions(db, identity.user_id, body, ctx)


@router.post("/access/grant", response_model=BulkResult, response_model_exclude_none=True)
def bulk_grant_access(
    body: BulkGrantRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_admin),
    ctx: RequestContext = Depends(request_context),
):
    return bulk_service.bulk_grant_access(db, identity.user_id, body, ctx)

"""Access workflow API router."""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from gatekeepr.core.security import (
    Identity, RequestContext, get_current_identity, request_context, require_manager_level,
)
from gatekeepr.db.session import get_db
from gatekeepr.schemas.schemas import (
    AccessCheck, AccessRequestCreate, AccessRequestOut, ActionResult, ApproveRequest,
    DirectGrantRequest, RejectRequest, RevokeRequest, TargetRef,
)
from gatekeepr.services.access_service import access_service

router = APIRouter(prefix="/access", tags=["access"])


@router.post("/request", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def create_request(
    body: AccessRequestCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    ctx: RequestContext = Depends(request_context),
):
    """Request access to a target for the current user."""
    return access_service.create_request(db, identity.user_id, body, ctx)


@router.get("/my-requests", response_model=list[AccessRequestOut])
def my_requests(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return access_service.my_requests(db, identity.user_id)


@router.get("/my-grants", response_model=list[AccessRequestOut])
def my_grants(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Grants of the current user that are valid right now."""
    return access_service.active_grants(db, identity.user_id)


@router.get("/requests", response_model=list[AccessRequestOut])
def list_requests(
    status: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None),
    target_type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return access_service.list_requests(db, status, user_id, target_type)


@router.get("/requests/pending", response_model=list[AccessRequestOut])
def pending_requests(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Oldest pending requests first (approvers only)."""
    return access_service.pending_requests(db, identity.user_id)


@router.post("/requests/{request_id}/approve", response_model=ActionResult)
def approve_request(
    request_id: int,
    body: Optional[ApproveRequest] = None,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    ctx: RequestContext = Depends(request_context),
):
    return access_service.approve(db, identity.user_id, request_id, body or ApproveRequest(), ctx)


@router.post("/requests/{request_id}/reject", response_model=ActionResult)
def reject_request(
    request_id: int,
    body: RejectRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    ctx: RequestContext = Depends(request_context),
):
    return access_service.reject(db, identity.user_id, request_id, body, ctx)


@router.post("/grant", response_model=ActionResult)
def direct_grant(
    body: DirectGrantRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    ctx: RequestContext = Depends(request_context),
):
    """Grant access without a request (grant-capable roles only)."""
    return access_service.direct_grant(db, identity.user_id, body, ctx)


@router.post("/revoke", response_model=ActionResult)
def revoke_access(
    body: RevokeRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    ctx: RequestContext = Depends(request_context),
):
    return access_service.revoke(db, identity.user_id, body, ctx)


@router.get("/check", response_model=AccessCheck)
def check_access(
    target_type: str = Query(...),
    target_id: int = Query(...),
    user_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Whether the caller (or, for managers, another user) holds valid access right now."""
    return access_service.check_access(
        db, identity.user_id, TargetRef(target_type=target_type, target_id=target_id), user_id
    )


@router.get("/expired", response_model=list[AccessRequestOut])
def expired_grants(
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager_level),
):
    """Approved grants past their expiry. Reported only; statuses are left as-is."""
    return access_service.expired_grants(db)

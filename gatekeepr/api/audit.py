"""Audit log API router."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from gatekeepr.core.security import Identity, RequirePermission
from gatekeepr.db.session import get_db
from gatekeepr.schemas.schemas import AuditLogFilter, AuditLogPage
from gatekeepr.services.audit_service import audit_service

router = APIRouter(prefix="/audit", tags=["audit"])

require_audit_read = RequirePermission("audit.read")


@router.get("/logs", response_model=AuditLogPage)
def list_audit_logs(
    filters: AuditLogFilter = Depends(),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_audit_read),
):
    """Filtered, paginated audit logs."""
    return audit_service.query_logs(db, filters)


@router.get("/categories", response_model=list[str])
def audit_categories(
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_audit_read),
):
    return audit_service.categories(db)


@router.get("/export")
def export_audit_logs(
    filters: AuditLogFilter = Depends(),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_audit_read),
    exporter: Identity = Depends(RequirePermission("audit.export")),
):
    """Download audit logs as a JSON attachment."""
    logs = audit_service.export_logs(db, filters)
    return JSONResponse(
        content=jsonable_encoder(logs),
        headers={"Content-Disposition": "attachment; filename=audit_logs_export.json"},
    )

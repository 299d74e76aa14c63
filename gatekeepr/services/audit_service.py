"""Append-only audit trail for privileged mutations.

Entries are written after the caller's mutation has committed. A failed
audit write never fails the caller: it is rolled back, logged, and handed
to the ``retry_audit_write`` Celery task, which retries a bounded number
of times.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional, Any

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gatekeepr.core.config import settings
from gatekeepr.core.security import RequestContext
from gatekeepr.models.audit_log import AuditLog
from gatekeepr.models.user import User
from gatekeepr.schemas.schemas import AuditLogFilter, AuditLogOut
from gatekeepr.tasks.celery_app import retry_audit_write

logger = logging.getLogger("gatekeepr.audit")

EXPORT_LIMIT = 10000
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

SORTABLE_COLUMNS = {
    "id": AuditLog.id,
    "created_at": AuditLog.created_at,
    "action": AuditLog.action,
    "action_category": AuditLog.action_category,
    "actor_id": AuditLog.actor_id,
    "target_type": AuditLog.target_type,
    "target_id": AuditLog.target_id,
}


def action_category(action: str, target_type: Optional[str]) -> Optional[str]:
    """Text before the first "." of ``action``, else ``target_type``."""
    head, sep, _ = action.partition(".")
    return head if sep else target_type


def to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    return json.dumps(value, default=str)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AuditService:
    """Records immutable audit log entries and serves audit queries."""

    @staticmethod
    def record(
        db: Session,
        actor_id: Optional[int],
        action: str,
        target_type: Optional[str],
        target_id: Optional[int] = None,
        target_name: Optional[str] = None,
        old_value: Optional[Any] = None,
        new_value: Optional[Any] = None,
        context: Optional[RequestContext] = None,
        details: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """Write a single audit log record.

        Args:
            action: dotted action name, e.g. "role.create", "access.revoke".
            target_type: role, group, tool, permission, access, user...

        Returns the stored entry, or None when the write failed and was
        handed to the retry queue.
        """
        context = context or RequestContext()
        entry_data = {
            "action": action,
            "action_category": action_category(action, target_type),
            "actor_id": actor_id or None,
            "target_type": target_type,
            "target_id": target_id,
            "target_name": target_name,
            "details": details,
            "old_value": to_json(old_value),
            "new_value": to_json(new_value),
            "ip_address": context.ip_address,
            "user_agent": context.user_agent,
            "created_at": utcnow(),
        }
        try:
            return AuditService._write(db, entry_data)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Audit write failed for %s; scheduling retry", action)
            AuditService._schedule_retry(entry_data)
            return None

    @staticmethod
    def _write(db: Session, entry_data: dict) -> AuditLog:
        entry = AuditLog(**entry_data)
        db.add(entry)
        db.commit()
        return entry

    @staticmethod
    def _schedule_retry(entry_data: dict) -> None:
        payload = dict(entry_data, created_at=entry_data["created_at"].isoformat())
        try:
            retry_audit_write.apply_async(
                args=[payload], countdown=settings.AUDIT_RETRY_DELAY_SECONDS
            )
        except Exception:
            # Broker unreachable: the entry is lost, but only after being logged.
            logger.exception(
                "Could not queue audit retry for %s: %s", entry_data["action"], payload
            )

    @staticmethod
    def _with_actor_email(db: Session):
        return (
            db.query(AuditLog, func.coalesce(User.email, "System"))
            .outerjoin(User, User.id == AuditLog.actor_id)
        )

    @staticmethod
    def _to_out(row, actor_email: str, include_values: bool = True) -> AuditLogOut:
        out = AuditLogOut.model_validate(row)
        out.actor_email = actor_email
        if not include_values:
            out.old_value = None
            out.new_value = None
        return out

    @staticmethod
    def query_logs(db: Session, filters: AuditLogFilter) -> dict:
        """Filter, sort and paginate audit logs."""
        page = max(filters.page, 1)
        limit = filters.limit
        if limit < 1 or limit > MAX_PAGE_SIZE:
            limit = DEFAULT_PAGE_SIZE

        query = AuditService._with_actor_email(db)
        if filters.actor_id is not None:
            query = query.filter(AuditLog.actor_id == filters.actor_id)
        if filters.action:
            query = query.filter(AuditLog.action.like(f"%{filters.action}%"))
        if filters.action_category:
            query = query.filter(AuditLog.action_category == filters.action_category)
        if filters.target_type:
            query = query.filter(AuditLog.target_type == filters.target_type)
        if filters.target_id is not None:
            query = query.filter(AuditLog.target_id == filters.target_id)
        if filters.date_from:
            query = query.filter(func.date(AuditLog.created_at) >= filters.date_from.isoformat())
        if filters.date_to:
            query = query.filter(func.date(AuditLog.created_at) <= filters.date_to.isoformat())

        total = query.count()

        column = SORTABLE_COLUMNS.get(filters.sort_by, AuditLog.created_at)
        if filters.order == "asc":
            query = query.order_by(column.asc(), AuditLog.id.asc())
        else:
            query = query.order_by(column.desc(), AuditLog.id.desc())

        rows = query.offset((page - 1) * limit).limit(limit).all()
        return {
            "data": [AuditService._to_out(log, email) for log, email in rows],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        }

    @staticmethod
    def categories(db: Session) -> list[str]:
        rows = (
            db.query(AuditLog.action_category)
            .filter(AuditLog.action_category.isnot(None))
            .distinct()
            .order_by(AuditLog.action_category)
            .all()
        )
        return [category for (category,) in rows]

    @staticmethod
    def export_logs(db: Session, filters: AuditLogFilter) -> list[AuditLogOut]:
        """Newest-first export without before/after values, capped at EXPORT_LIMIT rows."""
        query = AuditService._with_actor_email(db)
        if filters.date_from:
            query = query.filter(func.date(AuditLog.created_at) >= filters.date_from.isoformat())
        if filters.date_to:
            query = query.filter(func.date(AuditLog.created_at) <= filters.date_to.isoformat())
        if filters.action_category:
            query = query.filter(AuditLog.action_category == filters.action_category)

        rows = (
            query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(EXPORT_LIMIT)
            .all()
        )
        return [AuditService._to_out(log, email, include_values=False) for log, email in rows]


audit_service = AuditService()

"""Celery app and the audit retry task."""

import logging
from datetime import datetime

from celery import Celery
from sqlalchemy.exc import SQLAlchemyError

from gatekeepr.core.config import settings

logger = logging.getLogger("gatekeepr.tasks")

celery_app = Celery(
    "gatekeepr",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_soft_time_limit=30,
    task_time_limit=60,
)


@celery_app.task(
    bind=True,
    name="retry_audit_write",
    max_retries=settings.AUDIT_RETRY_MAX,
    default_retry_delay=settings.AUDIT_RETRY_DELAY_SECONDS,
)
def retry_audit_write(self, entry: dict) -> int:
    """Re-attempt an audit insert that failed on the request path.

    ``entry`` holds AuditLog column values with ``created_at`` as an ISO
    string, so the retried row keeps its original timestamp.
    """
    from gatekeepr.db.session import SessionLocal
    from gatekeepr.models.audit_log import AuditLog

    values = dict(entry)
    if values.get("created_at"):
        values["created_at"] = datetime.fromisoformat(values["created_at"])

    db = SessionLocal()
    try:
        row = AuditLog(**values)
        db.add(row)
        db.commit()
        logger.info("Audit entry %s stored on retry %d", values["action"], self.request.retries)
        return row.id
    except SQLAlchemyError as exc:
        db.rollback()
        if self.request.retries >= self.max_retries:
            logger.error("Giving up on audit entry after %d retries: %s", self.request.retries, entry)
        raise self.retry(exc=exc)
    finally:
        db.close()

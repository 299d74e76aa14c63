"""Access-request lifecycle: create, approve, reject, direct grant, revoke.

Status transitions are compare-and-set updates conditioned on the prior
status, so a concurrent second approve/reject of the same request touches
zero rows. That outcome is reported through ``ActionResult.affected``;
with ``STRICT_TRANSITIONS`` enabled it raises a conflict instead.

Expiry is advisory. An APPROVED row past ``expires_at`` keeps its status
and consumers check validity with ``AccessRequest.is_valid_at``.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gatekeepr.core.config import settings
from gatekeepr.core.exceptions import (
    AuthorizationError, ResourceConflictError, ResourceNotFoundError,
    StorageError, ValidationError,
)
from gatekeepr.core.security import RequestContext
from gatekeepr.models.access_request import AccessRequest, AccessStatus
from gatekeepr.models.group import Group
from gatekeepr.models.role import Role
from gatekeepr.models.tool import Tool
from gatekeepr.models.user import User
from gatekeepr.schemas.schemas import (
    AccessCheck, AccessRequestCreate, AccessRequestOut, ActionResult, ApproveRequest,
    DirectGrantRequest, RejectRequest, RevokeRequest, TargetRef,
)
from gatekeepr.services import permission_resolver
from gatekeepr.services.audit_service import audit_service, utcnow

logger = logging.getLogger("gatekeepr.access")

REQUEST_TYPE = "tool_access"
LIST_LIMIT = 100
CHECK_OTHERS_LEVEL = 50

_NAMED_TARGETS = {
    "tool": (Tool, Tool.display_name),
    "group": (Group, Group.display_name),
    "role": (Role, Role.display_name),
}


def resolve_target_name(db: Session, ref: TargetRef) -> Optional[str]:
    """Display name of a known target type, None for anything else."""
    known = _NAMED_TARGETS.get(ref.target_type)
    if known is None:
        return None
    model, column = known
    row = db.query(column).filter(model.id == ref.target_id).first()
    return row[0] if row else None


def _expiry(now: datetime, duration_minutes: Optional[int]) -> Optional[datetime]:
    if duration_minutes and duration_minutes > 0:
        return now + timedelta(minutes=duration_minutes)
    return None


def _commit(db: Session, failure: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(failure)
        raise StorageError(failure)


class AccessService:
    """State machine over ``access_requests`` rows."""

    @staticmethod
    def create_request(
        db: Session,
        actor_id: int,
        body: AccessRequestCreate,
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        """Open a PENDING request for the actor.

        Raises:
            ValidationError: Missing target.
            ResourceConflictError: A PENDING request for the target already exists.
        """
        if not body.target_type or not body.target_id:
            raise ValidationError("target_type and target_id are required")

        pending = (
            db.query(AccessRequest.id)
            .filter(
                AccessRequest.user_id == actor_id,
                AccessRequest.target_type == body.target_type,
                AccessRequest.target_id == body.target_id,
                AccessRequest.status == AccessStatus.PENDING,
            )
            .first()
        )
        if pending:
            raise ResourceConflictError("You already have a pending request for this resource")

        request = AccessRequest(
            user_id=actor_id,
            request_type=REQUEST_TYPE,
            target_type=body.target_type,
            target_id=body.target_id,
            access_level=body.access_level or "read",
            status=AccessStatus.PENDING,
            reason=body.reason,
            duration_minutes=body.duration_minutes,
            created_at=utcnow(),
        )
        db.add(request)
        _commit(db, "Failed to create request")

        audit_service.record(
            db, actor_id, "access.request.create", "access_request",
            target_id=request.id,
            target_name=resolve_target_name(db, TargetRef(target_type=body.target_type, target_id=body.target_id)),
            new_value=body,
            context=context,
        )
        return ActionResult(id=request.id, message="Access request created successfully")

    @staticmethod
    def _transition(db: Session, request_id: int, values: dict, failure: str) -> int:
        try:
            affected = (
                db.query(AccessRequest)
                .filter(AccessRequest.id == request_id, AccessRequest.status == AccessStatus.PENDING)
                .update(values, synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(failure)
            raise StorageError(failure)

        if affected == 0:
            logger.info("Request %s was not PENDING; transition touched no rows", request_id)
            if settings.STRICT_TRANSITIONS:
                exists = db.query(AccessRequest.id).filter(AccessRequest.id == request_id).first()
                if not exists:
                    raise ResourceNotFoundError("Access request not found")
                raise ResourceConflictError("Request is no longer pending")
        return affected

    @staticmethod
    def approve(
        db: Session,
        actor_id: int,
        request_id: int,
        body: ApproveRequest,
        context: Optional[RequestContext] = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        """PENDING -> APPROVED, setting an expiry when a positive duration is given."""
        if not permission_resolver.can_approve_requests(db, actor_id):
            raise AuthorizationError("You do not have permission to approve requests")

        now = now or utcnow()
        affected = AccessService._transition(
            db, request_id,
            {
                AccessRequest.status: AccessStatus.APPROVED,
                AccessRequest.approved_by: actor_id,
                AccessRequest.approved_at: now,
                AccessRequest.expires_at: _expiry(now, body.duration_minutes),
            },
            "Failed to approve request",
        )

        audit_service.record(
            db, actor_id, "access.request.approve", "access_request",
            target_id=request_id,
            new_value={**body.model_dump(mode="json"), "affected": affected},
            context=context,
        )
        return ActionResult(id=request_id, message="Request approved successfully", affected=affected)

    @staticmethod
    def reject(
        db: Session,
        actor_id: int,
        request_id: int,
        body: RejectRequest,
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        """PENDING -> REJECTED with a mandatory reason."""
        if not permission_resolver.can_approve_requests(db, actor_id):
            raise AuthorizationError("You do not have permission to reject requests")
        if not body.reason or not body.reason.strip():
            raise ValidationError("Rejection reason is required")

        affected = AccessService._transition(
            db, request_id,
            {
                AccessRequest.status: AccessStatus.REJECTED,
                AccessRequest.rejected_by: actor_id,
                AccessRequest.rejected_at: utcnow(),
                AccessRequest.rejection_reason: body.reason,
            },
            "Failed to reject request",
        )

        audit_service.record(
            db, actor_id, "access.request.reject", "access_request",
            target_id=request_id,
            new_value={**body.model_dump(mode="json"), "affected": affected},
            context=context,
        )
        return ActionResult(id=request_id, message="Request rejected successfully", affected=affected)

    @staticmethod
    def direct_grant(
        db: Session,
        actor_id: int,
        body: DirectGrantRequest,
        context: Optional[RequestContext] = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        """Insert a grant that is APPROVED from birth, never passing through PENDING."""
        if not permission_resolver.can_grant_access(db, actor_id):
            raise AuthorizationError("You do not have permission to grant access directly")
        if not body.user_id or not body.target_type or not body.target_id:
            raise ValidationError("user_id, target_type, and target_id are required")

        now = now or utcnow()
        grant = AccessRequest(
            user_id=body.user_id,
            request_type=REQUEST_TYPE,
            target_type=body.target_type,
            target_id=body.target_id,
            access_level=body.access_level or "read",
            status=AccessStatus.APPROVED,
            duration_minutes=body.duration_minutes,
            approved_by=actor_id,
            approved_at=now,
            expires_at=_expiry(now, body.duration_minutes),
            created_at=now,
        )
        db.add(grant)
        _commit(db, "Failed to grant access")

        audit_service.record(
            db, actor_id, "access.grant.direct", "access_request",
            target_id=grant.id,
            target_name=resolve_target_name(db, TargetRef(target_type=body.target_type, target_id=body.target_id)),
            new_value=body,
            context=context,
        )
        return ActionResult(id=grant.id, message="Access granted successfully")

    @staticmethod
    def revoke(
        db: Session,
        actor_id: int,
        body: RevokeRequest,
        context: Optional[RequestContext] = None,
    ) -> ActionResult:
        """APPROVED -> REVOKED for every approved row of (user, target).

        Zero matching rows is a successful no-op.
        """
        if not permission_resolver.can_grant_access(db, actor_id):
            raise AuthorizationError("You do not have permission to revoke access")

        try:
            affected = (
                db.query(AccessRequest)
                .filter(
                    AccessRequest.user_id == body.user_id,
                    AccessRequest.target_type == body.target_type,
                    AccessRequest.target_id == body.target_id,
                    AccessRequest.status == AccessStatus.APPROVED,
                )
                .update({AccessRequest.status: AccessStatus.REVOKED}, synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to revoke access")
            raise StorageError("Failed to revoke access")

        audit_service.record(
            db, actor_id, "access.revoke", "access_request",
            old_value=body, context=context,
        )
        return ActionResult(message="Access revoked successfully", affected=affected)

    # ---- Reads ----

    @staticmethod
    def _to_out(db: Session, request: AccessRequest, user_email: Optional[str] = None) -> AccessRequestOut:
        out = AccessRequestOut.model_validate(request)
        out.user_email = user_email
        out.target_name = resolve_target_name(
            db, TargetRef(target_type=request.target_type, target_id=request.target_id)
        )
        return out

    @staticmethod
    def list_requests(
        db: Session,
        status: Optional[str] = None,
        user_id: Optional[int] = None,
        target_type: Optional[str] = None,
    ) -> list[AccessRequestOut]:
        """Newest requests first, optionally filtered."""
        query = db.query(AccessRequest, User.email).join(User, User.id == AccessRequest.user_id)
        if status:
            try:
                query = query.filter(AccessRequest.status == AccessStatus(status.upper()))
            except ValueError:
                raise ValidationError(f"Unknown status: {status}")
        if user_id:
            query = query.filter(AccessRequest.user_id == user_id)
        if target_type:
            query = query.filter(AccessRequest.target_type == target_type)

        rows = (
            query.order_by(AccessRequest.created_at.desc(), AccessRequest.id.desc())
            .limit(LIST_LIMIT)
            .all()
        )
        return [AccessService._to_out(db, req, email) for req, email in rows]

    @staticmethod
    def pending_requests(db: Session, actor_id: int) -> list[AccessRequestOut]:
        """Oldest PENDING requests first; approvers only."""
        if not permission_resolver.can_approve_requests(db, actor_id):
            raise AuthorizationError("You do not have permission to view pending requests")

        rows = (
            db.query(AccessRequest, User.email)
            .join(User, User.id == AccessRequest.user_id)
            .filter(AccessRequest.status == AccessStatus.PENDING)
            .order_by(AccessRequest.created_at.asc(), AccessRequest.id.asc())
            .all()
        )
        return [AccessService._to_out(db, req, email) for req, email in rows]

    @staticmethod
    def my_requests(db: Session, actor_id: int) -> list[AccessRequestOut]:
        rows = (
            db.query(AccessRequest)
            .filter(AccessRequest.user_id == actor_id)
            .order_by(AccessRequest.created_at.desc(), AccessRequest.id.desc())
            .all()
        )
        return [AccessService._to_out(db, req) for req in rows]

    @staticmethod
    def active_grants(db: Session, actor_id: int, now: Optional[datetime] = None) -> list[AccessRequestOut]:
        """The actor's grants that are valid at ``now``."""
        now = now or utcnow()
        rows = (
            db.query(AccessRequest)
            .filter(AccessRequest.user_id == actor_id, AccessRequest.status == AccessStatus.APPROVED)
            .order_by(AccessRequest.approved_at.desc(), AccessRequest.id.desc())
            .all()
        )
        return [AccessService._to_out(db, req) for req in rows if req.is_valid_at(now)]

    @staticmethod
    def expired_grants(db: Session, now: Optional[datetime] = None) -> list[AccessRequestOut]:
        """APPROVED rows whose expiry has passed. Reported only, never mutated."""
        now = now or utcnow()
        rows = (
            db.query(AccessRequest, User.email)
            .join(User, User.id == AccessRequest.user_id)
            .filter(
                AccessRequest.status == AccessStatus.APPROVED,
                AccessRequest.expires_at.isnot(None),
                AccessRequest.expires_at <= now,
            )
            .order_by(AccessRequest.expires_at.asc())
            .all()
        )
        return [AccessService._to_out(db, req, email) for req, email in rows]

    @staticmethod
    def has_valid_access(
        db: Session, user_id: int, ref: TargetRef, now: Optional[datetime] = None
    ) -> bool:
        """True when any APPROVED, unexpired grant covers (user, target) at ``now``."""
        now = now or utcnow()
        grants = (
            db.query(AccessRequest)
            .filter(
                AccessRequest.user_id == user_id,
                AccessRequest.target_type == ref.target_type,
                AccessRequest.target_id == ref.target_id,
                AccessRequest.status == AccessStatus.APPROVED,
            )
            .all()
        )
        return any(grant.is_valid_at(now) for grant in grants)

    @staticmethod
    def check_access(
        db: Session, actor_id: int, ref: TargetRef, user_id: Optional[int] = None
    ) -> AccessCheck:
        """Validity of a grant for the actor, or for another user at manager level and above."""
        subject = user_id or actor_id
        if subject != actor_id and not permission_resolver.meets_hierarchy(db, actor_id, CHECK_OTHERS_LEVEL):
            raise AuthorizationError("Insufficient hierarchy level")
        return AccessCheck(
            user_id=subject,
            target_type=ref.target_type,
            target_id=ref.target_id,
            valid=AccessService.has_valid_access(db, subject, ref),
        )


access_service = AccessService()

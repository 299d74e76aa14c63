"""Access request model and its status lifecycle."""

import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum, Index, func
from gatekeepr.db.base import Base


class AccessStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REVOKED = "REVOKED"


class AccessRequest(Base):
    """A request (or direct grant) for a user to reach a polymorphic target.

    ``target_type``/``target_id`` carry no foreign key: the target may be a
    tool, a group or anything else a consumer knows how to resolve.

    Only PENDING -> APPROVED, PENDING -> REJECTED and APPROVED -> REVOKED are
    legal. Expiry never changes ``status``; use :meth:`is_valid_at`.
    """
    __tablename__ = "access_requests"
    __table_args__ = (
        Index("ix_access_requests_target", "user_id", "target_type", "target_id", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    request_type = Column(String(50), nullable=False, default="tool_access")
    target_type = Column(String(50), nullable=False)
    target_id = Column(Integer, nullable=False)
    access_level = Column(String(50), nullable=False, default="read")
    status = Column(Enum(AccessStatus), default=AccessStatus.PENDING, nullable=False, index=True)
    reason = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)

    def is_valid_at(self, now: datetime) -> bool:
        """True when the grant is APPROVED and not past its expiry at ``now``."""
        if self.status != AccessStatus.APPROVED:
            return False
        return self.expires_at is None or self.expires_at > now

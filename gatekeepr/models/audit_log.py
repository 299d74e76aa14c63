"""Append-only audit log model."""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, func
from gatekeepr.db.base import Base


class AuditLog(Base):
    """Immutable audit trail for all privileged mutations.

    This table is APPEND-ONLY: no UPDATE or DELETE operations should ever
    be performed on it (enforced at application level).
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(100), nullable=False, index=True)  # e.g. "role.create"
    action_category = Column(String(50), nullable=True, index=True)  # e.g. "role"
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    target_type = Column(String(50), nullable=True, index=True)
    target_id = Column(Integer, nullable=True)
    target_name = Column(String(255), nullable=True)
    details = Column(Text, nullable=True)
    old_value = Column(Text, nullable=True)  # JSON
    new_value = Column(Text, nullable=True)  # JSON
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)

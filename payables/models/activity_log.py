"""
Activity Log model for tracking invoice lifecycle actions.
"""
from sqlalchemy import Column, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from payables.database import Base
from payables.db_types import IdType


class ActivityAction(enum.Enum):
    """Enumeration of auditable invoice actions."""
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_UPDATED = "INVOICE_UPDATED"
    INVOICE_APPROVED = "INVOICE_APPROVED"
    INVOICE_REJECTED = "INVOICE_REJECTED"
    INVOICE_ON_HOLD = "INVOICE_ON_HOLD"
    INVOICE_HOLD_RELEASED = "INVOICE_HOLD_RELEASED"
    INVOICE_HIDDEN = "INVOICE_HIDDEN"
    INVOICE_RESTORED = "INVOICE_RESTORED"

    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    CREDIT_NOTE_RECORDED = "CREDIT_NOTE_RECORDED"
    ATTACHMENT_UPLOADED = "ATTACHMENT_UPLOADED"


class ActivityLog(Base):
    """
    Audit trail entry for one invoice.
    `old_data` / `new_data` hold JSON snapshots.
    """
    __tablename__ = 'activity_log'

    id = Column(IdType, primary_key=True, autoincrement=True)
    invoice_id = Column(IdType, ForeignKey('invoice.id'), nullable=False, index=True)
    user_id = Column(IdType, ForeignKey('app_user.id'), nullable=True)
    action = Column(SQLEnum(ActivityAction, name='activity_action'), nullable=False, index=True)
    old_data = Column(Text, nullable=True)
    new_data = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    user = relationship('AppUser')

    def __repr__(self):
        return f"<ActivityLog {self.action.value} on invoice {self.invoice_id} by user {self.user_id}>"

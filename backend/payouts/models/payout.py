"""Payout (withdrawal) requests raised by agents against their pending commissions."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Boolean, Text, JSON, Index, text
from payouts.core.database import Base
import enum


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"
    ON_HOLD = "on_hold"


class PayoutMethod(str, enum.Enum):
    MOBILE_MONEY = "mobile_money"
    BANK = "bank"


OUTSTANDING_STATUSES = (PayoutStatus.PENDING, PayoutStatus.APPROVED, PayoutStatus.ON_HOLD)
TERMINAL_STATUSES = (PayoutStatus.PAID, PayoutStatus.REJECTED)

_OUTSTANDING = text("status IN ('pending', 'approved', 'on_hold')")


class PayoutRequest(Base):
    __tablename__ = "payout_requests"

    id = Column(Integer, primary_key=True, index=True)
    agent_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String, nullable=False)  # mobile_money | bank
    account_details = Column(String, nullable=False)

    status = Column(String, default="pending", nullable=False, index=True)

    requested_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    processed_by = Column(String, nullable=True)  # admin id, or the system actor for auto actions

    notes = Column(Text, default="")
    rejection_reason = Column(Text, nullable=True)

    # Commission ids consumed by settlement, oldest first
    commission_ids = Column(JSON, default=list)

    # Auto-approval / validation metadata
    auto_approved = Column(Boolean, default=False, nullable=False)
    auto_paid = Column(Boolean, default=False, nullable=False)
    auto_approval_threshold = Column(Numeric(12, 2), nullable=True)
    auto_processed_at = Column(DateTime(timezone=True), nullable=True)
    validation_warnings = Column(JSON, default=list)
    validated_at = Column(DateTime(timezone=True), nullable=True)
    settings_version = Column(Integer, nullable=True)
    processing_fee = Column(Numeric(12, 2), default=0)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_payout_requests_agent_created", "agent_id", "created_at"),
        Index(
            "uq_payout_requests_one_outstanding",
            "agent_id",
            unique=True,
            postgresql_where=_OUTSTANDING,
            sqlite_where=_OUTSTANDING,
        ),
    )

    @property
    def is_auto_processed(self) -> bool:
        return bool(self.auto_approved or self.auto_paid)

    def append_note(self, note: str):
        self.notes = f"{self.notes}; {note}" if self.notes else note

    def __repr__(self):
        return f"<PayoutRequest {self.id} agent={self.agent_id} {self.amount} {self.status}>"

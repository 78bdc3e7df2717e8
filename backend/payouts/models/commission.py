from datetime import datetime
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Boolean, Text, Index, text
from payouts.core.database import Base
import enum


class CommissionStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class CommissionType(str, enum.Enum):
    DELIVERY = "delivery"
    AGENT_ORDER = "agent_order"


# Entries that still count as "the" commission for an order/agent/type
_ACTIVE_ORIGINAL = text("split_from_id IS NULL AND status IN ('pending', 'paid')")


class Commission(Base):
    """Ledger entry crediting an agent for an order event."""
    __tablename__ = "commissions"

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    agent_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # delivery | agent_order

    # Amounts
    amount = Column(Numeric(12, 2), nullable=False)
    order_total = Column(Numeric(12, 2), nullable=False)

    # Fixed per-item amount when is_fixed_amount, else a fraction e.g. 0.0300
    commission_rate = Column(Numeric(12, 4), nullable=False)
    is_fixed_amount = Column(Boolean, default=False, nullable=False)
    delivery_count = Column(Integer, default=1, nullable=False)
    description = Column(Text, nullable=True)

    status = Column(String, default="pending", nullable=False)

    # Settlement
    payout_request_id = Column(Integer, ForeignKey("payout_requests.id"), nullable=True, index=True)
    split_from_id = Column(Integer, ForeignKey("commissions.id"), nullable=True, index=True)

    # PayoutSettings.version that produced the amount
    settings_version = Column(Integer, nullable=True)

    # Python-side default: FIFO settlement orders by this column
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_commissions_agent_status_created", "agent_id", "status", "created_at"),
        Index(
            "uq_commissions_active_order_agent_type",
            "order_id", "agent_id", "type",
            unique=True,
            postgresql_where=_ACTIVE_ORIGINAL,
            sqlite_where=_ACTIVE_ORIGINAL,
        ),
    )

    def __repr__(self):
        return f"<Commission {self.id} agent={self.agent_id} {self.type} {self.amount} {self.status}>"

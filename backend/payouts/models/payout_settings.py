"""Payout settings: the single live policy row plus its append-only change log."""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Text, JSON, ForeignKey
from sqlalchemy.sql import func
from payouts.core.database import Base


SETTINGS_ROW_ID = 1

# Defaults applied when the row is first created
DEFAULT_SETTINGS = {
    "min_withdrawal_amount": Decimal("100"),
    "max_withdrawal_amount": Decimal("50000"),
    "delivery_commission_amount": Decimal("200"),  # KSh per delivered item
    "agent_order_commission_rate": Decimal("0.03"),
    "schedule_enabled": False,
    "schedule_day_of_week": 5,  # Friday (0 = Sunday)
    "schedule_start_time": "07:00",
    "schedule_end_time": "23:59",
    "global_payout_hold": False,
    "hold_reason": "",
    "processing_fee": Decimal("0"),
    "auto_approval_threshold": Decimal("1000"),
    "require_manager_approval": False,
    "max_requests_per_day": 5,
    "max_amount_per_day": Decimal("100000"),
    "max_requests_per_week": 20,
    "max_amount_per_week": Decimal("300000"),
}


class PayoutSettings(Base):
    """Current payout policy. Exactly one row (id=1) exists."""
    __tablename__ = "payout_settings"

    id = Column(Integer, primary_key=True, default=SETTINGS_ROW_ID)

    # Withdrawal limits
    min_withdrawal_amount = Column(Numeric(12, 2), nullable=False)
    max_withdrawal_amount = Column(Numeric(12, 2), nullable=False)

    # Commission rates
    delivery_commission_amount = Column(Numeric(12, 2), nullable=False)
    agent_order_commission_rate = Column(Numeric(5, 4), nullable=False)

    # Payout window
    schedule_enabled = Column(Boolean, default=False, nullable=False)
    schedule_day_of_week = Column(Integer, default=5, nullable=False)
    schedule_start_time = Column(String(5), default="07:00", nullable=False)
    schedule_end_time = Column(String(5), default="23:59", nullable=False)

    # Global controls
    global_payout_hold = Column(Boolean, default=False, nullable=False)
    hold_reason = Column(Text, default="")
    processing_fee = Column(Numeric(12, 2), default=0, nullable=False)

    # Auto-approval
    auto_approval_threshold = Column(Numeric(12, 2), nullable=False)
    require_manager_approval = Column(Boolean, default=False, nullable=False)

    # Rate limits
    max_requests_per_day = Column(Integer, nullable=False)
    max_amount_per_day = Column(Numeric(12, 2), nullable=False)
    max_requests_per_week = Column(Integer, nullable=False)
    max_amount_per_week = Column(Numeric(12, 2), nullable=False)

    # Audit
    version = Column(Integer, default=1, nullable=False)
    last_modified_by = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class PayoutSettingsChange(Base):
    """One entry of the settings modification history. Never updated."""
    __tablename__ = "payout_settings_history"

    id = Column(Integer, primary_key=True, index=True)
    settings_id = Column(Integer, ForeignKey("payout_settings.id"), nullable=False, index=True)
    version = Column(Integer, nullable=False)  # version produced by this change
    actor_id = Column(String, nullable=True)
    changed_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    changes = Column(JSON, nullable=False)  # {"field": {"from": old, "to": new}}
    reason = Column(Text, nullable=True)

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, Numeric, Text
from sqlalchemy.sql import func
from payouts.core.database import Base
import enum


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    AGENT = "agent"
    CUSTOMER = "customer"


class User(Base):
    """Directory record for agents and admins.

    Only the fields the payout engine reads or writes live here: identity,
    role/activity, the per-agent payout hold and the rate-limit counters.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    role = Column(String, default="customer", nullable=False)
    is_active = Column(Boolean, default=True)

    # Agent-specific payout hold
    payout_hold = Column(Boolean, default=False, nullable=False)
    payout_hold_reason = Column(Text, nullable=True)
    payout_hold_set_by = Column(String, nullable=True)
    payout_hold_set_at = Column(DateTime(timezone=True), nullable=True)

    # Rate-limit counters, reset lazily when the day/week rolls over
    payout_daily_count = Column(Integer, default=0, nullable=False)
    payout_daily_amount = Column(Numeric(12, 2), default=0, nullable=False)
    payout_daily_reset_on = Column(Date, nullable=True)
    payout_weekly_count = Column(Integer, default=0, nullable=False)
    payout_weekly_amount = Column(Numeric(12, 2), default=0, nullable=False)
    payout_weekly_reset_on = Column(Date, nullable=True)  # Monday of the counted week

    # Bumped by every settlement; the lock point for an agent's ledger
    ledger_version = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_agent(self) -> bool:
        return (self.role or "").lower() == UserRole.AGENT

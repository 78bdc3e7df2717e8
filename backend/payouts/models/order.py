"""Order record as seen by the commission engine.

The order subsystem owns orders; the engine only needs the total, the item
count and which agent created or delivered it.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey
from sqlalchemy.sql import func
from payouts.core.database import Base
import enum


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, unique=True, index=True, nullable=False)

    total_price = Column(Numeric(12, 2), nullable=False)
    item_count = Column(Integer, default=1, nullable=False)  # sum of line quantities
    status = Column(String, default="pending", nullable=False)

    # "customer" or "agent"
    created_by = Column(String, default="customer", nullable=False)
    agent_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    assigned_agent_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

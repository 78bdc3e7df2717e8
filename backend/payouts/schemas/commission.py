from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
from payouts.models.commission import CommissionStatus, CommissionType


class CommissionRecord(BaseModel):
    """Input for recording a commission from an order event."""
    order_id: int
    agent_id: int
    type: CommissionType
    order_total: Decimal = Field(..., ge=0)
    delivery_count: int = Field(1, ge=1)


class CommissionInDB(BaseModel):
    id: int
    order_id: int
    agent_id: int
    type: CommissionType
    amount: Decimal
    order_total: Decimal
    commission_rate: Decimal
    is_fixed_amount: bool
    delivery_count: int
    description: Optional[str]
    status: CommissionStatus
    payout_request_id: Optional[int]
    split_from_id: Optional[int]
    settings_version: Optional[int]
    created_at: datetime
    paid_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True


class Commission(CommissionInDB):
    pass

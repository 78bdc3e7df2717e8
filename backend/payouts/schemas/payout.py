from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from payouts.models.payout import PayoutMethod, PayoutStatus


class PayoutRequestCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: PayoutMethod
    account_details: str = Field(..., min_length=1)
    notes: Optional[str] = None

    @field_validator("account_details")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()


class WithdrawalValidationRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    agent_id: Optional[int] = None
    method: Optional[PayoutMethod] = None
    account_details: Optional[str] = None


class PayoutProcess(BaseModel):
    action: str  # approve | pay | reject | hold | release
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class BulkPayoutProcess(PayoutProcess):
    payout_ids: List[int] = Field(..., min_length=1)


class PayoutRequestInDB(BaseModel):
    id: int
    agent_id: int
    amount: Decimal
    method: PayoutMethod
    account_details: str
    status: PayoutStatus
    requested_at: datetime
    processed_at: Optional[datetime]
    processed_by: Optional[str]
    notes: Optional[str]
    rejection_reason: Optional[str]
    commission_ids: List[int] = []
    auto_approved: bool
    auto_paid: bool
    auto_approval_threshold: Optional[Decimal]
    auto_processed_at: Optional[datetime]
    validation_warnings: List[str] = []
    settings_version: Optional[int]
    processing_fee: Optional[Decimal]

    class Config:
        from_attributes = True

    @field_validator("commission_ids", "validation_warnings", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return v or []


class PayoutRequest(PayoutRequestInDB):
    pass

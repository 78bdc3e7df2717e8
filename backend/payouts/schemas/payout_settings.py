from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Any, Dict, Optional
from datetime import datetime
from decimal import Decimal
import re

_TIME_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")


def normalize_hhmm(value: str) -> str:
    """Validate an HH:MM time and zero-pad it so string comparison orders correctly."""
    match = _TIME_RE.match((value or "").strip())
    if not match:
        raise ValueError("Invalid time format (HH:MM)")
    return f"{int(match.group(1)):02d}:{match.group(2)}"


class CommissionRates(BaseModel):
    model_config = ConfigDict(frozen=True)

    delivery_amount: Decimal = Field(..., ge=0)
    agent_order_rate: Decimal = Field(..., ge=0, le=1)


class PayoutSchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    day_of_week: int = Field(5, ge=0, le=6)  # 0 = Sunday
    start_time: str = "07:00"
    end_time: str = "23:59"

    @field_validator("start_time", "end_time")
    @classmethod
    def _hhmm(cls, v: str) -> str:
        return normalize_hhmm(v)


class PayoutPolicy(BaseModel):
    """Immutable snapshot of the payout settings, fetched once per operation."""
    model_config = ConfigDict(frozen=True)

    version: int
    min_withdrawal: Decimal
    max_withdrawal: Decimal
    commission_rates: CommissionRates
    schedule: PayoutSchedule
    global_hold: bool = False
    hold_reason: str = ""
    processing_fee: Decimal = Decimal("0")
    auto_approval_threshold: Decimal = Decimal("0")
    require_manager_approval: bool = False
    daily_request_limit: int
    daily_amount_limit: Decimal
    weekly_request_limit: int
    weekly_amount_limit: Decimal

    @classmethod
    def from_row(cls, row) -> "PayoutPolicy":
        return cls(
            version=row.version,
            min_withdrawal=Decimal(row.min_withdrawal_amount),
            max_withdrawal=Decimal(row.max_withdrawal_amount),
            commission_rates=CommissionRates(
                delivery_amount=Decimal(row.delivery_commission_amount),
                agent_order_rate=Decimal(row.agent_order_commission_rate),
            ),
            schedule=PayoutSchedule(
                enabled=row.schedule_enabled,
                day_of_week=row.schedule_day_of_week,
                start_time=row.schedule_start_time,
                end_time=row.schedule_end_time,
            ),
            global_hold=row.global_payout_hold,
            hold_reason=row.hold_reason or "",
            processing_fee=Decimal(row.processing_fee or 0),
            auto_approval_threshold=Decimal(row.auto_approval_threshold),
            require_manager_approval=row.require_manager_approval,
            daily_request_limit=row.max_requests_per_day,
            daily_amount_limit=Decimal(row.max_amount_per_day),
            weekly_request_limit=row.max_requests_per_week,
            weekly_amount_limit=Decimal(row.max_amount_per_week),
        )

    def will_auto_approve(self, amount: Decimal) -> bool:
        return not self.require_manager_approval and amount <= self.auto_approval_threshold


class PayoutScheduleUpdate(BaseModel):
    enabled: Optional[bool] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _hhmm(cls, v: Optional[str]) -> Optional[str]:
        return normalize_hhmm(v) if v is not None else v


class PayoutSettingsUpdate(BaseModel):
    """Partial update; unset fields are left alone."""
    min_withdrawal_amount: Optional[Decimal] = Field(None, ge=1, decimal_places=2)
    max_withdrawal_amount: Optional[Decimal] = Field(None, ge=1, decimal_places=2)
    delivery_commission_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    agent_order_commission_rate: Optional[Decimal] = Field(None, ge=0, le=1, decimal_places=4)
    payout_schedule: Optional[PayoutScheduleUpdate] = None
    global_payout_hold: Optional[bool] = None
    hold_reason: Optional[str] = None
    processing_fee: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    auto_approval_threshold: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    require_manager_approval: Optional[bool] = None
    max_requests_per_day: Optional[int] = Field(None, ge=1)
    max_amount_per_day: Optional[Decimal] = Field(None, ge=1, decimal_places=2)
    max_requests_per_week: Optional[int] = Field(None, ge=1)
    max_amount_per_week: Optional[Decimal] = Field(None, ge=1, decimal_places=2)
    modification_reason: Optional[str] = None

    def column_values(self) -> Dict[str, Any]:
        """Flatten to PayoutSettings column names, dropping unset fields."""
        data = self.model_dump(exclude_unset=True, exclude={"payout_schedule", "modification_reason"})
        data = {k: v for k, v in data.items() if v is not None}
        if self.payout_schedule is not None:
            schedule = self.payout_schedule.model_dump(exclude_unset=True)
            for key, value in schedule.items():
                if value is not None:
                    data[f"schedule_{key}"] = value
        return data


class GlobalHoldRequest(BaseModel):
    is_held: bool
    reason: Optional[str] = None


class AgentHoldRequest(BaseModel):
    is_held: bool
    reason: Optional[str] = None


class AutoApprovalUpdate(BaseModel):
    auto_approval_threshold: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    require_manager_approval: Optional[bool] = None

    @model_validator(mode="after")
    def _something_set(self):
        if self.auto_approval_threshold is None and self.require_manager_approval is None:
            raise ValueError("Provide auto_approval_threshold and/or require_manager_approval")
        return self


class PayoutSettingsOut(BaseModel):
    id: int
    version: int
    min_withdrawal_amount: Decimal
    max_withdrawal_amount: Decimal
    delivery_commission_amount: Decimal
    agent_order_commission_rate: Decimal
    schedule_enabled: bool
    schedule_day_of_week: int
    schedule_start_time: str
    schedule_end_time: str
    global_payout_hold: bool
    hold_reason: Optional[str]
    processing_fee: Decimal
    auto_approval_threshold: Decimal
    require_manager_approval: bool
    max_requests_per_day: int
    max_amount_per_day: Decimal
    max_requests_per_week: int
    max_amount_per_week: Decimal
    last_modified_by: Optional[str]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class PayoutSettingsChangeOut(BaseModel):
    id: int
    version: int
    actor_id: Optional[str]
    changed_at: datetime
    changes: Dict[str, Any]
    reason: Optional[str]

    class Config:
        from_attributes = True

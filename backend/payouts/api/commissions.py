from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from datetime import datetime
from payouts.core.database import get_db
from payouts.core.security import get_current_user, require_admin, require_agent
from payouts.models.commission import CommissionStatus, CommissionType
from payouts.models.user import User
from payouts.schemas.commission import Commission, CommissionRecord
from payouts.services.commission import CommissionService
from payouts.services.commission_rates import rate_card
from payouts.services.payout_settings import PayoutSettingsService
from payouts.services.reporting import PayoutReportingService

router = APIRouter(prefix="/api/commissions", tags=["commissions"])


def _page(result: dict) -> dict:
    return {
        "commissions": [Commission.model_validate(c) for c in result["commissions"]],
        "pagination": result["pagination"],
    }


@router.get("/rates")
def get_commission_rates(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Current commission rates with worked examples"""
    policy = PayoutSettingsService(db).load_policy()
    return rate_card(policy)


@router.get("/my-commissions")
def get_my_commissions(
    status_filter: Optional[CommissionStatus] = None,
    type_filter: Optional[CommissionType] = None,
    page: int = 1,
    limit: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_agent(current_user)
    result = CommissionService(db).list_commissions(
        agent_id=current_user.id, status=status_filter, commission_type=type_filter, page=page, limit=limit
    )
    return _page(result)


@router.get("/my-stats")
def get_my_commission_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_agent(current_user)
    return CommissionService(db).agent_stats(current_user.id)


@router.get("/analytics")
def get_commission_analytics(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    return PayoutReportingService(db).commission_analytics(start, end)


@router.get("/")
def list_commissions(
    agent_id: Optional[int] = None,
    status_filter: Optional[CommissionStatus] = None,
    type_filter: Optional[CommissionType] = None,
    page: int = 1,
    limit: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    result = CommissionService(db).list_commissions(
        agent_id=agent_id, status=status_filter, commission_type=type_filter, page=page, limit=limit
    )
    return _page(result)


@router.post("/", response_model=Commission, status_code=status.HTTP_201_CREATED)
def record_commission(
    record: CommissionRecord,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Record a commission manually. Returns the existing entry on repeat calls."""
    require_admin(current_user)
    return CommissionService(db).record_commission(
        order_id=record.order_id,
        agent_id=record.agent_id,
        commission_type=record.type,
        order_total=record.order_total,
        delivery_count=record.delivery_count,
    )


@router.get("/{commission_id}", response_model=Commission)
def get_commission(
    commission_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    commission = CommissionService(db).get_commission(commission_id)
    if (current_user.role or "").lower() != "admin" and commission.agent_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    return commission

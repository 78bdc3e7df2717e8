from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from payouts.core.database import get_db
from payouts.core.security import get_current_user, require_admin
from payouts.models.user import User
from payouts.schemas.payout_settings import (
    AgentHoldRequest, AutoApprovalUpdate, GlobalHoldRequest, PayoutSettingsChangeOut, PayoutSettingsOut,
    PayoutSettingsUpdate,
)
from payouts.services.payout_settings import PayoutSettingsService

router = APIRouter(prefix="/api/payout-settings", tags=["payout-settings"])


@router.get("/", response_model=PayoutSettingsOut)
def get_payout_settings(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return PayoutSettingsService(db).get_current_settings()


@router.put("/", response_model=PayoutSettingsOut)
def update_payout_settings(
    update: PayoutSettingsUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    return PayoutSettingsService(db).update_settings(update, actor_id=str(current_user.id))


@router.get("/history", response_model=List[PayoutSettingsChangeOut])
def get_settings_history(
    limit: int = 50,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    return PayoutSettingsService(db).history(limit=min(limit, 200))


@router.post("/global-hold", response_model=PayoutSettingsOut)
def set_global_hold(
    request: GlobalHoldRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    return PayoutSettingsService(db).set_global_hold(request.is_held, request.reason, actor_id=str(current_user.id))


@router.put("/auto-approval", response_model=PayoutSettingsOut)
def update_auto_approval(
    request: AutoApprovalUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    return PayoutSettingsService(db).update_auto_approval(
        actor_id=str(current_user.id),
        auto_approval_threshold=request.auto_approval_threshold,
        require_manager_approval=request.require_manager_approval,
    )


@router.post("/agents/{agent_id}/hold")
def set_agent_hold(
    agent_id: int,
    request: AgentHoldRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    agent = PayoutSettingsService(db).set_agent_hold(agent_id, request.is_held, request.reason, actor_id=str(current_user.id))
    return {
        "agent_id": agent.id,
        "payout_hold": agent.payout_hold,
        "payout_hold_reason": agent.payout_hold_reason,
        "payout_hold_set_by": agent.payout_hold_set_by,
        "payout_hold_set_at": agent.payout_hold_set_at,
    }

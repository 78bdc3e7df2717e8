from typing import Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from sqlalchemy.orm import Session
from payouts.core.database import get_db
from payouts.core.security import get_current_user, require_admin, require_agent
from payouts.models.payout import PayoutStatus
from payouts.models.user import User
from payouts.schemas.payout import (
    BulkPayoutProcess, PayoutProcess, PayoutRequest, PayoutRequestCreate, WithdrawalValidationRequest,
)
from payouts.services.payout import PayoutService
from payouts.services.reporting import PayoutReportingService

router = APIRouter(prefix="/api/payouts", tags=["payouts"])


def _page(result: dict) -> dict:
    page = {
        "payouts": [PayoutRequest.model_validate(p) for p in result["payouts"]],
        "pagination": result["pagination"],
    }
    if "summary" in result:
        page["summary"] = result["summary"]
    return page


# ── Agent routes ─────────────────────────────────────────────────────

@router.get("/window")
def get_payout_window(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Whether payout requests are accepted right now"""
    window = PayoutService(db).window_status()
    return {
        "allowed": window.allowed,
        "reason": window.reason,
        "next_window_start": window.next_window_start,
    }


@router.post("/validate")
def validate_withdrawal(
    request: WithdrawalValidationRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Dry-run every payout guard for an amount without creating anything"""
    agent_id = current_user.id
    if request.agent_id is not None and request.agent_id != current_user.id:
        require_admin(current_user)
        agent_id = request.agent_id
    elif (current_user.role or "").lower() != "admin":
        require_agent(current_user)

    report = PayoutService(db).validate_request(
        agent_id,
        request.amount,
        method=request.method.value if request.method else None,
        account_details=request.account_details,
    )
    return report.to_dict()


@router.post("/", response_model=PayoutRequest, status_code=status.HTTP_201_CREATED)
def create_payout_request(
    request: PayoutRequestCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_agent(current_user)
    return PayoutService(db).create_request(
        agent_id=current_user.id,
        amount=request.amount,
        method=request.method.value,
        account_details=request.account_details,
        notes=request.notes,
    )


@router.get("/my-payouts")
def get_my_payouts(
    page: int = 1,
    limit: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_agent(current_user)
    return _page(PayoutReportingService(db).agent_payout_history(current_user.id, page=page, limit=limit))


# ── Admin routes ─────────────────────────────────────────────────────

@router.get("/")
def list_payout_requests(
    status_filter: Optional[PayoutStatus] = None,
    agent_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    limit: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    result = PayoutReportingService(db).list_payout_requests(
        status=status_filter, agent_id=agent_id, start=start, end=end, page=page, limit=limit
    )
    return _page(result)


@router.get("/stats")
def get_payout_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    return PayoutReportingService(db).payout_stats()


@router.get("/analytics")
def get_payout_analytics(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    return PayoutReportingService(db).payout_analytics(start, end)


@router.get("/auto-approval-stats")
def get_auto_approval_stats(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    return PayoutReportingService(db).auto_approval_stats(start, end)


@router.get("/export")
def export_payouts(
    status_filter: Optional[PayoutStatus] = None,
    agent_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Download payout requests as CSV"""
    require_admin(current_user)
    content = PayoutReportingService(db).export_payouts_csv(status_filter, agent_id, start, end)
    filename = f"payouts_{datetime.utcnow().strftime('%Y%m%d')}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/bulk-process")
def bulk_process_payouts(
    request: BulkPayoutProcess,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    return PayoutService(db).bulk_process(
        request.payout_ids,
        request.action,
        actor_id=str(current_user.id),
        notes=request.notes,
        rejection_reason=request.rejection_reason,
    )


# ── Parameterized {payout_id} routes LAST ────────────────────────────

@router.get("/{payout_id}", response_model=PayoutRequest)
def get_payout_request(
    payout_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    payout = PayoutService(db).get_request(payout_id)
    if (current_user.role or "").lower() != "admin" and payout.agent_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    return payout


@router.put("/{payout_id}/process", response_model=PayoutRequest)
def process_payout_request(
    payout_id: int,
    request: PayoutProcess,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Admin transition: approve, pay, reject, hold or release"""
    require_admin(current_user)
    return PayoutService(db).process(
        payout_id,
        request.action,
        actor_id=str(current_user.id),
        notes=request.notes,
        rejection_reason=request.rejection_reason,
    )

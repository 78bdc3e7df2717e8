"""Order lifecycle notifications from the order service."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from payouts.core.database import get_db
from payouts.core.security import get_current_user, require_admin
from payouts.models.user import User
from payouts.schemas.commission import Commission
from payouts.services import order_events

router = APIRouter(prefix="/api/order-events", tags=["order-events"])


def _commission_or_none(commission):
    return Commission.model_validate(commission) if commission is not None else None


@router.post("/{order_id}/delivered")
def order_delivered(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    return {"order_id": order_id, "commission": _commission_or_none(order_events.on_order_delivered(db, order_id))}


@router.post("/{order_id}/agent-order")
def agent_order_created(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    return {"order_id": order_id, "commission": _commission_or_none(order_events.on_agent_order_created(db, order_id))}


@router.post("/{order_id}/cancelled")
def order_cancelled(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_admin(current_user)
    return {"order_id": order_id, "cancelled": order_events.on_order_cancelled(db, order_id)}

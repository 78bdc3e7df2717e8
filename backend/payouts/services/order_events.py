"""
Hooks called by the order flow.

Commission bookkeeping must never fail an order transition: ledger errors
are logged with the order id and the hook returns None.
"""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from payouts.core.errors import PayoutEngineError
from payouts.models.commission import Commission, CommissionType
from payouts.models.order import Order
from payouts.services.commission import CommissionService

logger = logging.getLogger(__name__)


def _load_order(db: Session, order_id: int) -> Optional[Order]:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        logger.error(f"Order event for unknown order {order_id}")
    return order


def on_order_delivered(db: Session, order_id: int) -> Optional[Commission]:
    """Credit the delivering agent with a per-item delivery commission."""
    try:
        order = _load_order(db, order_id)
        if not order or not order.assigned_agent_id:
            return None
        return CommissionService(db).record_commission(
            order_id=order.id,
            agent_id=order.assigned_agent_id,
            commission_type=CommissionType.DELIVERY,
            order_total=order.total_price,
            delivery_count=max(order.item_count or 1, 1),
        )
    except (PayoutEngineError, SQLAlchemyError) as e:
        db.rollback()
        logger.error(f"Delivery commission for order {order_id} failed: {e}", exc_info=True)
        return None


def on_agent_order_created(db: Session, order_id: int) -> Optional[Commission]:
    """Credit the agent who placed the order with a percentage commission."""
    try:
        order = _load_order(db, order_id)
        if not order or order.created_by != "agent" or not order.agent_id:
            return None
        return CommissionService(db).record_commission(
            order_id=order.id,
            agent_id=order.agent_id,
            commission_type=CommissionType.AGENT_ORDER,
            order_total=order.total_price,
        )
    except (PayoutEngineError, SQLAlchemyError) as e:
        db.rollback()
        logger.error(f"Agent order commission for order {order_id} failed: {e}", exc_info=True)
        return None


def on_order_cancelled(db: Session, order_id: int) -> Optional[int]:
    try:
        return CommissionService(db).cancel_pending_for_order(order_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Cancelling commissions for order {order_id} failed: {e}", exc_info=True)
        return None

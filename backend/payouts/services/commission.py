import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payouts.core.config import settings
from payouts.core.errors import AgentNotFoundError, CommissionNotFoundError, InvalidCommissionInput, OrderNotFoundError
from payouts.models.commission import Commission, CommissionStatus, CommissionType
from payouts.models.order import Order
from payouts.models.user import User
from payouts.schemas.payout_settings import PayoutPolicy
from payouts.services.commission_rates import coerce_commission_type, calculate_commission, describe_commission
from payouts.services.payout_settings import PayoutSettingsService

logger = logging.getLogger(__name__)


def as_money(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


def _coerce_status(status) -> CommissionStatus:
    try:
        return CommissionStatus(status)
    except ValueError:
        raise InvalidCommissionInput(f"Unknown commission status: {status}")


def load_agent(db: Session, agent_id: int) -> User:
    """Resolve an agent id to an active agent-role account."""
    agent = db.query(User).filter(User.id == agent_id).first()
    if not agent:
        raise AgentNotFoundError(agent_id)
    if not agent.is_agent:
        raise AgentNotFoundError(agent_id, reason="not an agent account")
    if not agent.is_active:
        raise AgentNotFoundError(agent_id, reason="account is inactive")
    return agent


class CommissionService:
    """
    Commission ledger.

    Entries are credited from order events, consumed by settlement and
    cancelled with their order while still pending. Re-recording the same
    (order, agent, type) returns the existing active entry.
    """

    def __init__(self, db: Session):
        self.db = db

    def _find_active(self, order_id: int, agent_id: int, commission_type: CommissionType) -> Optional[Commission]:
        return (
            self.db.query(Commission)
            .filter(
                Commission.order_id == order_id,
                Commission.agent_id == agent_id,
                Commission.type == commission_type.value,
                Commission.split_from_id == None,
                Commission.status.in_([CommissionStatus.PENDING.value, CommissionStatus.PAID.value]),
            )
            .first()
        )

    def record_commission(
        self,
        order_id: int,
        agent_id: int,
        commission_type,
        order_total,
        delivery_count: int = 1,
        policy: Optional[PayoutPolicy] = None,
    ) -> Commission:
        commission_type = coerce_commission_type(commission_type)

        order = self.db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise OrderNotFoundError(order_id)
        load_agent(self.db, agent_id)

        existing = self._find_active(order_id, agent_id, commission_type)
        if existing:
            logger.info(f"Commission for order {order_id} agent {agent_id} ({commission_type.value}) exists: #{existing.id}")
            return existing

        policy = policy or PayoutSettingsService(self.db).load_policy()
        quote = calculate_commission(order_total, commission_type, delivery_count, policy)

        commission = Commission(
            order_id=order_id,
            agent_id=agent_id,
            type=commission_type.value,
            amount=quote.amount,
            order_total=Decimal(str(order_total)),
            commission_rate=quote.rate,
            is_fixed_amount=quote.is_fixed_amount,
            delivery_count=quote.delivery_count,
            description=describe_commission(quote, order_total),
            status=CommissionStatus.PENDING.value,
            settings_version=quote.settings_version,
            created_at=datetime.utcnow(),
        )
        try:
            with self.db.begin_nested():
                self.db.add(commission)
        except IntegrityError:
            existing = self._find_active(order_id, agent_id, commission_type)
            if existing is None:
                raise
            logger.info(f"Concurrent commission for order {order_id} agent {agent_id}; returning #{existing.id}")
            return existing

        self.db.commit()
        self.db.refresh(commission)

        logger.info(
            f"Commission #{commission.id} created: agent {agent_id}, order {order_id}, "
            f"{commission_type.value} KSh {commission.amount}"
        )
        return commission

    def cancel_pending_for_order(self, order_id: int) -> int:
        """Cancel every still-pending entry for an order. Paid entries are left alone."""
        count = (
            self.db.query(Commission)
            .filter(Commission.order_id == order_id, Commission.status == CommissionStatus.PENDING.value)
            .update(
                {Commission.status: CommissionStatus.CANCELLED.value, Commission.cancelled_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        self.db.commit()
        if count:
            logger.info(f"Cancelled {count} pending commission(s) for order {order_id}")
        return count

    def _sum_for(self, agent_id: int, status: CommissionStatus) -> Decimal:
        total = (
            self.db.query(func.sum(Commission.amount))
            .filter(Commission.agent_id == agent_id, Commission.status == status.value)
            .scalar()
        )
        return as_money(total)

    def pending_balance(self, agent_id: int) -> Decimal:
        return self._sum_for(agent_id, CommissionStatus.PENDING)

    def paid_total(self, agent_id: int) -> Decimal:
        return self._sum_for(agent_id, CommissionStatus.PAID)

    def get_commission(self, commission_id: int) -> Commission:
        commission = self.db.query(Commission).filter(Commission.id == commission_id).first()
        if not commission:
            raise CommissionNotFoundError(commission_id)
        return commission

    def list_commissions(
        self,
        agent_id: Optional[int] = None,
        status: Optional[str] = None,
        commission_type: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Dict:
        limit = min(limit or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
        page = max(page, 1)

        query = self.db.query(Commission)
        if agent_id is not None:
            query = query.filter(Commission.agent_id == agent_id)
        if status:
            query = query.filter(Commission.status == _coerce_status(status).value)
        if commission_type:
            query = query.filter(Commission.type == coerce_commission_type(commission_type).value)

        total = query.count()
        items = (
            query.order_by(Commission.created_at.desc(), Commission.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "commissions": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    def agent_stats(self, agent_id: int, now: Optional[datetime] = None) -> Dict:
        """Totals and counts per status, plus earnings over the last 30 days."""
        now = now or datetime.utcnow()
        rows = (
            self.db.query(Commission.status, func.count(Commission.id), func.sum(Commission.amount))
            .filter(Commission.agent_id == agent_id)
            .group_by(Commission.status)
            .all()
        )
        by_status = {s.value: {"count": 0, "amount": Decimal("0")} for s in CommissionStatus}
        for status, count, amount in rows:
            by_status[status] = {"count": count, "amount": as_money(amount)}

        recent = (
            self.db.query(func.sum(Commission.amount))
            .filter(
                Commission.agent_id == agent_id,
                Commission.status != CommissionStatus.CANCELLED.value,
                Commission.created_at >= now - timedelta(days=30),
            )
            .scalar()
        )

        return {
            "agent_id": agent_id,
            "total_earned": by_status["pending"]["amount"] + by_status["paid"]["amount"],
            "current_balance": by_status["pending"]["amount"],
            "total_paid": by_status["paid"]["amount"],
            "total_cancelled": by_status["cancelled"]["amount"],
            "by_status": by_status,
            "last_30_days": as_money(recent),
        }

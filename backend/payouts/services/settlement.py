"""Settlement: turn a payout request's amount into paid ledger entries.

Pending entries are consumed oldest first (created_at, id). An entry larger
than what is still needed is split: the original keeps the paid slice and a
new pending entry, linked through split_from_id, carries the remainder.

The engine only flushes. The caller commits the settlement together with the
request's paid transition, or rolls both back.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from payouts.core.errors import AgentNotFoundError, InsufficientBalanceError, StateConflictError
from payouts.models.commission import Commission, CommissionStatus
from payouts.models.payout import PayoutRequest, PayoutStatus
from payouts.models.user import User

logger = logging.getLogger(__name__)

SETTLEABLE_STATUSES = (PayoutStatus.PENDING.value, PayoutStatus.APPROVED.value)
SPLIT_PAID_NOTE = "(Split - Paid)"
SPLIT_REMAINDER_NOTE = "(Split - Remaining)"


@dataclass
class SettlementResult:
    paid_commission_ids: List[int] = field(default_factory=list)
    total_paid: Decimal = Decimal("0")
    remainder_id: Optional[int] = None


class SettlementService:
    def __init__(self, db: Session):
        self.db = db

    def _lock_agent_ledger(self, agent_id: int):
        """
        Serialize settlements per agent.

        Bumping ledger_version takes the agent row lock (PostgreSQL) or the
        database write lock (SQLite) before any pending entry is read.
        """
        updated = (
            self.db.query(User)
            .filter(User.id == agent_id)
            .update({User.ledger_version: User.ledger_version + 1}, synchronize_session=False)
        )
        if not updated:
            raise AgentNotFoundError(agent_id)

    def _pending_entries(self, agent_id: int) -> List[Commission]:
        return (
            self.db.query(Commission)
            .filter(Commission.agent_id == agent_id, Commission.status == CommissionStatus.PENDING.value)
            .order_by(Commission.created_at.asc(), Commission.id.asc())
            .with_for_update()
            .populate_existing()
            .all()
        )

    def _mark_paid(self, entry: Commission, payout_request_id: int, amount: Decimal, note: Optional[str], now: datetime):
        values = {
            Commission.status: CommissionStatus.PAID.value,
            Commission.payout_request_id: payout_request_id,
            Commission.paid_at: now,
            Commission.amount: amount,
        }
        if note:
            values[Commission.description] = f"{entry.description or ''} {note}".strip()

        updated = (
            self.db.query(Commission)
            .filter(Commission.id == entry.id, Commission.status == CommissionStatus.PENDING.value)
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            raise StateConflictError(f"Commission {entry.id} is no longer pending", current_status=entry.status)
        self.db.expire(entry)

    def settle(self, payout_request: PayoutRequest, now: Optional[datetime] = None) -> SettlementResult:
        now = now or datetime.utcnow()
        agent_id = payout_request.agent_id

        self._lock_agent_ledger(agent_id)
        self.db.refresh(payout_request, with_for_update=True)
        if payout_request.status not in SETTLEABLE_STATUSES:
            raise StateConflictError(
                f"Payout request {payout_request.id} cannot be settled while {payout_request.status}",
                current_status=payout_request.status,
            )

        requested = Decimal(str(payout_request.amount))
        entries = self._pending_entries(agent_id)
        available = sum((Decimal(str(e.amount)) for e in entries), Decimal("0"))
        if available < requested:
            logger.warning(
                f"Settlement of payout {payout_request.id} refused: agent {agent_id} has "
                f"KSh {available} pending, KSh {requested} requested"
            )
            raise InsufficientBalanceError(requested, available, agent_id)

        result = SettlementResult()
        remaining = requested
        for entry in entries:
            if remaining <= 0:
                break
            amount = Decimal(str(entry.amount))

            if amount <= remaining:
                self._mark_paid(entry, payout_request.id, amount, None, now)
                result.paid_commission_ids.append(entry.id)
                remaining -= amount
                continue

            remainder = Commission(
                order_id=entry.order_id,
                agent_id=entry.agent_id,
                type=entry.type,
                amount=amount - remaining,
                order_total=entry.order_total,
                commission_rate=entry.commission_rate,
                is_fixed_amount=entry.is_fixed_amount,
                delivery_count=entry.delivery_count,
                description=f"{entry.description or ''} {SPLIT_REMAINDER_NOTE}".strip(),
                status=CommissionStatus.PENDING.value,
                split_from_id=entry.id,
                settings_version=entry.settings_version,
                created_at=entry.created_at,
            )
            entry_id = entry.id
            self._mark_paid(entry, payout_request.id, remaining, SPLIT_PAID_NOTE, now)
            self.db.add(remainder)
            self.db.flush()

            result.paid_commission_ids.append(entry_id)
            result.remainder_id = remainder.id
            logger.info(
                f"Split commission #{entry_id}: KSh {remaining} paid to payout {payout_request.id}, "
                f"KSh {remainder.amount} pending as #{remainder.id}"
            )
            remaining = Decimal("0")

        result.total_paid = requested - remaining
        self.db.flush()

        logger.info(
            f"Settled payout {payout_request.id} for agent {agent_id}: KSh {result.total_paid} "
            f"from commissions {result.paid_commission_ids}"
        )
        return result

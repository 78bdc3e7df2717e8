"""
Payout request workflow.

State machine:
    pending  -> approved | rejected | on_hold
    approved -> paid | rejected | on_hold
    on_hold  -> pending
paid and rejected are terminal.

Creation validates everything up front and reports every violated
constraint at once. Small requests are auto-approved and, in a separate
transaction, auto-paid when the ledger still covers them.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from payouts.core.config import settings
from payouts.core.database import begin_ledger_transaction
from payouts.core.errors import (
    InsufficientBalanceError, PayoutEngineError, PayoutRequestNotFoundError, PayoutValidationError,
    PolicyGateError, StateConflictError, Violation,
)
from payouts.models.payout import PayoutMethod, PayoutRequest, PayoutStatus, TERMINAL_STATUSES
from payouts.models.user import User
from payouts.schemas.payout_settings import PayoutPolicy
from payouts.services.commission import CommissionService, as_money, load_agent
from payouts.services.payout_settings import PayoutSettingsService
from payouts.services.payout_window import WindowStatus, evaluate_window, payout_now
from payouts.services.settlement import SettlementResult, SettlementService

logger = logging.getLogger(__name__)

MOBILE_MONEY_RE = re.compile(r"^(\+254|254|0)[17]\d{8}$")
REJECTION_REASON_MIN_LENGTH = 3
REJECTION_REASON_MAX_LENGTH = 500
BULK_REJECTION_REASON = "Bulk rejection - Contact support for specific details"

ALLOWED_FROM = {
    "approve": (PayoutStatus.PENDING.value,),
    "pay": (PayoutStatus.PENDING.value, PayoutStatus.APPROVED.value),
    "reject": (PayoutStatus.PENDING.value, PayoutStatus.APPROVED.value),
    "hold": (PayoutStatus.PENDING.value, PayoutStatus.APPROVED.value),
    "release": (PayoutStatus.ON_HOLD.value,),
}
ACTIONS = tuple(ALLOWED_FROM)


@dataclass
class ValidationReport:
    violations: List[Violation] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    available_balance: Decimal = Decimal("0")
    will_auto_approve: bool = False
    next_window_start: Optional[datetime] = None
    settings_version: Optional[int] = None
    remaining_limits: Dict[str, Dict] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.violations

    @property
    def errors(self) -> List[str]:
        return [v.message for v in self.violations]

    def to_dict(self) -> Dict:
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "violations": [{"kind": v.kind, "message": v.message} for v in self.violations],
            "warnings": self.warnings,
            "available_balance": self.available_balance,
            "will_auto_approve": self.will_auto_approve,
            "next_window_start": self.next_window_start,
            "settings_version": self.settings_version,
            "remaining_limits": self.remaining_limits,
        }


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def current_counters(agent: User, today: date):
    """(daily count, daily amount, weekly count, weekly amount) as of today."""
    if agent.payout_daily_reset_on == today:
        daily = (agent.payout_daily_count or 0, as_money(agent.payout_daily_amount))
    else:
        daily = (0, Decimal("0"))
    if agent.payout_weekly_reset_on == _week_start(today):
        weekly = (agent.payout_weekly_count or 0, as_money(agent.payout_weekly_amount))
    else:
        weekly = (0, Decimal("0"))
    return daily + weekly


class PayoutService:
    def __init__(self, db: Session):
        self.db = db
        self.commissions = CommissionService(db)
        self.policy_store = PayoutSettingsService(db)
        self.settlement = SettlementService(db)

    # ── Lookups ──────────────────────────────────────────────────────

    def get_request(self, request_id: int, for_update: bool = False) -> PayoutRequest:
        query = self.db.query(PayoutRequest).filter(PayoutRequest.id == request_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        payout = query.first()
        if not payout:
            raise PayoutRequestNotFoundError(request_id)
        return payout

    def outstanding_request(self, agent_id: int) -> Optional[PayoutRequest]:
        return (
            self.db.query(PayoutRequest)
            .filter(
                PayoutRequest.agent_id == agent_id,
                PayoutRequest.status.in_([
                    PayoutStatus.PENDING.value, PayoutStatus.APPROVED.value, PayoutStatus.ON_HOLD.value,
                ]),
            )
            .first()
        )

    def window_status(self, now: Optional[datetime] = None) -> WindowStatus:
        return evaluate_window(self.policy_store.load_policy(), now or payout_now())

    # ── Validation ───────────────────────────────────────────────────

    def validate_request(
        self,
        agent_id: int,
        amount,
        method: Optional[str] = None,
        account_details: Optional[str] = None,
        now: Optional[datetime] = None,
        policy: Optional[PayoutPolicy] = None,
    ) -> ValidationReport:
        """Check a prospective request against every guard without changing anything."""
        policy = policy or self.policy_store.load_policy()
        now = now or payout_now()
        agent = load_agent(self.db, agent_id)
        amount = Decimal(str(amount))

        report = ValidationReport(settings_version=policy.version)
        violations = report.violations

        # Amount
        if amount <= 0:
            violations.append(Violation("validation", "Amount must be greater than zero"))
        if amount < policy.min_withdrawal:
            violations.append(Violation("validation", f"Minimum withdrawal amount is KSh {policy.min_withdrawal:,.0f}"))
        if amount > policy.max_withdrawal:
            violations.append(Violation("validation", f"Maximum withdrawal amount is KSh {policy.max_withdrawal:,.0f}"))
        if policy.processing_fee > 0 and amount <= policy.processing_fee:
            violations.append(Violation(
                "validation", f"Amount must be greater than the processing fee of KSh {policy.processing_fee:,.0f}"
            ))

        # Method and account
        if method is not None:
            violations.extend(self._method_violations(method, account_details))

        # Holds and schedule
        if policy.global_hold:
            detail = f": {policy.hold_reason}" if policy.hold_reason else ""
            violations.append(Violation("policy", f"Payouts are currently on hold{detail}"))
        else:
            window = evaluate_window(policy, now)
            if not window.allowed:
                violations.append(Violation("policy", window.reason))
                report.next_window_start = window.next_window_start
                if window.next_window_start:
                    report.warnings.append(
                        f"Next payout window opens {window.next_window_start.strftime('%A %d %b %Y %H:%M')}"
                    )
        if agent.payout_hold:
            violations.append(Violation(
                "policy", f"Your payouts are on hold: {agent.payout_hold_reason or 'Contact support for details'}"
            ))

        # Balance
        report.available_balance = self.commissions.pending_balance(agent_id)
        if amount > report.available_balance:
            violations.append(Violation(
                "balance",
                f"Insufficient pending commissions. Available: KSh {report.available_balance:,.0f}, "
                f"Requested: KSh {amount:,.0f}",
            ))

        # One outstanding request per agent
        existing = self.outstanding_request(agent_id)
        if existing:
            violations.append(Violation(
                "conflict", f"You already have an outstanding payout request (#{existing.id}, {existing.status})"
            ))

        # Rate limits
        violations.extend(self._rate_limit_violations(agent, amount, policy, now.date(), report))

        # Auto-approval outlook
        report.will_auto_approve = policy.will_auto_approve(amount)
        if policy.require_manager_approval:
            report.warnings.append("All payout requests require manager approval")
        elif not report.will_auto_approve:
            report.warnings.append(
                f"Requests above KSh {policy.auto_approval_threshold:,.0f} require manual approval"
            )
        if policy.processing_fee > 0:
            report.warnings.append(
                f"A processing fee of KSh {policy.processing_fee:,.0f} will be deducted; "
                f"you will receive KSh {max(amount - policy.processing_fee, Decimal('0')):,.0f}"
            )
        return report

    @staticmethod
    def _method_violations(method, account_details: Optional[str]) -> List[Violation]:
        try:
            method = PayoutMethod(method)
        except ValueError:
            return [Violation("validation", f"Invalid payout method: {method}")]

        account = (account_details or "").strip()
        if not account:
            return [Violation("validation", "Account details are required")]
        if method == PayoutMethod.MOBILE_MONEY and not MOBILE_MONEY_RE.match(account.replace(" ", "")):
            return [Violation("validation", "Invalid mobile money number. Use format 07XXXXXXXX or +2547XXXXXXXX")]
        return []

    @staticmethod
    def _rate_limit_violations(
        agent: User, amount: Decimal, policy: PayoutPolicy, today: date, report: ValidationReport
    ) -> List[Violation]:
        daily_count, daily_amount, weekly_count, weekly_amount = current_counters(agent, today)
        report.remaining_limits = {
            "daily": {
                "requests": max(0, policy.daily_request_limit - daily_count),
                "amount": max(Decimal("0"), policy.daily_amount_limit - daily_amount),
            },
            "weekly": {
                "requests": max(0, policy.weekly_request_limit - weekly_count),
                "amount": max(Decimal("0"), policy.weekly_amount_limit - weekly_amount),
            },
        }

        violations = []
        if daily_count >= policy.daily_request_limit:
            violations.append(Violation(
                "policy", f"Daily request limit exceeded ({policy.daily_request_limit} requests per day)"
            ))
        if daily_amount + amount > policy.daily_amount_limit:
            violations.append(Violation(
                "policy", f"Daily amount limit exceeded (KSh {policy.daily_amount_limit:,.0f} per day)"
            ))
        if weekly_count >= policy.weekly_request_limit:
            violations.append(Violation(
                "policy", f"Weekly request limit exceeded ({policy.weekly_request_limit} requests per week)"
            ))
        if weekly_amount + amount > policy.weekly_amount_limit:
            violations.append(Violation(
                "policy", f"Weekly amount limit exceeded (KSh {policy.weekly_amount_limit:,.0f} per week)"
            ))
        return violations

    @staticmethod
    def _count_request(agent: User, amount: Decimal, today: date):
        daily_count, daily_amount, weekly_count, weekly_amount = current_counters(agent, today)
        agent.payout_daily_count = daily_count + 1
        agent.payout_daily_amount = daily_amount + amount
        agent.payout_daily_reset_on = today
        agent.payout_weekly_count = weekly_count + 1
        agent.payout_weekly_amount = weekly_amount + amount
        agent.payout_weekly_reset_on = _week_start(today)

    # ── Creation ─────────────────────────────────────────────────────

    def create_request(
        self,
        agent_id: int,
        amount,
        method,
        account_details: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PayoutRequest:
        policy = self.policy_store.load_policy()
        now = now or payout_now()
        amount = Decimal(str(amount))

        report = self.validate_request(agent_id, amount, method, account_details, now=now, policy=policy)
        if not report.is_valid:
            logger.warning(f"Payout request by agent {agent_id} for KSh {amount} refused: {'; '.join(report.errors)}")
            raise PayoutValidationError(report.violations, report.warnings, report.next_window_start)

        agent = load_agent(self.db, agent_id)
        stamp = datetime.utcnow()
        payout = PayoutRequest(
            agent_id=agent_id,
            amount=amount,
            method=PayoutMethod(method).value,
            account_details=account_details.strip(),
            status=PayoutStatus.PENDING.value,
            notes=(notes or "").strip(),
            requested_at=stamp,
            commission_ids=[],
            auto_approved=False,
            auto_paid=False,
            auto_approval_threshold=policy.auto_approval_threshold,
            validation_warnings=report.warnings,
            validated_at=stamp,
            settings_version=policy.version,
            processing_fee=policy.processing_fee,
        )
        if report.will_auto_approve:
            payout.status = PayoutStatus.APPROVED.value
            payout.auto_approved = True
            payout.processed_at = stamp
            payout.processed_by = settings.SYSTEM_ACTOR_ID
            payout.auto_processed_at = stamp
            payout.append_note(f"Auto-approved (amount within KSh {policy.auto_approval_threshold:,.0f} threshold)")

        self._count_request(agent, amount, now.date())
        self.db.add(payout)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if self.outstanding_request(agent_id) is None:
                raise
            logger.warning(f"Concurrent payout request for agent {agent_id} refused")
            raise PayoutValidationError([
                Violation("conflict", "You already have an outstanding payout request"),
            ])
        self.db.refresh(payout)

        logger.info(f"Payout request {payout.id} created: agent {agent_id}, KSh {amount}, {payout.status}")

        if payout.auto_approved:
            self._auto_pay(payout)
        return payout

    def _auto_pay(self, payout: PayoutRequest):
        """Best effort: on failure the request stays approved with a note."""
        try:
            begin_ledger_transaction(self.db)
            result = self.settlement.settle(payout)
            self._apply_paid(payout, result, settings.SYSTEM_ACTOR_ID, auto=True)
            self.db.commit()
        except InsufficientBalanceError as e:
            self.db.rollback()
            payout.append_note("Auto-approved but insufficient commission balance for auto-payment")
            self.db.commit()
            logger.warning(f"Auto-payment of payout {payout.id} skipped: {e}")
        except (PayoutEngineError, SQLAlchemyError) as e:
            self.db.rollback()
            payout.append_note(f"Auto-approved but auto-payment failed: {e}")
            self.db.commit()
            logger.error(f"Auto-payment of payout {payout.id} failed: {e}", exc_info=True)
        self.db.refresh(payout)

    # ── Transitions ──────────────────────────────────────────────────

    @staticmethod
    def _check_transition(payout: PayoutRequest, action: str):
        if payout.status in [s.value for s in TERMINAL_STATUSES]:
            raise StateConflictError(f"Payout request has already been {payout.status}", current_status=payout.status)
        if payout.status not in ALLOWED_FROM[action]:
            raise StateConflictError(
                f"Cannot {action} a payout request that is {payout.status}", current_status=payout.status
            )

    @staticmethod
    def _stamp(payout: PayoutRequest, actor_id, notes: Optional[str] = None):
        payout.processed_at = datetime.utcnow()
        payout.processed_by = str(actor_id) if actor_id is not None else None
        if notes and notes.strip():
            payout.append_note(notes.strip())

    def _apply_paid(self, payout: PayoutRequest, result: SettlementResult, actor_id, auto: bool = False):
        payout.status = PayoutStatus.PAID.value
        payout.commission_ids = list(result.paid_commission_ids)
        self._stamp(payout, actor_id)
        if auto:
            payout.auto_paid = True
            payout.auto_processed_at = payout.processed_at
            payout.append_note("Auto-paid")

    def approve(self, request_id: int, actor_id, notes: Optional[str] = None) -> PayoutRequest:
        payout = self.get_request(request_id, for_update=True)
        self._check_transition(payout, "approve")
        payout.status = PayoutStatus.APPROVED.value
        self._stamp(payout, actor_id, notes)
        self.db.commit()
        self.db.refresh(payout)
        logger.info(f"Payout request {request_id} approved by {actor_id}")
        return payout

    def pay(self, request_id: int, actor_id, notes: Optional[str] = None) -> PayoutRequest:
        policy = self.policy_store.load_policy()
        begin_ledger_transaction(self.db)
        try:
            payout = self.get_request(request_id, for_update=True)
            self._check_transition(payout, "pay")
            self._check_holds(payout, policy)
            result = self.settlement.settle(payout)
            self._apply_paid(payout, result, actor_id)
            if notes and notes.strip():
                payout.append_note(notes.strip())
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(payout)
        logger.info(f"Payout request {request_id} paid by {actor_id}: KSh {result.total_paid}")
        return payout

    def _check_holds(self, payout: PayoutRequest, policy: PayoutPolicy):
        if policy.global_hold:
            detail = f": {policy.hold_reason}" if policy.hold_reason else ""
            raise PolicyGateError(f"Payouts are currently on hold{detail}")
        agent = self.db.query(User).filter(User.id == payout.agent_id).first()
        if agent and agent.payout_hold:
            raise PolicyGateError(f"Agent payouts are on hold: {agent.payout_hold_reason or 'no reason given'}")

    def reject(self, request_id: int, actor_id, reason: Optional[str], notes: Optional[str] = None) -> PayoutRequest:
        payout = self.get_request(request_id, for_update=True)
        self._check_transition(payout, "reject")

        reason = (reason or "").strip()
        if len(reason) < REJECTION_REASON_MIN_LENGTH:
            raise PayoutValidationError([Violation(
                "validation", f"Rejection reason must be at least {REJECTION_REASON_MIN_LENGTH} characters long"
            )])
        if len(reason) > REJECTION_REASON_MAX_LENGTH:
            raise PayoutValidationError([Violation(
                "validation", f"Rejection reason cannot exceed {REJECTION_REASON_MAX_LENGTH} characters"
            )])

        payout.status = PayoutStatus.REJECTED.value
        payout.rejection_reason = reason
        self._stamp(payout, actor_id, notes)
        self.db.commit()
        self.db.refresh(payout)
        logger.info(f"Payout request {request_id} rejected by {actor_id}: {reason}")
        return payout

    def hold(self, request_id: int, actor_id, notes: Optional[str] = None) -> PayoutRequest:
        payout = self.get_request(request_id, for_update=True)
        self._check_transition(payout, "hold")
        payout.status = PayoutStatus.ON_HOLD.value
        self._stamp(payout, actor_id, notes)
        self.db.commit()
        self.db.refresh(payout)
        logger.info(f"Payout request {request_id} put on hold by {actor_id}")
        return payout

    def release(self, request_id: int, actor_id, notes: Optional[str] = None) -> PayoutRequest:
        payout = self.get_request(request_id, for_update=True)
        self._check_transition(payout, "release")
        payout.status = PayoutStatus.PENDING.value
        self._stamp(payout, actor_id, notes)
        self.db.commit()
        self.db.refresh(payout)
        logger.info(f"Payout request {request_id} released by {actor_id}")
        return payout

    def process(
        self,
        request_id: int,
        action: str,
        actor_id,
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> PayoutRequest:
        if action not in ACTIONS:
            raise PayoutValidationError([Violation(
                "validation", f"Invalid action '{action}'. Use one of: {', '.join(ACTIONS)}"
            )])
        if action == "reject":
            return self.reject(request_id, actor_id, rejection_reason, notes)
        return getattr(self, action)(request_id, actor_id, notes)

    def bulk_process(
        self,
        request_ids: Sequence[int],
        action: str,
        actor_id,
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> Dict:
        """Apply one action to many requests; each succeeds or fails on its own."""
        if action == "reject" and not (rejection_reason or "").strip():
            rejection_reason = BULK_REJECTION_REASON

        processed: List[int] = []
        errors: List[Dict] = []
        for request_id in request_ids:
            try:
                self.process(request_id, action, actor_id, notes, rejection_reason)
                processed.append(request_id)
            except PayoutEngineError as e:
                errors.append({"id": request_id, "error": str(e), "kind": e.kind})
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Bulk {action} of payout request {request_id} failed: {e}", exc_info=True)
                errors.append({"id": request_id, "error": "Database error while processing request", "kind": "database"})

        logger.info(
            f"Bulk {action} by {actor_id}: {len(processed)}/{len(request_ids)} processed, {len(errors)} failed"
        )
        return {
            "action": action,
            "processed_count": len(processed),
            "total_requested": len(request_ids),
            "processed_ids": processed,
            "errors": errors,
        }

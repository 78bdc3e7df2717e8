"""Tests for the payout request workflow."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from payouts.core.errors import (
    AgentNotFoundError,
    InsufficientBalanceError,
    PayoutRequestNotFoundError,
    PayoutValidationError,
    PolicyGateError,
    StateConflictError,
)
from payouts.models import Commission, PayoutRequest
from payouts.services.commission import CommissionService
from payouts.services.payout import BULK_REJECTION_REASON, PayoutService
from payouts.services.payout_settings import PayoutSettingsService

from conftest import nairobi

PHONE = "0712345678"
WEDNESDAY = nairobi(2026, 10, 14, 12, 0)


def _create(db, agent, amount, now=WEDNESDAY, **kwargs):
    kwargs.setdefault("method", "mobile_money")
    kwargs.setdefault("account_details", PHONE)
    return PayoutService(db).create_request(agent.id, amount, now=now, **kwargs)


def _violation_kinds(exc):
    return {v.kind for v in exc.violations}


class TestCreateRequest:
    def test_small_request_is_auto_paid(self, db, agent, make_commission) -> None:
        first = make_commission(agent, 300)
        second = make_commission(agent, 400)

        payout = _create(db, agent, 500)

        assert payout.status == "paid"
        assert payout.auto_approved is True
        assert payout.auto_paid is True
        assert payout.processed_by == "system"
        assert payout.commission_ids == [first.id, second.id]
        assert payout.settings_version == 1
        assert payout.auto_approval_threshold == Decimal("1000")
        assert CommissionService(db).pending_balance(agent.id) == Decimal("200")

    def test_large_request_waits_for_approval(self, db, agent, make_commission) -> None:
        make_commission(agent, 5000)

        payout = _create(db, agent, 2000)

        assert payout.status == "pending"
        assert payout.auto_approved is False
        assert payout.processed_by is None
        assert any("manual approval" in w for w in payout.validation_warnings)
        assert CommissionService(db).pending_balance(agent.id) == Decimal("5000")

    def test_manager_approval_disables_auto_approval(self, db, agent, make_commission) -> None:
        make_commission(agent, 5000)
        PayoutSettingsService(db).update_auto_approval(actor_id="1", require_manager_approval=True)

        assert _create(db, agent, 500).status == "pending"

    def test_auto_pay_shortfall_leaves_request_approved(self, db, agent, make_commission, monkeypatch) -> None:
        make_commission(agent, 800)
        service = PayoutService(db)

        def short(payout, now=None):
            raise InsufficientBalanceError(Decimal("500"), Decimal("0"), agent.id)

        monkeypatch.setattr(service.settlement, "settle", short)
        payout = service.create_request(agent.id, 500, "mobile_money", PHONE, now=WEDNESDAY)

        assert payout.status == "approved"
        assert payout.auto_paid is False
        assert "insufficient commission balance" in payout.notes
        assert CommissionService(db).pending_balance(agent.id) == Decimal("800")

    def test_auto_pay_failure_is_noted(self, db, agent, make_commission, monkeypatch) -> None:
        make_commission(agent, 800)
        service = PayoutService(db)

        def broken(payout, now=None):
            raise StateConflictError("ledger busy")

        monkeypatch.setattr(service.settlement, "settle", broken)
        payout = service.create_request(agent.id, 500, "mobile_money", PHONE, now=WEDNESDAY)

        assert payout.status == "approved"
        assert "auto-payment failed: ledger busy" in payout.notes

    def test_counts_towards_rate_limits(self, db, agent, make_commission) -> None:
        make_commission(agent, 5000)
        _create(db, agent, 2000)
        db.refresh(agent)
        assert agent.payout_daily_count == 1
        assert agent.payout_daily_amount == Decimal("2000")
        assert agent.payout_weekly_count == 1
        assert agent.payout_daily_reset_on == WEDNESDAY.date()


class TestCreateValidation:
    def test_collects_every_violation(self, db, agent, make_commission) -> None:
        make_commission(agent, 50)

        with pytest.raises(PayoutValidationError) as exc:
            _create(db, agent, 60, account_details="12345")

        errors = exc.value.errors
        assert any("Minimum withdrawal amount" in e for e in errors)
        assert any("Insufficient pending commissions" in e for e in errors)
        assert any("Invalid mobile money number" in e for e in errors)
        assert _violation_kinds(exc.value) == {"validation", "balance"}
        assert db.query(PayoutRequest).count() == 0

    def test_above_maximum(self, db, agent, make_commission) -> None:
        make_commission(agent, 60000)
        with pytest.raises(PayoutValidationError, match="Maximum withdrawal amount"):
            _create(db, agent, 50001)

    def test_bank_requires_account(self, db, agent, make_commission) -> None:
        make_commission(agent, 5000)
        with pytest.raises(PayoutValidationError, match="Account details are required"):
            _create(db, agent, 200, method="bank", account_details="  ")

    def test_global_hold(self, db, agent, make_commission) -> None:
        make_commission(agent, 5000)
        PayoutSettingsService(db).set_global_hold(True, "Quarterly audit", actor_id="1")

        with pytest.raises(PayoutValidationError) as exc:
            _create(db, agent, 200)
        assert "Payouts are currently on hold: Quarterly audit" in exc.value.errors
        assert _violation_kinds(exc.value) == {"policy"}

    def test_agent_hold(self, db, agent, make_commission) -> None:
        make_commission(agent, 5000)
        PayoutSettingsService(db).set_agent_hold(agent.id, True, "KYC pending", actor_id="1")

        with pytest.raises(PayoutValidationError, match="KYC pending"):
            _create(db, agent, 200)

    def test_closed_window_reports_next_start(self, db, agent, make_commission) -> None:
        make_commission(agent, 5000)
        PayoutSettingsService(db).update_settings(
            {"schedule_enabled": True, "schedule_day_of_week": 5}, actor_id="1"
        )

        with pytest.raises(PayoutValidationError) as exc:
            _create(db, agent, 200, now=WEDNESDAY)
        assert exc.value.next_window_start == nairobi(2026, 10, 16, 7, 0)

        payout = _create(db, agent, 200, now=nairobi(2026, 10, 16, 9, 0))
        assert payout.status == "paid"

    def test_one_outstanding_request(self, db, agent, make_commission) -> None:
        make_commission(agent, 5000)
        first = _create(db, agent, 2000)

        with pytest.raises(PayoutValidationError) as exc:
            _create(db, agent, 150)
        assert _violation_kinds(exc.value) == {"conflict"}

        PayoutService(db).reject(first.id, actor_id="1", reason="Wrong number")
        assert _create(db, agent, 150).status == "paid"

    def test_outstanding_request_enforced_by_database(self, db, agent, make_payout_request) -> None:
        make_payout_request(agent, 100, status="on_hold")
        db.add(PayoutRequest(
            agent_id=agent.id, amount=Decimal("100"), method="mobile_money",
            account_details=PHONE, status="pending",
        ))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_other_integrity_errors_are_not_conflicts(self, db, agent, make_commission, monkeypatch) -> None:
        make_commission(agent, 5000)
        PayoutSettingsService(db).get_current_settings()

        def failing_commit():
            raise IntegrityError(
                "INSERT INTO payout_requests", {}, Exception("NOT NULL constraint failed: payout_requests.method")
            )

        monkeypatch.setattr(db, "commit", failing_commit)
        with pytest.raises(IntegrityError, match="NOT NULL"):
            _create(db, agent, 2000)
        monkeypatch.undo()

        assert PayoutService(db).outstanding_request(agent.id) is None

    def test_daily_request_limit(self, db, agent, make_commission) -> None:
        make_commission(agent, 5000)
        PayoutSettingsService(db).update_settings({"max_requests_per_day": 1}, actor_id="1")
        _create(db, agent, 200)

        with pytest.raises(PayoutValidationError, match="Daily request limit exceeded"):
            _create(db, agent, 200)

        assert _create(db, agent, 200, now=WEDNESDAY + timedelta(days=1)).status == "paid"

    def test_weekly_amount_limit(self, db, agent, make_commission) -> None:
        make_commission(agent, 5000)
        PayoutSettingsService(db).update_settings({"max_amount_per_week": 500}, actor_id="1")
        _create(db, agent, 300)

        with pytest.raises(PayoutValidationError, match="Weekly amount limit exceeded"):
            _create(db, agent, 300, now=WEDNESDAY + timedelta(days=1))

        # Next Monday starts a new week
        assert _create(db, agent, 300, now=WEDNESDAY + timedelta(days=5)).status == "paid"

    def test_amount_must_exceed_processing_fee(self, db, agent, make_commission) -> None:
        make_commission(agent, 5000)
        PayoutSettingsService(db).update_settings({"processing_fee": 150}, actor_id="1")

        with pytest.raises(PayoutValidationError, match="processing fee"):
            _create(db, agent, 120)

        payout = _create(db, agent, 500)
        assert payout.processing_fee == Decimal("150")
        assert any("processing fee" in w for w in payout.validation_warnings)

    def test_unknown_agent(self, db) -> None:
        with pytest.raises(AgentNotFoundError):
            PayoutService(db).create_request(404, 200, "mobile_money", PHONE, now=WEDNESDAY)


class TestValidateRequest:
    def test_report_without_side_effects(self, db, agent, make_commission) -> None:
        make_commission(agent, 700)

        report = PayoutService(db).validate_request(agent.id, 500, "mobile_money", "+254712345678", now=WEDNESDAY)

        assert report.is_valid
        assert report.will_auto_approve is True
        assert report.available_balance == Decimal("700")
        assert report.remaining_limits["daily"]["requests"] == 5
        assert db.query(PayoutRequest).count() == 0
        db.refresh(agent)
        assert agent.payout_daily_count == 0

    def test_report_lists_errors(self, db, agent) -> None:
        report = PayoutService(db).validate_request(agent.id, 500, now=WEDNESDAY)
        assert not report.is_valid
        assert report.to_dict()["errors"] == report.errors


class TestTransitions:
    def test_approve_then_pay(self, db, agent, make_commission, make_payout_request) -> None:
        entry = make_commission(agent, 3000)
        payout = make_payout_request(agent, 2000, status="pending")
        service = PayoutService(db)

        approved = service.approve(payout.id, actor_id="7", notes="Looks fine")
        assert approved.status == "approved"
        assert approved.processed_by == "7"
        assert "Looks fine" in approved.notes

        paid = service.pay(payout.id, actor_id="7")
        assert paid.status == "paid"
        assert paid.commission_ids == [entry.id]
        assert CommissionService(db).pending_balance(agent.id) == Decimal("1000")

    def test_pay_directly_from_pending(self, db, agent, make_commission, make_payout_request) -> None:
        make_commission(agent, 3000)
        payout = make_payout_request(agent, 2000, status="pending")
        assert PayoutService(db).pay(payout.id, actor_id="7").status == "paid"

    def test_pay_with_insufficient_balance(self, db, agent, make_commission, make_payout_request) -> None:
        make_commission(agent, 500)
        payout = make_payout_request(agent, 2000)

        with pytest.raises(InsufficientBalanceError) as exc:
            PayoutService(db).pay(payout.id, actor_id="7")

        assert exc.value.available == Decimal("500")
        db.refresh(payout)
        assert payout.status == "approved"
        assert db.query(Commission).filter(Commission.status == "paid").count() == 0

    def test_pay_blocked_by_global_hold(self, db, agent, make_commission, make_payout_request) -> None:
        make_commission(agent, 3000)
        payout = make_payout_request(agent, 2000)
        PayoutSettingsService(db).set_global_hold(True, "Bank outage", actor_id="1")

        with pytest.raises(PolicyGateError, match="Bank outage"):
            PayoutService(db).pay(payout.id, actor_id="7")
        db.refresh(payout)
        assert payout.status == "approved"

    def test_reject_needs_a_reason(self, db, agent, make_payout_request) -> None:
        payout = make_payout_request(agent, 2000, status="pending")
        service = PayoutService(db)

        with pytest.raises(PayoutValidationError, match="at least 3 characters"):
            service.reject(payout.id, actor_id="7", reason="  no ")
        with pytest.raises(PayoutValidationError, match="cannot exceed 500"):
            service.reject(payout.id, actor_id="7", reason="x" * 501)

        rejected = service.reject(payout.id, actor_id="7", reason="  Duplicate request ")
        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Duplicate request"

    def test_terminal_states_refuse_transitions(self, db, agent, make_payout_request) -> None:
        payout = make_payout_request(agent, 2000, status="paid")
        service = PayoutService(db)

        for action in ("approve", "pay", "hold", "release"):
            with pytest.raises(StateConflictError) as exc:
                service.process(payout.id, action, actor_id="7")
            assert exc.value.current_status == "paid"
        with pytest.raises(StateConflictError, match="already been paid"):
            service.reject(payout.id, actor_id="7", reason="Too late")

    def test_hold_and_release(self, db, agent, make_payout_request) -> None:
        payout = make_payout_request(agent, 2000)
        service = PayoutService(db)

        assert service.hold(payout.id, actor_id="7").status == "on_hold"
        with pytest.raises(StateConflictError):
            service.approve(payout.id, actor_id="7")
        assert service.release(payout.id, actor_id="7").status == "pending"
        with pytest.raises(StateConflictError):
            service.release(payout.id, actor_id="7")

    def test_approve_twice_conflicts(self, db, agent, make_payout_request) -> None:
        payout = make_payout_request(agent, 2000, status="approved")
        with pytest.raises(StateConflictError, match="Cannot approve"):
            PayoutService(db).approve(payout.id, actor_id="7")

    def test_unknown_action(self, db, agent, make_payout_request) -> None:
        payout = make_payout_request(agent, 2000)
        with pytest.raises(PayoutValidationError, match="Invalid action"):
            PayoutService(db).process(payout.id, "refund", actor_id="7")

    def test_missing_request(self, db) -> None:
        with pytest.raises(PayoutRequestNotFoundError):
            PayoutService(db).approve(12345, actor_id="7")


class TestBulkProcess:
    def test_each_payment_settles_its_own_ledger(self, db, make_user, make_commission, make_payout_request) -> None:
        rich_a, rich_b, poor = make_user("agent"), make_user("agent"), make_user("agent")
        entry_a = make_commission(rich_a, 3000)
        entry_b = make_commission(rich_b, 2500)
        make_commission(poor, 100)
        payouts = [
            make_payout_request(rich_a, 2000),
            make_payout_request(rich_b, 2500),
            make_payout_request(poor, 2000),
        ]

        result = PayoutService(db).bulk_process([p.id for p in payouts], "pay", actor_id="7")

        assert result["processed_count"] == 2
        assert result["total_requested"] == 3
        assert result["errors"] == [{"id": payouts[2].id, "error": result["errors"][0]["error"], "kind": "balance"}]

        db.refresh(entry_a)
        db.refresh(entry_b)
        assert entry_a.payout_request_id == payouts[0].id
        assert entry_b.payout_request_id == payouts[1].id
        assert entry_b.status == "paid"

    def test_database_error_does_not_stop_the_batch(self, db, make_user, make_commission, make_payout_request, monkeypatch) -> None:
        a, b = make_user("agent"), make_user("agent")
        make_commission(a, 500)
        entry_b = make_commission(b, 500)
        first = make_payout_request(a, 300)
        second = make_payout_request(b, 300)

        service = PayoutService(db)
        settle = service.settlement.settle

        def locked_for_first(payout, now=None):
            if payout.id == first.id:
                raise OperationalError("UPDATE users", {}, Exception("database is locked"))
            return settle(payout, now)

        monkeypatch.setattr(service.settlement, "settle", locked_for_first)
        result = service.bulk_process([first.id, second.id], "pay", actor_id="7")

        assert result["processed_ids"] == [second.id]
        assert result["errors"] == [
            {"id": first.id, "error": "Database error while processing request", "kind": "database"}
        ]
        db.refresh(first)
        db.refresh(entry_b)
        assert first.status == "approved"
        assert entry_b.status == "paid"

    def test_bulk_reject_uses_default_reason(self, db, make_user, make_payout_request) -> None:
        payouts = [make_payout_request(make_user("agent"), 2000, status="pending") for _ in range(2)]

        result = PayoutService(db).bulk_process([p.id for p in payouts], "reject", actor_id="7")

        assert result["processed_count"] == 2
        for payout in payouts:
            db.refresh(payout)
            assert payout.rejection_reason == BULK_REJECTION_REASON

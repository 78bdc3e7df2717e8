"""HTTP-level tests for the payout API."""

import csv
import io
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from payouts.core.database import get_db
from payouts.main import app
from payouts.services.reporting import EXPORT_COLUMNS


@pytest.fixture
def client(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def as_user(user) -> dict:
    return {"X-User-Id": str(user.id)}


class TestAccess:
    def test_health(self, client) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_user_header(self, client) -> None:
        response = client.get("/api/payouts/window")
        assert response.status_code == 401
        assert response.json() == {"detail": "Not authenticated"}

    def test_admin_routes_reject_agents(self, client, agent) -> None:
        response = client.get("/api/payouts/stats", headers=as_user(agent))
        assert response.status_code == 403

    def test_window_open_without_schedule(self, client, agent) -> None:
        response = client.get("/api/payouts/window", headers=as_user(agent))
        assert response.status_code == 200
        assert response.json()["allowed"] is True


class TestPayoutRoutes:
    def test_agent_creates_request(self, client, agent, make_commission) -> None:
        make_commission(agent, 1500)
        make_commission(agent, 1500)

        response = client.post(
            "/api/payouts/",
            json={"amount": "2000", "method": "mobile_money", "account_details": "0712345678"},
            headers=as_user(agent),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["agent_id"] == agent.id
        assert Decimal(str(body["amount"])) == Decimal("2000")
        assert body["auto_approved"] is False

    def test_validation_errors_listed(self, client, agent) -> None:
        response = client.post(
            "/api/payouts/",
            json={"amount": "50", "method": "mobile_money", "account_details": "12345"},
            headers=as_user(agent),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["kind"] == "validation"
        assert {v["kind"] for v in body["violations"]} == {"validation", "balance"}
        assert any("Minimum withdrawal" in e for e in body["errors"])

    def test_validate_is_a_dry_run(self, client, agent, make_commission) -> None:
        make_commission(agent, 800)

        response = client.post("/api/payouts/validate", json={"amount": "500"}, headers=as_user(agent))

        assert response.status_code == 200
        body = response.json()
        assert body["is_valid"] is True
        assert body["will_auto_approve"] is True
        assert Decimal(str(body["available_balance"])) == Decimal("800")
        assert client.get("/api/payouts/my-payouts", headers=as_user(agent)).json()["pagination"]["total"] == 0

    def test_admin_rejects_then_conflict(self, client, agent, admin, make_payout_request) -> None:
        payout = make_payout_request(agent, 500, status="pending")
        url = f"/api/payouts/{payout.id}/process"

        denied = client.put(url, json={"action": "reject", "rejection_reason": "Duplicate"}, headers=as_user(agent))
        assert denied.status_code == 403

        rejected = client.put(url, json={"action": "reject", "rejection_reason": "Duplicate"}, headers=as_user(admin))
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "rejected"
        assert rejected.json()["processed_by"] == str(admin.id)

        again = client.put(url, json={"action": "approve"}, headers=as_user(admin))
        assert again.status_code == 409
        assert again.json()["kind"] == "conflict"
        assert again.json()["current_status"] == "rejected"

    def test_other_agents_cannot_read_request(self, client, agent, make_user, make_payout_request) -> None:
        payout = make_payout_request(agent, 500)
        stranger = make_user("agent")

        assert client.get(f"/api/payouts/{payout.id}", headers=as_user(stranger)).status_code == 403
        assert client.get(f"/api/payouts/{payout.id}", headers=as_user(agent)).status_code == 200

    def test_unknown_request(self, client, admin) -> None:
        response = client.get("/api/payouts/999", headers=as_user(admin))
        assert response.status_code == 404
        assert response.json()["kind"] == "integrity"

    def test_unknown_status_filter_is_rejected(self, client, admin) -> None:
        assert client.get("/api/payouts/?status_filter=bogus", headers=as_user(admin)).status_code == 422
        assert client.get("/api/payouts/export?status_filter=bogus", headers=as_user(admin)).status_code == 422

    def test_status_filter(self, client, agent, admin, make_user, make_payout_request) -> None:
        make_payout_request(agent, 500, status="paid")
        make_payout_request(make_user("agent"), 700, status="pending")

        body = client.get("/api/payouts/?status_filter=pending", headers=as_user(admin)).json()

        assert body["pagination"]["total"] == 1
        assert body["payouts"][0]["status"] == "pending"

    def test_csv_export(self, client, agent, admin, make_payout_request) -> None:
        make_payout_request(agent, 750, status="paid")

        response = client.get("/api/payouts/export", headers=as_user(admin))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0] == EXPORT_COLUMNS
        assert rows[1][3] == "750.00"


class TestSettingsRoutes:
    def test_update_and_history(self, client, admin) -> None:
        response = client.put(
            "/api/payout-settings/",
            json={"min_withdrawal_amount": "200", "modification_reason": "Raise the floor"},
            headers=as_user(admin),
        )

        assert response.status_code == 200
        assert response.json()["version"] == 2
        assert Decimal(str(response.json()["min_withdrawal_amount"])) == Decimal("200")

        history = client.get("/api/payout-settings/history", headers=as_user(admin)).json()
        assert len(history) == 1
        assert history[0]["reason"] == "Raise the floor"
        assert history[0]["changes"]["min_withdrawal_amount"] == {"from": "100", "to": "200"}

    def test_invalid_update_is_400(self, client, admin) -> None:
        response = client.put(
            "/api/payout-settings/",
            json={"min_withdrawal_amount": "60000"},
            headers=as_user(admin),
        )
        assert response.status_code == 400
        assert "less than maximum" in response.json()["detail"]

    def test_rate_beyond_stored_precision_is_422(self, client, admin) -> None:
        response = client.put(
            "/api/payout-settings/",
            json={"agent_order_commission_rate": "0.12345"},
            headers=as_user(admin),
        )
        assert response.status_code == 422

    def test_agents_can_read_settings(self, client, agent) -> None:
        response = client.get("/api/payout-settings/", headers=as_user(agent))
        assert response.status_code == 200
        assert response.json()["schedule_day_of_week"] == 5

    def test_global_hold_blocks_requests(self, client, agent, admin, make_commission) -> None:
        make_commission(agent, 500)
        held = client.post(
            "/api/payout-settings/global-hold",
            json={"is_held": True, "reason": "Audit"},
            headers=as_user(admin),
        )
        assert held.json()["global_payout_hold"] is True

        window = client.get("/api/payouts/window", headers=as_user(agent)).json()
        assert window["allowed"] is False
        assert window["reason"] == "global hold"


class TestCommissionRoutes:
    def test_rate_card(self, client, agent) -> None:
        body = client.get("/api/commissions/rates", headers=as_user(agent)).json()
        assert Decimal(str(body["delivery_commission"]["amount"])) == Decimal("200")
        assert body["agent_order_commission"]["percentage"] == 3.0
        assert body["settings_version"] == 1

    def test_unknown_filters_are_rejected(self, client, admin, agent) -> None:
        assert client.get("/api/commissions/?status_filter=bogus", headers=as_user(admin)).status_code == 422
        assert client.get("/api/commissions/?type_filter=bonus", headers=as_user(admin)).status_code == 422
        assert client.get("/api/commissions/my-commissions?status_filter=bogus", headers=as_user(agent)).status_code == 422

    def test_known_filter_passes_through(self, client, admin, agent, make_commission) -> None:
        make_commission(agent, 200)
        make_commission(agent, 300, status="cancelled")

        body = client.get("/api/commissions/?status_filter=cancelled", headers=as_user(admin)).json()

        assert body["pagination"]["total"] == 1
        assert Decimal(str(body["commissions"][0]["amount"])) == Decimal("300")

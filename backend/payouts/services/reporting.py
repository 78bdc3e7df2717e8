"""Read-only reporting over payout requests and commissions."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

import pandas as pd
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from payouts.core.config import settings
from payouts.core.errors import PayoutValidationError, Violation
from payouts.models.commission import Commission, CommissionStatus, CommissionType
from payouts.models.payout import PayoutRequest, PayoutStatus
from payouts.models.user import User
from payouts.services.commission import as_money

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "ID", "Agent Name", "Agent Email", "Amount", "Method", "Account Details", "Status",
    "Requested Date", "Processed Date", "Processed By", "Notes",
]


def _coerce_status(status) -> PayoutStatus:
    try:
        return PayoutStatus(status)
    except ValueError:
        raise PayoutValidationError([Violation("validation", f"Unknown payout status: {status}")])


def _page_args(page: int, limit: Optional[int]):
    limit = min(limit or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
    return max(page, 1), limit


def _pagination(page: int, limit: int, total: int) -> Dict:
    return {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit}


class PayoutReportingService:
    def __init__(self, db: Session):
        self.db = db

    def _payout_query(
        self,
        status: Optional[str] = None,
        agent_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ):
        query = self.db.query(PayoutRequest)
        if status:
            query = query.filter(PayoutRequest.status == _coerce_status(status).value)
        if agent_id is not None:
            query = query.filter(PayoutRequest.agent_id == agent_id)
        if start:
            query = query.filter(PayoutRequest.created_at >= start)
        if end:
            query = query.filter(PayoutRequest.created_at <= end)
        return query

    # ── Payout requests ──────────────────────────────────────────────

    def list_payout_requests(
        self,
        status: Optional[str] = None,
        agent_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Dict:
        page, limit = _page_args(page, limit)
        query = self._payout_query(status, agent_id, start, end)
        total = query.count()
        items = (
            query.order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {"payouts": items, "pagination": _pagination(page, limit, total)}

    def agent_payout_history(self, agent_id: int, page: int = 1, limit: Optional[int] = None) -> Dict:
        result = self.list_payout_requests(agent_id=agent_id, page=page, limit=limit)
        paid = (
            self.db.query(func.count(PayoutRequest.id), func.sum(PayoutRequest.amount))
            .filter(PayoutRequest.agent_id == agent_id, PayoutRequest.status == PayoutStatus.PAID.value)
            .one()
        )
        result["summary"] = {"paid_count": paid[0], "paid_amount": as_money(paid[1])}
        return result

    def _by_status(self, start=None, end=None) -> Dict[str, Dict]:
        rows = (
            self._payout_query(start=start, end=end)
            .with_entities(PayoutRequest.status, func.count(PayoutRequest.id), func.sum(PayoutRequest.amount))
            .group_by(PayoutRequest.status)
            .all()
        )
        by_status = {s.value: {"count": 0, "amount": Decimal("0")} for s in PayoutStatus}
        for status, count, amount in rows:
            by_status[status] = {"count": count, "amount": as_money(amount)}
        return by_status

    def payout_stats(self) -> Dict:
        by_status = self._by_status()
        return {
            "by_status": by_status,
            "total_requests": sum(s["count"] for s in by_status.values()),
            "total_amount": sum((s["amount"] for s in by_status.values()), Decimal("0")),
            "pending_amount": by_status["pending"]["amount"] + by_status["approved"]["amount"],
            "paid_amount": by_status["paid"]["amount"],
        }

    def payout_analytics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict:
        """Overall totals, per-status breakdown, top agents and a monthly trend."""
        overall = (
            self._payout_query(start=start, end=end)
            .with_entities(
                func.count(PayoutRequest.id),
                func.sum(PayoutRequest.amount),
                func.avg(PayoutRequest.amount),
            )
            .one()
        )

        top_agents = (
            self.db.query(
                PayoutRequest.agent_id,
                User.full_name,
                User.email,
                func.count(PayoutRequest.id).label("count"),
                func.sum(PayoutRequest.amount).label("amount"),
            )
            .join(User, User.id == PayoutRequest.agent_id)
            .filter(PayoutRequest.status == PayoutStatus.PAID.value)
        )
        if start:
            top_agents = top_agents.filter(PayoutRequest.created_at >= start)
        if end:
            top_agents = top_agents.filter(PayoutRequest.created_at <= end)
        top_agents = (
            top_agents.group_by(PayoutRequest.agent_id, User.full_name, User.email)
            .order_by(func.sum(PayoutRequest.amount).desc())
            .limit(10)
            .all()
        )

        return {
            "overall": {
                "total_requests": overall[0] or 0,
                "total_amount": as_money(overall[1]),
                "average_amount": as_money(overall[2]).quantize(Decimal("0.01")),
            },
            "by_status": self._by_status(start, end),
            "top_agents": [
                {"agent_id": r.agent_id, "name": r.full_name, "email": r.email, "count": r.count, "amount": as_money(r.amount)}
                for r in top_agents
            ],
            "monthly_trend": self._monthly_trend(start, end),
        }

    def _monthly_trend(self, start=None, end=None) -> List[Dict]:
        rows = (
            self._payout_query(start=start, end=end)
            .with_entities(PayoutRequest.created_at, PayoutRequest.amount, PayoutRequest.status)
            .all()
        )
        if not rows:
            return []

        df = pd.DataFrame([tuple(r) for r in rows], columns=["created_at", "amount", "status"])
        df["month"] = pd.to_datetime(df["created_at"]).dt.strftime("%Y-%m")
        df["amount"] = df["amount"].map(as_money)
        df["paid_amount"] = df["amount"].where(df["status"] == PayoutStatus.PAID.value, Decimal("0"))

        trend = []
        for month, group in df.groupby("month", sort=True):
            trend.append({
                "month": month,
                "count": int(len(group)),
                "amount": sum(group["amount"], Decimal("0")),
                "paid_amount": sum(group["paid_amount"], Decimal("0")),
            })
        return trend

    def auto_approval_stats(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict:
        row = (
            self._payout_query(start=start, end=end)
            .with_entities(
                func.count(PayoutRequest.id),
                func.sum(case((PayoutRequest.auto_approved == True, 1), else_=0)),
                func.sum(case((PayoutRequest.auto_paid == True, 1), else_=0)),
                func.sum(case((PayoutRequest.auto_approved == True, PayoutRequest.amount), else_=0)),
            )
            .one()
        )
        total, auto_approved, auto_paid, auto_amount = row[0] or 0, int(row[1] or 0), int(row[2] or 0), row[3]
        return {
            "total_requests": total,
            "auto_approved": auto_approved,
            "auto_paid": auto_paid,
            "manual": total - auto_approved,
            "auto_approved_amount": as_money(auto_amount),
            "auto_approval_rate": round(auto_approved / total * 100, 1) if total else 0.0,
            "auto_payment_success_rate": round(auto_paid / auto_approved * 100, 1) if auto_approved else 0.0,
        }

    def export_payouts_csv(
        self,
        status: Optional[str] = None,
        agent_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> str:
        rows = (
            self._payout_query(status, agent_id, start, end)
            .outerjoin(User, User.id == PayoutRequest.agent_id)
            .with_entities(PayoutRequest, User.full_name, User.email)
            .order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc())
            .all()
        )
        records = [
            {
                "ID": p.id,
                "Agent Name": name or "",
                "Agent Email": email or "",
                "Amount": f"{as_money(p.amount):.2f}",
                "Method": p.method,
                "Account Details": p.account_details,
                "Status": p.status,
                "Requested Date": p.requested_at.strftime("%Y-%m-%d %H:%M") if p.requested_at else "",
                "Processed Date": p.processed_at.strftime("%Y-%m-%d %H:%M") if p.processed_at else "",
                "Processed By": p.processed_by or "",
                "Notes": p.notes or "",
            }
            for p, name, email in rows
        ]
        logger.info(f"Exported {len(records)} payout request(s) to CSV")
        return pd.DataFrame(records, columns=EXPORT_COLUMNS).to_csv(index=False)

    # ── Commissions ──────────────────────────────────────────────────

    def commission_analytics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict:
        query = self.db.query(Commission)
        if start:
            query = query.filter(Commission.created_at >= start)
        if end:
            query = query.filter(Commission.created_at <= end)

        overall = query.with_entities(func.count(Commission.id), func.sum(Commission.amount)).one()

        by_type = {t.value: {"count": 0, "amount": Decimal("0")} for t in CommissionType}
        for ctype, count, amount in (
            query.with_entities(Commission.type, func.count(Commission.id), func.sum(Commission.amount))
            .group_by(Commission.type)
            .all()
        ):
            by_type[ctype] = {"count": count, "amount": as_money(amount)}

        by_status = {s.value: {"count": 0, "amount": Decimal("0")} for s in CommissionStatus}
        for status, count, amount in (
            query.with_entities(Commission.status, func.count(Commission.id), func.sum(Commission.amount))
            .group_by(Commission.status)
            .all()
        ):
            by_status[status] = {"count": count, "amount": as_money(amount)}

        top_agents = (
            query.join(User, User.id == Commission.agent_id)
            .filter(Commission.status != CommissionStatus.CANCELLED.value)
            .with_entities(
                Commission.agent_id,
                User.full_name,
                User.email,
                func.count(Commission.id).label("count"),
                func.sum(Commission.amount).label("amount"),
            )
            .group_by(Commission.agent_id, User.full_name, User.email)
            .order_by(func.sum(Commission.amount).desc())
            .limit(10)
            .all()
        )

        return {
            "overall": {"total_commissions": overall[0] or 0, "total_amount": as_money(overall[1])},
            "by_type": by_type,
            "by_status": by_status,
            "top_agents": [
                {"agent_id": r.agent_id, "name": r.full_name, "email": r.email, "count": r.count, "amount": as_money(r.amount)}
                for r in top_agents
            ],
        }

"""Error taxonomy for the commission and payout engine.

Every engine error is a ValueError so route handlers written as
``except ValueError as e: raise HTTPException(400, str(e))`` keep working.
Each class carries the fields a caller needs for reconciliation or display
and a default HTTP status used by the app-level exception handler.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional


class PayoutEngineError(ValueError):
    status_code = 400
    kind = "error"

    def to_dict(self) -> dict:
        return {"detail": str(self), "kind": self.kind}


# ── Validation ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class Violation:
    """One violated constraint. kind is validation, policy, balance or conflict."""
    kind: str
    message: str


class InvalidCommissionInput(PayoutEngineError):
    kind = "validation"


class PayoutValidationError(PayoutEngineError):
    """A payout request failed validation; carries every violated constraint."""
    kind = "validation"

    def __init__(
        self,
        violations: List[Violation],
        warnings: Optional[List[str]] = None,
        next_window_start: Optional[datetime] = None,
    ):
        self.violations = list(violations)
        self.warnings = list(warnings or [])
        self.next_window_start = next_window_start
        super().__init__("Payout request validation failed: " + "; ".join(v.message for v in self.violations))

    @property
    def errors(self) -> List[str]:
        return [v.message for v in self.violations]

    def to_dict(self) -> dict:
        return {
            "detail": "Payout request validation failed",
            "kind": self.kind,
            "errors": self.errors,
            "violations": [{"kind": v.kind, "message": v.message} for v in self.violations],
            "warnings": self.warnings,
            "next_window_start": self.next_window_start.isoformat() if self.next_window_start else None,
        }


class InvalidPolicyUpdate(PayoutEngineError):
    kind = "validation"


# ── Policy gates ─────────────────────────────────────────────────────

class PolicyGateError(PayoutEngineError):
    """Payouts are not allowed right now (hold, schedule, rate limit)."""
    status_code = 403
    kind = "policy"

    def __init__(self, reason: str, next_window_start: Optional[datetime] = None):
        self.reason = reason
        self.next_window_start = next_window_start
        super().__init__(reason)

    def to_dict(self) -> dict:
        return {
            "detail": self.reason,
            "kind": self.kind,
            "next_window_start": self.next_window_start.isoformat() if self.next_window_start else None,
        }


# ── Money ────────────────────────────────────────────────────────────

class InsufficientBalanceError(PayoutEngineError):
    kind = "balance"

    def __init__(self, requested: Decimal, available: Decimal, agent_id: Optional[int] = None):
        self.requested = requested
        self.available = available
        self.agent_id = agent_id
        super().__init__(
            f"Insufficient pending commissions. Available: KSh {available:,.0f}, Requested: KSh {requested:,.0f}"
        )

    def to_dict(self) -> dict:
        return {
            "detail": str(self),
            "kind": self.kind,
            "requested": float(self.requested),
            "available": float(self.available),
        }


# ── State conflicts ──────────────────────────────────────────────────

class StateConflictError(PayoutEngineError):
    status_code = 409
    kind = "conflict"

    def __init__(self, message: str, current_status: Optional[str] = None):
        self.current_status = current_status
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"detail": str(self), "kind": self.kind, "current_status": self.current_status}


# ── Integrity ────────────────────────────────────────────────────────

class NotFoundError(PayoutEngineError):
    status_code = 404
    kind = "integrity"
    entity = "Record"

    def __init__(self, entity_id):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} {entity_id} not found")


class AgentNotFoundError(NotFoundError):
    entity = "Agent"

    def __init__(self, entity_id, reason: str = "not found"):
        self.entity_id = entity_id
        self.reason = reason
        PayoutEngineError.__init__(self, f"Invalid agent {entity_id}: {reason}")


class OrderNotFoundError(NotFoundError):
    entity = "Order"


class CommissionNotFoundError(NotFoundError):
    entity = "Commission"


class PayoutRequestNotFoundError(NotFoundError):
    entity = "Payout request"


class PolicyUnavailableError(PayoutEngineError):
    """Payout settings could not be loaded; no commission is computed without them."""
    status_code = 503
    kind = "integrity"

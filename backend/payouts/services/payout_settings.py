"""Payout settings store.

One live settings row, created with defaults the first time anything reads
it. Every mutation bumps ``version`` and appends a PayoutSettingsChange with
a field-level diff; the history table is never rewritten.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from payouts.core.errors import AgentNotFoundError, InvalidPolicyUpdate, PolicyUnavailableError
from payouts.models.payout_settings import (
    DEFAULT_SETTINGS, SETTINGS_ROW_ID, PayoutSettings, PayoutSettingsChange,
)
from payouts.models.user import User
from payouts.schemas.payout_settings import PayoutPolicy, PayoutSettingsUpdate, normalize_hhmm

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = tuple(DEFAULT_SETTINGS.keys())
_MONEY_FIELDS = {
    "min_withdrawal_amount", "max_withdrawal_amount", "delivery_commission_amount",
    "agent_order_commission_rate", "processing_fee", "auto_approval_threshold",
    "max_amount_per_day", "max_amount_per_week",
}

# Digits after the decimal point each column can store
_PLACES = {key: 2 for key in _MONEY_FIELDS}
_PLACES["agent_order_commission_rate"] = 4


def _decimal_places(value: Decimal) -> int:
    return max(0, -value.normalize().as_tuple().exponent)


def _audit_value(value):
    """JSON-safe representation for the change log."""
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return value


def _same(old, new) -> bool:
    if isinstance(old, Decimal) or isinstance(new, Decimal):
        return old is not None and new is not None and Decimal(str(old)) == Decimal(str(new))
    return old == new


class PayoutSettingsService:
    def __init__(self, db: Session):
        self.db = db

    # ── Reads ────────────────────────────────────────────────────────

    def get_current_settings(self) -> PayoutSettings:
        """Return the live settings row, creating it with defaults if missing."""
        row = self.db.query(PayoutSettings).filter(PayoutSettings.id == SETTINGS_ROW_ID).first()
        if row:
            return row

        row = PayoutSettings(id=SETTINGS_ROW_ID, version=1, **DEFAULT_SETTINGS)
        try:
            with self.db.begin_nested():
                self.db.add(row)
        except IntegrityError:
            # Another caller created it first
            return self.db.query(PayoutSettings).filter(PayoutSettings.id == SETTINGS_ROW_ID).one()

        self.db.commit()
        self.db.refresh(row)
        logger.info("Created default payout settings")
        return row

    def load_policy(self) -> PayoutPolicy:
        """Snapshot of the current settings. Fails rather than guessing defaults."""
        try:
            return PayoutPolicy.from_row(self.get_current_settings())
        except SQLAlchemyError as e:
            logger.error(f"Could not load payout settings: {e}", exc_info=True)
            raise PolicyUnavailableError("Payout settings are unavailable") from e

    def history(self, limit: int = 50) -> List[PayoutSettingsChange]:
        return (
            self.db.query(PayoutSettingsChange)
            .order_by(PayoutSettingsChange.version.desc(), PayoutSettingsChange.id.desc())
            .limit(limit)
            .all()
        )

    # ── Mutations ────────────────────────────────────────────────────

    def update_settings(
        self,
        changes: Union[PayoutSettingsUpdate, Dict[str, Any]],
        actor_id: Optional[str],
        reason: Optional[str] = None,
    ) -> PayoutSettings:
        """Apply a partial update, validate the merged result and log the diff."""
        if isinstance(changes, PayoutSettingsUpdate):
            reason = reason or changes.modification_reason
            values = changes.column_values()
        else:
            values = dict(changes)

        unknown = sorted(set(values) - set(EDITABLE_FIELDS))
        if unknown:
            raise InvalidPolicyUpdate(f"Unknown payout setting(s): {', '.join(unknown)}")

        for key in ("schedule_start_time", "schedule_end_time"):
            if key in values:
                try:
                    values[key] = normalize_hhmm(values[key])
                except ValueError as e:
                    raise InvalidPolicyUpdate(f"{key}: {e}")
        for key in _MONEY_FIELDS & set(values):
            values[key] = Decimal(str(values[key]))

        row = self.get_current_settings()
        merged = {field: values.get(field, getattr(row, field)) for field in EDITABLE_FIELDS}
        self._validate(merged)

        diff = {}
        for field, new in values.items():
            old = getattr(row, field)
            if not _same(old, new):
                diff[field] = {"from": _audit_value(old), "to": _audit_value(new)}

        if not diff:
            return row

        for field in diff:
            setattr(row, field, values[field])
        row.version = (row.version or 1) + 1
        row.last_modified_by = str(actor_id) if actor_id is not None else None

        self.db.add(PayoutSettingsChange(
            settings_id=row.id,
            version=row.version,
            actor_id=row.last_modified_by,
            changed_at=datetime.utcnow(),
            changes=diff,
            reason=reason or "Settings update",
        ))
        self.db.commit()
        self.db.refresh(row)

        logger.info(f"Payout settings v{row.version} by {actor_id}: {', '.join(sorted(diff))}")
        return row

    def set_global_hold(self, is_held: bool, reason: Optional[str], actor_id: Optional[str]) -> PayoutSettings:
        return self.update_settings(
            {"global_payout_hold": is_held, "hold_reason": (reason or "").strip()},
            actor_id,
            reason=reason or f"Global payout hold {'enabled' if is_held else 'disabled'}",
        )

    def update_auto_approval(
        self,
        actor_id: Optional[str],
        auto_approval_threshold: Optional[Decimal] = None,
        require_manager_approval: Optional[bool] = None,
    ) -> PayoutSettings:
        values = {}
        if auto_approval_threshold is not None:
            values["auto_approval_threshold"] = auto_approval_threshold
        if require_manager_approval is not None:
            values["require_manager_approval"] = require_manager_approval
        return self.update_settings(values, actor_id, reason="Auto-approval settings update")

    def set_agent_hold(
        self,
        agent_id: int,
        is_held: bool,
        reason: Optional[str],
        actor_id: Optional[str],
    ) -> User:
        agent = self.db.query(User).filter(User.id == agent_id).first()
        if not agent or not agent.is_agent:
            raise AgentNotFoundError(agent_id)

        agent.payout_hold = is_held
        agent.payout_hold_reason = (reason or "").strip() if is_held else ""
        agent.payout_hold_set_by = str(actor_id) if is_held and actor_id is not None else None
        agent.payout_hold_set_at = datetime.utcnow() if is_held else None
        self.db.commit()
        self.db.refresh(agent)

        logger.info(f"Agent {agent_id} payout hold {'set' if is_held else 'released'} by {actor_id}")
        return agent

    # ── Validation ───────────────────────────────────────────────────

    @staticmethod
    def _validate(merged: Dict[str, Any]):
        errors = []
        if Decimal(merged["min_withdrawal_amount"]) < 1:
            errors.append("Minimum withdrawal amount must be at least 1")
        if Decimal(merged["min_withdrawal_amount"]) >= Decimal(merged["max_withdrawal_amount"]):
            errors.append("Minimum withdrawal amount must be less than maximum withdrawal amount")
        if Decimal(merged["delivery_commission_amount"]) < 0:
            errors.append("Delivery commission amount cannot be negative")
        rate = Decimal(merged["agent_order_commission_rate"])
        if rate < 0 or rate > 1:
            errors.append("Agent order commission rate must be between 0 and 1")
        if not 0 <= int(merged["schedule_day_of_week"]) <= 6:
            errors.append("Schedule day of week must be 0 (Sunday) to 6 (Saturday)")
        if merged["schedule_start_time"] >= merged["schedule_end_time"]:
            errors.append("Start time must be before end time")
        if Decimal(merged["processing_fee"]) < 0:
            errors.append("Processing fee cannot be negative")
        if Decimal(merged["auto_approval_threshold"]) < 0:
            errors.append("Auto approval threshold cannot be negative")
        for field in ("max_requests_per_day", "max_amount_per_day", "max_requests_per_week", "max_amount_per_week"):
            if Decimal(str(merged[field])) < 1:
                errors.append(f"{field} must be at least 1")
        for field, places in _PLACES.items():
            if _decimal_places(Decimal(str(merged[field]))) > places:
                errors.append(f"{field} allows at most {places} decimal places")
        if errors:
            raise InvalidPolicyUpdate("; ".join(errors))

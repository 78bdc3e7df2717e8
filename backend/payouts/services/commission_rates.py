"""Commission rate calculator.

Pure functions over a PayoutPolicy snapshot; nothing here touches the
database.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Dict, List, Optional

from payouts.core.errors import InvalidCommissionInput, PolicyUnavailableError
from payouts.models.commission import CommissionType
from payouts.schemas.payout_settings import PayoutPolicy

WHOLE_UNIT = Decimal("1")
RATE_CARD_EXAMPLE_TOTALS = (Decimal("1000"), Decimal("5000"), Decimal("10000"), Decimal("20000"))


@dataclass(frozen=True)
class CommissionQuote:
    amount: Decimal
    rate: Decimal
    is_fixed_amount: bool
    delivery_count: int
    settings_version: Optional[int]
    commission_type: CommissionType


def round_to_unit(value: Decimal) -> Decimal:
    """Round to whole currency units, halves away from zero."""
    return Decimal(value).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


def coerce_commission_type(commission_type) -> CommissionType:
    try:
        return CommissionType(commission_type)
    except ValueError:
        raise InvalidCommissionInput(f"Unknown commission type: {commission_type}")


def _coerce_total(order_total) -> Decimal:
    try:
        total = Decimal(str(order_total))
    except (InvalidOperation, TypeError):
        raise InvalidCommissionInput(f"Invalid order total: {order_total}")
    if not total.is_finite() or total < 0:
        raise InvalidCommissionInput(f"Order total must be a non-negative amount, got {order_total}")
    return total


def calculate_commission(
    order_total,
    commission_type,
    delivery_count: int,
    policy: Optional[PayoutPolicy],
) -> CommissionQuote:
    """
    Price a commission for one order event.

    delivery: fixed amount per delivered item (rate is the per-item amount)
    agent_order: percentage of the order total, rounded to whole units
    """
    if policy is None:
        raise PolicyUnavailableError("Payout settings unavailable; commission not calculated")

    commission_type = coerce_commission_type(commission_type)
    total = _coerce_total(order_total)
    if delivery_count is None or int(delivery_count) < 1:
        raise InvalidCommissionInput(f"Delivery count must be at least 1, got {delivery_count}")
    delivery_count = int(delivery_count)

    rates = policy.commission_rates
    if commission_type == CommissionType.DELIVERY:
        rate = rates.delivery_amount
        amount = round_to_unit(rate * delivery_count)
        is_fixed = True
    else:
        rate = rates.agent_order_rate
        amount = round_to_unit(total * rate)
        is_fixed = False

    return CommissionQuote(
        amount=amount,
        rate=rate,
        is_fixed_amount=is_fixed,
        delivery_count=delivery_count,
        settings_version=policy.version,
        commission_type=commission_type,
    )


def describe_commission(quote: CommissionQuote, order_total) -> str:
    if quote.commission_type == CommissionType.DELIVERY:
        return (
            f"Delivery commission: KSh {quote.rate:,.0f} x {quote.delivery_count} "
            f"item{'s' if quote.delivery_count != 1 else ''} = KSh {quote.amount:,.0f}"
        )
    return (
        f"Agent order commission: {quote.rate * 100:.1f}% of KSh {Decimal(str(order_total)):,.0f} "
        f"= KSh {quote.amount:,.0f}"
    )


def rate_card(policy: PayoutPolicy) -> Dict:
    """Current rates plus worked examples, as shown to agents."""
    rates = policy.commission_rates
    examples: List[Dict] = []
    for total in RATE_CARD_EXAMPLE_TOTALS:
        examples.append({
            "order_value": total,
            "agent_order_commission": round_to_unit(total * rates.agent_order_rate),
        })
    return {
        "delivery_commission": {
            "amount": rates.delivery_amount,
            "is_fixed_amount": True,
            "description": f"KSh {rates.delivery_amount:,.0f} per delivered item",
        },
        "agent_order_commission": {
            "rate": rates.agent_order_rate,
            "percentage": float(rates.agent_order_rate * 100),
            "is_fixed_amount": False,
            "description": f"{rates.agent_order_rate * 100:.1f}% of order value",
        },
        "examples": examples,
        "settings_version": policy.version,
    }

from payouts.models.user import User, UserRole
from payouts.models.order import Order, OrderStatus
from payouts.models.payout_settings import PayoutSettings, PayoutSettingsChange
from payouts.models.payout import PayoutRequest, PayoutStatus, PayoutMethod
from payouts.models.commission import Commission, CommissionStatus, CommissionType

__all__ = [
    "User",
    "UserRole",
    "Order",
    "OrderStatus",
    "PayoutSettings",
    "PayoutSettingsChange",
    "PayoutRequest",
    "PayoutStatus",
    "PayoutMethod",
    "Commission",
    "CommissionStatus",
    "CommissionType",
]

"""Payout window and hold evaluation."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import pytz
from dateutil.relativedelta import relativedelta, MO, TU, WE, TH, FR, SA, SU

from payouts.core.config import settings
from payouts.schemas.payout_settings import PayoutPolicy, PayoutSchedule

# Indexed by schedule day of week, 0 = Sunday
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
_WEEKDAYS = (SU, MO, TU, WE, TH, FR, SA)

REASON_GLOBAL_HOLD = "global hold"
REASON_SCHEDULING_DISABLED = "scheduling disabled"
REASON_IN_WINDOW = "within payout window"


@dataclass(frozen=True)
class WindowStatus:
    allowed: bool
    reason: str
    next_window_start: Optional[datetime] = None


def payout_now() -> datetime:
    """Current wall-clock time in the payout timezone."""
    return datetime.now(pytz.timezone(settings.PAYOUT_TIMEZONE))


def schedule_day_of_week(moment: datetime) -> int:
    return (moment.weekday() + 1) % 7


def next_window_start(schedule: PayoutSchedule, now: datetime) -> datetime:
    """Next occurrence of the window's day at its start time, strictly after now."""
    hour, minute = (int(part) for part in schedule.start_time.split(":"))
    wall_clock = now.replace(tzinfo=None)
    candidate = wall_clock + relativedelta(
        weekday=_WEEKDAYS[schedule.day_of_week], hour=hour, minute=minute, second=0, microsecond=0
    )
    if candidate <= wall_clock:
        candidate += relativedelta(weeks=1)

    tz = now.tzinfo
    if tz is None:
        return candidate
    if hasattr(tz, "localize"):
        return tz.localize(candidate)
    return candidate.replace(tzinfo=tz)


def evaluate_window(policy: PayoutPolicy, now: datetime) -> WindowStatus:
    if policy.global_hold:
        return WindowStatus(allowed=False, reason=REASON_GLOBAL_HOLD)

    schedule = policy.schedule
    if not schedule.enabled:
        return WindowStatus(allowed=True, reason=REASON_SCHEDULING_DISABLED)

    current_time = now.strftime("%H:%M")
    if (
        schedule_day_of_week(now) == schedule.day_of_week
        and schedule.start_time <= current_time <= schedule.end_time
    ):
        return WindowStatus(allowed=True, reason=REASON_IN_WINDOW)

    return WindowStatus(
        allowed=False,
        reason=(
            f"Payouts are only allowed on {DAY_NAMES[schedule.day_of_week]} "
            f"between {schedule.start_time} and {schedule.end_time}"
        ),
        next_window_start=next_window_start(schedule, now),
    )

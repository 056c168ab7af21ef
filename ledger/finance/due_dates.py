"""
Due Dates and Utilization Alerts

Payment due days are stored as a day of month (1-31). A due day past the
end of a short month falls on that month's last day.
"""

import calendar
from datetime import date
from enum import Enum
from typing import Optional

# Utilization at or above this is always 'danger', whatever the user's alert
DANGER_UTILIZATION = 75

DEFAULT_ALERT_THRESHOLD = 30


class UtilizationStatus(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    DANGER = "danger"


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def calculate_days_until_due(due_day: int, today: Optional[date] = None) -> int:
    """
    Days from `today` until the next payment due date.

    The due day is clamped to each month's length separately, so a card due
    on the 31st is due on 29 Feb in a leap year and on 31 Mar the month
    after.
    """
    today = today or date.today()

    days_this_month = _days_in_month(today.year, today.month)
    due_this_month = min(due_day, days_this_month)
    if today.day <= due_this_month:
        return due_this_month - today.day

    if today.month == 12:
        next_year, next_month = today.year + 1, 1
    else:
        next_year, next_month = today.year, today.month + 1
    due_next_month = min(due_day, _days_in_month(next_year, next_month))

    return days_this_month - today.day + due_next_month


def get_utilization_status(
    utilization: float,
    alert_threshold: int = DEFAULT_ALERT_THRESHOLD,
) -> UtilizationStatus:
    """Classify utilization as good, warning (at the user's alert) or danger."""
    if utilization >= DANGER_UTILIZATION:
        return UtilizationStatus.DANGER
    if utilization >= alert_threshold:
        return UtilizationStatus.WARNING
    return UtilizationStatus.GOOD

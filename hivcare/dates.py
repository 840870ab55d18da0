"""
Calendar arithmetic on naive UTC datetimes.
"""

import calendar
from datetime import datetime


def add_months(moment: datetime, months: int) -> datetime:
    """Shift *moment* by whole calendar months, clamping to the month's last day."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)

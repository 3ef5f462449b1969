# billing/billing_dates.py

"""
Billing start dates.

Admins can start a family's billing on any of the first 15 days of a
month; the chosen day becomes the Stripe billing_cycle_anchor. Dates are
computed in the center's timezone.
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo
import re

from django.utils import timezone

BILLING_TIMEZONE = 'America/Chicago'
MAX_BILLING_START_DAY = 15
MAX_BILLING_ANCHOR_DAYS = 365

LEADING_INT_RE = re.compile(r'^\s*([+-]?\d+)')


def format_ordinal(n):
    """1 -> '1st', 12 -> '12th', 22 -> '22nd'"""
    if 11 <= n % 100 <= 13:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(n % 10, 'th')
    return f"{n}{suffix}"


def _is_valid_day(day):
    return (
        isinstance(day, int)
        and not isinstance(day, bool)
        and 1 <= day <= MAX_BILLING_START_DAY
    )


def get_next_billing_date(day, now=None):
    """
    Next occurrence of `day` at midnight center time. Today counts as
    already passed.

    Raises:
        ValueError: day is not an integer in 1..15
    """
    if not _is_valid_day(day):
        raise ValueError(f"Invalid billing day: {day}. Must be integer 1-{MAX_BILLING_START_DAY}")

    tz = ZoneInfo(BILLING_TIMEZONE)
    now = (now or timezone.now()).astimezone(tz)

    year, month = now.year, now.month
    if now.day >= day:
        month += 1
        if month > 12:
            month = 1
            year += 1

    return datetime(year, month, day, tzinfo=tz)


def validate_billing_cycle_anchor(timestamp, now=None):
    """
    A Stripe billing_cycle_anchor (epoch seconds) must be strictly in the
    future and at most 365 days ahead.

    Raises:
        ValueError
    """
    now_ts = int((now or timezone.now()).timestamp())

    if timestamp <= now_ts:
        raise ValueError("Billing start date must be in the future")

    if timestamp > now_ts + MAX_BILLING_ANCHOR_DAYS * 24 * 60 * 60:
        raise ValueError(f"Billing start date cannot be more than {MAX_BILLING_ANCHOR_DAYS} days in the future")


def parse_billing_day(value):
    """'5' -> 5, '1.5' -> 1, '' / 'abc' / '16' -> None"""
    if value is None:
        return None
    match = LEADING_INT_RE.match(str(value))
    if not match:
        return None
    day = int(match.group(1))
    return day if 1 <= day <= MAX_BILLING_START_DAY else None


def get_billing_day_options():
    return [
        {'value': str(day), 'label': f"{format_ordinal(day)} of the month"}
        for day in range(1, MAX_BILLING_START_DAY + 1)
    ]


def format_billing_date(value):
    """Aware datetime -> 'January 15, 2026' in center time"""
    local = value.astimezone(ZoneInfo(BILLING_TIMEZONE))
    return f"{local.strftime('%B')} {local.day}, {local.year}"


def billing_anchor_timestamp(day, now=None):
    """Epoch seconds of the next billing date for `day`"""
    return int(get_next_billing_date(day, now=now).timestamp())

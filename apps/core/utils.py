# core/utils.py

"""
Central utilities shared by every app: center timezone handling, money
formatting (all amounts are integer cents, like Stripe) and small date
helpers for weekend classes.
"""
from django.conf import settings
from django.utils import timezone
from decimal import Decimal, InvalidOperation
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo
import logging

logger = logging.getLogger(__name__)

DEFAULT_CENTER_TIMEZONE = 'America/Chicago'


# =============================================================================
# CURRENCY & MONEY FORMATTING
# =============================================================================

def cents_to_dollars(cents):
    """12000 -> Decimal('120.00')"""
    try:
        return (Decimal(int(cents or 0)) / Decimal(100)).quantize(Decimal('0.01'))
    except (ValueError, TypeError, InvalidOperation):
        return Decimal('0.00')


def format_money(cents, include_symbol=True):
    """
    Format an amount in cents as US dollars.

    Example:
        >>> format_money(12000)
        '$120.00'
        >>> format_money(650000, include_symbol=False)
        '6,500.00'
    """
    dollars = cents_to_dollars(cents)
    formatted = f"{abs(dollars):,.2f}"
    sign = '-' if dollars < 0 else ''
    return f"{sign}${formatted}" if include_symbol else f"{sign}{formatted}"


def calculate_percentage(part, whole, decimal_places=2):
    """
    Calculate percentage with safe division.

    Example:
        >>> calculate_percentage(30, 120)
        Decimal('25.00')
    """
    try:
        part = Decimal(str(part or 0))
        whole = Decimal(str(whole or 0))

        if whole == 0:
            return Decimal('0.00')

        percentage = (part / whole) * 100
        return percentage.quantize(Decimal(f'0.{"0" * decimal_places}'))
    except (ValueError, TypeError, InvalidOperation):
        return Decimal('0.00')


# =============================================================================
# CENTER TIMEZONE
# =============================================================================

def get_center_timezone():
    """
    Get the center's operational timezone.

    Returns:
        ZoneInfo: from settings.CENTER_TIMEZONE (defaults to America/Chicago)
    """
    name = getattr(settings, 'CENTER_TIMEZONE', DEFAULT_CENTER_TIMEZONE)
    try:
        return ZoneInfo(name)
    except Exception as e:
        logger.error(f"Invalid CENTER_TIMEZONE '{name}': {e}")
        return ZoneInfo(DEFAULT_CENTER_TIMEZONE)


def get_center_current_time():
    """
    Current time in the center's timezone.

    Example:
        >>> checkin.clock_in_time = get_center_current_time()
    """
    return timezone.now().astimezone(get_center_timezone())


def get_center_today():
    """Today's date in the center's timezone"""
    return get_center_current_time().date()


def localize_datetime(dt):
    """
    Convert a datetime to center time. Naive datetimes are assumed to be
    center time already.
    """
    if dt is None:
        return None

    tz = get_center_timezone()
    if timezone.is_naive(dt):
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def combine_center_time(day, hour, minute=0):
    """Aware datetime for a wall-clock time on a given day in center time"""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=get_center_timezone())


def from_unix_timestamp(value):
    """Stripe epoch seconds -> aware datetime (UTC), None stays None"""
    if value in (None, ''):
        return None
    return datetime.fromtimestamp(int(value), tz=ZoneInfo('UTC'))


# =============================================================================
# WEEKEND CLASS DATES
# =============================================================================

def is_weekend(check_date):
    """Saturday or Sunday"""
    return check_date.weekday() >= 5


def get_weekend_end(session_date):
    """
    End of the weekend a session belongs to: 23:59:59.999999 center time
    on Sunday. Saturday sessions roll forward to the next day; Sunday
    sessions end the same day.
    """
    sunday = session_date + timedelta(days=1) if session_date.weekday() == 5 else session_date
    return combine_center_time(sunday, 23, 59).replace(second=59, microsecond=999999)


def get_weekend_dates(start_date, end_date):
    """All Saturdays and Sundays in [start_date, end_date]"""
    days = []
    current = start_date
    while current <= end_date:
        if is_weekend(current):
            days.append(current)
        current += timedelta(days=1)
    return days


def parse_date(value):
    """'YYYY-MM-DD' or date -> date, anything else None"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return datetime.strptime(str(value).strip(), '%Y-%m-%d').date()
    except ValueError:
        return None

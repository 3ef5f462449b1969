# billing/tuition.py

"""
Tuition rates for both programs, in cents.

Mahad bills each student on graduation status, payment frequency and
billing type. Dugsi bills a family on the number of enrolled children.
"""

from core.utils import format_money

# =============================================================================
# MAHAD
# =============================================================================

MAHAD_BASE_RATES = {
    'NON_GRADUATE': {
        'MONTHLY': 12000,
        'BI_MONTHLY': 11000,  # per month, charged every 2 months
    },
    'GRADUATE': {
        'MONTHLY': 9500,
        'BI_MONTHLY': 9000,
    },
}

SCHOLARSHIP_DISCOUNT = 3000

BILLING_TYPE_LABELS = {
    'FULL_TIME': 'Full Time',
    'FULL_TIME_SCHOLARSHIP': 'Full Time (Scholarship)',
    'PART_TIME': 'Part Time',
    'EXEMPT': 'Exempt',
}

BILLING_TYPE_DESCRIPTIONS = {
    'FULL_TIME': 'Full-time student',
    'FULL_TIME_SCHOLARSHIP': 'Full-time with scholarship ($30 discount)',
    'PART_TIME': 'Part-time student (50% rate)',
    'EXEMPT': 'Exempt from payment (TA, staff, etc.)',
}


def calculate_mahad_rate(graduation_status, payment_frequency, billing_type):
    """
    Amount charged per billing period.

    Example:
        >>> calculate_mahad_rate('NON_GRADUATE', 'MONTHLY', 'FULL_TIME')
        12000
        >>> calculate_mahad_rate('GRADUATE', 'BI_MONTHLY', 'PART_TIME')
        9000
    """
    if not billing_type or billing_type == 'EXEMPT':
        return 0

    frequency = payment_frequency or 'MONTHLY'
    rate = MAHAD_BASE_RATES[graduation_status or 'NON_GRADUATE'][frequency]

    if billing_type == 'PART_TIME':
        rate = rate // 2
    elif billing_type == 'FULL_TIME_SCHOLARSHIP':
        rate = rate - SCHOLARSHIP_DISCOUNT

    if frequency == 'BI_MONTHLY':
        rate = rate * 2

    return rate


def get_mahad_stripe_interval(payment_frequency):
    return {
        'interval': 'month',
        'interval_count': 2 if payment_frequency == 'BI_MONTHLY' else 1,
    }


def should_create_subscription(billing_type):
    return billing_type != 'EXEMPT'


def format_rate(cents):
    """12000 -> '$120.00'"""
    return format_money(cents)


def format_mahad_rate_display(cents, payment_frequency):
    """22000, 'BI_MONTHLY' -> '$220.00/bi-monthly'"""
    suffix = '/bi-monthly' if payment_frequency == 'BI_MONTHLY' else '/month'
    return f"${cents / 100:.2f}{suffix}"


def get_billing_type_description(billing_type):
    return BILLING_TYPE_DESCRIPTIONS.get(billing_type, 'Unknown billing type')


def format_billing_type(billing_type):
    return BILLING_TYPE_LABELS.get(billing_type, billing_type)


def format_graduation_status(status):
    return 'Graduate' if status == 'GRADUATE' else 'Non-Graduate'


# =============================================================================
# DUGSI
# =============================================================================

DUGSI_BASE_RATE = 8000      # 1st and 2nd child
DUGSI_THIRD_CHILD = 7000
DUGSI_FOURTH_PLUS = 6000
MAX_EXPECTED_FAMILY_RATE = 65000


def _is_child_count(value):
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def calculate_dugsi_rate(child_count):
    """
    Monthly family rate.

    Example:
        >>> calculate_dugsi_rate(4)
        29000
    """
    if not _is_child_count(child_count):
        return 0
    return get_rate_breakdown(child_count)['total']


def get_rate_breakdown(child_count):
    if not _is_child_count(child_count):
        return {'first_two': 0, 'third': 0, 'fourth_plus': 0, 'total': 0}

    first_two = DUGSI_BASE_RATE * min(child_count, 2)
    third = DUGSI_THIRD_CHILD if child_count >= 3 else 0
    fourth_plus = DUGSI_FOURTH_PLUS * max(child_count - 3, 0)

    return {
        'first_two': first_two,
        'third': third,
        'fourth_plus': fourth_plus,
        'total': first_two + third + fourth_plus,
    }


def validate_override_amount(override_amount, child_count):
    """
    Check an admin's manual family rate.

    Returns:
        dict: {'valid': bool, 'reason': str | None}. A valid override can
        still carry a warning reason.
    """
    if override_amount is None or override_amount <= 0:
        return {'valid': False, 'reason': 'Override amount must be positive'}

    if not isinstance(override_amount, int) or isinstance(override_amount, bool):
        if float(override_amount) != int(override_amount):
            return {'valid': False, 'reason': 'Override amount must be a whole number'}
        override_amount = int(override_amount)

    if override_amount > MAX_EXPECTED_FAMILY_RATE:
        return {
            'valid': True,
            'reason': f"Override exceeds typical maximum rate of {format_rate(MAX_EXPECTED_FAMILY_RATE)}",
        }

    calculated = calculate_dugsi_rate(child_count)
    if calculated > 0 and abs(override_amount - calculated) / calculated > 0.5:
        return {
            'valid': True,
            'reason': f"Override differs significantly from calculated rate ({format_rate(calculated)})",
        }

    return {'valid': True, 'reason': None}


def format_dugsi_rate_display(cents):
    return f"{format_rate(cents)}/month"


def get_rate_tier_description(child_count):
    if not _is_child_count(child_count):
        return 'No children enrolled'
    if child_count == 1:
        return '1 child at $80/month'
    if child_count == 2:
        return '2 children at $80/month each'
    if child_count == 3:
        return '3 children (2 at $80, 1 at $70)'
    return f"{child_count} children (2 at $80, 1 at $70, {child_count - 3} at $60)"


def get_dugsi_stripe_interval():
    return {'interval': 'month', 'interval_count': 1}

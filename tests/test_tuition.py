# tests/test_tuition.py

import pytest

from billing.tuition import (
    calculate_mahad_rate,
    calculate_dugsi_rate,
    get_rate_breakdown,
    validate_override_amount,
    format_dugsi_rate_display,
    format_mahad_rate_display,
    get_rate_tier_description,
    get_mahad_stripe_interval,
    should_create_subscription,
)


# =============================================================================
# MAHAD
# =============================================================================

@pytest.mark.parametrize('graduation_status, frequency, billing_type, expected', [
    ('NON_GRADUATE', 'MONTHLY', 'FULL_TIME', 12000),
    ('NON_GRADUATE', 'BI_MONTHLY', 'FULL_TIME', 22000),
    ('GRADUATE', 'MONTHLY', 'FULL_TIME', 9500),
    ('GRADUATE', 'BI_MONTHLY', 'PART_TIME', 9000),
    ('NON_GRADUATE', 'MONTHLY', 'PART_TIME', 6000),
    ('NON_GRADUATE', 'MONTHLY', 'FULL_TIME_SCHOLARSHIP', 9000),
    ('GRADUATE', 'BI_MONTHLY', 'FULL_TIME_SCHOLARSHIP', 12000),
])
def test_mahad_rates(graduation_status, frequency, billing_type, expected):
    assert calculate_mahad_rate(graduation_status, frequency, billing_type) == expected


def test_exempt_and_missing_billing_type_are_free():
    assert calculate_mahad_rate('NON_GRADUATE', 'MONTHLY', 'EXEMPT') == 0
    assert calculate_mahad_rate('GRADUATE', 'MONTHLY', None) == 0
    assert not should_create_subscription('EXEMPT')
    assert should_create_subscription('FULL_TIME')


def test_bi_monthly_interval_bills_every_two_months():
    assert get_mahad_stripe_interval('BI_MONTHLY') == {'interval': 'month', 'interval_count': 2}
    assert get_mahad_stripe_interval('MONTHLY') == {'interval': 'month', 'interval_count': 1}


def test_mahad_rate_display():
    assert format_mahad_rate_display(22000, 'BI_MONTHLY') == '$220.00/bi-monthly'
    assert format_mahad_rate_display(12000, 'MONTHLY') == '$120.00/month'


# =============================================================================
# DUGSI
# =============================================================================

@pytest.mark.parametrize('child_count, expected', [
    (1, 8000),
    (2, 16000),
    (3, 23000),
    (4, 29000),
    (6, 41000),
])
def test_dugsi_family_rate(child_count, expected):
    assert calculate_dugsi_rate(child_count) == expected


@pytest.mark.parametrize('child_count', [0, -1, True, 2.5, '3', None])
def test_dugsi_rate_rejects_non_positive_counts(child_count):
    assert calculate_dugsi_rate(child_count) == 0


def test_rate_breakdown_adds_up():
    breakdown = get_rate_breakdown(5)
    assert breakdown == {'first_two': 16000, 'third': 7000, 'fourth_plus': 12000, 'total': 35000}


def test_override_must_be_positive():
    assert validate_override_amount(0, 2) == {'valid': False, 'reason': 'Override amount must be positive'}
    assert validate_override_amount(None, 2)['valid'] is False


def test_override_above_typical_maximum_is_allowed_with_warning():
    result = validate_override_amount(70000, 2)
    assert result['valid'] is True
    assert 'exceeds typical maximum' in result['reason']


def test_override_far_from_calculated_rate_warns():
    result = validate_override_amount(5000, 3)
    assert result['valid'] is True
    assert 'differs significantly' in result['reason']

    assert validate_override_amount(15000, 2) == {'valid': True, 'reason': None}


def test_dugsi_display_helpers():
    assert format_dugsi_rate_display(8000) == '$80.00/month'
    assert get_rate_tier_description(0) == 'No children enrolled'
    assert get_rate_tier_description(5) == '5 children (2 at $80, 1 at $70, 2 at $60)'

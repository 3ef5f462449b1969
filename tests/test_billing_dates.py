# tests/test_billing_dates.py

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from billing.billing_dates import (
    get_next_billing_date,
    validate_billing_cycle_anchor,
    parse_billing_day,
    format_ordinal,
    get_billing_day_options,
    format_billing_date,
    billing_anchor_timestamp,
)

CHICAGO = ZoneInfo('America/Chicago')


def test_next_billing_date_later_this_month():
    now = datetime(2025, 3, 3, 12, 0, tzinfo=CHICAGO)
    assert get_next_billing_date(10, now) == datetime(2025, 3, 10, tzinfo=CHICAGO)


def test_today_counts_as_passed():
    now = datetime(2025, 3, 10, 0, 30, tzinfo=CHICAGO)
    assert get_next_billing_date(10, now) == datetime(2025, 4, 10, tzinfo=CHICAGO)


def test_december_rolls_into_next_year():
    now = datetime(2025, 12, 20, 9, 0, tzinfo=CHICAGO)
    assert get_next_billing_date(1, now) == datetime(2026, 1, 1, tzinfo=CHICAGO)


def test_utc_now_is_read_in_center_time():
    # 03:00 UTC on the 10th is still the 9th in Chicago
    now = datetime(2025, 3, 10, 3, 0, tzinfo=ZoneInfo('UTC'))
    assert get_next_billing_date(10, now) == datetime(2025, 3, 10, tzinfo=CHICAGO)


@pytest.mark.parametrize('day', [0, 16, -1, 1.5, '5', True, None])
def test_invalid_billing_day_raises(day):
    with pytest.raises(ValueError):
        get_next_billing_date(day)


def test_billing_cycle_anchor_window():
    now = datetime(2025, 3, 1, tzinfo=CHICAGO)
    now_ts = int(now.timestamp())

    validate_billing_cycle_anchor(now_ts + 3600, now)

    with pytest.raises(ValueError, match='in the future'):
        validate_billing_cycle_anchor(now_ts, now)

    with pytest.raises(ValueError, match='365 days'):
        validate_billing_cycle_anchor(int((now + timedelta(days=366)).timestamp()), now)


@pytest.mark.parametrize('value, expected', [
    ('5', 5),
    ('1.5', 1),
    (' 15 ', 15),
    ('', None),
    ('abc', None),
    ('16', None),
    ('0', None),
    (None, None),
])
def test_parse_billing_day(value, expected):
    assert parse_billing_day(value) == expected


def test_ordinals_and_options():
    assert [format_ordinal(n) for n in (1, 2, 3, 4, 11, 12, 13, 21, 22)] == [
        '1st', '2nd', '3rd', '4th', '11th', '12th', '13th', '21st', '22nd'
    ]
    options = get_billing_day_options()
    assert len(options) == 15
    assert options[0] == {'value': '1', 'label': '1st of the month'}


def test_format_billing_date_and_anchor():
    assert format_billing_date(datetime(2026, 1, 15, tzinfo=CHICAGO)) == 'January 15, 2026'

    now = datetime(2025, 3, 3, tzinfo=CHICAGO)
    assert billing_anchor_timestamp(5, now) == int(datetime(2025, 3, 5, tzinfo=CHICAGO).timestamp())

# tests/test_geolocation.py

from datetime import date

import pytest
from django.core.exceptions import ImproperlyConfigured

from core.utils import (
    format_money,
    get_weekend_end,
    get_weekend_dates,
    is_weekend,
    parse_date,
)
from dugsi.geolocation import (
    calculate_distance,
    is_within_radius,
    is_within_geofence,
    validate_center_location_config,
)

from .conftest import CENTER_LAT, CENTER_LNG, SATURDAY, SUNDAY, MONDAY


def test_distance_is_zero_at_same_point():
    assert calculate_distance(CENTER_LAT, CENTER_LNG, CENTER_LAT, CENTER_LNG) == 0


def test_distance_of_one_degree_latitude():
    assert calculate_distance(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)


def test_within_radius_boundary():
    # ~0.0003 degrees latitude is about 33 m
    assert is_within_radius(CENTER_LAT + 0.0003, CENTER_LNG, CENTER_LAT, CENTER_LNG)
    assert not is_within_radius(CENTER_LAT + 0.001, CENTER_LNG, CENTER_LAT, CENTER_LNG)
    assert is_within_radius(CENTER_LAT + 0.001, CENTER_LNG, CENTER_LAT, CENTER_LNG, radius_meters=200)


def test_geofence_uses_configured_center():
    assert is_within_geofence(CENTER_LAT, CENTER_LNG)
    assert not is_within_geofence(CENTER_LAT + 0.01, CENTER_LNG)
    assert not is_within_geofence(None, CENTER_LNG)


def test_unconfigured_center_fails_closed(settings):
    settings.IRSHAD_CENTER_LAT = 0
    settings.IRSHAD_CENTER_LNG = 0

    assert not is_within_geofence(0, 0)
    with pytest.raises(ImproperlyConfigured):
        validate_center_location_config()


# =============================================================================
# WEEKEND DATES
# =============================================================================

def test_weekend_helpers():
    assert is_weekend(SATURDAY) and is_weekend(SUNDAY)
    assert not is_weekend(MONDAY)
    assert get_weekend_dates(date(2025, 1, 1), date(2025, 1, 12)) == [
        date(2025, 1, 4), date(2025, 1, 5), date(2025, 1, 11), date(2025, 1, 12)
    ]


def test_saturday_session_stays_open_through_sunday():
    end = get_weekend_end(SATURDAY)
    assert end.date() == SUNDAY
    assert (end.hour, end.minute, end.second) == (23, 59, 59)
    assert get_weekend_end(SUNDAY) == end


def test_parse_date_and_money():
    assert parse_date('2025-01-04') == SATURDAY
    assert parse_date('04/01/2025') is None
    assert format_money(123456) == '$1,234.56'
    assert format_money(-500) == '-$5.00'

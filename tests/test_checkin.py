# tests/test_checkin.py

import json
import uuid
from datetime import datetime, timezone as dt_timezone
from unittest.mock import patch

import pytest
from django.core.exceptions import ValidationError

from core.utils import combine_center_time
from dugsi.models import TeacherCheckIn
from dugsi.services import AUTO_CLOCK_OUT_NOTE, TeacherCheckInService, TeacherService
from people.services import PersonService

from .conftest import CENTER_LAT, CENTER_LNG, SATURDAY, SUNDAY

pytestmark = pytest.mark.django_db

CLOCK_IN_URL = '/dugsi/api/checkins/clock-in/'


def at(hour, minute=0, day=SATURDAY):
    return combine_center_time(day, hour, minute)


def clock_in(teacher, now, shift='MORNING', lat=CENTER_LAT, lng=CENTER_LNG):
    return TeacherCheckInService.clock_in(teacher.pk, shift, lat, lng, now=now)


# =============================================================================
# CHECK-IN WINDOW
# =============================================================================

@pytest.mark.parametrize('hour, minute, can_check_in, reason', [
    (7, 29, False, 'too_early'),
    (7, 30, True, None),
    (10, 30, True, None),
    (10, 31, False, 'too_late'),
])
def test_checkin_window(hour, minute, can_check_in, reason):
    window = TeacherCheckInService.get_checkin_window_status('MORNING', at(hour, minute))
    assert (window['can_check_in'], window['reason']) == (can_check_in, reason)


def test_utc_times_use_the_center_day(teacher):
    # Saturday 19:00 in Chicago is already Sunday in UTC
    saturday_evening = datetime(2025, 1, 5, 1, 0, tzinfo=dt_timezone.utc)

    window = TeacherCheckInService.get_checkin_window_status('MORNING', saturday_evening)
    assert window['reason'] == 'too_late'

    checkin = TeacherCheckInService.admin_clock_in(teacher.pk, 'MORNING', 'Forgot phone', now=saturday_evening)
    assert checkin.date == SATURDAY


def test_late_after_grace_period():
    assert not TeacherCheckInService.is_late_for_shift('MORNING', at(8, 35))
    assert TeacherCheckInService.is_late_for_shift('MORNING', at(8, 36))
    assert TeacherCheckInService.is_late_for_shift('AFTERNOON', at(14, 10))


# =============================================================================
# CLOCK IN / OUT
# =============================================================================

def test_on_time_clock_in_at_center(teacher):
    checkin = clock_in(teacher, at(8, 20))

    assert checkin.date == SATURDAY
    assert checkin.clock_in_valid
    assert not checkin.is_late
    assert checkin.clock_out_time is None


def test_late_clock_in(teacher):
    assert clock_in(teacher, at(8, 40)).is_late


def test_clock_in_away_from_center_is_recorded_as_invalid(teacher):
    checkin = clock_in(teacher, at(8, 20), lat=CENTER_LAT + 0.01)

    assert not checkin.clock_in_valid
    assert checkin.clock_in_lat == pytest.approx(CENTER_LAT + 0.01)


def test_clock_in_too_early(teacher):
    with pytest.raises(ValidationError) as exc:
        clock_in(teacher, at(7, 0))

    assert exc.value.code == 'CHECKIN_WINDOW_CLOSED'
    assert exc.value.params['reason'] == 'too_early'
    assert exc.value.messages == ['Check-in window opens at 7:30 AM']


def test_clock_in_too_late(teacher):
    with pytest.raises(ValidationError) as exc:
        clock_in(teacher, at(11, 0))
    assert exc.value.params['reason'] == 'too_late'


def test_one_checkin_per_shift_per_day(teacher):
    clock_in(teacher, at(8, 20))

    with pytest.raises(ValidationError) as exc:
        clock_in(teacher, at(8, 25))
    assert exc.value.code == 'DUPLICATE_CHECKIN'

    # a new day is a new check-in
    clock_in(teacher, at(8, 20, day=SUNDAY))
    assert TeacherCheckIn.objects.filter(teacher=teacher).count() == 2


def test_teacher_must_work_the_shift(teacher):
    with pytest.raises(ValidationError) as exc:
        clock_in(teacher, at(14, 0), shift='AFTERNOON')
    assert exc.value.code == 'INVALID_SHIFT'


def test_teacher_must_be_in_dugsi(db):
    person = PersonService.create_person_with_contact(name='Ustadh Mahad Only')
    mahad_teacher, _ = TeacherService.create_teacher(person, 'MAHAD_PROGRAM', ['MORNING'])

    with pytest.raises(ValidationError) as exc:
        clock_in(mahad_teacher, at(8, 20))
    assert exc.value.code == 'NOT_ENROLLED_IN_DUGSI'


def test_unknown_teacher(db):
    with pytest.raises(ValidationError) as exc:
        TeacherCheckInService.clock_in(uuid.uuid4(), 'MORNING', CENTER_LAT, CENTER_LNG, now=at(8, 20))
    assert exc.value.code == 'TEACHER_NOT_FOUND'


def test_clock_out(teacher):
    checkin = clock_in(teacher, at(8, 20))

    checked_out = TeacherCheckInService.clock_out(checkin.pk, CENTER_LAT, CENTER_LNG, now=at(12, 0))
    assert checked_out.clock_out_time == at(12, 0)
    assert checked_out.clock_out_lat == pytest.approx(CENTER_LAT)

    with pytest.raises(ValidationError) as exc:
        TeacherCheckInService.clock_out(checkin.pk, now=at(12, 5))
    assert exc.value.code == 'ALREADY_CLOCKED_OUT'


def test_stale_checkins_are_closed_after_max_shift(teacher):
    stale = clock_in(teacher, at(8, 30))
    recent = clock_in(teacher, at(8, 30, day=SUNDAY))

    closed = TeacherCheckInService.auto_clock_out_stale_checkins(now=at(18, 0))

    stale.refresh_from_db()
    recent.refresh_from_db()
    assert closed == 1
    assert stale.clock_out_time == at(16, 30)
    assert stale.notes == AUTO_CLOCK_OUT_NOTE
    assert recent.clock_out_time is None


def test_admin_clock_in(teacher):
    checkin = TeacherCheckInService.admin_clock_in(teacher.pk, 'MORNING', 'Phone died', now=at(11, 30))

    assert checkin.notes == 'Manual check-in: Phone died'
    assert not checkin.clock_in_valid
    assert checkin.is_late

    with pytest.raises(ValidationError) as exc:
        TeacherCheckInService.admin_clock_in(teacher.pk, 'MORNING', ' ok ', now=at(11, 30))
    assert exc.value.code == 'INVALID_REASON'


# =============================================================================
# REPORTS
# =============================================================================

def test_late_report_and_today_status(teacher):
    clock_in(teacher, at(8, 40))
    clock_in(teacher, at(8, 20, day=SUNDAY))

    late = list(TeacherCheckInService.get_late_report(SATURDAY, SUNDAY))
    assert [c.date for c in late] == [SATURDAY]

    status = TeacherCheckInService.get_today_status(SATURDAY)
    assert len(status) == 1
    assert status[0]['teacher'] == teacher
    assert status[0]['MORNING'].is_late
    assert status[0]['AFTERNOON'] is None


# =============================================================================
# JSON ENDPOINTS
# =============================================================================

def post_json(client, url, data):
    return client.post(url, data=json.dumps(data), content_type='application/json')


def test_api_requires_login(client, teacher):
    response = post_json(client, CLOCK_IN_URL, {'teacher_id': str(teacher.pk)})
    assert response.status_code == 302


def test_api_clock_in_and_out(staff_client, teacher):
    payload = {
        'teacher_id': str(teacher.pk),
        'shift': 'MORNING',
        'latitude': CENTER_LAT,
        'longitude': CENTER_LNG,
    }

    with patch('dugsi.services.get_center_current_time', return_value=at(8, 20)):
        response = post_json(staff_client, CLOCK_IN_URL, payload)

    assert response.status_code == 201
    checkin = response.json()['checkin']
    assert checkin['clock_in_valid'] is True
    assert checkin['is_late'] is False

    with patch('dugsi.services.get_center_current_time', return_value=at(12, 0)):
        response = post_json(staff_client, f"/dugsi/api/checkins/{checkin['id']}/clock-out/", {})

    assert response.status_code == 200
    assert response.json()['checkin']['clock_out_time'] is not None


def test_api_clock_in_missing_fields(staff_client, teacher):
    response = post_json(staff_client, CLOCK_IN_URL, {'teacher_id': str(teacher.pk), 'shift': 'MORNING'})

    assert response.status_code == 400
    assert response.json()['error'] == 'Missing required fields: latitude, longitude'


def test_api_unknown_teacher(staff_client, db):
    response = post_json(staff_client, CLOCK_IN_URL, {
        'teacher_id': str(uuid.uuid4()),
        'shift': 'MORNING',
        'latitude': CENTER_LAT,
        'longitude': CENTER_LNG,
    })

    assert response.status_code == 404
    assert response.json()['code'] == 'TEACHER_NOT_FOUND'


def test_api_checkin_status(staff_client, teacher):
    clock_in(teacher, at(8, 20))

    with patch('dugsi.views.get_center_today', return_value=SATURDAY), \
            patch('dugsi.services.get_center_current_time', return_value=at(9, 0)):
        response = staff_client.get(f'/dugsi/api/checkins/{teacher.pk}/status/')

    data = response.json()
    assert response.status_code == 200
    assert data['teacher'] == 'Ustadh Hassan Omar'
    assert len(data['checkins']) == 1
    assert data['windows'] == {'MORNING': {'can_check_in': True, 'reason': None}}

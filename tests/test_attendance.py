# tests/test_attendance.py

import uuid
from datetime import date

import pytest
from django.core.exceptions import ValidationError
from django.http import QueryDict

from core.utils import combine_center_time
from dugsi.forms import parse_attendance_post
from dugsi.models import AttendanceRecord
from dugsi.services import AttendanceService

from .conftest import SATURDAY, SUNDAY, MONDAY

pytestmark = pytest.mark.django_db

SATURDAY_MORNING = combine_center_time(SATURDAY, 10)


# =============================================================================
# SESSIONS
# =============================================================================

def test_session_is_run_by_class_teacher(staffed_class, teacher):
    session = AttendanceService.create_session('2025-01-05', staffed_class.pk, notes='Review day')

    assert session.date == SUNDAY
    assert session.teacher == teacher
    assert session.notes == 'Review day'
    assert not session.is_closed


def test_sessions_only_on_weekends(staffed_class):
    with pytest.raises(ValidationError) as exc:
        AttendanceService.create_session(MONDAY, staffed_class.pk)
    assert exc.value.code == 'INVALID_DAY'


def test_class_needs_a_teacher(dugsi_class):
    with pytest.raises(ValidationError) as exc:
        AttendanceService.create_session(SATURDAY, dugsi_class.pk)
    assert exc.value.code == 'NO_TEACHER_ASSIGNED'


def test_one_session_per_class_per_day(staffed_class):
    AttendanceService.create_session(SATURDAY, staffed_class.pk)

    with pytest.raises(ValidationError) as exc:
        AttendanceService.create_session(SATURDAY, staffed_class.pk)
    assert exc.value.code == 'DUPLICATE_SESSION'


def test_unknown_class(db):
    with pytest.raises(ValidationError) as exc:
        AttendanceService.create_session(SATURDAY, uuid.uuid4())
    assert exc.value.code == 'CLASS_NOT_FOUND'


# =============================================================================
# RECORDS
# =============================================================================

def test_mark_records_upserts(seated_class, dugsi_children):
    amina, khadar = dugsi_children
    session = AttendanceService.create_session(SATURDAY, seated_class.pk)

    count = AttendanceService.mark_records(session.pk, [
        {'profile_id': amina.pk, 'status': 'PRESENT', 'lesson_completed': True,
         'surah_name': 'An-Naba', 'ayat_from': 1, 'ayat_to': 10},
        {'profile_id': khadar.pk, 'status': 'ABSENT'},
    ], now=SATURDAY_MORNING)
    AttendanceService.mark_records(session.pk, [{'profile_id': khadar.pk, 'status': 'LATE'}], now=SATURDAY_MORNING)

    assert count == 2
    assert session.records.count() == 2
    record = AttendanceRecord.objects.get(session=session, profile=amina)
    assert record.lesson_completed
    assert (record.surah_name, record.ayat_from, record.ayat_to) == ('An-Naba', 1, 10)
    assert AttendanceRecord.objects.get(session=session, profile=khadar).status == 'LATE'


def test_saturday_session_is_editable_on_sunday(seated_class, dugsi_children):
    session = AttendanceService.create_session(SATURDAY, seated_class.pk)
    sunday_night = combine_center_time(SUNDAY, 23, 30)

    assert not AttendanceService.is_effectively_closed(session, now=sunday_night)
    AttendanceService.mark_records(
        session.pk, [{'profile_id': dugsi_children[0].pk, 'status': 'EXCUSED'}], now=sunday_night
    )


def test_session_closes_after_the_weekend(seated_class, dugsi_children):
    session = AttendanceService.create_session(SATURDAY, seated_class.pk)

    with pytest.raises(ValidationError) as exc:
        AttendanceService.mark_records(
            session.pk, [{'profile_id': dugsi_children[0].pk, 'status': 'PRESENT'}],
            now=combine_center_time(MONDAY, 9)
        )
    assert exc.value.code == 'SESSION_CLOSED'


def test_closed_session_rejects_records(seated_class, dugsi_children):
    session = AttendanceService.create_session(SATURDAY, seated_class.pk)
    AttendanceService.close_session(session.pk)

    with pytest.raises(ValidationError) as exc:
        AttendanceService.mark_records(
            session.pk, [{'profile_id': dugsi_children[0].pk, 'status': 'PRESENT'}], now=SATURDAY_MORNING
        )
    assert exc.value.code == 'SESSION_CLOSED'


def test_invalid_status_writes_nothing(seated_class, dugsi_children):
    amina, khadar = dugsi_children
    session = AttendanceService.create_session(SATURDAY, seated_class.pk)

    with pytest.raises(ValidationError) as exc:
        AttendanceService.mark_records(session.pk, [
            {'profile_id': amina.pk, 'status': 'PRESENT'},
            {'profile_id': khadar.pk, 'status': 'SICK'},
        ], now=SATURDAY_MORNING)

    assert exc.value.code == 'INVALID_STATUS'
    assert not session.records.exists()


def test_delete_session_removes_records(seated_class, dugsi_children):
    session = AttendanceService.create_session(SATURDAY, seated_class.pk)
    AttendanceService.mark_records(
        session.pk, [{'profile_id': dugsi_children[0].pk, 'status': 'PRESENT'}], now=SATURDAY_MORNING
    )

    AttendanceService.delete_session(session.pk)

    assert not AttendanceRecord.objects.exists()
    with pytest.raises(ValidationError) as exc:
        AttendanceService.delete_session(session.pk)
    assert exc.value.code == 'SESSION_NOT_FOUND'


# =============================================================================
# STATISTICS
# =============================================================================

def test_attendance_stats(seated_class, dugsi_children):
    amina, khadar = dugsi_children
    saturday = AttendanceService.create_session(SATURDAY, seated_class.pk)
    sunday = AttendanceService.create_session(SUNDAY, seated_class.pk)

    AttendanceService.mark_records(saturday.pk, [
        {'profile_id': amina.pk, 'status': 'PRESENT'},
        {'profile_id': khadar.pk, 'status': 'LATE'},
    ], now=SATURDAY_MORNING)
    AttendanceService.mark_records(sunday.pk, [
        {'profile_id': amina.pk, 'status': 'ABSENT'},
    ], now=SATURDAY_MORNING)

    stats = AttendanceService.get_attendance_stats(seated_class.pk)

    assert stats['total_sessions'] == 2
    assert stats['total_records'] == 3
    assert (stats['present_count'], stats['late_count'], stats['absent_count']) == (1, 1, 1)
    assert stats['attendance_rate'] == 66.7

    saturday_only = AttendanceService.get_attendance_stats(seated_class.pk, date_to=SATURDAY)
    assert saturday_only['total_sessions'] == 1
    assert saturday_only['attendance_rate'] == 100.0


def test_stats_without_records(staffed_class):
    stats = AttendanceService.get_attendance_stats(staffed_class.pk, date_from=date(2025, 1, 1))
    assert stats['total_records'] == 0
    assert stats['attendance_rate'] == 0


# =============================================================================
# ATTENDANCE FORM
# =============================================================================

def test_parse_attendance_post(dugsi_children):
    amina, khadar = dugsi_children
    post = QueryDict(mutable=True)
    post.update({
        f'status_{amina.pk}': 'PRESENT',
        f'lesson_completed_{amina.pk}': 'on',
        f'surah_name_{amina.pk}': ' Al-Mulk ',
        f'ayat_from_{amina.pk}': '1',
        f'ayat_to_{amina.pk}': 'ten',
        f'status_{khadar.pk}': '',
    })

    records = parse_attendance_post(post, [amina, khadar])

    assert len(records) == 1
    assert records[0]['profile_id'] == amina.pk
    assert records[0]['lesson_completed'] is True
    assert records[0]['surah_name'] == 'Al-Mulk'
    assert (records[0]['ayat_from'], records[0]['ayat_to']) == (1, None)

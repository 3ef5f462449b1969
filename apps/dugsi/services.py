# dugsi/services.py

"""
Business logic services for the Dugsi program.

- Teachers, their programs/shifts and child assignments
- Classes, class teachers and class seats
- Weekend attendance sessions and records
- Geofenced teacher check-in / check-out
- Child withdrawal, re-enrollment and the family billing adjustments that
  follow (Stripe subscription amount, pause, resume, cancel)
- Family edits: parent details, second parent, child details, new siblings
"""

from django.db import transaction, IntegrityError
from django.db.models import Count, Q
from django.core.exceptions import ValidationError
from datetime import timedelta
import logging

from core.utils import (
    get_center_current_time,
    get_center_today,
    combine_center_time,
    localize_datetime,
    get_weekend_end,
    is_weekend,
    parse_date,
)
from billing import stripe_client
from billing.models import Subscription, BillingAssignment
from billing.tuition import calculate_dugsi_rate
from people.models import Person, GuardianRelationship
from people.services import PersonService, GuardianService
from students.models import ProgramProfile, Enrollment, open_enrollments_q
from students.services import RegistrationService
from students.validation import ValidationService
from utils.audit import log_billing_activity

from .geolocation import is_within_geofence
from .models import (
    SHIFTS,
    Teacher,
    TeacherProgram,
    TeacherAssignment,
    DugsiClass,
    DugsiClassTeacher,
    DugsiClassEnrollment,
    AttendanceSession,
    AttendanceRecord,
    TeacherCheckIn,
)

logger = logging.getLogger(__name__)

ACTIVE_CHILD_STATUSES = ['REGISTERED', 'ENROLLED']


def _invalid_shift(shift):
    return ValidationError(
        f"Invalid shift: {shift}",
        code='INVALID_SHIFT',
        params={'shift': str(shift)}
    )


# =============================================================================
# TEACHERS
# =============================================================================

class TeacherService:

    @staticmethod
    @transaction.atomic
    def create_teacher(person, program='DUGSI_PROGRAM', shifts=None):
        """
        Make a person a teacher in a program (idempotent).

        Returns:
            tuple: (teacher, created)
        """
        teacher, created = Teacher.objects.get_or_create(person=person)
        TeacherService.set_program_shifts(teacher, program, shifts or [])

        if created:
            logger.info(f"Created teacher {person.name} for {program}")

        return teacher, created

    @staticmethod
    def set_program_shifts(teacher, program, shifts, is_active=True):
        for shift in shifts:
            if shift not in SHIFTS:
                raise _invalid_shift(shift)

        teacher_program, _ = TeacherProgram.objects.update_or_create(
            teacher=teacher,
            program=program,
            defaults={'shifts': list(dict.fromkeys(shifts)), 'is_active': is_active}
        )
        return teacher_program

    @staticmethod
    @transaction.atomic
    def assign_to_child(teacher_id, profile_id, shift):
        """
        Raises:
            ValidationError: INVALID_SHIFT, TEACHER_NOT_FOUND plus
            validate_teacher_assignment codes
        """
        if shift not in SHIFTS:
            raise _invalid_shift(shift)

        teacher = Teacher.objects.filter(pk=teacher_id).first()
        if not teacher:
            raise ValidationError(
                "Teacher not found",
                code='TEACHER_NOT_FOUND',
                params={'teacher_id': str(teacher_id)}
            )

        ValidationService.validate_teacher_assignment(teacher_id, profile_id, shift)

        assignment, created = TeacherAssignment.objects.get_or_create(
            teacher=teacher,
            profile_id=profile_id,
            shift=shift,
            is_active=True,
            defaults={'start_date': get_center_today()}
        )
        return assignment

    @staticmethod
    def end_assignment(assignment):
        assignment.is_active = False
        assignment.end_date = get_center_today()
        assignment.save()
        return assignment


# =============================================================================
# CLASSES
# =============================================================================

class ClassService:

    @staticmethod
    def create_class(name, shift, description=''):
        """
        Raises:
            ValidationError: INVALID_SHIFT, DUPLICATE_CLASS
        """
        name = ' '.join((name or '').split())
        if shift not in SHIFTS:
            raise _invalid_shift(shift)

        if DugsiClass.objects.filter(name__iexact=name).exists():
            raise ValidationError(
                f"A class named {name} already exists",
                code='DUPLICATE_CLASS',
                params={'name': name}
            )

        dugsi_class = DugsiClass.objects.create(name=name, shift=shift, description=description or '')
        logger.info(f"Dugsi class created: {dugsi_class.name} ({shift})")
        return dugsi_class

    @staticmethod
    def update_class(class_id, **fields):
        dugsi_class = ClassService._get_class(class_id)

        if 'shift' in fields and fields['shift'] not in SHIFTS:
            raise _invalid_shift(fields['shift'])

        for field in ('name', 'shift', 'description', 'is_active'):
            if field in fields:
                setattr(dugsi_class, field, fields[field])
        dugsi_class.save()

        logger.info(f"Dugsi class updated: {dugsi_class.name} {sorted(fields)}")
        return dugsi_class

    @staticmethod
    @transaction.atomic
    def delete_class(class_id):
        """
        Raises:
            ValidationError: CLASS_NOT_FOUND, CLASS_HAS_SESSIONS
        """
        dugsi_class = ClassService._get_class(class_id)

        session_count = dugsi_class.sessions.count()
        if session_count:
            raise ValidationError(
                f"Cannot delete a class with {session_count} attendance session(s); deactivate it instead",
                code='CLASS_HAS_SESSIONS',
                params={'class_id': str(class_id), 'count': session_count}
            )

        dugsi_class.delete()

    @staticmethod
    def _get_class(class_id):
        dugsi_class = DugsiClass.objects.filter(pk=class_id).first()
        if not dugsi_class:
            raise ValidationError(
                "Dugsi class not found",
                code='CLASS_NOT_FOUND',
                params={'class_id': str(class_id)}
            )
        return dugsi_class

    # -------------------------------------------------------------------------
    # TEACHERS
    # -------------------------------------------------------------------------

    @staticmethod
    def assign_teacher(class_id, teacher_id):
        dugsi_class = ClassService._get_class(class_id)
        if not Teacher.objects.filter(pk=teacher_id).exists():
            raise ValidationError(
                "Teacher not found",
                code='TEACHER_NOT_FOUND',
                params={'teacher_id': str(teacher_id)}
            )

        assignment, created = DugsiClassTeacher.objects.get_or_create(
            dugsi_class=dugsi_class,
            teacher_id=teacher_id
        )
        if not created and not assignment.is_active:
            assignment.is_active = True
            assignment.save()

        logger.info(f"Teacher {teacher_id} assigned to class {dugsi_class.name}")
        return assignment

    @staticmethod
    def remove_teacher(class_id, teacher_id):
        updated = DugsiClassTeacher.objects.filter(
            dugsi_class_id=class_id,
            teacher_id=teacher_id,
            is_active=True
        ).update(is_active=False)
        return updated > 0

    # -------------------------------------------------------------------------
    # STUDENTS
    # -------------------------------------------------------------------------

    @staticmethod
    @transaction.atomic
    def assign_student_to_class(class_id, profile_id):
        """
        Seat a Dugsi child in a class. A child holds one seat; a previous
        inactive seat is reused.

        Raises:
            ValidationError: PROFILE_NOT_FOUND, NOT_DUGSI_STUDENT,
            CLASS_NOT_FOUND, CLASS_INACTIVE, ALREADY_IN_CLASS
        """
        profile = ProgramProfile.objects.filter(pk=profile_id).first()
        if not profile:
            raise ValidationError(
                "Student not found",
                code='PROFILE_NOT_FOUND',
                params={'profile_id': str(profile_id)}
            )

        if profile.program != 'DUGSI_PROGRAM':
            raise ValidationError(
                "Student is not enrolled in Dugsi program",
                code='NOT_DUGSI_STUDENT',
                params={'profile_id': str(profile_id)}
            )

        dugsi_class = ClassService._get_class(class_id)
        if not dugsi_class.is_active:
            raise ValidationError(
                "Cannot assign student to inactive class",
                code='CLASS_INACTIVE',
                params={'class_id': str(class_id)}
            )

        existing = DugsiClassEnrollment.objects.select_related('dugsi_class').filter(profile=profile).first()
        if existing and existing.is_active:
            raise ValidationError(
                f"Student is already enrolled in class: {existing.dugsi_class.name}",
                code='ALREADY_IN_CLASS',
                params={'profile_id': str(profile_id), 'class_name': existing.dugsi_class.name}
            )

        if existing:
            existing.dugsi_class = dugsi_class
            existing.start_date = get_center_today()
            existing.end_date = None
            existing.is_active = True
            existing.save()
            enrollment = existing
        else:
            enrollment = DugsiClassEnrollment.objects.create(
                dugsi_class=dugsi_class,
                profile=profile,
                start_date=get_center_today()
            )

        logger.info(f"Student {profile.person.name} assigned to Dugsi class {dugsi_class.name}")
        return enrollment

    @staticmethod
    def remove_student_from_class(enrollment_id):
        enrollment = DugsiClassEnrollment.objects.filter(pk=enrollment_id).first()
        if not enrollment:
            raise ValidationError(
                "Class enrollment not found",
                code='CLASS_ENROLLMENT_NOT_FOUND',
                params={'enrollment_id': str(enrollment_id)}
            )

        enrollment.is_active = False
        enrollment.end_date = get_center_today()
        enrollment.save()

        logger.info(f"Student {enrollment.profile_id} removed from Dugsi class {enrollment.dugsi_class_id}")
        return enrollment

    @staticmethod
    def bulk_enroll_students(class_id, profile_ids):
        """
        Returns:
            dict: {'enrolled': int, 'failed': [{'profile_id', 'error'}]}
        """
        result = {'enrolled': 0, 'failed': []}
        for profile_id in profile_ids:
            try:
                ClassService.assign_student_to_class(class_id, profile_id)
                result['enrolled'] += 1
            except ValidationError as e:
                result['failed'].append({'profile_id': str(profile_id), 'error': e.messages[0]})
        return result

    @staticmethod
    def get_unassigned_students():
        """
        Active Dugsi children without a class seat, with their age and the
        classes their siblings sit in.

        Returns:
            list of dict: profile, name, age, siblings [{name, class_name, shift, teacher_name}]
        """
        from people.services import SiblingRelationshipService

        profiles = ProgramProfile.objects.filter(
            program='DUGSI_PROGRAM',
            status__in=ACTIVE_CHILD_STATUSES
        ).filter(
            Q(class_enrollment__isnull=True) | Q(class_enrollment__is_active=False)
        ).select_related('person').order_by('person__name')

        today = get_center_today()
        results = []

        for profile in profiles:
            dob = profile.person.date_of_birth
            age = None
            if dob:
                age = today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))

            siblings = []
            for sibling in SiblingRelationshipService.get_siblings(profile.person):
                seat = DugsiClassEnrollment.objects.select_related('dugsi_class').filter(
                    profile__person=sibling,
                    profile__program='DUGSI_PROGRAM',
                    is_active=True
                ).first()
                if not seat:
                    continue
                teacher = seat.dugsi_class.get_primary_teacher()
                siblings.append({
                    'name': sibling.name,
                    'class_name': seat.dugsi_class.name,
                    'shift': seat.dugsi_class.shift,
                    'teacher_name': teacher.name if teacher else 'No teacher',
                })

            results.append({
                'profile': profile,
                'name': profile.person.name,
                'age': age,
                'siblings': siblings,
            })

        return results


# =============================================================================
# ATTENDANCE
# =============================================================================

class AttendanceService:

    @staticmethod
    @transaction.atomic
    def create_session(session_date, class_id, notes=''):
        """
        Open an attendance session for a class on a Saturday or Sunday. The
        class's first active teacher runs it.

        Raises:
            ValidationError: INVALID_DAY, CLASS_NOT_FOUND,
            NO_TEACHER_ASSIGNED, DUPLICATE_SESSION
        """
        session_date = parse_date(session_date)
        if not session_date or not is_weekend(session_date):
            raise ValidationError(
                "Dugsi sessions can only be created on weekends (Saturday or Sunday)",
                code='INVALID_DAY',
                params={'class_id': str(class_id), 'date': str(session_date)}
            )

        dugsi_class = DugsiClass.objects.filter(pk=class_id).first()
        if not dugsi_class:
            raise ValidationError(
                "Class not found",
                code='CLASS_NOT_FOUND',
                params={'class_id': str(class_id)}
            )

        teacher = dugsi_class.get_primary_teacher()
        if not teacher:
            raise ValidationError(
                "No active teacher assigned to this class",
                code='NO_TEACHER_ASSIGNED',
                params={'class_id': str(class_id)}
            )

        if AttendanceSession.objects.filter(dugsi_class=dugsi_class, date=session_date).exists():
            raise ValidationError(
                "A session already exists for this class on this date",
                code='DUPLICATE_SESSION',
                params={'class_id': str(class_id), 'date': session_date.isoformat()}
            )

        try:
            with transaction.atomic():
                session = AttendanceSession.objects.create(
                    date=session_date,
                    dugsi_class=dugsi_class,
                    teacher=teacher,
                    notes=notes or ''
                )
        except IntegrityError:
            raise ValidationError(
                "A session already exists for this class on this date",
                code='DUPLICATE_SESSION',
                params={'class_id': str(class_id), 'date': session_date.isoformat()}
            )

        logger.info(f"Attendance session created: {dugsi_class.name} on {session_date} ({teacher.name})")
        return session

    @staticmethod
    def is_effectively_closed(session, now=None):
        """Closed by hand, or the weekend it belongs to is over"""
        now = now or get_center_current_time()
        return session.is_closed or now > get_weekend_end(session.date)

    @staticmethod
    def mark_records(session_id, records, now=None):
        """
        Upsert attendance for the children in a session.

        Args:
            session_id: AttendanceSession id
            records (list of dict): profile_id, status and optionally
                lesson_completed, surah_name, ayat_from, ayat_to,
                lesson_notes, notes

        Returns:
            int: number of records written

        Raises:
            ValidationError: SESSION_NOT_FOUND, SESSION_CLOSED, INVALID_STATUS
        """
        session = AttendanceSession.objects.filter(pk=session_id).first()
        if not session:
            raise ValidationError(
                "Session not found",
                code='SESSION_NOT_FOUND',
                params={'session_id': str(session_id)}
            )

        if AttendanceService.is_effectively_closed(session, now):
            raise ValidationError(
                "Cannot modify a closed session",
                code='SESSION_CLOSED',
                params={'session_id': str(session_id)}
            )

        valid_statuses = {code for code, _ in AttendanceRecord.STATUS_CHOICES}
        marked_at = now or get_center_current_time()

        with transaction.atomic():
            for record in records:
                if record.get('status') not in valid_statuses:
                    raise ValidationError(
                        f"Invalid attendance status: {record.get('status')}",
                        code='INVALID_STATUS',
                        params={'profile_id': str(record.get('profile_id'))}
                    )

                AttendanceRecord.objects.update_or_create(
                    session=session,
                    profile_id=record['profile_id'],
                    defaults={
                        'status': record['status'],
                        'lesson_completed': bool(record.get('lesson_completed', False)),
                        'surah_name': record.get('surah_name') or '',
                        'ayat_from': record.get('ayat_from'),
                        'ayat_to': record.get('ayat_to'),
                        'lesson_notes': record.get('lesson_notes') or '',
                        'notes': record.get('notes') or '',
                        'marked_at': marked_at,
                    }
                )

        logger.info(f"Marked attendance for {len(records)} students in session {session_id}")
        return len(records)

    @staticmethod
    def delete_session(session_id):
        session = AttendanceSession.objects.filter(pk=session_id).first()
        if not session:
            raise ValidationError(
                "Session not found",
                code='SESSION_NOT_FOUND',
                params={'session_id': str(session_id)}
            )

        logger.info(f"Attendance session deleted: {session.dugsi_class_id} on {session.date}")
        session.delete()

    @staticmethod
    def close_session(session_id):
        session = AttendanceSession.objects.filter(pk=session_id).first()
        if not session:
            raise ValidationError(
                "Session not found",
                code='SESSION_NOT_FOUND',
                params={'session_id': str(session_id)}
            )

        session.is_closed = True
        session.save()
        return session

    @staticmethod
    def get_attendance_stats(class_id=None, date_from=None, date_to=None):
        """
        Returns:
            dict: total_sessions, total_records, present_count,
            absent_count, late_count, excused_count, attendance_rate
            (present + late over all records, percent)
        """
        sessions = AttendanceSession.objects.all()
        if class_id:
            sessions = sessions.filter(dugsi_class_id=class_id)
        if date_from:
            sessions = sessions.filter(date__gte=date_from)
        if date_to:
            sessions = sessions.filter(date__lte=date_to)

        counts = dict(
            AttendanceRecord.objects.filter(session__in=sessions).values_list(
                'status'
            ).annotate(count=Count('id')).values_list('status', 'count')
        )

        present = counts.get('PRESENT', 0)
        absent = counts.get('ABSENT', 0)
        late = counts.get('LATE', 0)
        excused = counts.get('EXCUSED', 0)
        total = present + absent + late + excused

        return {
            'total_sessions': sessions.count(),
            'total_records': total,
            'present_count': present,
            'absent_count': absent,
            'late_count': late,
            'excused_count': excused,
            'attendance_rate': round((present + late) / total * 100, 1) if total else 0,
        }


# =============================================================================
# TEACHER CHECK-IN
# =============================================================================

SHIFT_START_TIMES = {
    'MORNING': (8, 30),
    'AFTERNOON': (14, 0),
}

SHIFT_TIME_LABELS = {
    'MORNING': '8:30 AM',
    'AFTERNOON': '2:00 PM',
}

CHECKIN_MINUTES_BEFORE = 60
CHECKIN_MINUTES_AFTER = 120
LATE_GRACE_PERIOD_MINUTES = 5
MAX_SHIFT_HOURS = 8
AUTO_CLOCK_OUT_NOTE = 'Auto clock-out: exceeded maximum shift duration'


class TeacherCheckInService:

    @staticmethod
    def get_shift_start(shift, day):
        hour, minute = SHIFT_START_TIMES[shift]
        return combine_center_time(day, hour, minute)

    @staticmethod
    def is_late_for_shift(shift, clock_in_time):
        """Late once the grace period after shift start has passed"""
        clock_in_time = localize_datetime(clock_in_time)
        shift_start = TeacherCheckInService.get_shift_start(shift, clock_in_time.date())
        return clock_in_time > shift_start + timedelta(minutes=LATE_GRACE_PERIOD_MINUTES)

    @staticmethod
    def get_checkin_window_status(shift, now=None):
        """
        Returns:
            dict: {'can_check_in': bool, 'reason': 'too_early' | 'too_late' | None,
                   'window_opens_at', 'window_closed_at'}
        """
        now = localize_datetime(now) if now else get_center_current_time()
        shift_start = TeacherCheckInService.get_shift_start(shift, now.date())
        window_start = shift_start - timedelta(minutes=CHECKIN_MINUTES_BEFORE)
        window_end = shift_start + timedelta(minutes=CHECKIN_MINUTES_AFTER)

        if now < window_start:
            return {'can_check_in': False, 'reason': 'too_early', 'window_opens_at': window_start}
        if now > window_end:
            return {'can_check_in': False, 'reason': 'too_late', 'window_closed_at': window_end}
        return {'can_check_in': True, 'reason': None}

    @staticmethod
    def _get_dugsi_teacher(teacher_id, shift):
        teacher = Teacher.objects.select_related('person').filter(pk=teacher_id).first()
        if not teacher:
            raise ValidationError(
                "Teacher not found",
                code='TEACHER_NOT_FOUND',
                params={'teacher_id': str(teacher_id)}
            )

        teacher_program = teacher.get_program('DUGSI_PROGRAM')
        if not teacher_program:
            raise ValidationError(
                "Teacher is not authorized for Dugsi program",
                code='NOT_ENROLLED_IN_DUGSI',
                params={'teacher_id': str(teacher_id)}
            )

        if shift not in SHIFTS:
            raise _invalid_shift(shift)

        if not teacher_program.shifts:
            raise ValidationError(
                "Teacher has no assigned shifts for Dugsi program",
                code='INVALID_SHIFT',
                params={'teacher_id': str(teacher_id), 'shift': shift}
            )

        if shift not in teacher_program.shifts:
            raise ValidationError(
                f"Teacher is not assigned to the {shift.lower()} shift",
                code='INVALID_SHIFT',
                params={'teacher_id': str(teacher_id), 'shift': shift}
            )

        return teacher

    @staticmethod
    def _ensure_no_checkin(teacher, day, shift):
        if TeacherCheckIn.objects.filter(teacher=teacher, date=day, shift=shift).exists():
            raise ValidationError(
                "Already clocked in for this shift today",
                code='DUPLICATE_CHECKIN',
                params={'teacher_id': str(teacher.pk), 'shift': shift, 'date': day.isoformat()}
            )

    @staticmethod
    @transaction.atomic
    def clock_in(teacher_id, shift, lat, lng, now=None):
        """
        Clock a teacher in for a shift.

        The location is recorded even outside the geofence; clock_in_valid
        tells whether it was inside.

        Returns:
            TeacherCheckIn

        Raises:
            ValidationError: TEACHER_NOT_FOUND, NOT_ENROLLED_IN_DUGSI,
            INVALID_SHIFT, CHECKIN_WINDOW_CLOSED, DUPLICATE_CHECKIN
        """
        teacher = TeacherCheckInService._get_dugsi_teacher(teacher_id, shift)

        now = localize_datetime(now) if now else get_center_current_time()
        window = TeacherCheckInService.get_checkin_window_status(shift, now)
        if not window['can_check_in']:
            if window['reason'] == 'too_early':
                message = f"Check-in window opens at {window['window_opens_at'].strftime('%I:%M %p').lstrip('0')}"
            else:
                message = "Check-in window has closed for this shift"
            raise ValidationError(
                message,
                code='CHECKIN_WINDOW_CLOSED',
                params={'reason': window['reason'], 'shift': shift}
            )

        today = now.date()
        TeacherCheckInService._ensure_no_checkin(teacher, today, shift)

        clock_in_valid = is_within_geofence(lat, lng)
        is_late = TeacherCheckInService.is_late_for_shift(shift, now)

        checkin = TeacherCheckIn.objects.create(
            teacher=teacher,
            date=today,
            shift=shift,
            clock_in_time=now,
            clock_in_lat=lat,
            clock_in_lng=lng,
            clock_in_valid=clock_in_valid,
            is_late=is_late,
        )

        logger.info(
            f"Teacher {teacher.name} clocked in for {shift} "
            f"(valid_location={clock_in_valid}, late={is_late})"
        )
        return checkin

    @staticmethod
    def clock_out(checkin_id, lat=None, lng=None, now=None):
        """
        Raises:
            ValidationError: CHECKIN_NOT_FOUND, ALREADY_CLOCKED_OUT
        """
        checkin = TeacherCheckIn.objects.filter(pk=checkin_id).first()
        if not checkin:
            raise ValidationError(
                "Check-in record not found",
                code='CHECKIN_NOT_FOUND',
                params={'checkin_id': str(checkin_id)}
            )

        if checkin.clock_out_time:
            raise ValidationError(
                "Already clocked out",
                code='ALREADY_CLOCKED_OUT',
                params={'checkin_id': str(checkin_id)}
            )

        checkin.clock_out_time = localize_datetime(now) if now else get_center_current_time()
        if lat is not None:
            checkin.clock_out_lat = lat
        if lng is not None:
            checkin.clock_out_lng = lng
        checkin.save()

        logger.info(f"Teacher {checkin.teacher_id} clocked out of check-in {checkin.id}")
        return checkin

    @staticmethod
    def auto_clock_out_stale_checkins(now=None):
        """
        Close check-ins open longer than the maximum shift; clock-out is
        set to clock-in + 8 hours.

        Returns:
            int: number of check-ins closed
        """
        now = localize_datetime(now) if now else get_center_current_time()
        max_shift = timedelta(hours=MAX_SHIFT_HOURS)

        stale = TeacherCheckIn.objects.filter(
            clock_out_time__isnull=True,
            clock_in_time__lt=now - max_shift
        )

        count = 0
        for checkin in stale:
            checkin.clock_out_time = checkin.clock_in_time + max_shift
            checkin.notes = AUTO_CLOCK_OUT_NOTE
            checkin.save()
            count += 1

        if count:
            logger.info(f"Auto-clocked out {count} stale check-in(s)")
        return count

    @staticmethod
    @transaction.atomic
    def admin_clock_in(teacher_id, shift, reason, now=None):
        """
        Staff check-in on a teacher's behalf. Skips the window and
        geofence; the reason goes into the notes.

        Raises:
            ValidationError: INVALID_REASON plus clock_in codes
        """
        reason = (reason or '').strip()
        if len(reason) < 3:
            raise ValidationError(
                "A reason is required for manual check-in",
                code='INVALID_REASON',
                params={'teacher_id': str(teacher_id)}
            )

        teacher = TeacherCheckInService._get_dugsi_teacher(teacher_id, shift)

        now = localize_datetime(now) if now else get_center_current_time()
        TeacherCheckInService._ensure_no_checkin(teacher, now.date(), shift)

        checkin = TeacherCheckIn.objects.create(
            teacher=teacher,
            date=now.date(),
            shift=shift,
            clock_in_time=now,
            clock_in_valid=False,
            is_late=TeacherCheckInService.is_late_for_shift(shift, now),
            notes=f"Manual check-in: {reason}",
        )

        logger.info(f"Admin manual check-in for {teacher.name} ({shift}): {reason}")
        return checkin

    @staticmethod
    def get_late_report(start_date, end_date, shift=None, teacher_id=None):
        """Late check-ins in a date range, newest day first"""
        checkins = TeacherCheckIn.objects.filter(
            is_late=True,
            date__gte=start_date,
            date__lte=end_date
        ).select_related('teacher__person')

        if shift:
            checkins = checkins.filter(shift=shift)
        if teacher_id:
            checkins = checkins.filter(teacher_id=teacher_id)

        return checkins.order_by('-date', 'clock_in_time')

    @staticmethod
    def get_today_status(day=None):
        """
        Every active Dugsi teacher with their check-in per shift for a day.

        Returns:
            list of dict: teacher, shifts, MORNING, AFTERNOON
        """
        day = day or get_center_today()
        programs = TeacherProgram.objects.filter(
            program='DUGSI_PROGRAM', is_active=True
        ).select_related('teacher__person').order_by('teacher__person__name')

        checkins = {
            (c.teacher_id, c.shift): c
            for c in TeacherCheckIn.objects.filter(date=day)
        }

        return [
            {
                'teacher': program.teacher,
                'shifts': program.shifts,
                'MORNING': checkins.get((program.teacher_id, 'MORNING')),
                'AFTERNOON': checkins.get((program.teacher_id, 'AFTERNOON')),
            }
            for program in programs
        ]


# =============================================================================
# WITHDRAWAL & FAMILY BILLING
# =============================================================================

WITHDRAWAL_REASON_LABELS = {
    'family_moved': 'Family moved',
    'financial': 'Financial reasons',
    'behavioral': 'Behavioral',
    'seasonal_break': 'Seasonal break',
    'other': 'Other',
}

BILLING_ADJUSTMENT_TYPES = ['keep_current', 'custom', 'auto_recalculate', 'cancel_subscription']


def build_reason_string(reason, note=''):
    label = WITHDRAWAL_REASON_LABELS.get(reason, reason or 'Other')
    return f"{label}: {note}" if note else label


class WithdrawalService:
    """
    Withdrawing a Dugsi child touches the profile, its open enrollment,
    billing assignments and class seat in one transaction; the Stripe
    adjustment runs afterwards and reports failure in the result instead of
    undoing the withdrawal.
    """

    @staticmethod
    def _get_dugsi_profile(profile_id):
        profile = ProgramProfile.objects.select_related('person').filter(pk=profile_id).first()
        if not profile or profile.program != 'DUGSI_PROGRAM':
            raise ValidationError(
                "Student not found",
                code='STUDENT_NOT_FOUND',
                params={'profile_id': str(profile_id)}
            )
        return profile

    @staticmethod
    def count_active_children(family_reference_id):
        if not family_reference_id:
            return 0
        return ProgramProfile.objects.filter(
            program='DUGSI_PROGRAM',
            family_reference_id=family_reference_id,
            status__in=ACTIVE_CHILD_STATUSES
        ).count()

    @staticmethod
    def find_family_subscription(family_reference_id):
        """Newest active or paused Dugsi subscription paying for the family"""
        if not family_reference_id:
            return None

        assignment = BillingAssignment.objects.filter(
            is_active=True,
            profile__family_reference_id=family_reference_id,
            profile__program='DUGSI_PROGRAM',
            subscription__stripe_account_type='DUGSI',
            subscription__status__in=['active', 'paused'],
        ).select_related('subscription').order_by('-created_at').first()

        return assignment.subscription if assignment else None

    # -------------------------------------------------------------------------
    # WITHDRAW / RE-ENROLL
    # -------------------------------------------------------------------------

    @staticmethod
    def withdraw_child(profile_id, reason, reason_note='', billing_adjustment=None,
                       skip_last_child_guard=False):
        """
        Withdraw one Dugsi child and adjust the family's billing.

        Args:
            profile_id: Child's ProgramProfile id
            reason (str): family_moved, financial, behavioral, seasonal_break, other
            reason_note (str, optional): Free text appended to the reason
            billing_adjustment (dict): {'type': 'keep_current' | 'custom' |
                'auto_recalculate' | 'cancel_subscription', 'amount': cents}
            skip_last_child_guard (bool): Allow keep_current/custom for the
                last active child (used by withdraw_all_children)

        Returns:
            dict: {'success': True, 'withdrawn': True,
                   'billing_updated': bool, 'billing_error': str | None}

        Raises:
            ValidationError: STUDENT_NOT_FOUND, ALREADY_WITHDRAWN, INVALID_INPUT
        """
        billing_adjustment = billing_adjustment or {'type': 'keep_current'}
        adjustment_type = billing_adjustment.get('type')

        profile = WithdrawalService._get_dugsi_profile(profile_id)

        if profile.status == 'WITHDRAWN':
            raise ValidationError(
                "Student is already withdrawn",
                code='ALREADY_WITHDRAWN',
                params={'profile_id': str(profile_id)}
            )

        if not skip_last_child_guard and adjustment_type in ('keep_current', 'custom'):
            if WithdrawalService.count_active_children(profile.family_reference_id) <= 1:
                raise ValidationError(
                    f'Cannot use "{adjustment_type}" when withdrawing the last active child',
                    code='INVALID_INPUT',
                    params={'profile_id': str(profile_id), 'billing_adjustment': adjustment_type}
                )

        reason_label = build_reason_string(reason, reason_note)
        subscription_before = WithdrawalService.find_family_subscription(profile.family_reference_id)
        today = get_center_today()

        with transaction.atomic():
            profile.status = 'WITHDRAWN'
            profile.set_change_reason(reason_label)
            profile.save()

            enrollment = profile.enrollments.filter(
                open_enrollments_q(), status__in=ACTIVE_CHILD_STATUSES
            ).order_by('-start_date').first()
            if enrollment:
                enrollment.status = 'WITHDRAWN'
                enrollment.end_date = today
                enrollment.reason = reason_label[:255]
                enrollment.save()

            BillingAssignment.objects.filter(profile=profile, is_active=True).update(
                is_active=False, end_date=today
            )
            DugsiClassEnrollment.objects.filter(profile=profile, is_active=True).update(
                is_active=False, end_date=today
            )

        logger.info(f"Child withdrawn from Dugsi: {profile.person.name} ({reason_label})")
        log_billing_activity(
            'CHILD_WITHDRAW',
            target_object=profile,
            program='DUGSI_PROGRAM',
            notes=reason_label,
            new_values={'billing_adjustment': billing_adjustment},
        )

        subscription = WithdrawalService.find_family_subscription(profile.family_reference_id)
        if not subscription and subscription_before:
            logger.warning(
                f"Using pre-withdrawal subscription {subscription_before.stripe_subscription_id} "
                f"for billing adjustment"
            )
            subscription = subscription_before

        billing = WithdrawalService.apply_billing_adjustment(
            subscription,
            billing_adjustment,
            WithdrawalService.count_active_children(profile.family_reference_id)
        )

        return {
            'success': True,
            'withdrawn': True,
            'billing_updated': billing['success'],
            'billing_error': billing['error'],
        }

    @staticmethod
    def re_enroll_child(profile_id, billing_adjustment=None):
        """
        Bring a withdrawn child back: new ENROLLED enrollment and, when the
        family still has a subscription, a billing assignment on it.

        Returns:
            dict: {'success': True, 're_enrolled': True,
                   'billing_updated': bool, 'billing_error': str | None}

        Raises:
            ValidationError: STUDENT_NOT_FOUND, NOT_WITHDRAWN, INVALID_INPUT
        """
        billing_adjustment = billing_adjustment or {'type': 'auto_recalculate'}
        profile = WithdrawalService._get_dugsi_profile(profile_id)

        if profile.status != 'WITHDRAWN':
            raise ValidationError(
                "Student is not withdrawn",
                code='NOT_WITHDRAWN',
                params={'profile_id': str(profile_id)}
            )

        subscription = WithdrawalService.find_family_subscription(profile.family_reference_id)

        with transaction.atomic():
            active_count = WithdrawalService.count_active_children(profile.family_reference_id)
            initial_amount = calculate_dugsi_rate(active_count + 1)

            profile.status = 'ENROLLED'
            profile.set_change_reason('Re-enrolled')
            profile.save()

            Enrollment.objects.create(
                profile=profile,
                status='ENROLLED',
                start_date=get_center_today(),
                reason='Re-enrolled'
            )

            if subscription:
                if initial_amount <= 0:
                    raise ValidationError(
                        "Calculated billing amount is invalid",
                        code='INVALID_INPUT',
                        params={'profile_id': str(profile_id)}
                    )
                BillingAssignment.objects.create(
                    subscription=subscription,
                    profile=profile,
                    amount=initial_amount,
                    start_date=get_center_today(),
                    is_active=True
                )

        logger.info(f"Child re-enrolled in Dugsi: {profile.person.name}")
        log_billing_activity('CHILD_REENROLL', target_object=profile, program='DUGSI_PROGRAM')

        billing = WithdrawalService.apply_billing_adjustment(
            subscription,
            billing_adjustment,
            WithdrawalService.count_active_children(profile.family_reference_id)
        )

        return {
            'success': True,
            're_enrolled': True,
            'billing_updated': billing['success'],
            'billing_error': billing['error'],
        }

    @staticmethod
    def get_withdraw_preview(profile_id):
        """
        What withdrawing a child would do to the family's bill.

        Returns:
            dict: child_name, active_children_count, current_amount,
            recalculated_amount, is_last_active_child,
            has_active_subscription, is_paused
        """
        profile = WithdrawalService._get_dugsi_profile(profile_id)

        active_count = WithdrawalService.count_active_children(profile.family_reference_id)
        after_count = active_count - 1
        subscription = WithdrawalService.find_family_subscription(profile.family_reference_id)

        return {
            'child_name': profile.person.name,
            'active_children_count': active_count,
            'current_amount': subscription.amount if subscription else None,
            'recalculated_amount': calculate_dugsi_rate(after_count),
            'is_last_active_child': after_count == 0,
            'has_active_subscription': bool(subscription) and subscription.status in ('active', 'paused'),
            'is_paused': bool(subscription) and subscription.status == 'paused',
        }

    @staticmethod
    def withdraw_all_children(family_reference_id, reason, reason_note='', billing_adjustment=None):
        """
        Withdraw every active child of a family, then apply one billing
        adjustment. A cancel request is downgraded to auto_recalculate when
        some children could not be withdrawn.

        Returns:
            dict: {'success': bool, 'withdrawn_count', 'failed_count',
                   'billing_updated', 'billing_error'}

        Raises:
            ValidationError: FAMILY_NOT_FOUND, ALREADY_WITHDRAWN
        """
        billing_adjustment = billing_adjustment or {'type': 'cancel_subscription'}

        profiles = list(ProgramProfile.objects.filter(
            program='DUGSI_PROGRAM',
            family_reference_id=family_reference_id
        ))
        if not family_reference_id or not profiles:
            raise ValidationError(
                "Family not found",
                code='FAMILY_NOT_FOUND',
                params={'family_reference_id': str(family_reference_id)}
            )

        active = [p for p in profiles if p.status in ACTIVE_CHILD_STATUSES]
        if not active:
            raise ValidationError(
                "No active children to withdraw",
                code='ALREADY_WITHDRAWN',
                params={'family_reference_id': str(family_reference_id)}
            )

        subscription_before = WithdrawalService.find_family_subscription(family_reference_id)

        withdrawn_count = 0
        failed_count = 0
        for profile in active:
            try:
                WithdrawalService.withdraw_child(
                    profile.pk,
                    reason,
                    reason_note,
                    billing_adjustment={'type': 'keep_current'},
                    skip_last_child_guard=True
                )
                withdrawn_count += 1
            except ValidationError as e:
                failed_count += 1
                logger.warning(f"Expected failure in bulk withdrawal for {profile.pk}: {e.messages[0]}")
            except Exception as e:
                failed_count += 1
                logger.error(f"Unexpected failure in bulk withdrawal for {profile.pk}: {e}", exc_info=True)

        effective = billing_adjustment
        if failed_count and billing_adjustment.get('type') == 'cancel_subscription':
            effective = {'type': 'auto_recalculate'}
            logger.warning(
                f"Downgraded cancel_subscription to auto_recalculate for family {family_reference_id}: "
                f"{withdrawn_count} withdrawn, {failed_count} failed"
            )

        subscription = WithdrawalService.find_family_subscription(family_reference_id) or subscription_before
        billing = WithdrawalService.apply_billing_adjustment(
            subscription,
            effective,
            WithdrawalService.count_active_children(family_reference_id)
        )

        logger.info(
            f"Bulk withdrawal completed for family {family_reference_id}: "
            f"{withdrawn_count} withdrawn, {failed_count} failed"
        )

        billing_error = billing['error']
        if not billing_error and failed_count:
            billing_error = f"{failed_count} child(ren) could not be withdrawn"

        return {
            'success': failed_count == 0,
            'withdrawn_count': withdrawn_count,
            'failed_count': failed_count,
            'billing_updated': billing['success'],
            'billing_error': billing_error,
        }

    # -------------------------------------------------------------------------
    # BILLING ADJUSTMENT
    # -------------------------------------------------------------------------

    @staticmethod
    def _cancel(subscription):
        stripe_client.cancel_subscription(subscription.stripe_subscription_id, 'DUGSI')
        try:
            with transaction.atomic():
                subscription.status = 'canceled'
                subscription.save()
                BillingAssignment.objects.filter(subscription=subscription, is_active=True).update(
                    is_active=False, end_date=get_center_today()
                )
        except Exception:
            logger.critical(
                f"Stripe subscription {subscription.stripe_subscription_id} canceled "
                f"but DB update failed - states diverged",
                exc_info=True
            )
            raise

        log_billing_activity(
            'SUBSCRIPTION_CANCEL',
            target_object=subscription,
            stripe_object_id=subscription.stripe_subscription_id,
            program='DUGSI_PROGRAM',
            risk_level='HIGH',
        )

    @staticmethod
    def apply_billing_adjustment(subscription, adjustment, active_count):
        """
        Bring the family subscription in line after a withdrawal or
        re-enrollment.

        Args:
            subscription (Subscription or None): Family subscription
            adjustment (dict): {'type': ..., 'amount': cents for custom}
            active_count (int): Active children after the change

        Returns:
            dict: {'success': bool, 'error': str | None}
        """
        adjustment_type = (adjustment or {}).get('type')

        if adjustment_type not in BILLING_ADJUSTMENT_TYPES:
            return {'success': False, 'error': f"Unknown billing adjustment: {adjustment_type}"}

        if not subscription:
            if adjustment_type == 'cancel_subscription':
                return {'success': False, 'error': 'No active subscription to cancel'}
            return {'success': True, 'error': None}

        if adjustment_type == 'keep_current':
            return {'success': True, 'error': None}

        try:
            if adjustment_type == 'cancel_subscription':
                WithdrawalService._cancel(subscription)
                return {'success': True, 'error': None}

            if adjustment_type == 'custom':
                new_amount = adjustment.get('amount') or 0
            else:
                new_amount = calculate_dugsi_rate(active_count)

            if new_amount <= 0:
                if adjustment_type == 'auto_recalculate':
                    WithdrawalService._cancel(subscription)
                    return {'success': True, 'error': None}
                return {'success': False, 'error': 'Calculated amount is zero or negative'}

            if not stripe_client.is_account_configured('DUGSI'):
                return {'success': False, 'error': 'Stripe account not configured'}
            product_id = stripe_client.get_product_id('DUGSI')

            stripe_subscription = stripe_client.retrieve_subscription(
                subscription.stripe_subscription_id, 'DUGSI'
            )
            items = (stripe_subscription.get('items') or {}).get('data') or []
            if not items:
                return {'success': False, 'error': 'No subscription item found in Stripe'}

            stripe_client.update_subscription(
                subscription.stripe_subscription_id,
                'DUGSI',
                items=[{
                    'id': items[0]['id'],
                    'price_data': {
                        'product': product_id,
                        'unit_amount': new_amount,
                        'currency': 'usd',
                        'recurring': {'interval': 'month'},
                    },
                }],
                proration_behavior='none',
            )

            try:
                subscription.amount = new_amount
                subscription.save()
            except Exception:
                logger.critical(
                    f"Stripe amount updated for {subscription.stripe_subscription_id} "
                    f"but DB update failed - states diverged (new amount {new_amount})",
                    exc_info=True
                )
                raise

            logger.info(f"Stripe subscription {subscription.stripe_subscription_id} amount updated to {new_amount}")
            return {'success': True, 'error': None}

        except Exception as e:
            logger.error(
                f"Billing adjustment failed for {subscription.stripe_subscription_id}: {e}",
                exc_info=True
            )
            return {'success': False, 'error': str(e)}

    # -------------------------------------------------------------------------
    # PAUSE / RESUME
    # -------------------------------------------------------------------------

    @staticmethod
    def pause_family_billing(family_reference_id):
        """
        Pause collection (invoices voided) on the family subscription.

        Raises:
            ValidationError: NO_ACTIVE_SUBSCRIPTION, INVALID_STATUS
        """
        subscription = WithdrawalService.find_family_subscription(family_reference_id)
        if not subscription:
            raise ValidationError(
                "No active subscription found for this family",
                code='NO_ACTIVE_SUBSCRIPTION',
                params={'family_reference_id': str(family_reference_id)}
            )

        if subscription.status != 'active':
            raise ValidationError(
                f'Cannot pause subscription with status "{subscription.status}"',
                code='INVALID_STATUS',
                params={'status': subscription.status}
            )

        stripe_client.update_subscription(
            subscription.stripe_subscription_id,
            'DUGSI',
            pause_collection={'behavior': 'void'}
        )

        try:
            subscription.status = 'paused'
            subscription.save()
        except Exception:
            logger.critical(
                f"Stripe paused {subscription.stripe_subscription_id} but DB update failed - states diverged",
                exc_info=True
            )
            raise

        log_billing_activity(
            'SUBSCRIPTION_PAUSE',
            target_object=subscription,
            stripe_object_id=subscription.stripe_subscription_id,
            program='DUGSI_PROGRAM',
            risk_level='MEDIUM',
        )
        logger.info(f"Family billing paused for {family_reference_id}")
        return subscription

    @staticmethod
    def resume_family_billing(family_reference_id):
        """
        Raises:
            ValidationError: NO_ACTIVE_SUBSCRIPTION, INVALID_STATUS
        """
        subscription = WithdrawalService.find_family_subscription(family_reference_id)
        if not subscription:
            raise ValidationError(
                "No subscription found for this family",
                code='NO_ACTIVE_SUBSCRIPTION',
                params={'family_reference_id': str(family_reference_id)}
            )

        if subscription.status != 'paused':
            raise ValidationError(
                f'Cannot resume subscription with status "{subscription.status}"',
                code='INVALID_STATUS',
                params={'status': subscription.status}
            )

        stripe_client.update_subscription(
            subscription.stripe_subscription_id,
            'DUGSI',
            pause_collection=''
        )

        try:
            subscription.status = 'active'
            subscription.save()
        except Exception:
            logger.critical(
                f"Stripe resumed {subscription.stripe_subscription_id} but DB update failed - states diverged",
                exc_info=True
            )
            raise

        log_billing_activity(
            'SUBSCRIPTION_RESUME',
            target_object=subscription,
            stripe_object_id=subscription.stripe_subscription_id,
            program='DUGSI_PROGRAM',
        )
        logger.info(f"Family billing resumed for {family_reference_id}")
        return subscription


# =============================================================================
# FAMILIES
# =============================================================================

class FamilyService:

    CHILD_PROFILE_FIELDS = ['gender', 'education_level', 'grade_level', 'school_name', 'health_info']

    @staticmethod
    def get_family(family_reference_id):
        """
        Children, guardians, payer and subscription of a Dugsi family.

        Raises:
            ValidationError: FAMILY_NOT_FOUND
        """
        profiles = list(ProgramProfile.objects.filter(
            program='DUGSI_PROGRAM',
            family_reference_id=family_reference_id
        ).select_related('person').order_by('person__name'))

        if not profiles:
            raise ValidationError(
                "Family not found",
                code='FAMILY_NOT_FOUND',
                params={'family_reference_id': str(family_reference_id)}
            )

        guardians = Person.objects.filter(
            guardian_relationships__dependent__in=[p.person for p in profiles],
            guardian_relationships__is_active=True
        ).distinct()

        payer = Person.objects.filter(
            guardian_relationships__dependent__in=[p.person for p in profiles],
            guardian_relationships__is_active=True,
            guardian_relationships__is_primary_payer=True
        ).first()

        active = [p for p in profiles if p.status in ACTIVE_CHILD_STATUSES]

        return {
            'family_reference_id': family_reference_id,
            'profiles': profiles,
            'active_profiles': active,
            'guardians': list(guardians),
            'payer': payer,
            'subscription': WithdrawalService.find_family_subscription(family_reference_id),
            'calculated_rate': calculate_dugsi_rate(len(active)),
        }

    @staticmethod
    def list_families(query=None):
        """One row per family: id, child count, first child name"""
        profiles = ProgramProfile.objects.filter(
            program='DUGSI_PROGRAM',
            family_reference_id__isnull=False
        )
        if query:
            profiles = profiles.filter(
                Q(person__name__icontains=query) |
                Q(person__dependent_relationships__guardian__name__icontains=query)
            )

        return profiles.values('family_reference_id').annotate(
            child_count=Count('id', distinct=True),
            active_count=Count('id', filter=Q(status__in=ACTIVE_CHILD_STATUSES), distinct=True),
        ).order_by('family_reference_id')

    # -------------------------------------------------------------------------
    # FAMILY EDITS
    # -------------------------------------------------------------------------

    @staticmethod
    def _get_child_profile(profile_id):
        profile = ProgramProfile.objects.select_related('person').filter(
            pk=profile_id, program='DUGSI_PROGRAM'
        ).first()
        if not profile:
            raise ValidationError(
                "Student not found",
                code='STUDENT_NOT_FOUND',
                params={'profile_id': str(profile_id)}
            )
        return profile

    @staticmethod
    def get_parent_links(child):
        """Active guardian links of a child, oldest first (parent 1, parent 2)"""
        return list(GuardianRelationship.objects.filter(
            dependent=child, is_active=True
        ).select_related('guardian').order_by('created_at'))

    @staticmethod
    @transaction.atomic
    def update_parent_info(profile_id, parent_number, first_name, last_name, phone):
        """
        Update a parent's name and phone. Email is not editable here since
        it identifies the family for billing.

        Raises:
            ValidationError: STUDENT_NOT_FOUND, PARENT_NOT_FOUND, INVALID_CONTACT
        """
        profile = FamilyService._get_child_profile(profile_id)
        links = FamilyService.get_parent_links(profile.person)

        index = int(parent_number) - 1
        if index not in (0, 1) or index >= len(links):
            raise ValidationError(
                f"Parent {parent_number} not found",
                code='PARENT_NOT_FOUND',
                params={'parent_number': parent_number}
            )

        parent = links[index].guardian
        parent.name = ' '.join(f"{first_name} {last_name}".split())
        parent.save(update_fields=['name', 'updated_at'])

        PersonService.update_contact(parent, 'PHONE', phone)

        logger.info(f"Updated parent {parent_number} ({parent.id}) of family {profile.family_reference_id}")

        return parent

    @staticmethod
    @transaction.atomic
    def add_second_parent(profile_id, first_name, last_name, email, phone):
        """
        Add a second parent to every child of the family. A person already
        registered with the email is reused.

        Raises:
            ValidationError: STUDENT_NOT_FOUND, DUPLICATE_PARENT
        """
        profile = FamilyService._get_child_profile(profile_id)

        if len(FamilyService.get_parent_links(profile.person)) >= 2:
            raise ValidationError(
                "Second parent already exists",
                code='DUPLICATE_PARENT',
                params={'profile_id': str(profile_id)}
            )

        parent = PersonService.find_person_by_contact(email=email)
        if not parent:
            parent = PersonService.create_person_with_contact(
                name=f"{first_name} {last_name}",
                email=email,
                phone=phone,
            )

        for sibling in profile.get_family_profiles().select_related('person'):
            GuardianService.link_guardian(guardian=parent, dependent=sibling.person, role='PARENT')

        logger.info(f"Added second parent {parent.id} to family {profile.family_reference_id}")

        return parent

    @staticmethod
    @transaction.atomic
    def update_child_info(profile_id, first_name=None, last_name=None, date_of_birth=None, **profile_fields):
        """
        Partial update of a child's name, date of birth and profile details.
        A missing first or last name keeps the current one.

        Raises:
            ValidationError: STUDENT_NOT_FOUND, INVALID_FIELD
        """
        profile = FamilyService._get_child_profile(profile_id)
        person = profile.person

        unknown = set(profile_fields) - set(FamilyService.CHILD_PROFILE_FIELDS)
        if unknown:
            raise ValidationError(
                "Unknown child field(s): %(fields)s",
                code='INVALID_FIELD',
                params={'fields': ', '.join(sorted(unknown))}
            )

        person_fields = []
        if first_name or last_name:
            current_first, *rest = person.name.split() or ['']
            person.name = ' '.join(
                f"{first_name or current_first} {last_name or ' '.join(rest)}".split()
            )
            person_fields.append('name')
        if date_of_birth is not None:
            person.date_of_birth = date_of_birth
            person_fields.append('date_of_birth')
        if person_fields:
            person.save(update_fields=person_fields + ['updated_at'])

        if profile_fields:
            for field, value in profile_fields.items():
                setattr(profile, field, value or '')
            profile.save(update_fields=list(profile_fields) + ['updated_at'])

        return profile

    @staticmethod
    @transaction.atomic
    def add_child_to_family(existing_profile_id, first_name, last_name, date_of_birth=None, **profile_fields):
        """
        Register a new child into an existing child's family. The sibling's
        parents (and primary payer) are copied onto the new child.

        Returns:
            ProgramProfile: the REGISTERED profile of the new child

        Raises:
            ValidationError: STUDENT_NOT_FOUND, FAMILY_NOT_FOUND
        """
        sibling = FamilyService._get_child_profile(existing_profile_id)

        if not sibling.family_reference_id:
            raise ValidationError(
                "Family reference ID not found",
                code='FAMILY_NOT_FOUND',
                params={'profile_id': str(existing_profile_id)}
            )

        links = FamilyService.get_parent_links(sibling.person)
        if not links:
            raise ValidationError(
                "No guardians found for existing student",
                code='FAMILY_NOT_FOUND',
                params={'profile_id': str(existing_profile_id)}
            )

        child = Person.objects.create(
            name=' '.join(f"{first_name} {last_name}".split()),
            date_of_birth=date_of_birth
        )

        for link in links:
            GuardianService.link_guardian(
                guardian=link.guardian,
                dependent=child,
                role=link.role,
                is_primary_payer=link.is_primary_payer
            )

        fields = {field: profile_fields.get(field) or '' for field in FamilyService.CHILD_PROFILE_FIELDS}
        profile, _ = RegistrationService.create_program_profile_with_enrollment(
            person=child,
            program='DUGSI_PROGRAM',
            status='REGISTERED',
            enrollment_reason='Added to existing family',
            family_reference_id=sibling.family_reference_id,
            **fields
        )

        logger.info(f"Added {child.name} to family {sibling.family_reference_id}")

        return profile

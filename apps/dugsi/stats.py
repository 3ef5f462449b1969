# dugsi/stats.py

from django.db.models import Count, Q

from core.utils import get_center_today, calculate_percentage
from students.models import ProgramProfile

from .models import DugsiClass, AttendanceRecord, TeacherCheckIn, TeacherProgram

ACTIVE_STATUSES = ['REGISTERED', 'ENROLLED']


# =============================================================================
# CLASS STATISTICS
# =============================================================================

def get_class_statistics():
    """
    Seats and teachers per class

    Returns:
        dict: classes [{id, name, shift, student_count, teacher_count}],
        class_count, seated_count, unassigned_count
    """
    classes = DugsiClass.objects.filter(is_active=True).annotate(
        student_count=Count('enrollments', filter=Q(enrollments__is_active=True), distinct=True),
        teacher_count=Count('teachers', filter=Q(teachers__is_active=True), distinct=True),
    ).order_by('shift', 'name')

    active_profiles = ProgramProfile.objects.filter(program='DUGSI_PROGRAM', status__in=ACTIVE_STATUSES)
    seated = active_profiles.filter(class_enrollment__is_active=True).count()

    return {
        'classes': [
            {
                'id': str(c.id),
                'name': c.name,
                'shift': c.get_shift_display(),
                'student_count': c.student_count,
                'teacher_count': c.teacher_count,
            }
            for c in classes
        ],
        'class_count': classes.count(),
        'seated_count': seated,
        'unassigned_count': active_profiles.count() - seated,
    }


# =============================================================================
# ATTENDANCE STATISTICS
# =============================================================================

def get_student_attendance_summary(profile):
    """Present / late / absent / excused counts and rate for one child"""
    counts = dict(
        AttendanceRecord.objects.filter(profile=profile).values_list('status').annotate(
            count=Count('id')
        ).values_list('status', 'count')
    )
    total = sum(counts.values())
    attended = counts.get('PRESENT', 0) + counts.get('LATE', 0)

    return {
        'total': total,
        'present': counts.get('PRESENT', 0),
        'late': counts.get('LATE', 0),
        'absent': counts.get('ABSENT', 0),
        'excused': counts.get('EXCUSED', 0),
        'attendance_rate': calculate_percentage(attended, total, 1) if total else 0,
        'lessons_completed': AttendanceRecord.objects.filter(profile=profile, lesson_completed=True).count(),
    }


# =============================================================================
# TEACHER STATISTICS
# =============================================================================

def get_checkin_statistics(day=None):
    day = day or get_center_today()
    checkins = TeacherCheckIn.objects.filter(date=day)

    return {
        'date': day,
        'teacher_count': TeacherProgram.objects.filter(program='DUGSI_PROGRAM', is_active=True).count(),
        'checked_in': checkins.count(),
        'late': checkins.filter(is_late=True).count(),
        'outside_geofence': checkins.filter(clock_in_valid=False).count(),
        'still_open': checkins.filter(clock_out_time__isnull=True).count(),
    }

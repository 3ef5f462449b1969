# students/stats.py

from django.db.models import Count, Q

from .models import Batch, ProgramProfile, Enrollment, ENROLLMENT_STATUS_CHOICES, open_enrollments_q

# =============================================================================
# PROGRAM STATISTICS
# =============================================================================

def get_program_statistics(program):
    """
    Headline numbers for one program

    Returns:
        dict: total_profiles, status_counts, male_count, female_count,
        male_percentage, female_percentage, active_count
    """
    profiles = ProgramProfile.objects.filter(program=program)

    total = profiles.count()
    status_counts = {
        code: profiles.filter(status=code).count()
        for code, _ in ENROLLMENT_STATUS_CHOICES
    }
    male_count = profiles.filter(gender='MALE').count()
    female_count = profiles.filter(gender='FEMALE').count()

    return {
        'total_profiles': total,
        'status_counts': status_counts,
        'active_count': status_counts['REGISTERED'] + status_counts['ENROLLED'],
        'male_count': male_count,
        'female_count': female_count,
        'male_percentage': round(male_count / total * 100, 1) if total else 0,
        'female_percentage': round(female_count / total * 100, 1) if total else 0,
    }


def get_billing_type_counts():
    """Mahad students per billing type"""
    rows = ProgramProfile.objects.filter(
        program='MAHAD_PROGRAM'
    ).exclude(status='WITHDRAWN').values('billing_type').annotate(count=Count('id'))
    return {row['billing_type'] or 'UNSET': row['count'] for row in rows}


# =============================================================================
# BATCH STATISTICS
# =============================================================================

def get_batch_statistics():
    """Open enrollment counts per batch, plus Mahad students with no batch"""
    batches = Batch.objects.annotate(
        student_count=Count(
            'enrollments',
            filter=Q(enrollments__end_date__isnull=True) & ~Q(enrollments__status='WITHDRAWN')
        )
    ).order_by('-start_date', 'name')

    unassigned = Enrollment.objects.filter(
        open_enrollments_q(),
        profile__program='MAHAD_PROGRAM',
        batch__isnull=True
    ).count()

    return {
        'batches': [
            {'id': str(batch.id), 'name': batch.name, 'student_count': batch.student_count}
            for batch in batches
        ],
        'batch_count': batches.count(),
        'unassigned_count': unassigned,
    }


# =============================================================================
# FAMILY STATISTICS (DUGSI)
# =============================================================================

def get_family_statistics():
    families = ProgramProfile.objects.filter(
        program='DUGSI_PROGRAM',
        family_reference_id__isnull=False
    ).exclude(status='WITHDRAWN').values('family_reference_id').annotate(children=Count('id'))

    sizes = [row['children'] for row in families]
    family_count = len(sizes)

    return {
        'family_count': family_count,
        'child_count': sum(sizes),
        'avg_children': round(sum(sizes) / family_count, 1) if family_count else 0,
        'large_families': sum(1 for size in sizes if size >= 3),
    }

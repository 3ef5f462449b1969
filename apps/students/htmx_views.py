# students/htmx_views.py

from django.shortcuts import render
from django.db.models import Q, Prefetch
import logging

from .models import ProgramProfile, Enrollment, open_enrollments_q
from utils.utils import parse_filters, paginate_queryset

logger = logging.getLogger(__name__)


# =============================================================================
# STUDENT SEARCH
# =============================================================================

def student_search(request):
    """HTMX-compatible Mahad student search with pagination and stats"""

    filters = parse_filters(request, ['q', 'status', 'batch', 'billing_type', 'gender'])

    profiles = ProgramProfile.objects.filter(
        program='MAHAD_PROGRAM'
    ).select_related('person').prefetch_related(
        Prefetch(
            'enrollments',
            queryset=Enrollment.objects.filter(open_enrollments_q()).select_related('batch'),
            to_attr='open_enrollments'
        ),
        'person__contact_points',
    ).order_by('person__name')

    if filters['q']:
        query = filters['q']
        profiles = profiles.filter(
            Q(person__name__icontains=query) |
            Q(person__contact_points__value__icontains=query)
        ).distinct()

    if filters['status']:
        profiles = profiles.filter(status=filters['status'])

    if filters['batch']:
        profiles = profiles.filter(
            open_enrollments_q('enrollments__'),
            enrollments__batch_id=filters['batch']
        ).distinct()

    if filters['billing_type']:
        profiles = profiles.filter(billing_type=filters['billing_type'])

    if filters['gender']:
        profiles = profiles.filter(gender=filters['gender'])

    profiles_page, paginator = paginate_queryset(request, profiles, per_page=20)

    stats = {
        'total': profiles.count(),
        'registered': profiles.filter(status='REGISTERED').count(),
        'enrolled': profiles.filter(status='ENROLLED').count(),
        'on_leave': profiles.filter(status='ON_LEAVE').count(),
        'withdrawn': profiles.filter(status='WITHDRAWN').count(),
    }

    return render(request, 'students/_student_results.html', {
        'profiles_page': profiles_page,
        'paginator': paginator,
        'stats': stats,
    })

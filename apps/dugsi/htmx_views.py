# dugsi/htmx_views.py

from django.shortcuts import render
import logging

from .services import FamilyService
from utils.utils import parse_filters, paginate_queryset

logger = logging.getLogger(__name__)


# =============================================================================
# FAMILY SEARCH
# =============================================================================

def family_search(request):
    """HTMX-compatible Dugsi family search with pagination"""

    filters = parse_filters(request, ['q'])
    families = FamilyService.list_families(filters['q'])

    families_page, paginator = paginate_queryset(request, families, per_page=20)

    rows = []
    for row in families_page:
        family = FamilyService.get_family(row['family_reference_id'])
        rows.append({
            'family_reference_id': row['family_reference_id'],
            'child_count': row['child_count'],
            'active_count': row['active_count'],
            'payer': family['payer'],
            'children': [p.person.name for p in family['profiles']],
            'subscription': family['subscription'],
        })

    return render(request, 'dugsi/_family_results.html', {
        'families_page': families_page,
        'paginator': paginator,
        'rows': rows,
        'total': paginator.count,
    })

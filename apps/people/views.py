# people/views.py

"""
People Views

Person profile with contacts, guardians and siblings, plus the sibling
suggestion review flow.
"""

from django.shortcuts import render, redirect, get_object_or_404
from django.contrib.auth.decorators import login_required
from django.contrib import messages
from django.core.exceptions import ValidationError
from django.db.models import Q
from django.http import JsonResponse
from django.views.decorators.http import require_POST
import logging

from .models import Person, SiblingRelationship
from .services import SiblingDetector, SiblingRelationshipService
from utils.utils import parse_filters, paginate_queryset, validation_error_payload

logger = logging.getLogger(__name__)


# =============================================================================
# PEOPLE
# =============================================================================

@login_required
def person_list(request):
    filters = parse_filters(request, ['q'])

    people = Person.objects.prefetch_related('contact_points').order_by('name')
    if filters['q']:
        people = people.filter(
            Q(name__icontains=filters['q']) |
            Q(contact_points__value__icontains=filters['q'])
        ).distinct()

    page_obj, paginator = paginate_queryset(request, people, per_page=25)

    return render(request, 'people/person_list.html', {
        'page_obj': page_obj,
        'paginator': paginator,
        'filters': filters,
    })


@login_required
def person_detail(request, pk):
    person = get_object_or_404(Person, pk=pk)

    context = {
        'person': person,
        'contacts': person.contact_points.filter(is_active=True).order_by('contact_type', '-is_primary'),
        'guardians': person.dependent_relationships.filter(is_active=True).select_related('guardian'),
        'dependents': person.guardian_relationships.filter(is_active=True).select_related('dependent'),
        'siblings': SiblingRelationshipService.get_siblings(person),
        'profiles': person.program_profiles.all(),
    }
    return render(request, 'people/person_detail.html', context)


# =============================================================================
# SIBLINGS
# =============================================================================

@login_required
def sibling_suggestions(request, pk):
    """Potential siblings as JSON for the review panel"""
    try:
        suggestions = SiblingDetector.detect_potential_siblings(pk)
    except ValidationError as e:
        return JsonResponse(validation_error_payload(e), status=404)

    return JsonResponse({
        'suggestions': [
            {
                'person_id': str(s['person'].id),
                'name': s['person'].name,
                'method': s['method'],
                'confidence': s['confidence'],
                'reasons': s['reasons'],
            }
            for s in suggestions
        ]
    })


@login_required
@require_POST
def sibling_add(request, pk):
    person = get_object_or_404(Person, pk=pk)
    other_id = request.POST.get('sibling_id')

    try:
        SiblingRelationshipService.create_relationship(
            person.pk,
            other_id,
            detection_method=request.POST.get('detection_method', 'MANUAL'),
            verified_by=request.user.get_username(),
        )
        messages.success(request, "Sibling relationship created.")
    except ValidationError as e:
        messages.error(request, validation_error_payload(e)['error'])

    return redirect('people:person_detail', pk=person.pk)


@login_required
@require_POST
def sibling_remove(request, pk, relationship_pk):
    relationship = get_object_or_404(SiblingRelationship, pk=relationship_pk)
    SiblingRelationshipService.remove_relationship(relationship.pk)
    messages.success(request, "Sibling relationship removed.")
    return redirect('people:person_detail', pk=pk)

# billing/htmx_views.py

from django.shortcuts import render
from django.db.models import Q, Count
import logging

from .models import Subscription
from utils.utils import parse_filters, paginate_queryset

logger = logging.getLogger(__name__)


def subscription_search(request):
    """HTMX-compatible subscription search with pagination"""

    filters = parse_filters(request, ['q', 'account_type', 'status'])

    subscriptions = Subscription.objects.select_related(
        'billing_account__person'
    ).annotate(
        student_count=Count('assignments', filter=Q(assignments__is_active=True))
    ).order_by('-created_at')

    if filters['q']:
        query = filters['q']
        subscriptions = subscriptions.filter(
            Q(stripe_subscription_id__icontains=query) |
            Q(stripe_customer_id__icontains=query) |
            Q(billing_account__person__name__icontains=query) |
            Q(billing_account__person__contact_points__value__icontains=query)
        ).distinct()

    if filters['account_type']:
        subscriptions = subscriptions.filter(stripe_account_type=filters['account_type'])

    if filters['status']:
        subscriptions = subscriptions.filter(status=filters['status'])

    subscriptions_page, paginator = paginate_queryset(request, subscriptions, per_page=25)

    return render(request, 'billing/_subscription_results.html', {
        'subscriptions_page': subscriptions_page,
        'paginator': paginator,
        'total': paginator.count,
    })

# billing/stats.py

from django.db.models import Count, Sum, Q

from core.utils import get_center_today

from .models import Subscription, BillingAssignment, StudentPayment, WebhookEvent, ACTIVE_SUBSCRIPTION_STATUSES


# =============================================================================
# SUBSCRIPTION STATISTICS
# =============================================================================

def get_subscription_statistics(account_type=None):
    """
    Counts per status and monthly recurring amount (cents)

    Returns:
        dict: total, status_counts, active_count, monthly_recurring,
        unlinked_count
    """
    subscriptions = Subscription.objects.all()
    if account_type:
        subscriptions = subscriptions.filter(stripe_account_type=account_type)

    status_counts = {
        row['status']: row['count']
        for row in subscriptions.values('status').annotate(count=Count('id'))
    }

    active = subscriptions.filter(status__in=ACTIVE_SUBSCRIPTION_STATUSES)
    monthly_recurring = active.aggregate(total=Sum('amount'))['total'] or 0

    unlinked = active.annotate(
        linked=Count('assignments', filter=Q(assignments__is_active=True))
    ).filter(linked=0).count()

    return {
        'total': subscriptions.count(),
        'status_counts': status_counts,
        'active_count': active.count(),
        'past_due_count': status_counts.get('past_due', 0),
        'paused_count': status_counts.get('paused', 0),
        'monthly_recurring': monthly_recurring,
        'unlinked_count': unlinked,
    }


def get_payment_statistics(year=None):
    """Collected amount per month of a year (cents)"""
    year = year or get_center_today().year
    rows = StudentPayment.objects.filter(year=year).values('month').annotate(
        total=Sum('amount_paid'),
        count=Count('id')
    ).order_by('month')

    return {
        'year': year,
        'months': [{'month': row['month'], 'total': row['total'] or 0, 'count': row['count']} for row in rows],
        'total': sum(row['total'] or 0 for row in rows),
    }


def get_webhook_statistics(limit=20):
    return {
        'recent': WebhookEvent.objects.order_by('-processed_at')[:limit],
        'by_source': {
            row['source']: row['count']
            for row in WebhookEvent.objects.values('source').annotate(count=Count('id'))
        },
    }


def get_unbilled_profiles(program):
    """Active profiles without an active billing assignment"""
    from students.models import ProgramProfile

    billed = BillingAssignment.objects.filter(is_active=True).values('profile_id')
    return ProgramProfile.objects.filter(
        program=program,
        status__in=['REGISTERED', 'ENROLLED']
    ).exclude(pk__in=billed).exclude(billing_type='EXEMPT').select_related('person')

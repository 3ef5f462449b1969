# billing/views.py

"""
Billing Views

- Stripe webhook endpoints (one per Stripe account)
- Cron endpoint for abandoned Mahad enrollments
- Billing dashboard, subscription list/detail, manual linking
- Invoices: sync from Stripe, resend, manual payments
- Excel export of subscriptions
"""

from django.shortcuts import render, redirect, get_object_or_404
from django.contrib.auth.decorators import login_required
from django.contrib import messages
from django.conf import settings
from django.core.exceptions import ValidationError
from django.http import HttpResponse, JsonResponse
from django.urls import reverse
from django.utils import timezone
from django.utils.crypto import constant_time_compare
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
import logging

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from .forms import (
    ACCOUNT_CHOICES,
    InvoiceActionForm,
    LinkSubscriptionForm,
    MarkInvoicePaidForm,
    SubscriptionFilterForm,
)
from .models import StudentPayment, Subscription
from .services import InvoiceService, SubscriptionService
from .webhooks import process_stripe_webhook
from . import stats as billing_stats

from core.utils import format_money
from people.models import Person
from people.utils import normalize_email
from students.services import cleanup_abandoned_enrollments
from utils.context import RequestContext
from utils.utils import validation_error_payload

logger = logging.getLogger(__name__)


# =============================================================================
# STRIPE WEBHOOKS
# =============================================================================

def _stripe_webhook(request, source):
    status, payload = process_stripe_webhook(
        source,
        request.body,
        request.headers.get('Stripe-Signature')
    )
    return JsonResponse(payload, status=status)


@csrf_exempt
@require_POST
def stripe_webhook_mahad(request):
    return _stripe_webhook(request, 'mahad')


@csrf_exempt
@require_POST
def stripe_webhook_dugsi(request):
    return _stripe_webhook(request, 'dugsi')


# =============================================================================
# CRON
# =============================================================================

def _cron_authorized(request):
    secret = getattr(settings, 'CRON_SECRET_KEY', '')
    header = request.headers.get('Authorization', '')
    return bool(secret) and constant_time_compare(header, f"Bearer {secret}")


@csrf_exempt
@require_POST
def cron_cleanup_abandoned_enrollments(request):
    if not _cron_authorized(request):
        logger.warning("Unauthorized cron request for abandoned enrollment cleanup")
        return JsonResponse({'error': 'Unauthorized'}, status=401)

    try:
        with RequestContext(is_automated=True, program='MAHAD_PROGRAM'):
            results = cleanup_abandoned_enrollments()
    except Exception as e:
        logger.error(f"Abandoned enrollment cleanup failed: {e}", exc_info=True)
        return JsonResponse({'error': 'Cleanup failed'}, status=500)

    return JsonResponse({
        'success': True,
        'timestamp': timezone.now().isoformat(),
        'results': results,
    })


# =============================================================================
# DASHBOARD & SUBSCRIPTIONS
# =============================================================================

@login_required
def billing_dashboard(request):
    try:
        mahad = billing_stats.get_subscription_statistics('MAHAD')
        dugsi = billing_stats.get_subscription_statistics('DUGSI')
        payments = billing_stats.get_payment_statistics()
    except Exception as e:
        logger.error(f"Error getting billing statistics: {e}")
        mahad, dugsi, payments = {}, {}, {}

    return render(request, 'billing/dashboard.html', {
        'account_statistics': [('Mahad', mahad), ('Dugsi', dugsi)],
        'payment_statistics': payments,
        'webhook_statistics': billing_stats.get_webhook_statistics(),
        'unbilled_mahad': billing_stats.get_unbilled_profiles('MAHAD_PROGRAM')[:20],
    })


@login_required
def subscription_list(request):
    return render(request, 'billing/subscription_list.html', {
        'filter_form': SubscriptionFilterForm(search_url=reverse('billing:subscription_search')),
    })


@login_required
def subscription_detail(request, pk):
    subscription = get_object_or_404(
        Subscription.objects.select_related('billing_account__person'),
        pk=pk
    )

    return render(request, 'billing/subscription_detail.html', {
        'subscription': subscription,
        'amount_display': format_money(subscription.amount),
        'assignments': subscription.assignments.select_related('profile__person').order_by('-is_active', '-start_date'),
        'history': subscription.history.order_by('-processed_at')[:20],
    })


@login_required
@require_POST
def subscription_sync(request, pk):
    """Pull the latest status from Stripe"""
    subscription = get_object_or_404(Subscription, pk=pk)
    try:
        SubscriptionService.sync_subscription_from_stripe(
            subscription.stripe_subscription_id,
            subscription.stripe_account_type
        )
        messages.success(request, "Subscription synced from Stripe")
    except ValidationError as e:
        messages.error(request, validation_error_payload(e)['error'])
    except Exception as e:
        logger.error(f"Stripe sync failed for {subscription.stripe_subscription_id}: {e}", exc_info=True)
        messages.error(request, "Could not reach Stripe")

    return redirect('billing:subscription_detail', pk=pk)


@login_required
def link_subscription(request):
    if request.method == 'POST':
        form = LinkSubscriptionForm(request.POST)
        if form.is_valid():
            data = form.cleaned_data
            person = Person.objects.filter(
                contact_points__contact_type='EMAIL',
                contact_points__value=normalize_email(data['payer_email'])
            ).first()

            if not person:
                messages.error(request, "No person found with that email")
            else:
                try:
                    result = SubscriptionService.link_subscription_manually(
                        data['subscription_id'],
                        data['account_type'],
                        person,
                        data['profile_ids'],
                        notes=data.get('notes') or ''
                    )
                except ValidationError as e:
                    messages.error(request, validation_error_payload(e)['error'])
                else:
                    messages.success(request, f"Linked to {result['assignments_created']} student(s)")
                    return redirect('billing:subscription_detail', pk=result['subscription'].pk)
    else:
        form = LinkSubscriptionForm(initial={'subscription_id': request.GET.get('subscription_id', '')})

    return render(request, 'billing/link_subscription.html', {'form': form, 'title': 'Link Stripe Subscription'})


# =============================================================================
# INVOICES
# =============================================================================

@login_required
def invoice_list(request):
    payments = StudentPayment.objects.select_related('profile__person').order_by('-paid_at')[:100]

    return render(request, 'billing/invoice_list.html', {
        'payments': payments,
        'resend_form': InvoiceActionForm(),
        'account_choices': ACCOUNT_CHOICES,
    })


@login_required
@require_POST
def invoice_sync(request):
    account_type = request.POST.get('account_type')
    if account_type not in dict(ACCOUNT_CHOICES):
        messages.error(request, "Choose an account to sync")
        return redirect('billing:invoice_list')

    try:
        results = InvoiceService.sync_invoices_from_stripe(account_type)
    except Exception as e:
        logger.error(f"Invoice sync failed for {account_type}: {e}", exc_info=True)
        messages.error(request, "Failed to sync invoices from Stripe")
    else:
        messages.success(
            request,
            f"Synced {results['synced']} invoice(s), skipped {results['skipped']}"
            + (f", {results['errors']} customer(s) failed" if results['errors'] else '')
        )

    return redirect('billing:invoice_list')


@login_required
@require_POST
def invoice_resend(request):
    form = InvoiceActionForm(request.POST)
    if not form.is_valid():
        messages.error(request, "Enter a valid invoice id")
        return redirect('billing:invoice_list')

    try:
        InvoiceService.resend_invoice(form.cleaned_data['invoice_id'], form.cleaned_data['account_type'])
    except ValidationError as e:
        messages.error(request, validation_error_payload(e)['error'])
    else:
        messages.success(request, "Invoice resent successfully")

    return redirect('billing:invoice_list')


@login_required
def invoice_detail(request):
    form = InvoiceActionForm(request.GET)
    if not form.is_valid():
        messages.error(request, "Enter a valid invoice id")
        return redirect('billing:invoice_list')

    try:
        details = InvoiceService.get_invoice_details(
            form.cleaned_data['invoice_id'], form.cleaned_data['account_type']
        )
    except ValidationError as e:
        messages.error(request, validation_error_payload(e)['error'])
        return redirect('billing:invoice_list')

    return render(request, 'billing/invoice_detail.html', {
        **details,
        'account_type': form.cleaned_data['account_type'],
    })


@login_required
def mark_invoice_paid(request):
    if request.method == 'POST':
        form = MarkInvoicePaidForm(request.POST)
        if form.is_valid():
            data = form.cleaned_data
            try:
                payment = InvoiceService.mark_invoice_as_paid(
                    data['profile_id'],
                    data['year'],
                    data['month'],
                    form.amount_cents(),
                    stripe_invoice_id=data['stripe_invoice_id'],
                )
            except ValidationError as e:
                messages.error(request, validation_error_payload(e)['error'])
            else:
                messages.success(request, f"Payment recorded for {payment.profile.person.name}")
                return redirect('billing:invoice_list')
    else:
        form = MarkInvoicePaidForm(initial={'profile_id': request.GET.get('profile_id', '')})

    return render(request, 'billing/mark_invoice_paid.html', {'form': form, 'title': 'Record Manual Payment'})


# =============================================================================
# EXPORT FUNCTIONS
# =============================================================================

@login_required
def export_subscriptions_excel(request):
    subscriptions = Subscription.objects.select_related(
        'billing_account__person'
    ).prefetch_related('assignments__profile__person').order_by('stripe_account_type', '-created_at')

    wb = Workbook()
    ws = wb.active
    ws.title = "Subscriptions"

    ws.append([
        'Account', 'Subscription', 'Payer', 'Status', 'Amount', 'Students',
        'Period End', 'Paid Until', 'Last Payment'
    ])
    for cell in ws[1]:
        cell.fill = PatternFill(start_color='4472C4', end_color='4472C4', fill_type='solid')
        cell.font = Font(bold=True, color='FFFFFF')

    def fmt(value):
        return timezone.localtime(value).strftime('%Y-%m-%d') if value else ''

    for subscription in subscriptions:
        students = ', '.join(
            a.profile.person.name for a in subscription.assignments.all() if a.is_active
        )
        ws.append([
            subscription.get_stripe_account_type_display(),
            subscription.stripe_subscription_id,
            subscription.billing_account.person.name,
            subscription.get_status_display(),
            format_money(subscription.amount),
            students,
            fmt(subscription.current_period_end),
            fmt(subscription.paid_until),
            fmt(subscription.last_payment_date),
        ])

    response = HttpResponse(
        content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    )
    response['Content-Disposition'] = (
        f'attachment; filename="subscriptions_{timezone.now().strftime("%Y%m%d")}.xlsx"'
    )
    wb.save(response)
    return response

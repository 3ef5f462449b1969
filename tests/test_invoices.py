# tests/test_invoices.py

import uuid
from unittest.mock import patch

import pytest
import stripe
from django.core.exceptions import ValidationError

from billing.models import StudentPayment
from billing.services import InvoiceService, get_invoice_subscription_id
from utils.models import BillingAuditLog

pytestmark = pytest.mark.django_db

PERIOD_START = 1736121600
PAID_AT = PERIOD_START + 3600


def stripe_invoice(invoice_id, status='paid', subscription='sub_family', **extra):
    data = {
        'id': invoice_id,
        'object': 'invoice',
        'status': status,
        'customer': 'cus_family',
        'subscription': subscription,
        'amount_paid': 16000 if status == 'paid' else 0,
        'amount_due': 16000,
        'period_start': PERIOD_START,
        'status_transitions': {'paid_at': PAID_AT if status == 'paid' else None},
    }
    data.update(extra)
    return data


def invoice_list(*invoices):
    return stripe.ListObject.construct_from(
        {'object': 'list', 'data': list(invoices), 'has_more': False}, 'sk_test_dugsi'
    )


# =============================================================================
# SUBSCRIPTION LOOKUP
# =============================================================================

@pytest.mark.parametrize('invoice, expected', [
    ({'subscription': 'sub_1'}, 'sub_1'),
    ({'subscription': {'id': 'sub_2'}}, 'sub_2'),
    ({'subscription': None, 'parent': {'subscription_details': {'subscription': 'sub_3'}}}, 'sub_3'),
    ({'id': 'in_one_off'}, None),
])
def test_invoice_subscription_id(invoice, expected):
    assert get_invoice_subscription_id(invoice) == expected


# =============================================================================
# SYNC
# =============================================================================

def test_sync_credits_paid_invoices_only(family_subscription, dugsi_children):
    invoices = invoice_list(
        stripe_invoice('in_paid'),
        stripe_invoice('in_draft', status='draft'),
        stripe_invoice('in_open', status='open'),
        stripe_invoice('in_elsewhere', subscription='sub_not_mirrored'),
    )

    with patch('stripe.Invoice.list', return_value=invoices) as list_invoices:
        results = InvoiceService.sync_invoices_from_stripe('DUGSI')

    assert list_invoices.call_args.kwargs['customer'] == 'cus_family'
    assert list_invoices.call_args.kwargs['api_key'] == 'sk_test_dugsi'
    assert results == {'customers': 1, 'synced': 1, 'skipped': 3, 'errors': 0}

    payments = StudentPayment.objects.filter(stripe_invoice_id='in_paid')
    assert payments.count() == 2
    assert {(p.year, p.month, p.amount_paid) for p in payments} == {(2025, 1, 8000)}
    assert BillingAuditLog.objects.filter(action='INVOICE_SYNC', program='DUGSI_PROGRAM').exists()


def test_sync_is_idempotent(family_subscription, dugsi_children):
    with patch('stripe.Invoice.list', return_value=invoice_list(stripe_invoice('in_paid'))):
        InvoiceService.sync_invoices_from_stripe('DUGSI')
        results = InvoiceService.sync_invoices_from_stripe('DUGSI')

    assert (results['synced'], results['skipped']) == (0, 1)
    assert StudentPayment.objects.count() == 2


def test_sync_reads_subscription_from_invoice_parent(family_subscription, dugsi_children):
    invoice = stripe_invoice(
        'in_new_api',
        subscription=None,
        parent={'type': 'subscription_details', 'subscription_details': {'subscription': 'sub_family'}},
    )

    with patch('stripe.Invoice.list', return_value=invoice_list(invoice)):
        results = InvoiceService.sync_invoices_from_stripe('DUGSI')

    assert results['synced'] == 1


def test_sync_continues_past_a_failing_customer(family_subscription):
    with patch('stripe.Invoice.list', side_effect=stripe.APIConnectionError('Stripe is down')):
        results = InvoiceService.sync_invoices_from_stripe('DUGSI')

    assert (results['customers'], results['errors'], results['synced']) == (1, 1, 0)


def test_sync_skips_accounts_without_customer(mahad_student):
    with patch('stripe.Invoice.list') as list_invoices:
        results = InvoiceService.sync_invoices_from_stripe('MAHAD')

    list_invoices.assert_not_called()
    assert results['customers'] == 0


# =============================================================================
# RESEND / DETAILS
# =============================================================================

def test_resend_invoice():
    sent = stripe.Invoice.construct_from(stripe_invoice('in_open', status='open'), 'sk_test_dugsi')

    with patch('stripe.Invoice.send_invoice', return_value=sent) as send:
        invoice = InvoiceService.resend_invoice('in_open', 'DUGSI')

    assert send.call_args.args == ('in_open',)
    assert send.call_args.kwargs['api_key'] == 'sk_test_dugsi'
    assert invoice['status'] == 'open'

    log = BillingAuditLog.objects.get(action='INVOICE_RESEND')
    assert (log.stripe_object_id, log.amount_cents) == ('in_open', 16000)


def test_resend_rejects_non_invoice_ids():
    with pytest.raises(ValidationError) as exc:
        InvoiceService.resend_invoice('sub_family', 'DUGSI')
    assert exc.value.code == 'INVALID_INVOICE_ID'


def test_resend_stripe_error_is_validation_error():
    error = stripe.InvalidRequestError('You can only manually send an invoice if its status is open', param=None)

    with patch('stripe.Invoice.send_invoice', side_effect=error):
        with pytest.raises(ValidationError) as exc:
            InvoiceService.resend_invoice('in_paid', 'DUGSI')

    assert exc.value.code == 'RESEND_FAILED'
    assert not BillingAuditLog.objects.filter(action='INVOICE_RESEND').exists()


def test_invoice_details(family_subscription, dugsi_children):
    InvoiceService.record_invoice_payment(family_subscription, stripe_invoice('in_paid'), family_subscription.created_at)
    retrieved = stripe.Invoice.construct_from(stripe_invoice('in_paid'), 'sk_test_dugsi')

    with patch('stripe.Invoice.retrieve', return_value=retrieved):
        details = InvoiceService.get_invoice_details('in_paid', 'DUGSI')

    assert details['subscription'] == family_subscription
    assert details['amount_paid_display'] == '$160.00'
    assert len(details['payments']) == 2


# =============================================================================
# MANUAL PAYMENTS
# =============================================================================

def test_manual_payment_gets_its_own_id(dugsi_children):
    child = dugsi_children[0]

    first = InvoiceService.mark_invoice_as_paid(child.pk, 2025, 2, 8000)
    second = InvoiceService.mark_invoice_as_paid(child.pk, 2025, 3, 8000)

    assert first.stripe_invoice_id.startswith('manual-')
    assert first.stripe_invoice_id != second.stripe_invoice_id
    assert child.payments.count() == 2
    assert BillingAuditLog.objects.filter(action='PAYMENT_MANUAL').count() == 2


def test_manual_payment_updates_existing_invoice_payment(family_subscription, dugsi_children):
    InvoiceService.record_invoice_payment(family_subscription, stripe_invoice('in_paid'), family_subscription.created_at)
    child = dugsi_children[0]

    payment = InvoiceService.mark_invoice_as_paid(child.pk, 2025, 1, 5000, stripe_invoice_id='in_paid')

    assert child.payments.count() == 1
    assert payment.amount_paid == 5000


@pytest.mark.parametrize('month, amount, code', [
    (13, 8000, 'INVALID_MONTH'),
    (0, 8000, 'INVALID_MONTH'),
    (1, 0, 'INVALID_AMOUNT'),
])
def test_manual_payment_validation(dugsi_children, month, amount, code):
    with pytest.raises(ValidationError) as exc:
        InvoiceService.mark_invoice_as_paid(dugsi_children[0].pk, 2025, month, amount)
    assert exc.value.code == code


def test_manual_payment_for_unknown_profile(db):
    with pytest.raises(ValidationError) as exc:
        InvoiceService.mark_invoice_as_paid(uuid.uuid4(), 2025, 1, 8000)
    assert exc.value.code == 'PROFILE_NOT_FOUND'


# =============================================================================
# VIEWS
# =============================================================================

def test_invoice_list_page(staff_client, dugsi_children):
    InvoiceService.mark_invoice_as_paid(dugsi_children[0].pk, 2025, 2, 8000)

    response = staff_client.get('/billing/invoices/')

    assert response.status_code == 200
    assert b'Amina Ali' in response.content


def test_sync_view(staff_client, family_subscription, dugsi_children):
    with patch('stripe.Invoice.list', return_value=invoice_list(stripe_invoice('in_paid'))):
        response = staff_client.post('/billing/invoices/sync/', {'account_type': 'DUGSI'})

    assert response.status_code == 302
    assert StudentPayment.objects.filter(stripe_invoice_id='in_paid').count() == 2


def test_resend_view_rejects_bad_id(staff_client):
    with patch('stripe.Invoice.send_invoice') as send:
        response = staff_client.post('/billing/invoices/resend/', {'invoice_id': 'pi_123', 'account_type': 'DUGSI'})

    assert response.status_code == 302
    send.assert_not_called()


def test_mark_paid_view_converts_dollars(staff_client, dugsi_children):
    child = dugsi_children[0]

    response = staff_client.post('/billing/invoices/mark-paid/', {
        'profile_id': str(child.pk),
        'year': 2025,
        'month': 4,
        'amount': '80.00',
    })

    assert response.status_code == 302
    payment = child.payments.get()
    assert (payment.month, payment.amount_paid) == (4, 8000)

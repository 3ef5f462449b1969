# tests/test_webhooks.py

import hashlib
import hmac
import json
import time
from unittest.mock import patch

import pytest

from billing.models import BillingAccount, BillingAssignment, StudentPayment, Subscription, WebhookEvent
from billing.webhooks import (
    handle_checkout_session_completed,
    handle_invoice_payment_succeeded,
    process_stripe_webhook,
)
from students.models import Enrollment, ProgramProfile

from .conftest import make_child

pytestmark = pytest.mark.django_db

WEBHOOK_URL = '/billing/webhooks/stripe/dugsi/'
CRON_URL = '/billing/cron/cleanup-abandoned-enrollments/'

# 2025-01-06 00:00 UTC, still January 5th in Chicago
PERIOD_START = 1736121600
PERIOD_END = PERIOD_START + 31 * 86400


def make_event(event_type, obj, event_id='evt_1'):
    return {'id': event_id, 'type': event_type, 'created': PERIOD_START, 'data': {'object': obj}}


def subscription_object(amount=16000, status='active', metadata=None, subscription_id='sub_family',
                        customer='cus_family'):
    return {
        'id': subscription_id,
        'customer': customer,
        'status': status,
        'currency': 'usd',
        'metadata': metadata or {},
        'current_period_start': PERIOD_START,
        'current_period_end': PERIOD_END,
        'items': {'data': [{
            'id': 'si_1',
            'price': {'unit_amount': amount, 'recurring': {'interval': 'month'}},
        }]},
    }


def deliver(event, source='dugsi'):
    """Run an event through the webhook with signature checking stubbed"""
    with patch('billing.stripe_client.construct_event', return_value=event):
        return process_stripe_webhook(source, json.dumps(event).encode(), 't=1,v1=test')


def stripe_signature(payload, secret):
    timestamp = int(time.time())
    signed = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signed}"


# =============================================================================
# REQUEST VALIDATION
# =============================================================================

def test_empty_body_is_rejected():
    assert process_stripe_webhook('dugsi', b'', 'sig') == (400, {'message': 'Request body is required'})


def test_missing_signature_is_rejected():
    assert process_stripe_webhook('dugsi', b'{"id": "evt_1"}', None) == (400, {'message': 'Missing signature'})


def test_bad_signature_is_unauthorized():
    payload = json.dumps(make_event('customer.created', {'id': 'cus_1'}))

    status, body = process_stripe_webhook('dugsi', payload, stripe_signature(payload, 'whsec_wrong'))

    assert status == 401
    assert body == {'message': 'Invalid webhook signature'}
    assert not WebhookEvent.objects.exists()


def test_signed_delivery_is_recorded():
    payload = json.dumps(make_event('customer.created', {'id': 'cus_1'}))

    status, body = process_stripe_webhook('dugsi', payload, stripe_signature(payload, 'whsec_test_dugsi'))

    assert (status, body) == (200, {'received': True})
    event = WebhookEvent.objects.get()
    assert (event.event_id, event.source, event.event_type) == ('evt_1', 'dugsi', 'customer.created')


def test_missing_webhook_secret_is_server_error(settings):
    settings.STRIPE_ACCOUNTS = {}
    payload = json.dumps(make_event('customer.created', {'id': 'cus_1'}))

    status, _ = process_stripe_webhook('mahad', payload, stripe_signature(payload, 'whsec_test_mahad'))
    assert status == 500


def test_duplicate_delivery_is_skipped():
    event = make_event('customer.created', {'id': 'cus_1'})
    WebhookEvent.objects.create(event_id='evt_1', event_type='customer.created', source='dugsi')

    assert deliver(event) == (200, {'received': True, 'skipped': True})


def test_same_event_id_from_other_account_is_processed():
    WebhookEvent.objects.create(event_id='evt_1', event_type='customer.created', source='mahad')

    assert deliver(make_event('customer.created', {'id': 'cus_1'})) == (200, {'received': True})
    assert WebhookEvent.objects.filter(event_id='evt_1').count() == 2


# =============================================================================
# SUBSCRIPTION EVENTS
# =============================================================================

def test_subscription_created_links_family(dugsi_account, parent, second_parent, family_id):
    children = [
        make_child('Sahra Ali', family_id, [parent, second_parent], status='REGISTERED'),
        make_child('Bilal Ali', family_id, [parent, second_parent], status='REGISTERED'),
    ]
    metadata = {
        'profileIds': ','.join(str(p.pk) for p in children),
        'calculatedRate': '16000',
        'childCount': '2',
    }

    status, _ = deliver(make_event('customer.subscription.created', subscription_object(metadata=metadata)))

    assert status == 200
    subscription = Subscription.objects.get(stripe_subscription_id='sub_family')
    assert subscription.billing_account == dugsi_account
    assert subscription.amount == 16000
    assert subscription.history.count() == 1
    assert sorted(subscription.assignments.values_list('amount', flat=True)) == [8000, 8000]

    for profile in children:
        assert ProgramProfile.objects.get(pk=profile.pk).status == 'ENROLLED'
        assert Enrollment.objects.get(profile=profile).status == 'ENROLLED'


def test_subscription_created_without_person_is_rejected():
    status, body = deliver(make_event('customer.subscription.created', subscription_object(customer='cus_unknown')))

    assert status == 500
    assert not Subscription.objects.exists()
    assert not WebhookEvent.objects.exists()


def test_dugsi_rate_mismatch(dugsi_account, dugsi_children):
    metadata = {
        'profileIds': ','.join(str(p.pk) for p in dugsi_children),
        'calculatedRate': '16000',
        'childCount': '2',
    }

    status, body = deliver(make_event(
        'customer.subscription.created', subscription_object(amount=15000, metadata=metadata)
    ))

    assert status == 400
    assert body == {'message': 'Rate validation failed - investigation required'}
    assert not Subscription.objects.exists()
    # removed so a corrected retry is processed
    assert not WebhookEvent.objects.exists()


def test_mahad_rate_mismatch(mahad_student):
    BillingAccount.objects.create(
        person=mahad_student.person, account_type='MAHAD', stripe_customer_id_mahad='cus_mahad'
    )
    metadata = {
        'profileId': str(mahad_student.pk),
        'calculatedRate': '12000',
        'graduationStatus': 'NON_GRADUATE',
        'paymentFrequency': 'MONTHLY',
        'billingType': 'FULL_TIME',
    }
    event = make_event('customer.subscription.created', subscription_object(
        amount=11000, metadata=metadata, subscription_id='sub_mahad', customer='cus_mahad'
    ))

    status, _ = deliver(event, source='mahad')
    assert status == 400


def test_update_for_unknown_subscription_is_retried():
    status, body = deliver(make_event('customer.subscription.updated', subscription_object()))

    assert (status, body) == (500, {'message': 'Temporary processing error, will retry'})
    assert not WebhookEvent.objects.exists()


def test_subscription_updated(family_subscription):
    status, _ = deliver(make_event(
        'customer.subscription.updated', subscription_object(amount=23000, status='past_due')
    ))

    family_subscription.refresh_from_db()
    assert status == 200
    assert family_subscription.status == 'past_due'
    assert family_subscription.amount == 23000
    assert family_subscription.paid_until is not None


def test_invalid_subscription_status_is_rejected(family_subscription):
    status, body = deliver(make_event('customer.subscription.updated', subscription_object(status='frozen')))

    assert status == 400
    assert body['message'].startswith('Validation error: Invalid subscription status')


def test_subscription_deleted_unlinks_children(family_subscription):
    status, _ = deliver(make_event('customer.subscription.deleted', subscription_object(status='canceled')))

    assert status == 200
    assert Subscription.objects.get(pk=family_subscription.pk).status == 'canceled'
    assert not BillingAssignment.objects.filter(is_active=True).exists()


# =============================================================================
# CHECKOUT & INVOICES
# =============================================================================

def test_checkout_completed_captures_payment_method(parent):
    session = {
        'id': 'cs_1',
        'customer': 'cus_new',
        'customer_details': {'email': 'Hodan@Example.com'},
        'payment_intent': 'pi_1',
        'metadata': {},
    }

    account = handle_checkout_session_completed(make_event('checkout.session.completed', session), 'DUGSI')

    assert account.person == parent
    assert account.stripe_customer_id_dugsi == 'cus_new'
    assert account.payment_intent_id_dugsi == 'pi_1'
    assert account.payment_method_captured
    assert account.payment_method_captured_at is not None


def test_checkout_for_unknown_customer_is_left_for_manual_linking():
    session = {'id': 'cs_1', 'customer': 'cus_new', 'customer_details': {'email': 'stranger@example.com'}}

    assert handle_checkout_session_completed(make_event('checkout.session.completed', session), 'DUGSI') is None
    assert not BillingAccount.objects.exists()


def test_invoice_paid_credits_each_child_once(family_subscription, dugsi_children):
    invoice = {
        'id': 'in_1',
        'subscription': 'sub_family',
        'amount_paid': 16000,
        'period_start': PERIOD_START,
        'period_end': PERIOD_END,
        'status_transitions': {'paid_at': PERIOD_START + 3600},
    }
    event = make_event('invoice.payment_succeeded', invoice)

    handle_invoice_payment_succeeded(event, 'DUGSI')
    handle_invoice_payment_succeeded(event, 'DUGSI')

    payments = StudentPayment.objects.all()
    assert payments.count() == 2
    assert {(p.year, p.month, p.amount_paid) for p in payments} == {(2025, 1, 8000)}

    family_subscription.refresh_from_db()
    assert int(family_subscription.paid_until.timestamp()) == PERIOD_END
    assert family_subscription.last_payment_date is not None


def test_invoice_without_subscription_is_ignored():
    invoice = {'id': 'in_2', 'amount_paid': 500}
    assert handle_invoice_payment_succeeded(make_event('invoice.payment_succeeded', invoice), 'DUGSI') is None


# =============================================================================
# SIGNED DELIVERIES
# =============================================================================

def deliver_signed(event, source='dugsi'):
    """Run an event through the real Stripe signature check and event parsing"""
    payload = json.dumps(event)
    return process_stripe_webhook(source, payload, stripe_signature(payload, f'whsec_test_{source}'))


def test_signed_subscription_update(family_subscription):
    event = make_event('customer.subscription.updated', subscription_object(amount=23000, status='past_due'))

    assert deliver_signed(event) == (200, {'received': True})

    family_subscription.refresh_from_db()
    assert family_subscription.status == 'past_due'
    assert family_subscription.amount == 23000
    assert WebhookEvent.objects.filter(event_id='evt_1', source='dugsi').exists()


def test_signed_subscription_created(dugsi_account, dugsi_children):
    metadata = {
        'profileIds': ','.join(str(p.pk) for p in dugsi_children),
        'calculatedRate': '16000',
        'childCount': '2',
    }
    event = make_event('customer.subscription.created', subscription_object(metadata=metadata))

    status, _ = deliver_signed(event)

    assert status == 200
    subscription = Subscription.objects.get(stripe_subscription_id='sub_family')
    assert subscription.assignments.filter(is_active=True).count() == 2


def test_signed_invoice_paid(family_subscription, dugsi_children):
    invoice = {
        'id': 'in_1',
        'subscription': 'sub_family',
        'amount_paid': 16000,
        'period_start': PERIOD_START,
        'period_end': PERIOD_END,
        'status_transitions': {'paid_at': PERIOD_START + 3600},
    }

    assert deliver_signed(make_event('invoice.payment_succeeded', invoice, event_id='evt_2'))[0] == 200
    assert StudentPayment.objects.count() == 2


def test_signed_checkout_completed(client, parent):
    session = {
        'id': 'cs_1',
        'customer': 'cus_new',
        'customer_details': {'email': 'hodan@example.com'},
        'payment_intent': 'pi_1',
        'metadata': {},
    }
    payload = json.dumps(make_event('checkout.session.completed', session, event_id='evt_3'))

    response = client.post(
        WEBHOOK_URL, data=payload, content_type='application/json',
        HTTP_STRIPE_SIGNATURE=stripe_signature(payload, 'whsec_test_dugsi'),
    )

    assert response.status_code == 200
    assert BillingAccount.objects.get(person=parent).stripe_customer_id_dugsi == 'cus_new'


# =============================================================================
# ENDPOINTS
# =============================================================================

def test_webhook_endpoint(client):
    event = make_event('customer.created', {'id': 'cus_1'})

    with patch('billing.stripe_client.construct_event', return_value=event) as construct:
        response = client.post(
            WEBHOOK_URL, data=json.dumps(event), content_type='application/json',
            HTTP_STRIPE_SIGNATURE='t=1,v1=test',
        )

    assert response.status_code == 200
    assert response.json() == {'received': True}
    assert construct.call_args.args[1:] == ('t=1,v1=test', 'dugsi')


def test_webhook_endpoint_rejects_get(client):
    assert client.get(WEBHOOK_URL).status_code == 405


def test_cron_requires_bearer_secret(client):
    response = client.post(CRON_URL, HTTP_AUTHORIZATION='Bearer wrong')

    assert response.status_code == 401
    assert response.json() == {'error': 'Unauthorized'}


def test_cron_runs_cleanup(client):
    results = {'checked': 2, 'abandoned': 0, 'cleaned': 0, 'errors': 0, 'details': []}

    with patch('billing.views.cleanup_abandoned_enrollments', return_value=results):
        response = client.post(CRON_URL, HTTP_AUTHORIZATION='Bearer test-cron-secret')

    data = response.json()
    assert response.status_code == 200
    assert data['success'] is True
    assert data['results'] == results
    assert 'timestamp' in data


def test_cron_failure_is_server_error(client):
    with patch('billing.views.cleanup_abandoned_enrollments', side_effect=RuntimeError('stripe down')):
        response = client.post(CRON_URL, HTTP_AUTHORIZATION='Bearer test-cron-secret')

    assert response.status_code == 500

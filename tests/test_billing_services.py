# tests/test_billing_services.py

from unittest.mock import patch

import pytest
import stripe
from django.core.exceptions import ImproperlyConfigured, ValidationError

from billing import stripe_client
from billing.models import BillingAccount, BillingAssignment, Subscription
from billing.services import (
    BillingService,
    CheckoutService,
    SubscriptionService,
    extract_period_dates,
    get_customer_id,
)
from irshad.managers import ProgramContext
from utils.models import BillingAuditLog

pytestmark = pytest.mark.django_db


def stripe_subscription(status='active', amount=16000, **extra):
    data = {
        'id': 'sub_family',
        'customer': 'cus_family',
        'status': status,
        'currency': 'usd',
        'items': {'data': [{
            'id': 'si_1',
            'price': {'unit_amount': amount, 'recurring': {'interval': 'month'}},
            'current_period_start': 1735689600,
            'current_period_end': 1738368000,
        }]},
    }
    data.update(extra)
    return data


# =============================================================================
# STRIPE CONFIGURATION
# =============================================================================

def test_keys_are_read_per_account():
    assert stripe_client.get_secret_key('DUGSI') == 'sk_test_dugsi'
    assert stripe_client.get_webhook_secret('MAHAD') == 'whsec_test_mahad'
    # accounts without their own keys bill through Mahad
    assert stripe_client.get_product_id('YOUTH_EVENTS') == 'prod_test_mahad'


def test_current_program_selects_account():
    with ProgramContext('DUGSI_PROGRAM'):
        assert stripe_client.get_secret_key() == 'sk_test_dugsi'
    assert stripe_client.get_secret_key() == 'sk_test_mahad'


def test_wrong_key_prefix_is_rejected(settings):
    settings.STRIPE_ACCOUNTS = {'DUGSI': {'secret_key': 'pk_live_oops'}}

    with pytest.raises(ImproperlyConfigured):
        stripe_client.get_secret_key('DUGSI')
    assert not stripe_client.is_account_configured('DUGSI')


# =============================================================================
# STRIPE OBJECT HELPERS
# =============================================================================

def test_customer_id_from_string_or_object():
    assert get_customer_id({'customer': 'cus_1'}) == 'cus_1'
    assert get_customer_id({'customer': {'id': 'cus_2'}}) == 'cus_2'
    assert get_customer_id({}) is None


def test_period_dates_fall_back_to_first_item():
    start, end = extract_period_dates(stripe_subscription())
    assert int(start.timestamp()) == 1735689600
    assert int(end.timestamp()) == 1738368000


# =============================================================================
# BILLING ACCOUNTS & ASSIGNMENTS
# =============================================================================

@pytest.mark.parametrize('total, count, expected', [
    (10000, 3, [3333, 3333, 3334]),
    (16000, 2, [8000, 8000]),
    (12000, 1, [12000]),
])
def test_split_amounts(total, count, expected):
    amounts = BillingService.calculate_split_amounts(total, count)
    assert amounts == expected
    assert sum(amounts) == total


def test_split_requires_positive_count():
    with pytest.raises(ValueError):
        BillingService.calculate_split_amounts(10000, 0)


def test_billing_account_upsert(parent):
    account = BillingService.create_or_update_billing_account(parent, 'DUGSI', stripe_customer_id='cus_1')
    again = BillingService.create_or_update_billing_account(
        None, 'DUGSI', stripe_customer_id='cus_1', payment_method_captured=True
    )

    assert account.pk == again.pk
    assert again.stripe_customer_id_dugsi == 'cus_1'
    assert again.payment_method_captured
    assert again.primary_contact_point.value == 'hodan@example.com'
    assert BillingAccount.objects.count() == 1


def test_billing_account_needs_a_person():
    with pytest.raises(ValidationError) as exc:
        BillingService.create_or_update_billing_account(None, 'DUGSI', stripe_customer_id='cus_unknown')
    assert exc.value.code == 'PERSON_REQUIRED'


def test_link_subscription_skips_existing_assignments(dugsi_account, dugsi_children):
    subscription = Subscription.objects.create(
        billing_account=dugsi_account,
        stripe_account_type='DUGSI',
        stripe_subscription_id='sub_new',
        stripe_customer_id='cus_family',
        status='active',
        amount=16000,
    )
    profile_ids = [p.pk for p in dugsi_children]

    assert BillingService.link_subscription_to_profiles(subscription, profile_ids, 16000) == 2
    assert BillingService.link_subscription_to_profiles(subscription, profile_ids, 16000) == 0

    amounts = sorted(subscription.assignments.values_list('amount', 'percentage'))
    assert amounts == [(8000, 50.0), (8000, 50.0)]
    assert BillingAuditLog.objects.filter(action='SUBSCRIPTION_LINK').count() == 1


def test_unlink_subscription(family_subscription):
    assert BillingService.unlink_subscription(family_subscription) == 2
    assert not BillingAssignment.objects.filter(is_active=True).exists()


def test_billing_status_by_email(family_subscription):
    status = BillingService.get_billing_status_by_email('HODAN@example.com', 'DUGSI')

    assert status['has_payment_method']
    assert status['has_active_subscription']
    assert status['stripe_customer_id'] == 'cus_family'
    assert status['subscription_status'] == 'active'


def test_billing_status_unknown_email():
    with pytest.raises(ValidationError) as exc:
        BillingService.get_billing_status_by_email('nobody@example.com', 'DUGSI')
    assert exc.value.code == 'PERSON_NOT_FOUND'


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

def test_subscription_id_format_is_checked():
    with pytest.raises(ValidationError) as exc:
        SubscriptionService.validate_stripe_subscription('cus_123', 'DUGSI')
    assert exc.value.code == 'INVALID_SUBSCRIPTION_ID'


def test_sync_updates_changed_status(family_subscription):
    with patch('billing.stripe_client.retrieve_subscription', return_value=stripe_subscription('past_due')):
        result = SubscriptionService.sync_subscription_from_stripe('sub_family', 'DUGSI')

    family_subscription.refresh_from_db()
    assert result == {'subscription_id': 'sub_family', 'status': 'past_due', 'updated': True}
    assert family_subscription.status == 'past_due'
    assert family_subscription.paid_until is not None


def test_sync_without_change_writes_nothing(family_subscription):
    with patch('billing.stripe_client.retrieve_subscription', return_value=stripe_subscription('active')):
        result = SubscriptionService.sync_subscription_from_stripe('sub_family', 'DUGSI')
    assert result['updated'] is False


def test_cancel_subscription_in_stripe(family_subscription):
    with patch('billing.stripe_client.cancel_subscription') as cancel:
        result = SubscriptionService.cancel_subscription('sub_family', cancel_in_stripe=True, account_type='DUGSI')

    cancel.assert_called_once_with('sub_family', 'DUGSI')
    assert result == {'canceled': True, 'canceled_in_stripe': True}
    assert Subscription.objects.get(pk=family_subscription.pk).status == 'canceled'


def test_link_subscription_manually(parent, dugsi_children):
    with patch('billing.stripe_client.retrieve_subscription', return_value=stripe_subscription()):
        result = SubscriptionService.link_subscription_manually(
            'sub_family', 'DUGSI', parent, [p.pk for p in dugsi_children], notes='Linked by office'
        )

    subscription = result['subscription']
    assert result['assignments_created'] == 2
    assert subscription.amount == 16000
    assert subscription.billing_account.stripe_customer_id_dugsi == 'cus_family'
    assert subscription.get_active_assignments().count() == 2


# =============================================================================
# STRIPE SDK RESPONSES
# =============================================================================

def test_sync_reads_stripe_objects(family_subscription):
    retrieved = stripe.Subscription.construct_from(stripe_subscription('past_due'), 'sk_test_dugsi')

    with patch('stripe.Subscription.retrieve', return_value=retrieved) as retrieve:
        result = SubscriptionService.sync_subscription_from_stripe('sub_family', 'DUGSI')

    assert retrieve.call_args.kwargs['api_key'] == 'sk_test_dugsi'
    assert result['updated']
    assert Subscription.objects.get(pk=family_subscription.pk).status == 'past_due'


def test_dugsi_checkout_session(dugsi_account, dugsi_children, family_id):
    session = stripe.checkout.Session.construct_from(
        {'id': 'cs_test_1', 'object': 'checkout.session', 'url': 'https://checkout.stripe.com/c/pay/cs_test_1'},
        'sk_test_dugsi',
    )

    with patch('stripe.checkout.Session.create', return_value=session) as create:
        result = CheckoutService.create_dugsi_checkout_session(family_id)

    assert result['session_id'] == 'cs_test_1'
    assert result['url'] == 'https://checkout.stripe.com/c/pay/cs_test_1'
    assert result['final_rate'] == 16000
    assert create.call_args.kwargs['customer'] == 'cus_family'

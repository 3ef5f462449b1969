# billing/stripe_client.py

"""
Per-program Stripe account configuration.

Mahad and Dugsi bill through separate Stripe accounts. Youth Events and
General Donation do not have their own account yet and use Mahad's.
Keys are read from settings.STRIPE_ACCOUNTS and checked for the right
prefix before use; every Stripe call passes the account's api_key
explicitly so both accounts can be used in the same process.
"""

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import stripe
import logging

from irshad.managers import get_current_account_type

logger = logging.getLogger(__name__)

ACCOUNT_FALLBACKS = {
    'YOUTH_EVENTS': 'MAHAD',
    'GENERAL_DONATION': 'MAHAD',
}

KEY_PREFIXES = {
    'secret_key': 'sk_',
    'webhook_secret': 'whsec_',
    'product_id': 'prod_',
}

WEBHOOK_SOURCE_ACCOUNTS = {
    'mahad': 'MAHAD',
    'dugsi': 'DUGSI',
}


def resolve_account_type(account_type=None):
    """Configured account backing an account type (current program by default)"""
    account_type = account_type or get_current_account_type() or 'MAHAD'
    return ACCOUNT_FALLBACKS.get(account_type, account_type)


def _get_account_value(account_type, key):
    resolved = resolve_account_type(account_type)
    accounts = getattr(settings, 'STRIPE_ACCOUNTS', {})
    value = (accounts.get(resolved) or {}).get(key, '')

    if not value:
        raise ImproperlyConfigured(
            f"Stripe {key} is not configured for the {resolved} account "
            f"(set STRIPE_{resolved}_{key.upper()})"
        )

    prefix = KEY_PREFIXES.get(key)
    if prefix and not value.startswith(prefix):
        raise ImproperlyConfigured(
            f"Stripe {key} for the {resolved} account must start with '{prefix}'"
        )

    return value


def get_secret_key(account_type=None):
    return _get_account_value(account_type, 'secret_key')


def get_webhook_secret(account_type=None):
    return _get_account_value(account_type, 'webhook_secret')


def get_product_id(account_type=None):
    return _get_account_value(account_type, 'product_id')


def is_account_configured(account_type):
    try:
        get_secret_key(account_type)
        return True
    except ImproperlyConfigured:
        return False


# =============================================================================
# STRIPE CALLS
# =============================================================================
# Responses are returned as plain dicts; StripeObject is not a dict on
# current SDK releases.

def to_plain(stripe_object):
    """Recursive plain-dict copy of a Stripe response (None passes through)"""
    if stripe_object is None:
        return None
    return stripe_object.to_dict()


def retrieve_subscription(subscription_id, account_type=None):
    return to_plain(stripe.Subscription.retrieve(subscription_id, api_key=get_secret_key(account_type)))


def update_subscription(subscription_id, account_type=None, **params):
    return to_plain(stripe.Subscription.modify(subscription_id, api_key=get_secret_key(account_type), **params))


def cancel_subscription(subscription_id, account_type=None):
    return to_plain(stripe.Subscription.cancel(subscription_id, api_key=get_secret_key(account_type)))


def list_subscriptions(customer_id, account_type=None, status='all', limit=10):
    return to_plain(stripe.Subscription.list(
        customer=customer_id,
        status=status,
        limit=limit,
        api_key=get_secret_key(account_type)
    ))


def create_checkout_session(account_type=None, **params):
    return to_plain(stripe.checkout.Session.create(api_key=get_secret_key(account_type), **params))


def list_customers(account_type=None, **params):
    return to_plain(stripe.Customer.list(api_key=get_secret_key(account_type), **params))


def update_customer(customer_id, account_type=None, **params):
    return to_plain(stripe.Customer.modify(customer_id, api_key=get_secret_key(account_type), **params))


def create_customer(account_type=None, **params):
    return to_plain(stripe.Customer.create(api_key=get_secret_key(account_type), **params))


def retrieve_customer(customer_id, account_type=None):
    return to_plain(stripe.Customer.retrieve(customer_id, api_key=get_secret_key(account_type)))


def list_invoices(customer_id, account_type=None, limit=100):
    return to_plain(stripe.Invoice.list(customer=customer_id, limit=limit, api_key=get_secret_key(account_type)))


def retrieve_invoice(invoice_id, account_type=None):
    return to_plain(stripe.Invoice.retrieve(invoice_id, api_key=get_secret_key(account_type)))


def send_invoice(invoice_id, account_type=None):
    return to_plain(stripe.Invoice.send_invoice(invoice_id, api_key=get_secret_key(account_type)))


def construct_event(payload, signature, source):
    """
    Verify a webhook delivery for a source ('mahad' or 'dugsi') and
    return the event as a plain dict.

    Raises:
        stripe.SignatureVerificationError, ValueError
    """
    account_type = WEBHOOK_SOURCE_ACCOUNTS[source]
    return to_plain(stripe.Webhook.construct_event(payload, signature, get_webhook_secret(account_type)))

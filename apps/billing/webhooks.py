# billing/webhooks.py

"""
Stripe Webhook Processing

One endpoint per Stripe account (mahad, dugsi). Each delivery is:

1. Verified against the account's webhook secret
2. De-duplicated on (event id, source) through WebhookEvent
3. Dispatched to the event handler for its type

When a handler fails the WebhookEvent row is removed again so Stripe's
retry is processed instead of skipped. Retryable errors answer 500 (Stripe
retries), rate mismatches and validation problems 400.
"""

from django.core.exceptions import ImproperlyConfigured
from django.db import transaction
from django.utils import timezone
import json
import logging

import stripe

from core.utils import from_unix_timestamp
from people.models import ContactPoint, Person
from people.utils import normalize_email
from utils.audit import log_billing_activity

from . import stripe_client
from .exceptions import RetryableWebhookError, RateMismatchError
from .models import BillingAccount, Subscription, WebhookEvent
from .services import (
    BillingService,
    InvoiceService,
    SubscriptionService,
    extract_period_dates,
    get_customer_id,
    get_first_price,
    get_invoice_subscription_id,
)
from .tuition import calculate_dugsi_rate, calculate_mahad_rate

logger = logging.getLogger(__name__)

SOURCE_ACCOUNT_TYPES = {
    'mahad': 'MAHAD',
    'dugsi': 'DUGSI',
}

VALID_SUBSCRIPTION_STATUSES = [
    'incomplete', 'incomplete_expired', 'trialing', 'active',
    'past_due', 'canceled', 'unpaid', 'paused',
]


def subscription_not_found_for_retry(subscription_id):
    return RetryableWebhookError(
        f"Subscription {subscription_id} not found in database; waiting for subscription.created"
    )


def _parse_int(value):
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


# =============================================================================
# CUSTOMER MATCHING
# =============================================================================

def match_customer_to_person(customer_id, metadata=None, email=None):
    """
    Find the person a Stripe customer belongs to: an explicit personId /
    guardianPersonId in metadata first, then an active email contact.

    Returns:
        Person or None
    """
    metadata = metadata or {}

    for key in ('personId', 'guardianPersonId'):
        person_id = metadata.get(key)
        if person_id:
            person = Person.objects.filter(pk=person_id).first()
            if person:
                return person
            logger.warning(f"Metadata {key}={person_id} on customer {customer_id} does not exist")

    normalized = normalize_email(email)
    if normalized:
        contact = ContactPoint.objects.select_related('person').filter(
            contact_type='EMAIL',
            value=normalized,
            is_active=True
        ).order_by('-is_primary', 'created_at').first()
        if contact:
            return contact.person

    return None


# =============================================================================
# EVENT HANDLERS
# =============================================================================

def handle_checkout_session_completed(event, account_type):
    """
    Record the captured bank account and connect the Stripe customer to a
    person. Unmatched customers are left for manual linking.
    """
    session = event['data']['object']
    customer_id = get_customer_id(session)

    if not customer_id:
        raise ValueError("Invalid or missing customer ID in checkout session")

    metadata = session.get('metadata') or {}
    details = session.get('customer_details') or {}
    email = details.get('email') or session.get('customer_email')

    person = match_customer_to_person(customer_id, metadata, email)
    if not person:
        existing = BillingAccount.find_by_customer(customer_id, account_type)
        person = existing.person if existing else None

    if not person:
        logger.warning(
            f"No person matched for customer {customer_id} ({account_type}); "
            f"checkout {session.get('id')} needs manual linking"
        )
        return None

    payment_intent = session.get('payment_intent')
    if payment_intent is not None and not isinstance(payment_intent, str):
        payment_intent = payment_intent.get('id')

    account = BillingService.create_or_update_billing_account(
        person=person,
        account_type=account_type,
        stripe_customer_id=customer_id,
        payment_method_captured=True,
        payment_method_captured_at=timezone.now(),
        payment_intent_id=payment_intent,
    )

    logger.info(f"Payment method captured for {person.name} ({customer_id}, {account_type})")
    return account


def _validate_subscription_rate(stripe_subscription, account_type):
    metadata = stripe_subscription.get('metadata') or {}
    price_amount = get_first_price(stripe_subscription).get('unit_amount')

    if account_type == 'MAHAD' and all(
        metadata.get(key) for key in ('calculatedRate', 'graduationStatus', 'paymentFrequency', 'billingType')
    ):
        expected = _parse_int(metadata['calculatedRate'])
        if price_amount != expected:
            raise RateMismatchError(
                f"Mahad rate mismatch: Stripe charged {price_amount} but expected {expected}",
                expected=expected,
                actual=price_amount,
            )

        recalculated = calculate_mahad_rate(
            metadata['graduationStatus'], metadata['paymentFrequency'], metadata['billingType']
        )
        if recalculated != expected:
            logger.warning(
                f"Rate calculation mismatch on {stripe_subscription['id']}: "
                f"metadata {expected}, recalculated {recalculated}"
            )

    elif account_type == 'DUGSI' and metadata.get('calculatedRate') and metadata.get('childCount'):
        expected = _parse_int(metadata['calculatedRate'])
        child_count = _parse_int(metadata['childCount'])

        if price_amount != expected:
            raise RateMismatchError(
                f"Dugsi rate mismatch: Stripe charged {price_amount} but expected {expected}",
                expected=expected,
                actual=price_amount,
            )

        recalculated = calculate_dugsi_rate(child_count)
        if recalculated != expected:
            logger.warning(
                f"Rate calculation mismatch on {stripe_subscription['id']}: "
                f"metadata {expected}, recalculated {recalculated} for {child_count} children"
            )


def _metadata_profile_ids(metadata):
    if metadata.get('profileIds'):
        return [pid.strip() for pid in metadata['profileIds'].split(',') if pid.strip()]
    if metadata.get('profileId'):
        return [metadata['profileId']]
    return []


def handle_subscription_created(event, account_type):
    """
    Mirror a new Stripe subscription and link it to the profiles named in
    its metadata.

    Raises:
        ValueError: No customer, or no person can own the subscription
        RateMismatchError: Charged amount differs from the metadata rate
    """
    stripe_subscription = event['data']['object']
    customer_id = get_customer_id(stripe_subscription)

    if not customer_id:
        raise ValueError("Invalid customer ID in subscription")

    metadata = stripe_subscription.get('metadata') or {}

    account = BillingAccount.find_by_customer(customer_id, account_type)
    if not account:
        person_id = metadata.get('personId') or metadata.get('guardianPersonId')
        person = Person.objects.filter(pk=person_id).first() if person_id else None

        if not person:
            raise ValueError(
                f"No person found for customer {customer_id}. Payment method must be captured "
                f"first or subscription metadata must include personId/guardianPersonId."
            )

        account = BillingService.create_or_update_billing_account(
            person=person,
            account_type=account_type,
            stripe_customer_id=customer_id,
            payment_method_captured=True,
            payment_method_captured_at=timezone.now(),
        )

    _validate_subscription_rate(stripe_subscription, account_type)

    with transaction.atomic():
        subscription = SubscriptionService.create_subscription_from_stripe(
            stripe_subscription, account, account_type
        )
        subscription.record_history(event['type'], event.get('id', ''))

        profile_ids = _metadata_profile_ids(metadata)
        if profile_ids:
            items = (stripe_subscription.get('items') or {}).get('data') or []
            if not items:
                raise ValueError("Subscription has no items")

            amount = get_first_price(stripe_subscription).get('unit_amount')
            if not amount or amount <= 0:
                raise ValueError("Subscription has invalid amount")

            BillingService.link_subscription_to_profiles(
                subscription, profile_ids, amount, notes='Linked automatically via webhook'
            )

            if subscription.is_active:
                _mark_profiles_enrolled(profile_ids)

    logger.info(f"Created subscription {subscription.stripe_subscription_id} ({account_type})")
    return subscription


def _mark_profiles_enrolled(profile_ids):
    from students.models import ProgramProfile, Enrollment

    ProgramProfile.objects.filter(pk__in=profile_ids, status='REGISTERED').update(status='ENROLLED')
    Enrollment.objects.filter(
        profile_id__in=profile_ids, status='REGISTERED', end_date__isnull=True
    ).update(status='ENROLLED')


def handle_subscription_updated(event, account_type):
    stripe_subscription = event['data']['object']
    subscription_id = stripe_subscription['id']

    subscription = Subscription.objects.filter(stripe_subscription_id=subscription_id).first()
    if not subscription:
        raise subscription_not_found_for_retry(subscription_id)

    status = stripe_subscription.get('status')
    if status not in VALID_SUBSCRIPTION_STATUSES:
        raise ValueError(f"Invalid subscription status: {status}")

    period_start, period_end = extract_period_dates(stripe_subscription)
    amount = get_first_price(stripe_subscription).get('unit_amount')

    subscription.status = status
    subscription.current_period_start = period_start
    subscription.current_period_end = period_end
    subscription.paid_until = period_end
    if amount is not None:
        subscription.amount = amount
    subscription.save()
    subscription.record_history(event['type'], event.get('id', ''))

    return subscription


def handle_subscription_deleted(event, account_type):
    stripe_subscription = event['data']['object']
    subscription_id = stripe_subscription['id']

    subscription = Subscription.objects.filter(stripe_subscription_id=subscription_id).first()
    if not subscription:
        raise subscription_not_found_for_retry(subscription_id)

    with transaction.atomic():
        subscription = SubscriptionService.update_subscription_status(subscription_id, 'canceled')
        unlinked = BillingService.unlink_subscription(subscription)
        subscription.record_history(event['type'], event.get('id', ''))

    log_billing_activity(
        'SUBSCRIPTION_CANCEL',
        target_object=subscription,
        stripe_object_id=subscription_id,
        new_values={'status': 'canceled', 'assignments_deactivated': unlinked},
        notes='Canceled in Stripe',
        is_automated=True,
    )

    return subscription


def handle_invoice_finalized(event, account_type):
    """Extend paid_until to the invoice's period end"""
    invoice = event['data']['object']
    subscription_id = get_invoice_subscription_id(invoice)

    if not subscription_id:
        return None

    subscription = Subscription.objects.filter(stripe_subscription_id=subscription_id).first()
    if not subscription:
        raise subscription_not_found_for_retry(subscription_id)

    paid_until = from_unix_timestamp(invoice.get('period_end'))
    if paid_until:
        subscription.paid_until = paid_until
        subscription.save(update_fields=['paid_until', 'updated_at'])

    return subscription


def handle_invoice_payment_succeeded(event, account_type):
    """
    Record the payment date and credit each assigned profile for the
    billing month (idempotent on the invoice id).
    """
    invoice = event['data']['object']
    subscription = handle_invoice_finalized(event, account_type)
    if subscription is None:
        return None

    paid_at = from_unix_timestamp(
        (invoice.get('status_transitions') or {}).get('paid_at') or event.get('created')
    ) or timezone.now()

    subscription.last_payment_date = paid_at
    subscription.save(update_fields=['last_payment_date', 'updated_at'])

    InvoiceService.record_invoice_payment(subscription, invoice, paid_at)

    log_billing_activity(
        'PAYMENT_RECEIVE',
        target_object=subscription,
        amount_cents=invoice.get('amount_paid'),
        stripe_object_id=invoice['id'],
        is_automated=True,
    )

    return subscription


def handle_invoice_payment_failed(event, account_type):
    invoice = event['data']['object']
    subscription_id = get_invoice_subscription_id(invoice)

    logger.warning(
        f"Invoice payment failed: {invoice.get('id')} "
        f"(subscription={subscription_id}, customer={get_customer_id(invoice)}, account={account_type})"
    )

    log_billing_activity(
        'PAYMENT_FAIL',
        amount_cents=invoice.get('amount_due'),
        stripe_object_id=invoice.get('id') or '',
        risk_level='MEDIUM',
        additional_data={'subscription_id': subscription_id},
        is_automated=True,
    )
    return None


EVENT_HANDLERS = {
    'checkout.session.completed': handle_checkout_session_completed,
    'customer.subscription.created': handle_subscription_created,
    'customer.subscription.updated': handle_subscription_updated,
    'customer.subscription.deleted': handle_subscription_deleted,
    'invoice.finalized': handle_invoice_finalized,
    'invoice.payment_succeeded': handle_invoice_payment_succeeded,
    'invoice.payment_failed': handle_invoice_payment_failed,
}


# =============================================================================
# WEBHOOK HANDLER
# =============================================================================

def _error_response(error):
    message = str(error)
    lowered = message.lower()

    if isinstance(error, RetryableWebhookError):
        return 500, {'message': 'Temporary processing error, will retry'}

    if isinstance(error, RateMismatchError):
        return 400, {'message': 'Rate validation failed - investigation required'}

    if any(text in message for text in (
        'Missing signature', 'verification failed', 'Invalid webhook signature'
    )):
        return 401, {'message': 'Invalid webhook signature'}

    if any(text in message for text in ('Invalid', 'Missing', 'Required')):
        return 400, {'message': f"Validation error: {message}"}

    if any(text in lowered for text in ('database', 'connection', 'timeout')):
        return 500, {'message': 'Internal server error'}

    return 500, {'message': 'Webhook processing error'}


def process_stripe_webhook(source, body, signature):
    """
    Verify, de-duplicate and dispatch one Stripe delivery.

    Args:
        source (str): 'mahad' or 'dugsi'
        body (bytes | str): Raw request body
        signature (str): Stripe-Signature header

    Returns:
        tuple: (http_status, response_dict)
    """
    account_type = SOURCE_ACCOUNT_TYPES[source]
    event_id = None

    if isinstance(body, bytes):
        body = body.decode('utf-8')

    if not body or not body.strip():
        logger.error(f"[{source}] Empty request body")
        return 400, {'message': 'Request body is required'}

    if not signature:
        logger.error(f"[{source}] Missing webhook signature")
        return 400, {'message': 'Missing signature'}

    try:
        event = stripe_client.construct_event(body, signature, source)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.error(f"[{source}] Webhook verification failed: {e}")
        return 401, {'message': 'Invalid webhook signature'}
    except ImproperlyConfigured as e:
        logger.error(f"[{source}] Webhook secret not configured: {e}")
        return 500, {'message': 'Webhook secret not configured'}

    try:
        event_id = event['id']
        event_type = event['type']

        logger.info(f"[{source}] Webhook received: {event_type} ({event_id})")

        if WebhookEvent.objects.filter(event_id=event_id, source=source).exists():
            logger.info(f"[{source}] Event {event_id} already processed, skipping")
            return 200, {'received': True, 'skipped': True}

        try:
            payload = json.loads(body)
        except ValueError:
            logger.error(f"[{source}] Failed to parse webhook body as JSON")
            return 400, {'message': 'Invalid JSON payload'}

        WebhookEvent.objects.create(
            event_id=event_id,
            event_type=event_type,
            source=source,
            payload=payload,
        )

        handler = EVENT_HANDLERS.get(event_type)
        if handler:
            with transaction.atomic():
                handler(event, account_type)
            logger.info(f"[{source}] Successfully processed {event_type}")
        else:
            logger.warning(f"[{source}] Unhandled event type: {event_type}")

        return 200, {'received': True}

    except Exception as e:
        if isinstance(e, RetryableWebhookError):
            logger.warning(f"[{source}] {e} (event={event_id})")
        else:
            logger.error(f"[{source}] Webhook error for event {event_id}: {e}", exc_info=True)

        if event_id and 'already processed' not in str(e):
            deleted, _ = WebhookEvent.objects.filter(event_id=event_id, source=source).delete()
            if deleted:
                logger.info(f"[{source}] Cleaned up webhook event {event_id} for retry")

        return _error_response(e)

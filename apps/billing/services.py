# billing/services.py

"""
Billing Services

Billing accounts, subscription mirroring, subscription <-> profile
assignments and Stripe Checkout sessions for both programs.

All amounts are integer cents. Stripe responses arrive from stripe_client
as plain dicts.
"""

from django.conf import settings
from django.db import transaction
from django.core.exceptions import ValidationError
from django.utils import timezone
from datetime import datetime
from zoneinfo import ZoneInfo
import logging
import uuid

import stripe

from core.utils import format_money, from_unix_timestamp, get_center_timezone, get_center_today
from irshad.managers import ACCOUNT_TYPE_BY_PROGRAM
from people.models import Person, GuardianRelationship
from people.utils import normalize_email
from students.models import ProgramProfile
from utils.audit import log_billing_activity

from . import stripe_client
from .billing_dates import validate_billing_cycle_anchor, BILLING_TIMEZONE
from .models import (
    BillingAccount,
    Subscription,
    BillingAssignment,
    StudentPayment,
    ACTIVE_SUBSCRIPTION_STATUSES,
    CUSTOMER_ID_FIELDS,
)
from .tuition import (
    calculate_dugsi_rate,
    calculate_mahad_rate,
    format_dugsi_rate_display,
    format_mahad_rate_display,
    get_dugsi_stripe_interval,
    get_mahad_stripe_interval,
    get_rate_tier_description,
    should_create_subscription,
    MAX_EXPECTED_FAMILY_RATE,
)

logger = logging.getLogger(__name__)

PROGRAM_BY_ACCOUNT_TYPE = {account: program for program, account in ACCOUNT_TYPE_BY_PROGRAM.items()}


# =============================================================================
# STRIPE OBJECT HELPERS
# =============================================================================

def get_customer_id(stripe_object):
    """customer may be an id string or an expanded object"""
    customer = stripe_object.get('customer')
    if isinstance(customer, str) or customer is None:
        return customer
    return customer.get('id')


def get_invoice_subscription_id(invoice):
    """Subscription id of an invoice (top level on older API versions, under parent on newer)"""
    value = invoice.get('subscription')
    if value is None:
        parent = (invoice.get('parent') or {}).get('subscription_details') or {}
        value = parent.get('subscription')
    if value is not None and not isinstance(value, str):
        value = value.get('id')
    return value


def get_first_price(stripe_subscription):
    items = (stripe_subscription.get('items') or {}).get('data') or []
    return (items[0].get('price') or {}) if items else {}


def extract_period_dates(stripe_subscription):
    """
    Current period as aware datetimes. Newer Stripe API versions report the
    period on the subscription item instead of the subscription.
    """
    start = stripe_subscription.get('current_period_start')
    end = stripe_subscription.get('current_period_end')

    if start is None or end is None:
        items = (stripe_subscription.get('items') or {}).get('data') or []
        if items:
            start = start if start is not None else items[0].get('current_period_start')
            end = end if end is not None else items[0].get('current_period_end')

    return from_unix_timestamp(start), from_unix_timestamp(end)


# =============================================================================
# BILLING SERVICE
# =============================================================================

class BillingService:
    """Billing accounts and subscription assignments"""

    @staticmethod
    def get_billing_account_by_customer_id(customer_id, account_type):
        return BillingAccount.find_by_customer(customer_id, account_type)

    @staticmethod
    @transaction.atomic
    def create_or_update_billing_account(person, account_type, stripe_customer_id=None,
                                         payment_method_captured=None,
                                         payment_method_captured_at=None,
                                         payment_intent_id=None):
        """
        Upsert the (person, account_type) billing account.

        Args:
            person (Person | None): Payer. When None the account is looked
                up by stripe_customer_id.
            account_type (str): MAHAD, DUGSI, YOUTH_EVENTS, GENERAL_DONATION
            stripe_customer_id (str, optional): Stored in the column for
                this account type
            payment_method_captured (bool, optional)
            payment_method_captured_at (datetime, optional)
            payment_intent_id (str, optional): Dugsi only

        Returns:
            BillingAccount instance

        Raises:
            ValidationError: Neither person nor a known customer id

        Example:
            account = BillingService.create_or_update_billing_account(
                person=parent,
                account_type='DUGSI',
                stripe_customer_id='cus_123',
                payment_method_captured=True,
            )
        """
        account = None
        if person is not None:
            account = BillingAccount.objects.filter(person=person, account_type=account_type).first()
        if account is None and stripe_customer_id:
            account = BillingAccount.find_by_customer(stripe_customer_id, account_type)

        if account is None:
            if person is None:
                raise ValidationError(
                    "A person is required to create a billing account",
                    code='PERSON_REQUIRED',
                    params={'account_type': account_type}
                )
            account = BillingAccount(person=person, account_type=account_type)

        if stripe_customer_id:
            account.set_customer_id(stripe_customer_id, account_type)
        if payment_intent_id and account_type == 'DUGSI':
            account.payment_intent_id_dugsi = payment_intent_id
        if payment_method_captured is not None:
            account.payment_method_captured = payment_method_captured
        if payment_method_captured_at:
            account.payment_method_captured_at = payment_method_captured_at

        if account.primary_contact_point_id is None:
            account.primary_contact_point = account.person.get_primary_contact('EMAIL')

        account.save()
        return account

    @staticmethod
    def calculate_split_amounts(total_amount, count):
        """
        Split a subscription amount across profiles. The remainder goes to
        the last profile.

        Example:
            >>> BillingService.calculate_split_amounts(10000, 3)
            [3333, 3333, 3334]
        """
        if count <= 0:
            raise ValueError("Count must be positive")

        if count == 1:
            return [total_amount]

        base = total_amount // count
        remainder = total_amount - base * count
        return [base] * (count - 1) + [base + remainder]

    @staticmethod
    def link_subscription_to_profiles(subscription, profile_ids, total_amount, notes=''):
        """
        Create active assignments for profiles not already linked to this
        subscription.

        Returns:
            int: Number of assignments created
        """
        profile_ids = [str(pid) for pid in profile_ids]
        if not profile_ids:
            raise ValueError("At least one profile ID is required")

        existing = set(
            str(pid) for pid in BillingAssignment.objects.filter(
                subscription=subscription,
                profile_id__in=profile_ids,
                is_active=True
            ).values_list('profile_id', flat=True)
        )

        amounts = BillingService.calculate_split_amounts(total_amount, len(profile_ids))
        created = 0

        with transaction.atomic():
            for profile_id, amount in zip(profile_ids, amounts):
                if profile_id in existing:
                    continue

                percentage = None
                if len(profile_ids) > 1 and total_amount:
                    percentage = amount / total_amount * 100

                BillingAssignment.objects.create(
                    subscription=subscription,
                    profile_id=profile_id,
                    amount=amount,
                    percentage=percentage,
                    start_date=get_center_today(),
                    notes=notes or ''
                )
                created += 1

        if created:
            log_billing_activity(
                'SUBSCRIPTION_LINK',
                target_object=subscription,
                amount_cents=total_amount,
                stripe_object_id=subscription.stripe_subscription_id,
                new_values={'profile_ids': profile_ids, 'created': created},
            )

        return created

    @staticmethod
    @transaction.atomic
    def unlink_subscription(subscription):
        """Deactivate every active assignment; returns the count"""
        return BillingAssignment.objects.filter(
            subscription=subscription, is_active=True
        ).update(is_active=False, end_date=get_center_today())

    @staticmethod
    def get_billing_status_by_email(email, account_type):
        """
        Billing summary for the payer owning an email.

        Raises:
            ValidationError: PERSON_NOT_FOUND
        """
        person = Person.objects.filter(
            contact_points__contact_type='EMAIL',
            contact_points__value=normalize_email(email)
        ).first()

        if not person:
            raise ValidationError(
                "Person not found with this email address",
                code='PERSON_NOT_FOUND',
                params={'email': email}
            )

        account = person.billing_accounts.filter(account_type=account_type).first()
        subscription = None
        if account:
            subscription = account.subscriptions.filter(
                status__in=ACTIVE_SUBSCRIPTION_STATUSES
            ).order_by('-created_at').first()

        return {
            'has_payment_method': bool(account and account.payment_method_captured),
            'has_active_subscription': subscription is not None,
            'stripe_customer_id': account.get_customer_id(account_type) if account else None,
            'subscription_status': subscription.status if subscription else None,
            'paid_until': subscription.paid_until if subscription else None,
            'current_period_start': subscription.current_period_start if subscription else None,
            'current_period_end': subscription.current_period_end if subscription else None,
        }

    @staticmethod
    def get_billing_status_for_profiles(profile_ids):
        """{profile_id: {'has_subscription': bool, 'amount': int | None}}"""
        status = {}
        for profile_id in profile_ids:
            assignment = BillingAssignment.objects.filter(
                profile_id=profile_id, is_active=True
            ).order_by('-created_at').first()
            status[str(profile_id)] = {
                'has_subscription': assignment is not None,
                'amount': assignment.amount if assignment else None,
            }
        return status


# =============================================================================
# SUBSCRIPTION SERVICE
# =============================================================================

class SubscriptionService:
    """Local subscription rows kept in step with Stripe"""

    @staticmethod
    def validate_stripe_subscription(subscription_id, account_type):
        """
        Fetch a subscription from Stripe and summarise it.

        Raises:
            ValidationError: INVALID_SUBSCRIPTION_ID, SUBSCRIPTION_NOT_FOUND,
            INVALID_CUSTOMER
        """
        if not subscription_id or not subscription_id.startswith('sub_'):
            raise ValidationError(
                'Invalid subscription ID format. Must start with "sub_"',
                code='INVALID_SUBSCRIPTION_ID',
                params={'subscription_id': subscription_id}
            )

        stripe_subscription = stripe_client.retrieve_subscription(subscription_id, account_type)
        if not stripe_subscription:
            raise ValidationError(
                "Subscription not found in Stripe",
                code='SUBSCRIPTION_NOT_FOUND',
                params={'subscription_id': subscription_id}
            )

        customer_id = get_customer_id(stripe_subscription)
        if not customer_id:
            raise ValidationError(
                "Invalid customer ID in subscription",
                code='INVALID_CUSTOMER',
                params={'subscription_id': subscription_id}
            )

        price = get_first_price(stripe_subscription)
        period_start, period_end = extract_period_dates(stripe_subscription)

        return {
            'subscription_id': stripe_subscription['id'],
            'customer_id': customer_id,
            'status': stripe_subscription.get('status'),
            'amount': price.get('unit_amount') or 0,
            'currency': stripe_subscription.get('currency') or 'usd',
            'interval': (price.get('recurring') or {}).get('interval') or 'month',
            'current_period_start': period_start,
            'current_period_end': period_end,
            'stripe_subscription': stripe_subscription,
        }

    @staticmethod
    @transaction.atomic
    def create_subscription_from_stripe(stripe_subscription, billing_account, account_type):
        """
        Create (or refresh) the local row for a Stripe subscription.

        Returns:
            Subscription instance
        """
        customer_id = get_customer_id(stripe_subscription)
        if not customer_id:
            raise ValidationError(
                "Invalid customer ID in subscription",
                code='INVALID_CUSTOMER',
                params={'subscription_id': stripe_subscription.get('id')}
            )

        price = get_first_price(stripe_subscription)
        period_start, period_end = extract_period_dates(stripe_subscription)

        subscription, created = Subscription.objects.update_or_create(
            stripe_subscription_id=stripe_subscription['id'],
            defaults={
                'billing_account': billing_account,
                'stripe_account_type': account_type,
                'stripe_customer_id': customer_id,
                'status': stripe_subscription.get('status') or 'incomplete',
                'amount': price.get('unit_amount') or 0,
                'currency': stripe_subscription.get('currency') or 'usd',
                'interval': (price.get('recurring') or {}).get('interval') or 'month',
                'current_period_start': period_start,
                'current_period_end': period_end,
                'paid_until': period_end,
            }
        )

        if created:
            log_billing_activity(
                'SUBSCRIPTION_CREATE',
                target_object=subscription,
                amount_cents=subscription.amount,
                stripe_object_id=subscription.stripe_subscription_id,
                program='DUGSI_PROGRAM' if account_type == 'DUGSI' else 'MAHAD_PROGRAM',
                new_values={'status': subscription.status, 'amount': subscription.amount},
            )

        return subscription

    @staticmethod
    def update_subscription_status(subscription_id, status, current_period_start=None,
                                   current_period_end=None, paid_until=None):
        """
        Raises:
            Subscription.DoesNotExist
        """
        subscription = Subscription.objects.get(stripe_subscription_id=subscription_id)
        subscription.status = status
        update_fields = ['status', 'updated_at']

        for field, value in (
            ('current_period_start', current_period_start),
            ('current_period_end', current_period_end),
            ('paid_until', paid_until),
        ):
            if value is not None:
                setattr(subscription, field, value)
                update_fields.append(field)

        subscription.save(update_fields=update_fields)
        return subscription

    @staticmethod
    def sync_subscription_from_stripe(subscription_id, account_type):
        """
        Pull status and period from Stripe; the row is only written when
        the status changed.

        Returns:
            dict: {'subscription_id', 'status', 'updated'}
        """
        data = SubscriptionService.validate_stripe_subscription(subscription_id, account_type)

        subscription = Subscription.objects.filter(stripe_subscription_id=subscription_id).first()
        if not subscription:
            raise ValidationError(
                "Subscription not found in database. Create it first before syncing.",
                code='SUBSCRIPTION_NOT_FOUND',
                params={'subscription_id': subscription_id}
            )

        if subscription.status == data['status']:
            return {'subscription_id': subscription_id, 'status': data['status'], 'updated': False}

        SubscriptionService.update_subscription_status(
            subscription_id,
            data['status'],
            current_period_start=data['current_period_start'],
            current_period_end=data['current_period_end'],
            paid_until=data['current_period_end'],
        )
        return {'subscription_id': subscription_id, 'status': data['status'], 'updated': True}

    @staticmethod
    def cancel_subscription(subscription_id, cancel_in_stripe=False, account_type=None):
        SubscriptionService.update_subscription_status(subscription_id, 'canceled')

        canceled_in_stripe = False
        if cancel_in_stripe:
            if not account_type:
                raise ValueError("Account type required when canceling in Stripe")
            stripe_client.cancel_subscription(subscription_id, account_type)
            canceled_in_stripe = True

        return {'canceled': True, 'canceled_in_stripe': canceled_in_stripe}

    @staticmethod
    def is_subscription_active(subscription_id):
        return Subscription.objects.filter(
            stripe_subscription_id=subscription_id,
            status__in=ACTIVE_SUBSCRIPTION_STATUSES
        ).exists()

    @staticmethod
    @transaction.atomic
    def link_subscription_manually(subscription_id, account_type, person, profile_ids, notes=''):
        """
        Admin flow for attaching an existing Stripe subscription to people
        the webhook could not match.

        Args:
            subscription_id (str): 'sub_...'
            account_type (str): MAHAD or DUGSI
            person (Person): Payer
            profile_ids (list): Profiles the subscription pays for

        Returns:
            dict: {'subscription': Subscription, 'assignments_created': int}
        """
        data = SubscriptionService.validate_stripe_subscription(subscription_id, account_type)

        account = BillingService.create_or_update_billing_account(
            person=person,
            account_type=account_type,
            stripe_customer_id=data['customer_id'],
        )

        subscription = SubscriptionService.create_subscription_from_stripe(
            data['stripe_subscription'], account, account_type
        )

        created = BillingService.link_subscription_to_profiles(
            subscription, profile_ids, subscription.amount, notes=notes or 'Linked manually'
        )

        logger.info(f"Manually linked {subscription_id} to {created} profile(s)")

        return {'subscription': subscription, 'assignments_created': created}


# =============================================================================
# CHECKOUT SERVICE
# =============================================================================

class CheckoutService:
    """ACH-only Stripe Checkout sessions that start a subscription"""

    DUGSI_SOURCE = 'dugsi-admin-payment-link'
    MAHAD_SOURCE = 'mahad-registration'

    @staticmethod
    def _app_url():
        app_url = getattr(settings, 'APP_URL', '')
        if not app_url:
            raise ValidationError("App URL not configured", code='SERVER_ERROR', params={})
        return app_url.rstrip('/')

    @staticmethod
    def _billing_anchor(billing_start_date):
        """'YYYY-MM-DD' (center time) -> epoch seconds, validated"""
        if not billing_start_date:
            return None

        try:
            if isinstance(billing_start_date, str):
                start = datetime.strptime(billing_start_date, '%Y-%m-%d')
            else:
                start = datetime(billing_start_date.year, billing_start_date.month, billing_start_date.day)
            anchor = int(start.replace(tzinfo=ZoneInfo(BILLING_TIMEZONE)).timestamp())
            validate_billing_cycle_anchor(anchor)
        except ValueError as e:
            raise ValidationError(str(e), code='INVALID_BILLING_START_DATE', params={'billing_start_date': str(billing_start_date)})

        return anchor

    @staticmethod
    def create_dugsi_checkout_session(family_reference_id, override_amount=None,
                                      billing_start_date=None, success_url=None, cancel_url=None):
        """
        Create a payment link for a Dugsi family.

        Args:
            family_reference_id (UUID | str): Family to bill
            override_amount (int, optional): Admin rate in cents
            billing_start_date (str | date, optional): First billing day
            success_url / cancel_url (str, optional)

        Returns:
            dict: session_id, url, calculated_rate, final_rate, is_override,
            rate_description, tier_description, family_name, child_count

        Raises:
            ValidationError: FAMILY_NOT_FOUND, NO_PRIMARY_PAYER,
            MISSING_GUARDIAN_EMAIL, INVALID_RATE, SERVER_ERROR
        """
        anchor = CheckoutService._billing_anchor(billing_start_date)

        if override_amount is not None and (not isinstance(override_amount, int) or override_amount <= 0):
            raise ValidationError(
                "Override amount must be a positive whole number of cents",
                code='INVALID_OVERRIDE',
                params={'override_amount': str(override_amount)}
            )

        app_url = CheckoutService._app_url()
        success_url = success_url or f"{app_url}/dugsi/?payment=success"
        cancel_url = cancel_url or f"{app_url}/dugsi/?payment=canceled"

        profiles = list(ProgramProfile.objects.select_related('person').filter(
            family_reference_id=family_reference_id,
            program='DUGSI_PROGRAM',
            status__in=['REGISTERED', 'ENROLLED']
        ).order_by('created_at'))

        if not profiles:
            raise ValidationError(
                "Family not found or no active students",
                code='FAMILY_NOT_FOUND',
                params={'family_reference_id': str(family_reference_id)}
            )

        child_count = len(profiles)
        payer_relation = GuardianRelationship.objects.select_related('guardian').filter(
            dependent=profiles[0].person,
            is_active=True,
            is_primary_payer=True
        ).first()

        if not payer_relation:
            raise ValidationError(
                "No primary payer designated for this family. Please set a primary payer before checkout.",
                code='NO_PRIMARY_PAYER',
                params={'family_reference_id': str(family_reference_id)}
            )

        guardian = payer_relation.guardian
        guardian_email = guardian.email
        if not guardian_email:
            raise ValidationError(
                "Guardian must have an email address on file to receive payment link",
                code='MISSING_GUARDIAN_EMAIL',
                params={'guardian_id': str(guardian.pk)}
            )

        calculated_rate = calculate_dugsi_rate(child_count)
        is_override = override_amount is not None
        rate = override_amount if is_override else calculated_rate

        if rate <= 0:
            raise ValidationError("Invalid rate calculation", code='INVALID_RATE', params={'rate': rate})

        if rate > MAX_EXPECTED_FAMILY_RATE:
            logger.warning(
                f"Unusually high rate for Dugsi checkout: {rate} cents "
                f"(family={family_reference_id}, children={child_count}, override={is_override})"
            )

        try:
            product_id = stripe_client.get_product_id('DUGSI')
        except Exception as e:
            logger.error(f"Stripe product not configured for Dugsi: {e}")
            raise ValidationError("Payment system not properly configured", code='SERVER_ERROR', params={})

        account = guardian.billing_accounts.filter(account_type='DUGSI').first()
        customer_id = account.stripe_customer_id_dugsi if account else None

        child_names = ', '.join(p.person.name for p in profiles)
        subscription_data = {
            'metadata': {
                'Family': guardian.name,
                'Children': child_names,
                'Rate': format_dugsi_rate_display(rate),
                'Tier': get_rate_tier_description(child_count),
                'Source': 'Dugsi Admin Payment Link',
                'familyId': str(family_reference_id),
                'guardianPersonId': str(guardian.pk),
                'childCount': str(child_count),
                'profileIds': ','.join(str(p.pk) for p in profiles),
                'calculatedRate': str(calculated_rate),
                'overrideUsed': 'true' if is_override else 'false',
                'billingStartDate': str(billing_start_date) if billing_start_date else 'immediate',
                'source': CheckoutService.DUGSI_SOURCE,
            },
        }
        if anchor:
            subscription_data['billing_cycle_anchor'] = anchor
            subscription_data['proration_behavior'] = 'none'

        params = {
            'mode': 'subscription',
            'payment_method_types': ['us_bank_account'],
            'line_items': [{
                'price_data': {
                    'currency': 'usd',
                    'product': product_id,
                    'unit_amount': rate,
                    'recurring': get_dugsi_stripe_interval(),
                },
                'quantity': 1,
            }],
            'subscription_data': subscription_data,
            'metadata': {
                'Family': guardian.name,
                'Source': 'Dugsi Admin Payment Link',
                'familyId': str(family_reference_id),
                'guardianPersonId': str(guardian.pk),
                'childCount': str(child_count),
                'source': CheckoutService.DUGSI_SOURCE,
            },
            'success_url': success_url,
            'cancel_url': cancel_url,
            'allow_promotion_codes': True,
        }
        if customer_id:
            params['customer'] = customer_id
        else:
            params['customer_email'] = guardian_email

        session = stripe_client.create_checkout_session('DUGSI', **params)

        if not session.get('url'):
            logger.error(f"Checkout session {session.get('id')} created without URL (family={family_reference_id})")
            raise ValidationError("Failed to create payment link", code='SERVER_ERROR', params={})

        log_billing_activity(
            'CHECKOUT_CREATE',
            target_object=profiles[0],
            amount_cents=rate,
            stripe_object_id=session['id'],
            program='DUGSI_PROGRAM',
            new_values={'child_count': child_count, 'override': is_override},
        )

        logger.info(
            f"Dugsi checkout session {session['id']} created for {guardian.name} "
            f"({child_count} children, {rate} cents, override={is_override})"
        )

        return {
            'session_id': session['id'],
            'url': session['url'],
            'calculated_rate': calculated_rate,
            'final_rate': rate,
            'is_override': is_override,
            'rate_description': format_dugsi_rate_display(rate),
            'tier_description': get_rate_tier_description(child_count),
            'family_name': guardian.name,
            'child_count': child_count,
            'guardian': guardian,
        }

    @staticmethod
    def create_mahad_checkout_session(profile_id, success_url=None, cancel_url=None):
        """
        Create a checkout session for one Mahad student at their calculated
        rate. A Stripe customer flagged enrollmentPending is created first
        when the student has none, so unpaid enrollments can be cleaned up.

        Returns:
            dict: session_id, url, rate, rate_description

        Raises:
            ValidationError: PROFILE_NOT_FOUND, EXEMPT_STUDENT,
            MISSING_EMAIL, INVALID_RATE
        """
        profile = ProgramProfile.objects.select_related('person').filter(
            pk=profile_id, program='MAHAD_PROGRAM'
        ).first()
        if not profile:
            raise ValidationError(
                "Mahad student not found",
                code='PROFILE_NOT_FOUND',
                params={'profile_id': str(profile_id)}
            )

        if not should_create_subscription(profile.billing_type):
            raise ValidationError(
                "Exempt students do not need a subscription",
                code='EXEMPT_STUDENT',
                params={'profile_id': str(profile_id)}
            )

        rate = calculate_mahad_rate(profile.graduation_status, profile.payment_frequency, profile.billing_type)
        if rate <= 0:
            raise ValidationError("Invalid rate calculation", code='INVALID_RATE', params={'rate': rate})

        person = profile.person
        email = person.email
        if not email:
            raise ValidationError(
                "Student must have an email address on file",
                code='MISSING_EMAIL',
                params={'person_id': str(person.pk)}
            )

        app_url = CheckoutService._app_url()
        account = person.billing_accounts.filter(account_type='MAHAD').first()
        customer_id = account.stripe_customer_id_mahad if account else None

        if not customer_id:
            customer = stripe_client.create_customer(
                'MAHAD',
                email=email,
                name=person.name,
                metadata={
                    'personId': str(person.pk),
                    'profileId': str(profile.pk),
                    'enrollmentPending': 'true',
                },
            )
            customer_id = customer['id']
            BillingService.create_or_update_billing_account(person, 'MAHAD', stripe_customer_id=customer_id)

        frequency = profile.payment_frequency or 'MONTHLY'
        session = stripe_client.create_checkout_session(
            'MAHAD',
            mode='subscription',
            payment_method_types=['us_bank_account'],
            customer=customer_id,
            line_items=[{
                'price_data': {
                    'currency': 'usd',
                    'product': stripe_client.get_product_id('MAHAD'),
                    'unit_amount': rate,
                    'recurring': get_mahad_stripe_interval(frequency),
                },
                'quantity': 1,
            }],
            subscription_data={
                'metadata': {
                    'personId': str(person.pk),
                    'profileId': str(profile.pk),
                    'studentName': person.name,
                    'calculatedRate': str(rate),
                    'graduationStatus': profile.graduation_status or 'NON_GRADUATE',
                    'paymentFrequency': frequency,
                    'billingType': profile.billing_type,
                    'source': CheckoutService.MAHAD_SOURCE,
                },
            },
            success_url=success_url or f"{app_url}/mahad/?payment=success",
            cancel_url=cancel_url or f"{app_url}/mahad/?payment=canceled",
        )

        log_billing_activity(
            'CHECKOUT_CREATE',
            target_object=profile,
            amount_cents=rate,
            stripe_object_id=session['id'],
            program='MAHAD_PROGRAM',
        )

        return {
            'session_id': session['id'],
            'url': session['url'],
            'rate': rate,
            'rate_description': format_mahad_rate_display(rate, frequency),
        }


# =============================================================================
# INVOICE SERVICE
# =============================================================================

class InvoiceService:
    """Paid Stripe invoices credited to profiles, plus manual payments"""

    MANUAL_PREFIX = 'manual-'

    @staticmethod
    def record_invoice_payment(subscription, invoice, paid_at):
        """
        Credit each actively assigned profile for the invoice's billing
        month (center timezone). Idempotent on (profile, invoice id).

        Returns:
            int: payments created
        """
        period_start = from_unix_timestamp(invoice.get('period_start')) or paid_at
        local_start = period_start.astimezone(get_center_timezone())

        created_count = 0
        for assignment in subscription.get_active_assignments():
            _, created = StudentPayment.objects.get_or_create(
                profile=assignment.profile,
                stripe_invoice_id=invoice['id'],
                defaults={
                    'year': local_start.year,
                    'month': local_start.month,
                    'amount_paid': assignment.amount,
                    'paid_at': paid_at,
                }
            )
            created_count += int(created)

        return created_count

    @staticmethod
    def sync_invoices_from_stripe(account_type):
        """
        Backfill payments for paid invoices of every customer on an account.

        Drafts, unpaid invoices and invoices of subscriptions we do not
        mirror are skipped. A Stripe failure for one customer is counted
        and the sync moves on.

        Returns:
            dict: {'customers', 'synced', 'skipped', 'errors'}
        """
        field = CUSTOMER_ID_FIELDS[account_type]
        accounts = BillingAccount.objects.filter(**{f'{field}__isnull': False}).exclude(**{field: ''})

        results = {'customers': 0, 'synced': 0, 'skipped': 0, 'errors': 0}

        for account in accounts:
            customer_id = account.get_customer_id(account_type)
            results['customers'] += 1

            try:
                invoices = stripe_client.list_invoices(customer_id, account_type)
            except stripe.StripeError as e:
                logger.error(f"Could not list invoices for {customer_id}: {e}")
                results['errors'] += 1
                continue

            for invoice in invoices.get('data') or []:
                paid_at_unix = (invoice.get('status_transitions') or {}).get('paid_at')
                if invoice.get('status') != 'paid' or not paid_at_unix:
                    results['skipped'] += 1
                    continue

                subscription = Subscription.objects.filter(
                    stripe_subscription_id=get_invoice_subscription_id(invoice)
                ).first()
                if not subscription:
                    results['skipped'] += 1
                    continue

                with transaction.atomic():
                    created = InvoiceService.record_invoice_payment(
                        subscription, invoice, from_unix_timestamp(paid_at_unix)
                    )
                results['synced' if created else 'skipped'] += 1

        logger.info(
            f"Invoice sync for {account_type}: {results['synced']} synced, "
            f"{results['skipped']} skipped, {results['errors']} error(s)"
        )

        log_billing_activity(
            'INVOICE_SYNC',
            new_values=results,
            program=PROGRAM_BY_ACCOUNT_TYPE.get(account_type),
        )

        return results

    @staticmethod
    def _validate_invoice_id(invoice_id):
        if not invoice_id or not invoice_id.startswith('in_'):
            raise ValidationError(
                'Invalid invoice ID format. Must start with "in_"',
                code='INVALID_INVOICE_ID',
                params={'invoice_id': invoice_id}
            )

    @staticmethod
    def resend_invoice(invoice_id, account_type):
        """Ask Stripe to email an open invoice to the customer again"""
        InvoiceService._validate_invoice_id(invoice_id)

        try:
            invoice = stripe_client.send_invoice(invoice_id, account_type)
        except stripe.StripeError as e:
            logger.error(f"Failed to resend invoice {invoice_id}: {e}")
            raise ValidationError(
                "Failed to resend invoice",
                code='RESEND_FAILED',
                params={'invoice_id': invoice_id}
            )

        log_billing_activity(
            'INVOICE_RESEND',
            amount_cents=invoice.get('amount_due'),
            stripe_object_id=invoice_id,
            program=PROGRAM_BY_ACCOUNT_TYPE.get(account_type),
        )

        return invoice

    @staticmethod
    @transaction.atomic
    def mark_invoice_as_paid(profile_id, year, month, amount, stripe_invoice_id=None):
        """
        Record a cash or check payment for a profile's billing month.

        Without a Stripe invoice id a 'manual-' id is generated. A payment
        already recorded for the same invoice is updated in place.

        Returns:
            StudentPayment
        """
        profile = ProgramProfile.objects.select_related('person').filter(pk=profile_id).first()
        if not profile:
            raise ValidationError(
                "Student not found",
                code='PROFILE_NOT_FOUND',
                params={'profile_id': str(profile_id)}
            )

        if not 1 <= int(month) <= 12:
            raise ValidationError("Month must be between 1 and 12", code='INVALID_MONTH', params={'month': month})

        if int(amount) <= 0:
            raise ValidationError("Amount must be positive", code='INVALID_AMOUNT', params={'amount': amount})

        invoice_id = stripe_invoice_id or f"{InvoiceService.MANUAL_PREFIX}{uuid.uuid4().hex}"

        payment, created = StudentPayment.objects.update_or_create(
            profile=profile,
            stripe_invoice_id=invoice_id,
            defaults={
                'year': int(year),
                'month': int(month),
                'amount_paid': int(amount),
                'paid_at': timezone.now(),
            }
        )

        log_billing_activity(
            'PAYMENT_MANUAL',
            target_object=profile,
            amount_cents=int(amount),
            stripe_object_id='' if invoice_id.startswith(InvoiceService.MANUAL_PREFIX) else invoice_id,
            program=profile.program,
            new_values={'year': int(year), 'month': int(month), 'created': created},
        )

        logger.info(f"Payment recorded for {profile.person.name} {year}-{int(month):02d}: {amount} cents")

        return payment

    @staticmethod
    def get_invoice_details(invoice_id, account_type):
        """
        Stripe invoice summary with the local payments recorded for it.

        Returns:
            dict: {'invoice', 'amount_paid_display', 'subscription', 'payments'}
        """
        InvoiceService._validate_invoice_id(invoice_id)

        try:
            invoice = stripe_client.retrieve_invoice(invoice_id, account_type)
        except stripe.StripeError as e:
            logger.error(f"Failed to fetch invoice {invoice_id}: {e}")
            raise ValidationError(
                "Failed to fetch invoice details",
                code='INVOICE_NOT_FOUND',
                params={'invoice_id': invoice_id}
            )

        return {
            'invoice': invoice,
            'amount_paid_display': format_money(invoice.get('amount_paid') or 0),
            'subscription': Subscription.objects.filter(
                stripe_subscription_id=get_invoice_subscription_id(invoice)
            ).first(),
            'payments': list(
                StudentPayment.objects.filter(stripe_invoice_id=invoice_id).select_related('profile__person')
            ),
        }

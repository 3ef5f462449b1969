# billing/models.py

"""
Billing Models

Stripe-backed subscription billing. Each program bills through its own
Stripe account (Mahad: one subscription per student, Dugsi: one
subscription per family). Amounts are integer cents, like Stripe.
"""

from django.db import models
from django.core.validators import MinValueValidator
import logging

from irshad.managers import ProgramScopedManager
from people.models import Person, ContactPoint
from students.models import ProgramProfile
from utils.models import BaseModel

logger = logging.getLogger(__name__)

STRIPE_ACCOUNT_TYPE_CHOICES = [
    ('MAHAD', 'Mahad'),
    ('DUGSI', 'Dugsi'),
    ('YOUTH_EVENTS', 'Youth Events'),
    ('GENERAL_DONATION', 'General Donation'),
]

SUBSCRIPTION_STATUS_CHOICES = [
    ('incomplete', 'Incomplete'),
    ('incomplete_expired', 'Incomplete (Expired)'),
    ('trialing', 'Trialing'),
    ('active', 'Active'),
    ('past_due', 'Past Due'),
    ('canceled', 'Canceled'),
    ('unpaid', 'Unpaid'),
    ('paused', 'Paused'),
]

ACTIVE_SUBSCRIPTION_STATUSES = ['active', 'trialing']

# BillingAccount column holding the Stripe customer per account type
CUSTOMER_ID_FIELDS = {
    'MAHAD': 'stripe_customer_id_mahad',
    'DUGSI': 'stripe_customer_id_dugsi',
    'YOUTH_EVENTS': 'stripe_customer_id_youth',
    'GENERAL_DONATION': 'stripe_customer_id_donation',
}


# =============================================================================
# BILLING ACCOUNT
# =============================================================================

class BillingAccount(BaseModel):
    """The person who pays, with their Stripe customer per account"""

    person = models.ForeignKey(
        Person,
        verbose_name="Payer",
        on_delete=models.CASCADE,
        related_name='billing_accounts'
    )
    account_type = models.CharField(
        "Account Type",
        max_length=20,
        choices=STRIPE_ACCOUNT_TYPE_CHOICES,
        db_index=True
    )

    # -------------------------------------------------------------------------
    # STRIPE CUSTOMERS
    # -------------------------------------------------------------------------

    stripe_customer_id_mahad = models.CharField(
        "Stripe Customer (Mahad)", max_length=255, unique=True, null=True, blank=True
    )
    stripe_customer_id_dugsi = models.CharField(
        "Stripe Customer (Dugsi)", max_length=255, unique=True, null=True, blank=True
    )
    stripe_customer_id_youth = models.CharField(
        "Stripe Customer (Youth)", max_length=255, unique=True, null=True, blank=True
    )
    stripe_customer_id_donation = models.CharField(
        "Stripe Customer (Donation)", max_length=255, unique=True, null=True, blank=True
    )

    # -------------------------------------------------------------------------
    # PAYMENT METHOD
    # -------------------------------------------------------------------------

    payment_intent_id_dugsi = models.CharField("Payment Intent (Dugsi)", max_length=255, blank=True)
    payment_method_captured = models.BooleanField("Payment Method Captured", default=False)
    payment_method_captured_at = models.DateTimeField("Captured At", null=True, blank=True)

    primary_contact_point = models.ForeignKey(
        ContactPoint,
        verbose_name="Billing Contact",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    notes = models.TextField("Notes", blank=True)

    objects = ProgramScopedManager(program_field='account_type', account_type=True)

    class Meta:
        verbose_name = "Billing Account"
        verbose_name_plural = "Billing Accounts"
        constraints = [
            models.UniqueConstraint(fields=['person', 'account_type'], name='unique_person_account_type'),
        ]

    def __str__(self):
        return f"{self.person.name} ({self.get_account_type_display()})"

    def get_customer_id(self, account_type=None):
        return getattr(self, CUSTOMER_ID_FIELDS[account_type or self.account_type])

    def set_customer_id(self, customer_id, account_type=None):
        setattr(self, CUSTOMER_ID_FIELDS[account_type or self.account_type], customer_id)

    @classmethod
    def find_by_customer(cls, customer_id, account_type):
        return cls.objects.filter(**{CUSTOMER_ID_FIELDS[account_type]: customer_id}).first()


# =============================================================================
# SUBSCRIPTION
# =============================================================================

class Subscription(BaseModel):
    """Local mirror of a Stripe subscription"""

    billing_account = models.ForeignKey(
        BillingAccount,
        verbose_name="Billing Account",
        on_delete=models.CASCADE,
        related_name='subscriptions'
    )
    stripe_account_type = models.CharField(
        "Stripe Account",
        max_length=20,
        choices=STRIPE_ACCOUNT_TYPE_CHOICES,
        db_index=True
    )
    stripe_subscription_id = models.CharField("Stripe Subscription", max_length=255, unique=True)
    stripe_customer_id = models.CharField("Stripe Customer", max_length=255, db_index=True)

    status = models.CharField(
        "Status",
        max_length=20,
        choices=SUBSCRIPTION_STATUS_CHOICES,
        default='incomplete',
        db_index=True
    )
    amount = models.PositiveIntegerField("Amount (cents)", default=0)
    currency = models.CharField("Currency", max_length=3, default='usd')
    interval = models.CharField("Interval", max_length=10, default='month')

    current_period_start = models.DateTimeField("Current Period Start", null=True, blank=True)
    current_period_end = models.DateTimeField("Current Period End", null=True, blank=True)
    paid_until = models.DateTimeField("Paid Until", null=True, blank=True)
    last_payment_date = models.DateTimeField("Last Payment", null=True, blank=True)

    previous_subscription_ids = models.JSONField(
        "Previous Subscriptions",
        default=list,
        blank=True,
        help_text="Stripe ids this subscription replaced"
    )

    objects = ProgramScopedManager(program_field='stripe_account_type', account_type=True)

    class Meta:
        verbose_name = "Subscription"
        verbose_name_plural = "Subscriptions"
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.stripe_subscription_id} ({self.status})"

    @property
    def is_active(self):
        return self.status in ACTIVE_SUBSCRIPTION_STATUSES

    def get_active_assignments(self):
        return self.assignments.filter(is_active=True).select_related('profile__person')

    def record_history(self, event_type, event_id='', metadata=None):
        """Snapshot the current status and amount"""
        return SubscriptionHistory.objects.create(
            subscription=self,
            event_type=event_type,
            event_id=event_id or '',
            status=self.status,
            amount=self.amount,
            metadata=metadata or {},
        )


# =============================================================================
# BILLING ASSIGNMENT
# =============================================================================

class BillingAssignment(BaseModel):
    """Which profiles a subscription pays for, and how much of it each"""

    subscription = models.ForeignKey(
        Subscription,
        verbose_name="Subscription",
        on_delete=models.CASCADE,
        related_name='assignments'
    )
    profile = models.ForeignKey(
        ProgramProfile,
        verbose_name="Profile",
        on_delete=models.CASCADE,
        related_name='billing_assignments'
    )
    amount = models.PositiveIntegerField("Amount (cents)", default=0)
    percentage = models.FloatField(
        "Percentage",
        null=True,
        blank=True,
        validators=[MinValueValidator(0.0)]
    )
    is_active = models.BooleanField("Active", default=True, db_index=True)
    start_date = models.DateField("Start Date", null=True, blank=True)
    end_date = models.DateField("End Date", null=True, blank=True)
    notes = models.TextField("Notes", blank=True)

    class Meta:
        verbose_name = "Billing Assignment"
        verbose_name_plural = "Billing Assignments"
        indexes = [
            models.Index(fields=['subscription', 'is_active']),
            models.Index(fields=['profile', 'is_active']),
        ]

    def __str__(self):
        return f"{self.profile} ← {self.subscription.stripe_subscription_id}"


# =============================================================================
# HISTORY & WEBHOOK EVENTS
# =============================================================================

class SubscriptionHistory(BaseModel):
    """Status/amount snapshot recorded for each subscription change"""

    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.CASCADE,
        related_name='history'
    )
    event_type = models.CharField("Event Type", max_length=100)
    event_id = models.CharField("Stripe Event", max_length=255, blank=True)
    status = models.CharField("Status", max_length=20, choices=SUBSCRIPTION_STATUS_CHOICES)
    amount = models.PositiveIntegerField("Amount (cents)", default=0)
    metadata = models.JSONField("Metadata", default=dict, blank=True)
    processed_at = models.DateTimeField("Processed At", auto_now_add=True)

    class Meta:
        verbose_name = "Subscription History"
        verbose_name_plural = "Subscription History"
        ordering = ['-processed_at']

    def __str__(self):
        return f"{self.subscription.stripe_subscription_id}: {self.event_type}"


class WebhookEvent(BaseModel):
    """Stripe event already received; makes webhook delivery idempotent"""

    SOURCE_CHOICES = [
        ('mahad', 'Mahad'),
        ('dugsi', 'Dugsi'),
    ]

    event_id = models.CharField("Event ID", max_length=255)
    event_type = models.CharField("Event Type", max_length=100)
    source = models.CharField("Source", max_length=10, choices=SOURCE_CHOICES)
    processed_at = models.DateTimeField("Processed At", auto_now_add=True)
    payload = models.JSONField("Payload", default=dict, blank=True)

    class Meta:
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        constraints = [
            models.UniqueConstraint(fields=['event_id', 'source'], name='unique_webhook_event_source'),
        ]

    def __str__(self):
        return f"{self.source}:{self.event_type} ({self.event_id})"


class StudentPayment(BaseModel):
    """A paid invoice credited to a profile for a billing month"""

    profile = models.ForeignKey(
        ProgramProfile,
        on_delete=models.CASCADE,
        related_name='payments'
    )
    year = models.PositiveIntegerField("Year")
    month = models.PositiveIntegerField("Month")
    amount_paid = models.PositiveIntegerField("Amount Paid (cents)")
    paid_at = models.DateTimeField("Paid At")
    stripe_invoice_id = models.CharField("Stripe Invoice", max_length=255)

    class Meta:
        verbose_name = "Student Payment"
        verbose_name_plural = "Student Payments"
        ordering = ['-year', '-month']
        constraints = [
            models.UniqueConstraint(fields=['profile', 'stripe_invoice_id'], name='unique_profile_invoice'),
        ]

    def __str__(self):
        return f"{self.profile} {self.year}-{self.month:02d}"

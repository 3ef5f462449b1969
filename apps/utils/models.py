# utils/models.py

"""
Base models for the Irshad Center administration system with audit trail
and center-timezone timestamp handling.

Key Features:
- Timestamps recorded in the center's operational timezone
- User and IP tracking from the request context
- Change reason tracking
- Field-level change capture into AuditLog
- Billing audit log for money-moving actions (Stripe subscriptions,
  pauses, cancellations, amount changes)
"""

from django.db import models
from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
import uuid
import logging

logger = logging.getLogger(__name__)

AUDIT_EXCLUDED_FIELDS = [
    'id', 'created_at', 'updated_at', 'created_by_id',
    'updated_by_id', 'created_from_ip', 'updated_from_ip',
]


# =============================================================================
# BASE MODEL
# =============================================================================

class BaseModel(models.Model):
    """
    Abstract base for every domain model.

    Features:
    - UUID primary keys
    - created_at / updated_at in center time (America/Chicago by default)
    - Who created/updated the record and from which IP
    - Optional change reason carried into the audit log

    Example:
        profile.status = 'WITHDRAWN'
        profile.set_change_reason("Family moved away")
        profile.save()
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    created_at = models.DateTimeField(
        "Created At",
        db_index=True,
        help_text="When this record was created (center time)"
    )
    updated_at = models.DateTimeField(
        "Updated At",
        db_index=True,
        help_text="When this record was last updated (center time)"
    )

    # CharField so audit columns never constrain user deletion
    created_by_id = models.CharField(
        "Created By ID",
        max_length=50,
        null=True,
        blank=True,
        db_index=True,
    )
    updated_by_id = models.CharField(
        "Updated By ID",
        max_length=50,
        null=True,
        blank=True,
        db_index=True,
    )

    created_from_ip = models.GenericIPAddressField("Created From IP", null=True, blank=True)
    updated_from_ip = models.GenericIPAddressField("Updated From IP", null=True, blank=True)

    change_reason = models.CharField(
        "Change Reason",
        max_length=255,
        blank=True,
        null=True,
        help_text="Explanation for why this change was made"
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        """
        Set center-time timestamps, fill audit fields from the request
        context, capture field changes and write an AuditLog entry.
        """
        from utils.context import get_request_context
        from core.utils import get_center_current_time

        is_new = self._state.adding
        now = get_center_current_time()

        if is_new:
            if not self.created_at:
                self.created_at = now
            if not self.updated_at:
                self.updated_at = now
        else:
            self.updated_at = now

        context = get_request_context()
        if context:
            user = context.get('user')
            ip_address = context.get('ip_address')

            if is_new:
                if user and not self.created_by_id:
                    self.created_by_id = str(user.pk)
                if ip_address and not self.created_from_ip:
                    self.created_from_ip = ip_address

            if user:
                self.updated_by_id = str(user.pk)
            if ip_address:
                self.updated_from_ip = ip_address

        changes = {} if is_new else self._collect_changes()

        result = super().save(*args, **kwargs)

        if is_new or changes:
            self._create_audit_log(
                action='CREATE' if is_new else 'UPDATE',
                changes=changes
            )

        return result

    def delete(self, *args, **kwargs):
        self._create_audit_log(action='DELETE', changes={})
        return super().delete(*args, **kwargs)

    # -------------------------------------------------------------------------
    # AUDIT TRAIL HELPERS
    # -------------------------------------------------------------------------

    def _collect_changes(self):
        changes = {}
        try:
            old_instance = self.__class__._base_manager.get(pk=self.pk)
        except self.__class__.DoesNotExist:
            return changes

        for field in self._meta.concrete_fields:
            if field.name in AUDIT_EXCLUDED_FIELDS:
                continue

            old_value = getattr(old_instance, field.attname)
            new_value = getattr(self, field.attname)

            if old_value != new_value:
                changes[field.name] = {
                    'old': str(old_value) if old_value is not None else None,
                    'new': str(new_value) if new_value is not None else None,
                }

        return changes

    def _create_audit_log(self, action, changes):
        """
        Write an AuditLog row for this change. Audit failures are logged
        and never break the save/delete.
        """
        try:
            from utils.context import get_request_context

            context = get_request_context() or {}
            user = context.get('user')

            AuditLog.objects.create(
                content_type=f"{self._meta.app_label}.{self._meta.model_name}",
                object_id=str(self.pk),
                object_repr=str(self)[:200],
                action=action,
                changes=changes,
                user_id=str(user.pk) if user else None,
                user_email=getattr(user, 'email', '') if user else '',
                ip_address=context.get('ip_address'),
                user_agent=(context.get('user_agent') or '')[:255],
                change_reason=self.change_reason or '',
                program=context.get('program') or '',
                request_path=context.get('request_path') or '',
            )
        except Exception as e:
            logger.error(f"Failed to create audit log: {e}", exc_info=True)

    def get_history(self, limit=10):
        return AuditLog.objects.filter(
            content_type=f"{self._meta.app_label}.{self._meta.model_name}",
            object_id=str(self.pk)
        ).order_by('-timestamp')[:limit]

    def set_change_reason(self, reason):
        """
        Set the reason for the next change to this object.

        Usage:
            enrollment.status = 'WITHDRAWN'
            enrollment.set_change_reason("Parent request")
            enrollment.save()
        """
        self.change_reason = reason


# =============================================================================
# AUDIT LOG MODEL
# =============================================================================

class AuditLog(models.Model):
    """
    Field-level audit trail for every BaseModel change: what changed,
    who changed it, when (center time), from where, and why.
    """

    ACTION_CHOICES = (
        ('CREATE', 'Created'),
        ('UPDATE', 'Updated'),
        ('DELETE', 'Deleted'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    content_type = models.CharField("Model Type", max_length=100, db_index=True)
    object_id = models.CharField("Object ID", max_length=100, db_index=True)
    object_repr = models.CharField("Object Representation", max_length=200)
    action = models.CharField("Action", max_length=10, choices=ACTION_CHOICES, db_index=True)

    changes = models.JSONField(
        "Changes",
        help_text="Dictionary of field changes: {'field_name': {'old': 'value', 'new': 'value'}}",
        default=dict,
        blank=True
    )

    user_id = models.CharField("User ID", max_length=50, db_index=True, null=True, blank=True)
    user_email = models.EmailField("User Email", max_length=255, blank=True)

    timestamp = models.DateTimeField("Timestamp", db_index=True)

    ip_address = models.GenericIPAddressField("IP Address", null=True, blank=True)
    user_agent = models.TextField("User Agent", blank=True)
    change_reason = models.CharField("Change Reason", max_length=255, blank=True)
    program = models.CharField("Program", max_length=30, blank=True, db_index=True)
    request_path = models.CharField("Request Path", max_length=255, blank=True)

    class Meta:
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['content_type', 'object_id']),
            models.Index(fields=['user_id', 'timestamp']),
        ]
        verbose_name = "Audit Log"
        verbose_name_plural = "Audit Logs"

    def __str__(self):
        return f"{self.action} {self.content_type} {self.object_id} at {self.timestamp}"

    def save(self, *args, **kwargs):
        from core.utils import get_center_current_time

        if not self.timestamp:
            self.timestamp = get_center_current_time()

        return super().save(*args, **kwargs)

    def get_changes_display(self):
        """Human-readable list of field changes"""
        if not self.changes:
            return "No field changes recorded"

        lines = []
        for field, change in self.changes.items():
            lines.append(f"{field}: '{change.get('old', 'N/A')}' → '{change.get('new', 'N/A')}'")
        return "\n".join(lines)

    @classmethod
    def get_object_history(cls, obj):
        return cls.objects.filter(
            content_type=f"{obj._meta.app_label}.{obj._meta.model_name}",
            object_id=str(obj.pk)
        ).order_by('-timestamp')


# =============================================================================
# BILLING AUDIT LOG MODEL
# =============================================================================

class BillingAuditLog(models.Model):
    """
    Audit log for billing actions that move money or change what a family
    is charged. Written through utils.audit.log_billing_activity.
    """

    BILLING_ACTIONS = [
        ('SUBSCRIPTION_CREATE', 'Subscription Created'),
        ('SUBSCRIPTION_LINK', 'Subscription Linked to Students'),
        ('SUBSCRIPTION_CANCEL', 'Subscription Cancelled'),
        ('SUBSCRIPTION_PAUSE', 'Subscription Paused'),
        ('SUBSCRIPTION_RESUME', 'Subscription Resumed'),
        ('AMOUNT_CHANGE', 'Subscription Amount Changed'),
        ('PAYMENT_RECEIVE', 'Payment Received'),
        ('PAYMENT_FAIL', 'Payment Failed'),
        ('CHECKOUT_CREATE', 'Checkout Session Created'),
        ('CHILD_WITHDRAW', 'Child Withdrawn'),
        ('CHILD_REENROLL', 'Child Re-enrolled'),
        ('ENROLLMENT_ABANDON', 'Abandoned Enrollment Cleaned Up'),
        ('PAYMENT_MANUAL', 'Payment Recorded Manually'),
        ('INVOICE_SYNC', 'Invoices Synced'),
        ('INVOICE_RESEND', 'Invoice Resent'),
    ]

    RISK_LEVELS = [
        ('LOW', 'Low Risk'),
        ('MEDIUM', 'Medium Risk'),
        ('HIGH', 'High Risk'),
        ('CRITICAL', 'Critical Risk'),
    ]

    id = models.AutoField(primary_key=True)
    timestamp = models.DateTimeField(db_index=True)
    action = models.CharField(max_length=30, choices=BILLING_ACTIONS, db_index=True)
    program = models.CharField(max_length=30, blank=True, db_index=True)

    user_id = models.CharField(max_length=100, null=True, blank=True, db_index=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)

    content_type = models.ForeignKey(
        ContentType,
        on_delete=models.CASCADE,
        null=True,
        blank=True
    )
    object_id = models.CharField(max_length=100, null=True, blank=True)
    content_object = GenericForeignKey('content_type', 'object_id')
    object_description = models.CharField(max_length=500, null=True, blank=True)

    # Cents, matching Stripe amounts
    amount_cents = models.IntegerField(null=True, blank=True)
    currency = models.CharField(max_length=3, default='usd')

    stripe_object_id = models.CharField(max_length=255, blank=True, db_index=True)
    old_values = models.JSONField(null=True, blank=True)
    new_values = models.JSONField(null=True, blank=True)
    risk_level = models.CharField(max_length=10, choices=RISK_LEVELS, default='LOW', db_index=True)
    additional_data = models.JSONField(default=dict, blank=True)
    notes = models.TextField(null=True, blank=True)
    is_automated = models.BooleanField(
        default=False,
        help_text="Performed by a webhook or scheduled job rather than a staff member"
    )

    class Meta:
        verbose_name = "Billing Audit Log"
        verbose_name_plural = "Billing Audit Logs"
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['timestamp', 'action']),
            models.Index(fields=['program', 'timestamp']),
        ]

    def __str__(self):
        return f"{self.get_action_display()} at {self.timestamp}"

    def save(self, *args, **kwargs):
        from core.utils import get_center_current_time

        if not self.timestamp:
            self.timestamp = get_center_current_time()

        return super().save(*args, **kwargs)

# billing/signals.py

"""
Billing Signal Handlers

- Capture the previous status/amount of a subscription before it is saved
- Audit amount changes and cancellations of mirrored subscriptions
"""

from django.db.models.signals import pre_save, post_save
from django.dispatch import receiver
import logging

from utils.audit import log_billing_activity

logger = logging.getLogger(__name__)


# =============================================================================
# SUBSCRIPTION SIGNALS
# =============================================================================

@receiver(pre_save, sender='billing.Subscription')
def subscription_pre_save(sender, instance, **kwargs):
    """Remember the stored status and amount for post_save"""
    instance._previous_state = None

    if instance._state.adding:
        return

    previous = sender._base_manager.filter(pk=instance.pk).values('status', 'amount').first()
    instance._previous_state = previous


@receiver(post_save, sender='billing.Subscription')
def subscription_post_save(sender, instance, created, **kwargs):
    previous = getattr(instance, '_previous_state', None)
    if created or not previous:
        return

    program = 'DUGSI_PROGRAM' if instance.stripe_account_type == 'DUGSI' else 'MAHAD_PROGRAM'

    if previous['amount'] != instance.amount:
        logger.info(
            f"Subscription {instance.stripe_subscription_id} amount changed "
            f"{previous['amount']} -> {instance.amount}"
        )
        log_billing_activity(
            'AMOUNT_CHANGE',
            target_object=instance,
            amount_cents=instance.amount,
            stripe_object_id=instance.stripe_subscription_id,
            program=program,
            old_values={'amount': previous['amount']},
            new_values={'amount': instance.amount},
            risk_level='MEDIUM',
        )

    if previous['status'] != instance.status:
        logger.info(
            f"Subscription {instance.stripe_subscription_id} status changed "
            f"{previous['status']} -> {instance.status}"
        )

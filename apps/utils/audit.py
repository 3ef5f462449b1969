# utils/audit.py

import logging
from django.contrib.contenttypes.models import ContentType

audit_logger = logging.getLogger("billing_audit")
logger = logging.getLogger(__name__)


def log_billing_activity(
    action,
    target_object=None,
    amount_cents=None,
    stripe_object_id='',
    program=None,
    old_values=None,
    new_values=None,
    notes=None,
    risk_level='LOW',
    additional_data=None,
    is_automated=None,
    currency='usd',
):
    """
    Log a billing action for audit purposes using BillingAuditLog.

    Args:
        action (str): Billing action code (e.g. SUBSCRIPTION_PAUSE).
        target_object (Model instance, optional): Object affected (Subscription, ProgramProfile, ...).
        amount_cents (int, optional): Amount involved, in cents.
        stripe_object_id (str, optional): Stripe id (sub_..., in_..., cs_...).
        program (str, optional): Program; defaults to the request context program.
        old_values (dict, optional): Values before the change.
        new_values (dict, optional): Values after the change.
        notes (str, optional): Free-text notes.
        risk_level (str, optional): 'LOW', 'MEDIUM', 'HIGH' or 'CRITICAL'.
        additional_data (dict, optional): Extra context.
        is_automated (bool, optional): Defaults to the request context flag.
        currency (str, optional): ISO currency code, lower-case like Stripe.

    Never raises: a failed audit write is logged and the billing action
    carries on.
    """
    try:
        from utils.models import BillingAuditLog
        from utils.context import get_request_context

        context = get_request_context() or {}
        user = context.get('user')

        if is_automated is None:
            is_automated = bool(context.get('is_automated')) or user is None

        entry = BillingAuditLog(
            action=action,
            program=program or context.get('program') or '',
            user_id=str(user.pk) if user else None,
            ip_address=context.get('ip_address'),
            amount_cents=amount_cents,
            currency=currency,
            stripe_object_id=stripe_object_id or '',
            old_values=old_values,
            new_values=new_values,
            notes=notes,
            risk_level=risk_level,
            additional_data=additional_data or {},
            is_automated=is_automated,
        )

        if target_object is not None:
            entry.content_type = ContentType.objects.get_for_model(target_object)
            entry.object_id = str(target_object.pk)
            entry.object_description = str(target_object)[:500]

        entry.save()

        audit_logger.info(
            f"{action} program={entry.program or '-'} amount={amount_cents} "
            f"stripe={stripe_object_id or '-'} risk={risk_level}"
        )

    except Exception as e:
        logger.error(f"Error in billing activity logging: {e}", exc_info=True)

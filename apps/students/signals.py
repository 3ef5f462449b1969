# students/signals.py

"""
Students Signals
- Enrollment integrity (Dugsi enrollments never carry a batch, end date
  not before start date)
- Enrollment status change logging
- Withdrawn profiles leave their Dugsi class
"""

from django.db.models.signals import pre_save, post_save
from django.dispatch import receiver
from django.core.exceptions import ValidationError
import logging

from .models import ProgramProfile, Enrollment

logger = logging.getLogger(__name__)


# =============================================================================
# ENROLLMENT SIGNALS
# =============================================================================

@receiver(pre_save, sender=Enrollment)
def validate_enrollment_integrity(sender, instance, **kwargs):
    if instance.batch_id and instance.profile.program == 'DUGSI_PROGRAM':
        raise ValidationError(
            "Dugsi enrollments cannot have a batch",
            code='DUGSI_NO_BATCH',
            params={'profile_id': str(instance.profile_id), 'batch_id': str(instance.batch_id)}
        )

    if instance.end_date and instance.start_date and instance.end_date < instance.start_date:
        raise ValidationError(
            "Enrollment end date cannot be before its start date",
            code='INVALID_ENROLLMENT_DATES',
            params={'start_date': str(instance.start_date), 'end_date': str(instance.end_date)}
        )


@receiver(pre_save, sender=Enrollment)
def capture_previous_enrollment_status(sender, instance, **kwargs):
    instance._previous_status = None
    if instance.pk:
        previous = Enrollment._base_manager.filter(pk=instance.pk).values_list('status', flat=True).first()
        instance._previous_status = previous


@receiver(post_save, sender=Enrollment)
def log_enrollment_status_change(sender, instance, created, **kwargs):
    if created:
        logger.info(f"Enrollment created for {instance.profile} with status {instance.status}")
        return

    previous = getattr(instance, '_previous_status', None)
    if previous and previous != instance.status:
        logger.info(
            f"Enrollment {instance.id} for {instance.profile}: {previous} -> {instance.status}"
            + (f" ({instance.reason})" if instance.reason else "")
        )


# =============================================================================
# PROFILE SIGNALS
# =============================================================================

@receiver(post_save, sender=ProgramProfile)
def close_class_enrollment_on_withdrawal(sender, instance, created, **kwargs):
    """A withdrawn Dugsi child no longer sits in a class"""
    if created or instance.program != 'DUGSI_PROGRAM' or instance.status != 'WITHDRAWN':
        return

    from core.utils import get_center_today
    from dugsi.models import DugsiClassEnrollment

    closed = DugsiClassEnrollment.objects.filter(profile=instance, is_active=True).update(
        is_active=False,
        end_date=get_center_today()
    )
    if closed:
        logger.info(f"Removed withdrawn child {instance.person.name} from their Dugsi class")

# dugsi/signals.py

"""
Dugsi Signals
- Attendance session integrity (weekend dates only)
- Check-in timestamps ordering
"""

from django.db.models.signals import pre_save
from django.dispatch import receiver
from django.core.exceptions import ValidationError
import logging

from core.utils import is_weekend
from .models import AttendanceSession, TeacherCheckIn

logger = logging.getLogger(__name__)


@receiver(pre_save, sender=AttendanceSession)
def validate_session_day(sender, instance, **kwargs):
    if instance.date and not is_weekend(instance.date):
        raise ValidationError(
            "Dugsi sessions can only be created on weekends (Saturday or Sunday)",
            code='INVALID_DAY',
            params={'date': str(instance.date)}
        )


@receiver(pre_save, sender=TeacherCheckIn)
def validate_checkin_times(sender, instance, **kwargs):
    if instance.clock_out_time and instance.clock_out_time < instance.clock_in_time:
        raise ValidationError(
            "Clock-out cannot be before clock-in",
            code='INVALID_CLOCK_OUT',
            params={'checkin_id': str(instance.pk)}
        )

# notifications/models.py

"""
Notification Models

Every WhatsApp template message sent to a parent, student or teacher is
logged with its delivery status, which Meta reports back through the
status webhook.
"""

from django.db import models
import logging

from irshad.managers import PROGRAM_CHOICES
from people.models import Person
from utils.models import BaseModel

logger = logging.getLogger(__name__)


class WhatsAppMessage(BaseModel):

    RECIPIENT_TYPE_CHOICES = [
        ('PARENT', 'Parent'),
        ('STUDENT', 'Student'),
        ('TEACHER', 'Teacher'),
    ]

    MESSAGE_TYPE_CHOICES = [
        ('TRANSACTIONAL', 'Transactional'),
        ('NOTIFICATION', 'Notification'),
        ('REMINDER', 'Reminder'),
        ('ANNOUNCEMENT', 'Announcement'),
    ]

    STATUS_CHOICES = [
        ('sent', 'Sent'),
        ('delivered', 'Delivered'),
        ('read', 'Read'),
        ('failed', 'Failed'),
    ]

    wa_message_id = models.CharField(
        "WhatsApp Message ID",
        max_length=255,
        unique=True,
        null=True,
        blank=True
    )
    phone_number = models.CharField("Phone Number", max_length=20, db_index=True)
    template_name = models.CharField("Template", max_length=100, db_index=True)
    program = models.CharField("Program", max_length=20, choices=PROGRAM_CHOICES)

    recipient_type = models.CharField("Recipient Type", max_length=10, choices=RECIPIENT_TYPE_CHOICES)
    person = models.ForeignKey(
        Person,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='whatsapp_messages'
    )
    family_id = models.CharField("Family", max_length=64, blank=True, db_index=True)

    message_type = models.CharField("Message Type", max_length=15, choices=MESSAGE_TYPE_CHOICES)
    status = models.CharField("Status", max_length=10, choices=STATUS_CHOICES, default='sent', db_index=True)

    # -------------------------------------------------------------------------
    # DELIVERY TIMESTAMPS
    # -------------------------------------------------------------------------

    sent_at = models.DateTimeField("Sent At", null=True, blank=True)
    delivered_at = models.DateTimeField("Delivered At", null=True, blank=True)
    read_at = models.DateTimeField("Read At", null=True, blank=True)
    failed_at = models.DateTimeField("Failed At", null=True, blank=True)
    failure_reason = models.TextField("Failure Reason", blank=True)

    metadata = models.JSONField("Metadata", default=dict, blank=True)

    class Meta:
        verbose_name = "WhatsApp Message"
        verbose_name_plural = "WhatsApp Messages"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['phone_number', 'template_name', 'created_at']),
        ]

    def __str__(self):
        return f"{self.template_name} → {self.phone_number} ({self.status})"

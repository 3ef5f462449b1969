# people/models.py

"""
People and Relationships

A single Person record represents anyone the center deals with: Mahad
students, Dugsi children, parents, teachers, sponsors. Program-specific
data lives on students.ProgramProfile; contact details on ContactPoint;
family structure on GuardianRelationship and SiblingRelationship.
"""

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.core.validators import MinValueValidator, MaxValueValidator
import logging

from utils.models import BaseModel

logger = logging.getLogger(__name__)


# =============================================================================
# PERSON
# =============================================================================

class Person(BaseModel):
    """A human being known to the center"""

    name = models.CharField("Full Name", max_length=255, db_index=True)
    date_of_birth = models.DateField("Date of Birth", null=True, blank=True)

    class Meta:
        verbose_name = "Person"
        verbose_name_plural = "People"
        ordering = ['name']

    def __str__(self):
        return self.name

    @property
    def first_name(self):
        return self.name.split(' ')[0] if self.name else ''

    @property
    def last_name(self):
        parts = self.name.split() if self.name else []
        return parts[-1] if len(parts) > 1 else ''

    def get_primary_contact(self, contact_type):
        """Active contact of a type, primary first"""
        return self.contact_points.filter(
            contact_type=contact_type,
            is_active=True
        ).order_by('-is_primary', 'created_at').first()

    @property
    def email(self):
        contact = self.get_primary_contact('EMAIL')
        return contact.value if contact else None

    @property
    def phone(self):
        contact = self.get_primary_contact('PHONE') or self.get_primary_contact('WHATSAPP')
        return contact.value if contact else None

    def get_active_guardians(self):
        return Person.objects.filter(
            guardian_relationships__dependent=self,
            guardian_relationships__is_active=True
        ).distinct()

    def get_active_dependents(self):
        return Person.objects.filter(
            dependent_relationships__guardian=self,
            dependent_relationships__is_active=True
        ).distinct()


# =============================================================================
# CONTACT POINT
# =============================================================================

class ContactPoint(BaseModel):
    """Email address, phone or WhatsApp number belonging to a person"""

    CONTACT_TYPE_CHOICES = [
        ('EMAIL', 'Email'),
        ('PHONE', 'Phone'),
        ('WHATSAPP', 'WhatsApp'),
        ('OTHER', 'Other'),
    ]

    VERIFICATION_STATUS_CHOICES = [
        ('UNVERIFIED', 'Unverified'),
        ('VERIFIED', 'Verified'),
        ('INVALID', 'Invalid'),
    ]

    person = models.ForeignKey(
        Person,
        verbose_name="Person",
        on_delete=models.CASCADE,
        related_name='contact_points'
    )
    contact_type = models.CharField(
        "Contact Type",
        max_length=10,
        choices=CONTACT_TYPE_CHOICES,
        db_index=True
    )
    value = models.CharField(
        "Value",
        max_length=255,
        db_index=True,
        help_text="Emails are stored lower-case, phone numbers in E.164 (+16125550123)"
    )
    is_primary = models.BooleanField("Primary", default=False)
    verification_status = models.CharField(
        "Verification Status",
        max_length=12,
        choices=VERIFICATION_STATUS_CHOICES,
        default='UNVERIFIED'
    )
    verified_at = models.DateTimeField("Verified At", null=True, blank=True)
    is_active = models.BooleanField("Active", default=True, db_index=True)
    deactivated_at = models.DateTimeField("Deactivated At", null=True, blank=True)

    class Meta:
        verbose_name = "Contact Point"
        verbose_name_plural = "Contact Points"
        constraints = [
            models.UniqueConstraint(
                fields=['person', 'contact_type', 'value'],
                name='unique_person_contact'
            ),
        ]
        indexes = [
            models.Index(fields=['contact_type', 'value', 'is_active']),
        ]

    def __str__(self):
        return f"{self.get_contact_type_display()}: {self.value}"

    def deactivate(self):
        self.is_active = False
        self.deactivated_at = timezone.now()
        self.save(update_fields=['is_active', 'deactivated_at', 'updated_at'])

    def mark_verified(self):
        self.verification_status = 'VERIFIED'
        self.verified_at = timezone.now()
        self.save(update_fields=['verification_status', 'verified_at', 'updated_at'])


# =============================================================================
# GUARDIAN RELATIONSHIP
# =============================================================================

class GuardianRelationship(BaseModel):
    """Guardian (parent, sponsor, donor) -> dependent link"""

    ROLE_CHOICES = [
        ('PARENT', 'Parent'),
        ('GUARDIAN', 'Guardian'),
        ('SPONSOR', 'Sponsor'),
        ('DONOR', 'Donor'),
    ]

    guardian = models.ForeignKey(
        Person,
        verbose_name="Guardian",
        on_delete=models.CASCADE,
        related_name='guardian_relationships'
    )
    dependent = models.ForeignKey(
        Person,
        verbose_name="Dependent",
        on_delete=models.CASCADE,
        related_name='dependent_relationships'
    )
    role = models.CharField("Role", max_length=10, choices=ROLE_CHOICES, default='PARENT')

    start_date = models.DateField("Start Date", default=timezone.localdate)
    end_date = models.DateField("End Date", null=True, blank=True)
    is_active = models.BooleanField("Active", default=True, db_index=True)
    is_primary_payer = models.BooleanField(
        "Primary Payer",
        default=False,
        help_text="This guardian pays the family's tuition"
    )
    notes = models.TextField("Notes", blank=True)

    class Meta:
        verbose_name = "Guardian Relationship"
        verbose_name_plural = "Guardian Relationships"
        constraints = [
            models.UniqueConstraint(
                fields=['guardian', 'dependent', 'role'],
                name='unique_guardian_dependent_role'
            ),
            models.CheckConstraint(
                condition=~Q(guardian=models.F('dependent')),
                name='guardian_not_self'
            ),
        ]

    def __str__(self):
        return f"{self.guardian} → {self.dependent} ({self.get_role_display()})"


# =============================================================================
# SIBLING RELATIONSHIP
# =============================================================================

class SiblingRelationship(BaseModel):
    """
    Sibling pair. Always stored with person1_id < person2_id so a pair has
    exactly one row regardless of the order it was reported in.
    """

    DETECTION_METHOD_CHOICES = [
        ('MANUAL', 'Manual'),
        ('GUARDIAN_MATCH', 'Shared Guardian'),
        ('NAME_MATCH', 'Name Match'),
        ('CONTACT_MATCH', 'Shared Contact'),
    ]

    person1 = models.ForeignKey(
        Person,
        on_delete=models.CASCADE,
        related_name='sibling_relationships_as_first'
    )
    person2 = models.ForeignKey(
        Person,
        on_delete=models.CASCADE,
        related_name='sibling_relationships_as_second'
    )
    detection_method = models.CharField(
        "Detection Method",
        max_length=15,
        choices=DETECTION_METHOD_CHOICES,
        default='MANUAL'
    )
    confidence = models.FloatField(
        "Confidence",
        null=True,
        blank=True,
        validators=[MinValueValidator(0.0), MaxValueValidator(1.0)]
    )
    verified_by = models.CharField("Verified By", max_length=255, blank=True)
    verified_at = models.DateTimeField("Verified At", null=True, blank=True)
    is_active = models.BooleanField("Active", default=True, db_index=True)
    notes = models.TextField("Notes", blank=True)

    class Meta:
        verbose_name = "Sibling Relationship"
        verbose_name_plural = "Sibling Relationships"
        constraints = [
            models.UniqueConstraint(
                fields=['person1', 'person2'],
                name='unique_sibling_pair'
            ),
        ]

    def __str__(self):
        return f"{self.person1} ↔ {self.person2}"

    def save(self, *args, **kwargs):
        if self.person1_id and self.person2_id and str(self.person1_id) > str(self.person2_id):
            self.person1_id, self.person2_id = self.person2_id, self.person1_id
        super().save(*args, **kwargs)

    @classmethod
    def between(cls, person_a_id, person_b_id):
        """Existing relationship for a pair, in either order"""
        first, second = sorted([str(person_a_id), str(person_b_id)])
        return cls.objects.filter(person1_id=first, person2_id=second).first()

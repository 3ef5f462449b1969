# students/models.py

from django.db import models
from django.core.validators import MinValueValidator
from django.db.models import Q
import logging

from irshad.managers import PROGRAM_CHOICES, ProgramScopedManager
from people.models import Person
from utils.models import BaseModel

logger = logging.getLogger(__name__)

ENROLLMENT_STATUS_CHOICES = [
    ('REGISTERED', 'Registered'),
    ('ENROLLED', 'Enrolled'),
    ('ON_LEAVE', 'On Leave'),
    ('WITHDRAWN', 'Withdrawn'),
    ('COMPLETED', 'Completed'),
    ('SUSPENDED', 'Suspended'),
]


# =============================================================================
# BATCH (MAHAD COHORT)
# =============================================================================

class Batch(BaseModel):
    """A Mahad cohort students are enrolled into"""

    name = models.CharField("Batch Name", max_length=100, unique=True)
    start_date = models.DateField("Start Date", null=True, blank=True)
    end_date = models.DateField("End Date", null=True, blank=True)

    class Meta:
        verbose_name = "Batch"
        verbose_name_plural = "Batches"
        ordering = ['-start_date', 'name']

    def __str__(self):
        return self.name

    @property
    def active_enrollment_count(self):
        return self.enrollments.filter(end_date__isnull=True).exclude(status='WITHDRAWN').count()


# =============================================================================
# PROGRAM PROFILE
# =============================================================================

class ProgramProfile(BaseModel):
    """A person's participation in one program (Mahad student, Dugsi child)"""

    # -------------------------------------------------------------------------
    # CHOICE FIELDS
    # -------------------------------------------------------------------------

    GENDER_CHOICES = [
        ('MALE', 'Male'),
        ('FEMALE', 'Female'),
    ]

    EDUCATION_LEVEL_CHOICES = [
        ('ELEMENTARY', 'Elementary'),
        ('MIDDLE_SCHOOL', 'Middle School'),
        ('HIGH_SCHOOL', 'High School'),
        ('COLLEGE', 'College'),
        ('POST_GRAD', 'Post Graduate'),
    ]

    GRADE_LEVEL_CHOICES = [
        ('KINDERGARTEN', 'Kindergarten'),
    ] + [(f'GRADE_{n}', f'Grade {n}') for n in range(1, 13)] + [
        ('FRESHMAN', 'Freshman'),
        ('SOPHOMORE', 'Sophomore'),
        ('JUNIOR', 'Junior'),
        ('SENIOR', 'Senior'),
    ]

    GRADUATION_STATUS_CHOICES = [
        ('NON_GRADUATE', 'Non-Graduate'),
        ('GRADUATE', 'Graduate'),
    ]

    PAYMENT_FREQUENCY_CHOICES = [
        ('MONTHLY', 'Monthly'),
        ('BI_MONTHLY', 'Every Two Months'),
    ]

    BILLING_TYPE_CHOICES = [
        ('FULL_TIME', 'Full Time'),
        ('FULL_TIME_SCHOLARSHIP', 'Full Time (Scholarship)'),
        ('PART_TIME', 'Part Time'),
        ('EXEMPT', 'Exempt'),
    ]

    # -------------------------------------------------------------------------
    # IDENTITY
    # -------------------------------------------------------------------------

    person = models.ForeignKey(
        Person,
        verbose_name="Person",
        on_delete=models.CASCADE,
        related_name='program_profiles'
    )
    program = models.CharField("Program", max_length=20, choices=PROGRAM_CHOICES, db_index=True)
    status = models.CharField(
        "Status",
        max_length=12,
        choices=ENROLLMENT_STATUS_CHOICES,
        default='REGISTERED',
        db_index=True
    )

    # -------------------------------------------------------------------------
    # RATES
    # -------------------------------------------------------------------------

    monthly_rate = models.PositiveIntegerField(
        "Monthly Rate (legacy)",
        default=150,
        help_text="Legacy whole-dollar rate kept for older records"
    )
    custom_rate = models.BooleanField("Custom Rate", default=False)

    # -------------------------------------------------------------------------
    # EDUCATION
    # -------------------------------------------------------------------------

    gender = models.CharField("Gender", max_length=6, choices=GENDER_CHOICES, blank=True)
    education_level = models.CharField(
        "Education Level", max_length=15, choices=EDUCATION_LEVEL_CHOICES, blank=True
    )
    grade_level = models.CharField("Grade Level", max_length=15, choices=GRADE_LEVEL_CHOICES, blank=True)
    school_name = models.CharField("School Name", max_length=255, blank=True)
    high_school_grad_year = models.PositiveIntegerField("High School Graduation Year", null=True, blank=True)
    college_grad_year = models.PositiveIntegerField("College Graduation Year", null=True, blank=True)
    health_info = models.TextField("Health Information", blank=True)

    # -------------------------------------------------------------------------
    # FAMILY (DUGSI)
    # -------------------------------------------------------------------------

    family_reference_id = models.UUIDField(
        "Family Reference",
        null=True,
        blank=True,
        db_index=True,
        help_text="Groups the children of one Dugsi family registration"
    )

    # -------------------------------------------------------------------------
    # BILLING (MAHAD)
    # -------------------------------------------------------------------------

    graduation_status = models.CharField(
        "Graduation Status", max_length=15, choices=GRADUATION_STATUS_CHOICES, blank=True
    )
    payment_frequency = models.CharField(
        "Payment Frequency", max_length=12, choices=PAYMENT_FREQUENCY_CHOICES, blank=True
    )
    billing_type = models.CharField(
        "Billing Type", max_length=25, choices=BILLING_TYPE_CHOICES, blank=True
    )
    payment_notes = models.TextField("Payment Notes", blank=True)

    metadata = models.JSONField("Metadata", default=dict, blank=True)

    objects = ProgramScopedManager()

    class Meta:
        verbose_name = "Program Profile"
        verbose_name_plural = "Program Profiles"
        ordering = ['person__name']
        constraints = [
            models.UniqueConstraint(fields=['person', 'program'], name='unique_person_program'),
        ]

    def __str__(self):
        return f"{self.person.name} ({self.get_program_display()})"

    @property
    def is_dugsi(self):
        return self.program == 'DUGSI_PROGRAM'

    @property
    def is_mahad(self):
        return self.program == 'MAHAD_PROGRAM'

    def get_active_enrollment(self):
        """Open (non-withdrawn, no end date) enrollment, newest first"""
        return self.enrollments.filter(
            end_date__isnull=True
        ).exclude(status='WITHDRAWN').order_by('-start_date', '-created_at').first()

    def get_family_profiles(self):
        """All profiles registered under the same family"""
        if not self.family_reference_id:
            return ProgramProfile.objects.filter(pk=self.pk)
        return ProgramProfile.objects.filter(family_reference_id=self.family_reference_id)


# =============================================================================
# ENROLLMENT
# =============================================================================

class Enrollment(BaseModel):
    """
    One enrollment period of a profile. Mahad enrollments carry a batch;
    Dugsi enrollments never do.
    """

    profile = models.ForeignKey(
        ProgramProfile,
        verbose_name="Profile",
        on_delete=models.CASCADE,
        related_name='enrollments'
    )
    batch = models.ForeignKey(
        Batch,
        verbose_name="Batch",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='enrollments'
    )
    status = models.CharField(
        "Status",
        max_length=12,
        choices=ENROLLMENT_STATUS_CHOICES,
        default='REGISTERED',
        db_index=True
    )
    start_date = models.DateField("Start Date")
    end_date = models.DateField("End Date", null=True, blank=True)
    reason = models.CharField("Reason", max_length=255, blank=True)
    notes = models.TextField("Notes", blank=True)

    objects = ProgramScopedManager(program_field='profile__program')

    class Meta:
        verbose_name = "Enrollment"
        verbose_name_plural = "Enrollments"
        ordering = ['-start_date']
        indexes = [
            models.Index(fields=['profile', 'status']),
        ]

    def __str__(self):
        return f"{self.profile} - {self.get_status_display()}"

    @property
    def is_open(self):
        return self.end_date is None and self.status != 'WITHDRAWN'


def open_enrollments_q(prefix=''):
    """Q for enrollments that are still running"""
    return Q(**{f'{prefix}end_date__isnull': True}) & ~Q(**{f'{prefix}status': 'WITHDRAWN'})

# dugsi/models.py

"""
Dugsi Models

Weekend Quran classes for children: teachers and the shifts they work,
classes and their enrollments, attendance sessions with per-child lesson
progress, and geofenced teacher check-ins.
"""

from django.db import models
from django.core.validators import MinValueValidator
import logging

from irshad.managers import PROGRAM_CHOICES
from people.models import Person
from students.models import ProgramProfile
from utils.models import BaseModel

logger = logging.getLogger(__name__)

SHIFT_CHOICES = [
    ('MORNING', 'Morning'),
    ('AFTERNOON', 'Afternoon'),
]

SHIFTS = [value for value, _ in SHIFT_CHOICES]


# =============================================================================
# TEACHERS
# =============================================================================

class Teacher(BaseModel):
    """A person who teaches in one or more programs"""

    person = models.OneToOneField(
        Person,
        verbose_name="Person",
        on_delete=models.CASCADE,
        related_name='teacher'
    )

    class Meta:
        verbose_name = "Teacher"
        verbose_name_plural = "Teachers"
        ordering = ['person__name']

    def __str__(self):
        return self.person.name

    @property
    def name(self):
        return self.person.name

    def get_program(self, program='DUGSI_PROGRAM'):
        return self.programs.filter(program=program, is_active=True).first()

    def get_shifts(self, program='DUGSI_PROGRAM'):
        teacher_program = self.get_program(program)
        return list(teacher_program.shifts) if teacher_program else []


class TeacherProgram(BaseModel):
    """Which programs a teacher works in, and for Dugsi which shifts"""

    teacher = models.ForeignKey(
        Teacher,
        on_delete=models.CASCADE,
        related_name='programs'
    )
    program = models.CharField("Program", max_length=20, choices=PROGRAM_CHOICES)
    is_active = models.BooleanField("Active", default=True)
    shifts = models.JSONField(
        "Shifts",
        default=list,
        blank=True,
        help_text="MORNING and/or AFTERNOON"
    )

    class Meta:
        verbose_name = "Teacher Program"
        verbose_name_plural = "Teacher Programs"
        constraints = [
            models.UniqueConstraint(fields=['teacher', 'program'], name='unique_teacher_program'),
        ]

    def __str__(self):
        return f"{self.teacher} - {self.get_program_display()}"


class TeacherAssignment(BaseModel):
    """A teacher responsible for a Dugsi child on a shift"""

    teacher = models.ForeignKey(
        Teacher,
        on_delete=models.CASCADE,
        related_name='assignments'
    )
    profile = models.ForeignKey(
        ProgramProfile,
        on_delete=models.CASCADE,
        related_name='teacher_assignments'
    )
    shift = models.CharField("Shift", max_length=10, choices=SHIFT_CHOICES)
    is_active = models.BooleanField("Active", default=True, db_index=True)
    start_date = models.DateField("Start Date", null=True, blank=True)
    end_date = models.DateField("End Date", null=True, blank=True)

    class Meta:
        verbose_name = "Teacher Assignment"
        verbose_name_plural = "Teacher Assignments"
        indexes = [
            models.Index(fields=['profile', 'shift', 'is_active']),
        ]

    def __str__(self):
        return f"{self.teacher} → {self.profile.person.name} ({self.get_shift_display()})"


# =============================================================================
# CLASSES
# =============================================================================

class DugsiClass(BaseModel):

    name = models.CharField("Class Name", max_length=100, unique=True)
    shift = models.CharField("Shift", max_length=10, choices=SHIFT_CHOICES)
    description = models.TextField("Description", blank=True)
    is_active = models.BooleanField("Active", default=True, db_index=True)

    class Meta:
        verbose_name = "Dugsi Class"
        verbose_name_plural = "Dugsi Classes"
        ordering = ['shift', 'name']

    def __str__(self):
        return f"{self.name} ({self.get_shift_display()})"

    def get_active_teachers(self):
        return Teacher.objects.filter(
            class_assignments__dugsi_class=self,
            class_assignments__is_active=True
        ).select_related('person')

    def get_primary_teacher(self):
        assignment = self.teachers.filter(is_active=True).select_related(
            'teacher__person'
        ).order_by('created_at').first()
        return assignment.teacher if assignment else None

    def get_active_profiles(self):
        return ProgramProfile.objects.filter(
            class_enrollment__dugsi_class=self,
            class_enrollment__is_active=True
        ).select_related('person').order_by('person__name')


class DugsiClassTeacher(BaseModel):

    dugsi_class = models.ForeignKey(
        DugsiClass,
        on_delete=models.CASCADE,
        related_name='teachers'
    )
    teacher = models.ForeignKey(
        Teacher,
        on_delete=models.CASCADE,
        related_name='class_assignments'
    )
    is_active = models.BooleanField("Active", default=True)

    class Meta:
        verbose_name = "Class Teacher"
        verbose_name_plural = "Class Teachers"
        constraints = [
            models.UniqueConstraint(fields=['dugsi_class', 'teacher'], name='unique_class_teacher'),
        ]

    def __str__(self):
        return f"{self.teacher} - {self.dugsi_class}"


class DugsiClassEnrollment(BaseModel):
    """A child's seat in a class; a child sits in one class at a time"""

    dugsi_class = models.ForeignKey(
        DugsiClass,
        on_delete=models.CASCADE,
        related_name='enrollments'
    )
    profile = models.OneToOneField(
        ProgramProfile,
        on_delete=models.CASCADE,
        related_name='class_enrollment'
    )
    start_date = models.DateField("Start Date")
    end_date = models.DateField("End Date", null=True, blank=True)
    is_active = models.BooleanField("Active", default=True, db_index=True)

    class Meta:
        verbose_name = "Class Enrollment"
        verbose_name_plural = "Class Enrollments"

    def __str__(self):
        return f"{self.profile.person.name} in {self.dugsi_class.name}"


# =============================================================================
# ATTENDANCE
# =============================================================================

class AttendanceSession(BaseModel):
    """One class meeting on a weekend day"""

    date = models.DateField("Date", db_index=True)
    dugsi_class = models.ForeignKey(
        DugsiClass,
        verbose_name="Class",
        on_delete=models.CASCADE,
        related_name='sessions'
    )
    teacher = models.ForeignKey(
        Teacher,
        on_delete=models.PROTECT,
        related_name='sessions'
    )
    notes = models.TextField("Notes", blank=True)
    is_closed = models.BooleanField("Closed", default=False)

    class Meta:
        verbose_name = "Attendance Session"
        verbose_name_plural = "Attendance Sessions"
        ordering = ['-date', 'dugsi_class__name']
        constraints = [
            models.UniqueConstraint(fields=['date', 'dugsi_class'], name='unique_session_class_date'),
        ]

    def __str__(self):
        return f"{self.dugsi_class.name} - {self.date}"


class AttendanceRecord(BaseModel):

    STATUS_CHOICES = [
        ('PRESENT', 'Present'),
        ('ABSENT', 'Absent'),
        ('LATE', 'Late'),
        ('EXCUSED', 'Excused'),
    ]

    session = models.ForeignKey(
        AttendanceSession,
        on_delete=models.CASCADE,
        related_name='records'
    )
    profile = models.ForeignKey(
        ProgramProfile,
        on_delete=models.CASCADE,
        related_name='attendance_records'
    )
    status = models.CharField("Status", max_length=10, choices=STATUS_CHOICES)

    # -------------------------------------------------------------------------
    # LESSON PROGRESS
    # -------------------------------------------------------------------------

    lesson_completed = models.BooleanField("Lesson Completed", default=False)
    surah_name = models.CharField("Surah", max_length=100, blank=True)
    ayat_from = models.PositiveIntegerField(
        "From Ayah", null=True, blank=True, validators=[MinValueValidator(1)]
    )
    ayat_to = models.PositiveIntegerField(
        "To Ayah", null=True, blank=True, validators=[MinValueValidator(1)]
    )
    lesson_notes = models.TextField("Lesson Notes", blank=True)

    notes = models.TextField("Notes", blank=True)
    marked_at = models.DateTimeField("Marked At", null=True, blank=True)

    class Meta:
        verbose_name = "Attendance Record"
        verbose_name_plural = "Attendance Records"
        constraints = [
            models.UniqueConstraint(fields=['session', 'profile'], name='unique_session_profile'),
        ]

    def __str__(self):
        return f"{self.profile.person.name}: {self.get_status_display()}"


# =============================================================================
# TEACHER CHECK-IN
# =============================================================================

class TeacherCheckIn(BaseModel):
    """A teacher's clock-in/out for one shift on one day"""

    teacher = models.ForeignKey(
        Teacher,
        on_delete=models.CASCADE,
        related_name='checkins'
    )
    date = models.DateField("Date", db_index=True)
    shift = models.CharField("Shift", max_length=10, choices=SHIFT_CHOICES)

    clock_in_time = models.DateTimeField("Clock In")
    clock_in_lat = models.FloatField("Clock In Latitude", null=True, blank=True)
    clock_in_lng = models.FloatField("Clock In Longitude", null=True, blank=True)
    clock_in_valid = models.BooleanField(
        "Location Valid",
        default=False,
        help_text="Clocked in inside the center geofence"
    )

    clock_out_time = models.DateTimeField("Clock Out", null=True, blank=True)
    clock_out_lat = models.FloatField("Clock Out Latitude", null=True, blank=True)
    clock_out_lng = models.FloatField("Clock Out Longitude", null=True, blank=True)

    is_late = models.BooleanField("Late", default=False, db_index=True)
    notes = models.TextField("Notes", blank=True)

    class Meta:
        verbose_name = "Teacher Check-in"
        verbose_name_plural = "Teacher Check-ins"
        ordering = ['-date', 'clock_in_time']
        constraints = [
            models.UniqueConstraint(fields=['teacher', 'date', 'shift'], name='unique_teacher_shift_checkin'),
        ]

    def __str__(self):
        return f"{self.teacher} {self.date} {self.get_shift_display()}"

    @property
    def is_open(self):
        return self.clock_out_time is None

    @property
    def duration(self):
        if not self.clock_out_time:
            return None
        return self.clock_out_time - self.clock_in_time

# students/validation.py

"""
Business-rule checks shared by registration, people and Dugsi services.

Every failure raises django ValidationError with a machine-readable code
and the offending ids in params, so views can turn them into JSON
(utils.utils.validation_error_payload) or flash messages.
"""

from django.core.exceptions import ValidationError
import logging

from people.models import Person, GuardianRelationship, SiblingRelationship
from .models import Batch, ProgramProfile

logger = logging.getLogger(__name__)


class ValidationService:

    @staticmethod
    def validate_enrollment(profile_id=None, program=None, batch_id=None):
        """
        Check an enrollment is allowed for a profile (or a program when the
        profile does not exist yet).

        Rules:
            - Dugsi enrollments never carry a batch
            - A given batch must exist
            - Mahad enrollments without a batch are allowed, with a warning

        Returns:
            Batch or None

        Raises:
            ValidationError: PROFILE_NOT_FOUND, MISSING_PROGRAM_INFO,
            DUGSI_NO_BATCH, BATCH_NOT_FOUND
        """
        if profile_id:
            profile = ProgramProfile.objects.filter(pk=profile_id).first()
            if not profile:
                raise ValidationError(
                    "Program profile not found",
                    code='PROFILE_NOT_FOUND',
                    params={'profile_id': str(profile_id)}
                )
            program = profile.program

        if not program:
            raise ValidationError(
                "Either a profile or a program is required to validate an enrollment",
                code='MISSING_PROGRAM_INFO',
                params={}
            )

        if program == 'DUGSI_PROGRAM' and batch_id:
            raise ValidationError(
                "Dugsi enrollments cannot have a batch",
                code='DUGSI_NO_BATCH',
                params={'batch_id': str(batch_id), 'program': program}
            )

        batch = None
        if batch_id:
            batch = Batch.objects.filter(pk=batch_id).first()
            if not batch:
                raise ValidationError(
                    "Batch not found",
                    code='BATCH_NOT_FOUND',
                    params={'batch_id': str(batch_id)}
                )

        if program == 'MAHAD_PROGRAM' and not batch_id:
            logger.warning(f"Mahad enrollment created without a batch (profile={profile_id})")

        return batch

    @staticmethod
    def validate_teacher_assignment(teacher_id, profile_id, shift):
        """
        Teachers are assigned to Dugsi children only, one teacher per child
        per shift.

        Raises:
            ValidationError: PROFILE_NOT_FOUND, TEACHER_ASSIGNMENT_DUGSI_ONLY,
            DUPLICATE_SHIFT_ASSIGNMENT
        """
        from dugsi.models import TeacherAssignment

        profile = ProgramProfile.objects.filter(pk=profile_id).first()
        if not profile:
            raise ValidationError(
                "Program profile not found",
                code='PROFILE_NOT_FOUND',
                params={'profile_id': str(profile_id)}
            )

        if profile.program != 'DUGSI_PROGRAM':
            raise ValidationError(
                "Teachers can only be assigned to Dugsi students",
                code='TEACHER_ASSIGNMENT_DUGSI_ONLY',
                params={'profile_id': str(profile_id), 'program': profile.program}
            )

        existing = TeacherAssignment.objects.filter(
            profile=profile,
            shift=shift,
            is_active=True
        ).exclude(teacher_id=teacher_id).select_related('teacher__person').first()

        if existing:
            raise ValidationError(
                "Student already has an active teacher for this shift",
                code='DUPLICATE_SHIFT_ASSIGNMENT',
                params={
                    'profile_id': str(profile_id),
                    'shift': shift,
                    'existing_teacher': existing.teacher.person.name,
                }
            )

    @staticmethod
    def validate_guardian_relationship(guardian_id, dependent_id, role='PARENT'):
        """
        Raises:
            ValidationError: SELF_GUARDIAN, GUARDIAN_NOT_FOUND,
            DEPENDENT_NOT_FOUND, DUPLICATE_GUARDIAN_RELATIONSHIP
        """
        if str(guardian_id) == str(dependent_id):
            raise ValidationError(
                "A person cannot be their own guardian",
                code='SELF_GUARDIAN',
                params={'person_id': str(guardian_id)}
            )

        if not Person.objects.filter(pk=guardian_id).exists():
            raise ValidationError(
                "Guardian not found",
                code='GUARDIAN_NOT_FOUND',
                params={'guardian_id': str(guardian_id)}
            )

        if not Person.objects.filter(pk=dependent_id).exists():
            raise ValidationError(
                "Dependent not found",
                code='DEPENDENT_NOT_FOUND',
                params={'dependent_id': str(dependent_id)}
            )

        if GuardianRelationship.objects.filter(
            guardian_id=guardian_id,
            dependent_id=dependent_id,
            role=role,
            is_active=True
        ).exists():
            raise ValidationError(
                "This guardian relationship already exists",
                code='DUPLICATE_GUARDIAN_RELATIONSHIP',
                params={'guardian_id': str(guardian_id), 'dependent_id': str(dependent_id), 'role': role}
            )

    @staticmethod
    def validate_sibling_relationship(person_a_id, person_b_id):
        """
        Returns:
            tuple: (person1_id, person2_id) in storage order

        Raises:
            ValidationError: SELF_SIBLING, PERSON_NOT_FOUND,
            DUPLICATE_SIBLING_RELATIONSHIP
        """
        first_id, second_id = sorted([str(person_a_id), str(person_b_id)])

        if first_id == second_id:
            raise ValidationError(
                "A person cannot be their own sibling",
                code='SELF_SIBLING',
                params={'person_id': first_id}
            )

        found = Person.objects.filter(pk__in=[first_id, second_id]).count()
        if found != 2:
            raise ValidationError(
                "One or both people were not found",
                code='PERSON_NOT_FOUND',
                params={'person1_id': first_id, 'person2_id': second_id}
            )

        if SiblingRelationship.objects.filter(person1_id=first_id, person2_id=second_id).exists():
            raise ValidationError(
                "These people are already linked as siblings",
                code='DUPLICATE_SIBLING_RELATIONSHIP',
                params={'person1_id': first_id, 'person2_id': second_id}
            )

        return first_id, second_id

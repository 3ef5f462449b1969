# tests/test_classes.py

import uuid

import pytest
from django.core.exceptions import ValidationError

from dugsi import stats as dugsi_stats
from dugsi.models import DugsiClass, DugsiClassEnrollment, TeacherAssignment
from dugsi.services import AttendanceService, ClassService, TeacherService
from people.services import PersonService, SiblingRelationshipService
from students.validation import ValidationService

from .conftest import SATURDAY, make_child

pytestmark = pytest.mark.django_db


# =============================================================================
# CLASSES
# =============================================================================

def test_create_class_normalizes_name():
    dugsi_class = ClassService.create_class('  Juz   Amma  B ', 'AFTERNOON')
    assert dugsi_class.name == 'Juz Amma B'
    assert dugsi_class.is_active


def test_class_names_are_unique_ignoring_case(dugsi_class):
    with pytest.raises(ValidationError) as exc:
        ClassService.create_class('juz amma a', 'AFTERNOON')
    assert exc.value.code == 'DUPLICATE_CLASS'


def test_class_shift_must_be_known():
    with pytest.raises(ValidationError) as exc:
        ClassService.create_class('Evening Hifz', 'EVENING')
    assert exc.value.code == 'INVALID_SHIFT'


def test_update_class(dugsi_class):
    updated = ClassService.update_class(dugsi_class.pk, description='Juz 30 review', is_active=False)

    assert updated.description == 'Juz 30 review'
    assert not DugsiClass.objects.get(pk=dugsi_class.pk).is_active


def test_class_with_sessions_cannot_be_deleted(staffed_class):
    AttendanceService.create_session(SATURDAY, staffed_class.pk)

    with pytest.raises(ValidationError) as exc:
        ClassService.delete_class(staffed_class.pk)
    assert exc.value.code == 'CLASS_HAS_SESSIONS'


def test_delete_empty_class(dugsi_class):
    ClassService.delete_class(dugsi_class.pk)
    assert not DugsiClass.objects.exists()


def test_teacher_assignment_is_reactivated(dugsi_class, teacher):
    first = ClassService.assign_teacher(dugsi_class.pk, teacher.pk)
    assert ClassService.remove_teacher(dugsi_class.pk, teacher.pk)
    assert not ClassService.remove_teacher(dugsi_class.pk, teacher.pk)

    again = ClassService.assign_teacher(dugsi_class.pk, teacher.pk)
    assert again.pk == first.pk
    assert dugsi_class.get_primary_teacher() == teacher


def test_assign_unknown_teacher(dugsi_class):
    with pytest.raises(ValidationError) as exc:
        ClassService.assign_teacher(dugsi_class.pk, uuid.uuid4())
    assert exc.value.code == 'TEACHER_NOT_FOUND'


# =============================================================================
# CLASS SEATS
# =============================================================================

def test_child_holds_one_seat(staffed_class, dugsi_children):
    amina = dugsi_children[0]
    ClassService.assign_student_to_class(staffed_class.pk, amina.pk)

    other = ClassService.create_class('Juz Amma B', 'MORNING')
    with pytest.raises(ValidationError) as exc:
        ClassService.assign_student_to_class(other.pk, amina.pk)

    assert exc.value.code == 'ALREADY_IN_CLASS'
    assert exc.value.params['class_name'] == 'Juz Amma A'


def test_removed_seat_is_reused(staffed_class, dugsi_children):
    amina = dugsi_children[0]
    seat = ClassService.assign_student_to_class(staffed_class.pk, amina.pk)
    ClassService.remove_student_from_class(seat.pk)

    other = ClassService.create_class('Juz Amma B', 'MORNING')
    moved = ClassService.assign_student_to_class(other.pk, amina.pk)

    assert moved.pk == seat.pk
    assert moved.dugsi_class == other
    assert moved.end_date is None
    assert DugsiClassEnrollment.objects.count() == 1


def test_mahad_students_cannot_be_seated(dugsi_class, mahad_student):
    with pytest.raises(ValidationError) as exc:
        ClassService.assign_student_to_class(dugsi_class.pk, mahad_student.pk)
    assert exc.value.code == 'NOT_DUGSI_STUDENT'


def test_inactive_class_takes_no_students(inactive_class, dugsi_children):
    with pytest.raises(ValidationError) as exc:
        ClassService.assign_student_to_class(inactive_class.pk, dugsi_children[0].pk)
    assert exc.value.code == 'CLASS_INACTIVE'


def test_unknown_profile_cannot_be_seated(dugsi_class):
    with pytest.raises(ValidationError) as exc:
        ClassService.assign_student_to_class(dugsi_class.pk, uuid.uuid4())
    assert exc.value.code == 'PROFILE_NOT_FOUND'


def test_bulk_enroll_reports_failures(staffed_class, dugsi_children, mahad_student):
    ids = [p.pk for p in dugsi_children] + [mahad_student.pk]

    result = ClassService.bulk_enroll_students(staffed_class.pk, ids)

    assert result['enrolled'] == 2
    assert result['failed'] == [{
        'profile_id': str(mahad_student.pk),
        'error': 'Student is not enrolled in Dugsi program',
    }]


def test_unassigned_students_show_sibling_classes(staffed_class, dugsi_children):
    amina, khadar = dugsi_children
    ClassService.assign_student_to_class(staffed_class.pk, amina.pk)
    SiblingRelationshipService.create_relationship(amina.person.pk, khadar.person.pk)

    unassigned = ClassService.get_unassigned_students()

    assert [row['profile'] for row in unassigned] == [khadar]
    assert unassigned[0]['age'] is not None
    assert unassigned[0]['siblings'] == [{
        'name': 'Amina Ali',
        'class_name': 'Juz Amma A',
        'shift': 'MORNING',
        'teacher_name': 'Ustadh Hassan Omar',
    }]


def test_class_statistics(seated_class, inactive_class, parent, family_id):
    make_child('Hamdi Ali', family_id, [parent])

    stats = dugsi_stats.get_class_statistics()

    assert stats['class_count'] == 1
    assert stats['classes'][0]['student_count'] == 2
    assert stats['classes'][0]['teacher_count'] == 1
    assert stats['seated_count'] == 2
    assert stats['unassigned_count'] == 1


# =============================================================================
# TEACHERS
# =============================================================================

def test_create_teacher_is_idempotent(teacher):
    again, created = TeacherService.create_teacher(teacher.person, 'DUGSI_PROGRAM', ['MORNING', 'AFTERNOON', 'MORNING'])

    assert not created
    assert again.pk == teacher.pk
    assert again.get_shifts() == ['MORNING', 'AFTERNOON']


def test_teacher_shifts_are_validated(teacher):
    with pytest.raises(ValidationError) as exc:
        TeacherService.set_program_shifts(teacher, 'DUGSI_PROGRAM', ['NIGHT'])
    assert exc.value.code == 'INVALID_SHIFT'


def test_one_teacher_per_child_per_shift(teacher, dugsi_children):
    amina = dugsi_children[0]
    TeacherService.assign_to_child(teacher.pk, amina.pk, 'MORNING')
    # assigning the same teacher again is a no-op
    TeacherService.assign_to_child(teacher.pk, amina.pk, 'MORNING')

    other_person = PersonService.create_person_with_contact(name='Ustadha Faadumo Nur')
    other, _ = TeacherService.create_teacher(other_person, 'DUGSI_PROGRAM', ['MORNING'])

    with pytest.raises(ValidationError) as exc:
        TeacherService.assign_to_child(other.pk, amina.pk, 'MORNING')

    assert exc.value.code == 'DUPLICATE_SHIFT_ASSIGNMENT'
    assert exc.value.params['existing_teacher'] == 'Ustadh Hassan Omar'
    assert TeacherAssignment.objects.filter(profile=amina, is_active=True).count() == 1


def test_teachers_are_assigned_to_dugsi_children_only(teacher, mahad_student):
    with pytest.raises(ValidationError) as exc:
        TeacherService.assign_to_child(teacher.pk, mahad_student.pk, 'MORNING')
    assert exc.value.code == 'TEACHER_ASSIGNMENT_DUGSI_ONLY'


# =============================================================================
# ENROLLMENT VALIDATION
# =============================================================================

def test_enrollment_validation_codes(mahad_student):
    with pytest.raises(ValidationError) as exc:
        ValidationService.validate_enrollment(profile_id=uuid.uuid4())
    assert exc.value.code == 'PROFILE_NOT_FOUND'

    with pytest.raises(ValidationError) as exc:
        ValidationService.validate_enrollment()
    assert exc.value.code == 'MISSING_PROGRAM_INFO'

    with pytest.raises(ValidationError) as exc:
        ValidationService.validate_enrollment(profile_id=mahad_student.pk, batch_id=uuid.uuid4())
    assert exc.value.code == 'BATCH_NOT_FOUND'

    assert ValidationService.validate_enrollment(program='MAHAD_PROGRAM') is None

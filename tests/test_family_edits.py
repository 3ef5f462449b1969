# tests/test_family_edits.py

import uuid
from datetime import date

import pytest
from django.core.exceptions import ValidationError

from dugsi.services import FamilyService
from people.models import GuardianRelationship
from people.services import PersonService
from students.models import ProgramProfile

from .conftest import make_child

pytestmark = pytest.mark.django_db


@pytest.fixture
def single_parent_family(parent, family_id):
    return [
        make_child('Amina Ali', family_id, [parent]),
        make_child('Khadar Ali', family_id, [parent]),
    ]


# =============================================================================
# PARENTS
# =============================================================================

def test_update_second_parent(dugsi_children, second_parent):
    updated = FamilyService.update_parent_info(dugsi_children[0].pk, 2, 'Abdirahman', 'Ali', '612-555-0789')

    second_parent.refresh_from_db()
    assert updated == second_parent
    assert second_parent.name == 'Abdirahman Ali'
    assert second_parent.phone == '+16125550789'
    # email stays as registered
    assert second_parent.email == 'abdi@example.com'


def test_update_missing_parent(single_parent_family):
    with pytest.raises(ValidationError) as exc:
        FamilyService.update_parent_info(single_parent_family[0].pk, 2, 'No', 'One', '612-555-0789')
    assert exc.value.code == 'PARENT_NOT_FOUND'


def test_update_parent_of_unknown_child(db):
    with pytest.raises(ValidationError) as exc:
        FamilyService.update_parent_info(uuid.uuid4(), 1, 'No', 'One', '612-555-0789')
    assert exc.value.code == 'STUDENT_NOT_FOUND'


def test_update_parent_rejects_mahad_profile(mahad_student):
    with pytest.raises(ValidationError) as exc:
        FamilyService.update_parent_info(mahad_student.pk, 1, 'No', 'One', '612-555-0789')
    assert exc.value.code == 'STUDENT_NOT_FOUND'


def test_add_second_parent_links_every_child(single_parent_family, parent):
    added = FamilyService.add_second_parent(
        single_parent_family[0].pk, 'Abdi', 'Ali', 'Abdi@Example.com', '612-555-0456'
    )

    assert added.email == 'abdi@example.com'
    for profile in single_parent_family:
        assert set(profile.person.get_active_guardians()) == {parent, added}


def test_add_second_parent_reuses_person_with_email(single_parent_family):
    existing = PersonService.create_person_with_contact(name='Abdi Ali', email='abdi@example.com')

    added = FamilyService.add_second_parent(
        single_parent_family[0].pk, 'Abdi', 'Ali', 'abdi@example.com', '612-555-0456'
    )

    assert added == existing


def test_family_has_at_most_two_parents(dugsi_children):
    with pytest.raises(ValidationError) as exc:
        FamilyService.add_second_parent(dugsi_children[0].pk, 'Third', 'Parent', 'third@example.com', '612-555-0111')
    assert exc.value.code == 'DUPLICATE_PARENT'


# =============================================================================
# CHILDREN
# =============================================================================

def test_update_child_is_partial(dugsi_children):
    child = dugsi_children[0]

    FamilyService.update_child_info(child.pk, first_name='Aminah', grade_level='GRADE_3')

    child.refresh_from_db()
    child.person.refresh_from_db()
    assert child.person.name == 'Aminah Ali'
    assert child.person.date_of_birth == date(2015, 3, 1)
    assert child.grade_level == 'GRADE_3'
    assert child.gender == 'FEMALE'


def test_update_child_rejects_unknown_fields(dugsi_children):
    with pytest.raises(ValidationError) as exc:
        FamilyService.update_child_info(dugsi_children[0].pk, family_reference_id=uuid.uuid4())
    assert exc.value.code == 'INVALID_FIELD'


def test_add_child_copies_parents_and_payer(dugsi_children, parent, second_parent, family_id):
    profile = FamilyService.add_child_to_family(
        dugsi_children[0].pk, 'Hamza', 'Ali', date_of_birth=date(2019, 2, 1), gender='MALE'
    )

    assert profile.family_reference_id == family_id
    assert profile.status == 'REGISTERED'
    assert profile.gender == 'MALE'
    assert profile.get_active_enrollment().status == 'REGISTERED'
    assert set(profile.person.get_active_guardians()) == {parent, second_parent}
    assert GuardianRelationship.objects.get(dependent=profile.person, is_primary_payer=True).guardian == parent
    assert ProgramProfile.objects.filter(family_reference_id=family_id).count() == 3


def test_add_child_needs_a_family(parent):
    loner = make_child('Solo Child', None, [parent])

    with pytest.raises(ValidationError) as exc:
        FamilyService.add_child_to_family(loner.pk, 'New', 'Child')
    assert exc.value.code == 'FAMILY_NOT_FOUND'


# =============================================================================
# VIEWS
# =============================================================================

def test_family_page_shows_parent_forms(staff_client, dugsi_children, family_id):
    response = staff_client.get(f'/dugsi/families/{family_id}/')

    assert response.status_code == 200
    assert len(response.context['parent_forms']) == 2
    assert response.context['second_parent_form'] is None
    assert response.context['parent_forms'][0][1].initial['phone'] == '612-555-0123'


def test_update_parent_view(staff_client, dugsi_children, family_id, parent):
    response = staff_client.post(f'/dugsi/families/{family_id}/parents/update/', {
        'parent_number': 1,
        'first_name': 'Hodan',
        'last_name': 'Yusuf',
        'phone': '612-555-0199',
    })

    parent.refresh_from_db()
    assert response.status_code == 302
    assert parent.name == 'Hodan Yusuf'
    assert parent.phone == '+16125550199'


def test_add_child_view(staff_client, dugsi_children, family_id):
    response = staff_client.post(f'/dugsi/families/{family_id}/children/add/', {
        'first_name': 'Hamza',
        'last_name': 'Ali',
        'gender': 'MALE',
    })

    assert response.status_code == 302
    assert ProgramProfile.objects.filter(family_reference_id=family_id, person__name='Hamza Ali').exists()


def test_child_edit_view_saves_changed_fields_only(staff_client, dugsi_children):
    child = dugsi_children[0]

    response = staff_client.post(f'/dugsi/children/{child.pk}/edit/', {
        'first_name': 'Amina',
        'last_name': 'Ali',
        'date_of_birth': '2015-03-01',
        'gender': 'FEMALE',
        'school_name': 'Lake Street Elementary',
    })

    child.refresh_from_db()
    assert response.status_code == 302
    assert child.school_name == 'Lake Street Elementary'
    assert child.person.name == 'Amina Ali'

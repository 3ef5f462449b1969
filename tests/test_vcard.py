# tests/test_vcard.py

import uuid
from datetime import date
from unittest.mock import patch

import pytest

from people.services import PersonService
from people.vcard import (
    escape_vcard_value,
    export_dugsi_parent_contacts,
    export_mahad_contacts,
    format_phone_for_vcard,
    generate_vcard,
)
from students.models import Batch, Enrollment, ProgramProfile

from .conftest import SATURDAY, make_child

pytestmark = pytest.mark.django_db


@pytest.fixture(autouse=True)
def center_today():
    with patch('people.vcard.get_center_today', return_value=SATURDAY):
        yield


def test_escape_vcard_value():
    assert escape_vcard_value('Ali; Hodan, \\ note\nline') == 'Ali\\; Hodan\\, \\\\ note\\nline'


@pytest.mark.parametrize('phone, expected', [
    ('612-555-0123', '+16125550123'),
    ('+1 (612) 555-0123', '+16125550123'),
    ('+252 61 555 0123', '+252615550123'),
    ('', None),
    (None, None),
])
def test_format_phone_for_vcard(phone, expected):
    assert format_phone_for_vcard(phone) == expected


def test_generate_vcard():
    card = generate_vcard('Hodan Ali IrshadDugsi', phone='+16125550123', email='hodan@example.com',
                          note='Children: Amina Ali')

    assert card.split('\r\n') == [
        'BEGIN:VCARD',
        'VERSION:3.0',
        'N:;Hodan Ali IrshadDugsi;;;',
        'FN:Hodan Ali IrshadDugsi',
        'TEL;TYPE=CELL:+16125550123',
        'EMAIL:hodan@example.com',
        'ORG:Irshad Center',
        'NOTE:Children: Amina Ali',
        'END:VCARD',
    ]


# =============================================================================
# MAHAD
# =============================================================================

def test_mahad_export_skips_students_without_contacts(mahad_student):
    no_contacts = PersonService.create_person_with_contact(name='Omar Noor')
    ProgramProfile.objects.create(person=no_contacts, program='MAHAD_PROGRAM', status='ENROLLED')

    export = export_mahad_contacts()

    assert (export['exported'], export['skipped']) == (1, 1)
    assert export['filename'] == 'mahad-all-contacts-2025-01-04.vcf'
    assert 'FN:Yusuf Warsame\r\n' in export['content']
    assert 'TEL;TYPE=CELL:+16515550100' in export['content']


def test_mahad_export_for_one_batch(mahad_student):
    batch = Batch.objects.create(name='Fall 2024 Cohort')
    Enrollment.objects.filter(profile=mahad_student).update(batch=batch)

    other = PersonService.create_person_with_contact(name='Ayan Hirsi', email='ayan@example.com')
    ProgramProfile.objects.create(person=other, program='MAHAD_PROGRAM', status='ENROLLED')

    export = export_mahad_contacts(batch)

    assert export['exported'] == 1
    assert export['filename'] == 'mahad-fall-2024-cohort-contacts-2025-01-04.vcf'
    assert 'FN:Yusuf Warsame Fall 2024 Cohort' in export['content']
    assert 'Ayan Hirsi' not in export['content']


# =============================================================================
# DUGSI PARENTS
# =============================================================================

def test_dugsi_parent_export(dugsi_children):
    export = export_dugsi_parent_contacts()

    assert export['exported'] == 2
    assert export['filename'] == 'dugsi-parent-contacts-2025-01-04.vcf'
    assert 'FN:Hodan Ali IrshadDugsi' in export['content']
    assert 'FN:Abdi Ali IrshadDugsi' in export['content']
    assert 'NOTE:Children: Amina Ali\\, Khadar Ali' in export['content']
    assert export['content'].count('BEGIN:VCARD') == 2


def test_parent_in_two_families_is_exported_once(dugsi_children, parent):
    make_child('Sagal Ali', uuid.uuid4(), [parent], date_of_birth=date(2016, 1, 1))

    export = export_dugsi_parent_contacts()

    assert export['content'].count('FN:Hodan Ali IrshadDugsi') == 1
    assert export['skipped'] == 1


# =============================================================================
# VIEWS
# =============================================================================

def test_mahad_vcard_download(staff_client, mahad_student):
    response = staff_client.get('/mahad/students/export/vcard/')

    assert response.status_code == 200
    assert response['Content-Type'] == 'text/vcard; charset=utf-8'
    assert 'mahad-all-contacts-2025-01-04.vcf' in response['Content-Disposition']


def test_dugsi_vcard_download(staff_client, dugsi_children):
    response = staff_client.get('/dugsi/families/export/vcard/')

    assert response.status_code == 200
    assert b'IrshadDugsi' in response.content


def test_empty_export_redirects(staff_client, db):
    response = staff_client.get('/dugsi/families/export/vcard/')
    assert response.status_code == 302

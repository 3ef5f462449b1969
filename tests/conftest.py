# tests/conftest.py

import uuid
from datetime import date

import pytest

from billing.models import BillingAccount, Subscription, BillingAssignment
from dugsi.models import DugsiClass
from dugsi.services import TeacherService, ClassService
from irshad.managers import clear_current_program
from people.services import PersonService, GuardianService
from students.models import ProgramProfile, Enrollment
from utils.context import clear_request_context

CENTER_LAT = 44.9778
CENTER_LNG = -93.2650

# Saturday / Sunday / Monday
SATURDAY = date(2025, 1, 4)
SUNDAY = date(2025, 1, 5)
MONDAY = date(2025, 1, 6)


@pytest.fixture(autouse=True)
def irshad_settings(settings):
    settings.STRIPE_ACCOUNTS = {
        'MAHAD': {
            'secret_key': 'sk_test_mahad',
            'webhook_secret': 'whsec_test_mahad',
            'product_id': 'prod_test_mahad',
        },
        'DUGSI': {
            'secret_key': 'sk_test_dugsi',
            'webhook_secret': 'whsec_test_dugsi',
            'product_id': 'prod_test_dugsi',
        },
    }
    settings.WHATSAPP = {
        'API_BASE_URL': 'https://graph.facebook.com',
        'API_VERSION': 'v21.0',
        'PHONE_NUMBER_ID': '1234567890',
        'ACCESS_TOKEN': 'test-access-token',
        'APP_SECRET': 'test-app-secret',
        'VERIFY_TOKEN': 'test-verify-token',
        'TIMEOUT': 5,
    }
    settings.IRSHAD_CENTER_LAT = CENTER_LAT
    settings.IRSHAD_CENTER_LNG = CENTER_LNG
    settings.CENTER_TIMEZONE = 'America/Chicago'
    settings.CRON_SECRET_KEY = 'test-cron-secret'
    settings.APP_URL = 'https://irshad.test'
    return settings


@pytest.fixture(autouse=True)
def reset_thread_context():
    yield
    clear_current_program()
    clear_request_context()


# =============================================================================
# PEOPLE
# =============================================================================

@pytest.fixture
def parent(db):
    return PersonService.create_person_with_contact(
        name='Hodan Ali',
        email='hodan@example.com',
        phone='612-555-0123',
    )


@pytest.fixture
def second_parent(db):
    return PersonService.create_person_with_contact(
        name='Abdi Ali',
        email='abdi@example.com',
        phone='612-555-0456',
    )


@pytest.fixture
def mahad_student(db):
    person = PersonService.create_person_with_contact(
        name='Yusuf Warsame',
        email='yusuf@example.com',
        phone='651-555-0100',
    )
    profile = ProgramProfile.objects.create(
        person=person,
        program='MAHAD_PROGRAM',
        status='ENROLLED',
        graduation_status='NON_GRADUATE',
        payment_frequency='MONTHLY',
        billing_type='FULL_TIME',
    )
    Enrollment.objects.create(profile=profile, status='ENROLLED', start_date=date(2024, 9, 1))
    return profile


# =============================================================================
# DUGSI FAMILY
# =============================================================================

def make_child(name, family_reference_id, guardians, status='ENROLLED', date_of_birth=None):
    """Dugsi child with an open enrollment, linked to each guardian"""
    person = PersonService.create_person_with_contact(name=name, date_of_birth=date_of_birth)
    profile = ProgramProfile.objects.create(
        person=person,
        program='DUGSI_PROGRAM',
        status=status,
        family_reference_id=family_reference_id,
        gender='FEMALE',
    )
    Enrollment.objects.create(profile=profile, status=status, start_date=date(2024, 9, 1))
    for index, guardian in enumerate(guardians):
        GuardianService.link_guardian(guardian, person, is_primary_payer=index == 0)
    return profile


@pytest.fixture
def family_id():
    return uuid.uuid4()


@pytest.fixture
def dugsi_children(parent, second_parent, family_id):
    return [
        make_child('Amina Ali', family_id, [parent, second_parent], date_of_birth=date(2015, 3, 1)),
        make_child('Khadar Ali', family_id, [parent, second_parent], date_of_birth=date(2017, 6, 1)),
    ]


@pytest.fixture
def dugsi_account(parent):
    return BillingAccount.objects.create(
        person=parent,
        account_type='DUGSI',
        stripe_customer_id_dugsi='cus_family',
        payment_method_captured=True,
    )


@pytest.fixture
def family_subscription(dugsi_account, dugsi_children):
    subscription = Subscription.objects.create(
        billing_account=dugsi_account,
        stripe_account_type='DUGSI',
        stripe_subscription_id='sub_family',
        stripe_customer_id='cus_family',
        status='active',
        amount=16000,
    )
    for profile in dugsi_children:
        BillingAssignment.objects.create(
            subscription=subscription,
            profile=profile,
            amount=8000,
            is_active=True,
        )
    return subscription


# =============================================================================
# TEACHERS & CLASSES
# =============================================================================

@pytest.fixture
def teacher(db):
    person = PersonService.create_person_with_contact(
        name='Ustadh Hassan Omar',
        email='hassan@example.com',
        phone='612-555-0999',
    )
    teacher, _ = TeacherService.create_teacher(person, 'DUGSI_PROGRAM', ['MORNING'])
    return teacher


@pytest.fixture
def dugsi_class(db):
    return ClassService.create_class('Juz Amma A', 'MORNING', 'Beginners')


@pytest.fixture
def staffed_class(dugsi_class, teacher):
    ClassService.assign_teacher(dugsi_class.pk, teacher.pk)
    return dugsi_class


@pytest.fixture
def seated_class(staffed_class, dugsi_children):
    for profile in dugsi_children:
        ClassService.assign_student_to_class(staffed_class.pk, profile.pk)
    return staffed_class


@pytest.fixture
def inactive_class(db):
    return DugsiClass.objects.create(name='Closed Class', shift='AFTERNOON', is_active=False)


@pytest.fixture
def staff_user(db, django_user_model):
    return django_user_model.objects.create_user(
        username='office',
        email='office@example.com',
        password='test-password',
        is_staff=True,
    )


@pytest.fixture
def staff_client(client, staff_user):
    client.force_login(staff_user)
    return client

# tests/test_registration.py

import uuid
from datetime import date, datetime, timedelta
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest
import stripe
from django.core.exceptions import ValidationError

from billing.models import BillingAccount, Subscription
from people.models import GuardianRelationship, Person
from students.models import Batch, Enrollment, ProgramProfile
from students.services import (
    ABANDONED_ENROLLMENT_REASON,
    BatchService,
    EnrollmentService,
    MahadStudentService,
    RegistrationService,
    cleanup_abandoned_enrollments,
)
from utils.models import BillingAuditLog

pytestmark = pytest.mark.django_db


def family_payload(**overrides):
    data = {
        'family_reference_id': str(uuid.uuid4()),
        'parent1_first_name': 'Hodan',
        'parent1_last_name': 'Ali',
        'parent1_email': 'Hodan@Example.com',
        'parent1_phone': '612-555-0123',
        'primary_payer': 'parent1',
        'children': [
            {'first_name': 'Amina', 'last_name': 'Ali', 'date_of_birth': date(2015, 3, 1), 'gender': 'FEMALE'},
            {'first_name': 'Khadar', 'last_name': 'Ali', 'date_of_birth': date(2017, 6, 1), 'gender': 'MALE'},
        ],
    }
    data.update(overrides)
    return data


def registration_errors(data):
    with pytest.raises(ValidationError) as exc:
        RegistrationService.validate_family_registration(data)
    assert exc.value.code == 'INVALID_REGISTRATION'
    return exc.value.params['errors']


# =============================================================================
# FAMILY REGISTRATION VALIDATION
# =============================================================================

def test_valid_family_payload_is_cleaned():
    cleaned = RegistrationService.validate_family_registration(family_payload())

    assert cleaned['parent1_email'] == 'hodan@example.com'
    assert isinstance(cleaned['family_reference_id'], uuid.UUID)
    assert cleaned['has_parent2'] is False


def test_children_are_required():
    assert "At least one child is required" in registration_errors(family_payload(children=[]))


def test_at_most_ten_children():
    children = [{'first_name': f'Child{i}', 'last_name': 'Ali'} for i in range(11)]
    assert "Maximum 10 children allowed" in registration_errors(family_payload(children=children))


def test_parent_phone_format():
    errors = registration_errors(family_payload(parent1_phone='6125550123'))
    assert "Parent 1 phone must be in format XXX-XXX-XXXX" in errors


def test_parent2_is_all_or_nothing():
    errors = registration_errors(family_payload(parent2_first_name='Abdi', parent2_email='abdi@example.com'))
    assert "Parent 2 information must be complete (name, email and phone) or left empty" in errors


def test_parent2_payer_requires_parent2():
    errors = registration_errors(family_payload(primary_payer='parent2'))
    assert "Parent 2 must be provided to be the primary payer" in errors


def test_every_problem_is_reported():
    errors = registration_errors(family_payload(
        parent1_first_name='<b>Hodan</b>',
        parent1_email='not-an-email',
        family_reference_id='family-1',
        children=[{'first_name': '', 'last_name': 'Ali'}],
    ))

    assert "Child 1: First name is required" in errors
    assert "Parent 1 first name cannot contain HTML tags or exceed 255 characters" in errors
    assert "Parent 1 email must be valid" in errors
    assert "Family reference ID must be a valid UUID" in errors


# =============================================================================
# FAMILY REGISTRATION
# =============================================================================

def test_create_family_registration():
    data = family_payload(
        parent2_first_name='Abdi',
        parent2_last_name='Ali',
        parent2_email='abdi@example.com',
        parent2_phone='612-555-0456',
        primary_payer='parent2',
    )

    result = RegistrationService.create_family_registration(data)

    assert len(result['parents']) == 2
    assert result['payer'].name == 'Abdi Ali'
    assert result['billing_account'].account_type == 'DUGSI'
    assert result['billing_account'].person == result['payer']
    assert len(result['profiles']) == 2

    for profile in result['profiles']:
        assert profile.program == 'DUGSI_PROGRAM'
        assert profile.status == 'REGISTERED'
        assert profile.family_reference_id == result['family_reference_id']
        enrollment = profile.get_active_enrollment()
        assert enrollment.batch is None
        assert enrollment.status == 'REGISTERED'

    payer_links = GuardianRelationship.objects.filter(is_primary_payer=True)
    assert payer_links.count() == 2
    assert set(payer_links.values_list('guardian__name', flat=True)) == {'Abdi Ali'}
    assert GuardianRelationship.objects.count() == 4


def test_returning_family_reuses_parent_records(parent):
    result = RegistrationService.create_family_registration(family_payload(parent1_phone='612-555-0123'))

    assert result['payer'].pk == parent.pk
    assert Person.objects.filter(name='Hodan Ali').count() == 1


def test_registration_rolls_back_on_invalid_payload():
    with pytest.raises(ValidationError):
        RegistrationService.create_family_registration(family_payload(children=[]))

    assert not Person.objects.exists()
    assert not BillingAccount.objects.exists()


# =============================================================================
# MAHAD STUDENTS
# =============================================================================

def test_register_mahad_student_with_batch():
    batch = BatchService.create_batch('Cohort 2025', date(2025, 1, 1), date(2025, 12, 31))

    profile, enrollment = MahadStudentService.register_student(
        name='Ilhan Farah',
        email='ilhan@example.com',
        phone='651-555-0199',
        batch=batch,
        graduation_status='GRADUATE',
        payment_frequency='BI_MONTHLY',
        billing_type='PART_TIME',
    )

    assert profile.program == 'MAHAD_PROGRAM'
    assert profile.billing_type == 'PART_TIME'
    assert enrollment.batch == batch
    assert batch.active_enrollment_count == 1


def test_mahad_duplicate_registration(mahad_student):
    with pytest.raises(ValidationError) as exc:
        MahadStudentService.register_student(name='Yusuf W', email='yusuf@example.com')

    assert exc.value.code == 'DUPLICATE_REGISTRATION'
    assert exc.value.params['duplicate_field'] == 'email'


def test_open_enrollment_blocks_second_profile(mahad_student):
    with pytest.raises(ValidationError) as exc:
        RegistrationService.create_program_profile_with_enrollment(mahad_student.person, 'MAHAD_PROGRAM')
    assert exc.value.code == 'ALREADY_ENROLLED'


def test_dugsi_enrollment_cannot_have_batch(parent):
    batch = Batch.objects.create(name='Cohort A')

    with pytest.raises(ValidationError) as exc:
        RegistrationService.create_program_profile_with_enrollment(parent, 'DUGSI_PROGRAM', batch=batch)
    assert exc.value.code == 'DUGSI_NO_BATCH'


def test_withdraw_mahad_student(mahad_student):
    assert MahadStudentService.withdraw(mahad_student, reason='Moved') == 1

    mahad_student.refresh_from_db()
    enrollment = mahad_student.enrollments.get()
    assert mahad_student.status == 'WITHDRAWN'
    assert enrollment.status == 'WITHDRAWN'
    assert enrollment.end_date is not None
    assert mahad_student.get_active_enrollment() is None


def test_update_billing_fields_reports_changes(mahad_student):
    changed = MahadStudentService.update_billing_fields(
        mahad_student, billing_type='EXEMPT', graduation_status='NON_GRADUATE'
    )
    assert changed == ['billing_type']


# =============================================================================
# BATCHES & ENROLLMENT STATUS
# =============================================================================

def test_batch_rules():
    with pytest.raises(ValidationError) as exc:
        BatchService.create_batch('  ')
    assert exc.value.code == 'INVALID_BATCH'

    BatchService.create_batch('Cohort A')
    with pytest.raises(ValidationError) as exc:
        BatchService.create_batch('cohort a')
    assert exc.value.code == 'DUPLICATE_BATCH'

    with pytest.raises(ValidationError) as exc:
        BatchService.create_batch('Cohort B', date(2025, 6, 1), date(2025, 1, 1))
    assert exc.value.code == 'INVALID_BATCH_DATES'


def test_batch_with_students_cannot_be_deleted(mahad_student):
    batch = BatchService.create_batch('Cohort A')
    assert BatchService.assign_students(batch, [mahad_student.pk]) == {'assigned': 1, 'failed': []}

    with pytest.raises(ValidationError) as exc:
        BatchService.delete_batch(batch)
    assert exc.value.code == 'BATCH_HAS_STUDENTS'


def test_transfer_students_between_batches(mahad_student):
    first = BatchService.create_batch('Cohort A')
    second = BatchService.create_batch('Cohort B')
    MahadStudentService.assign_to_batch(mahad_student, first)

    assert BatchService.transfer_students(first, second) == 1
    assert mahad_student.get_active_enrollment().batch == second


def test_completed_enrollment_closes_and_updates_profile(mahad_student):
    enrollment = mahad_student.get_active_enrollment()

    EnrollmentService.update_enrollment_status(enrollment, 'COMPLETED', reason='Graduated')

    enrollment.refresh_from_db()
    mahad_student.refresh_from_db()
    assert enrollment.end_date is not None
    assert enrollment.reason == 'Graduated'
    assert mahad_student.status == 'COMPLETED'


# =============================================================================
# ABANDONED ENROLLMENTS
# =============================================================================

def test_cleanup_abandoned_enrollments(mahad_student):
    BillingAccount.objects.create(
        person=mahad_student.person,
        account_type='MAHAD',
        stripe_customer_id_mahad='cus_abandoned',
    )
    now = datetime(2025, 3, 1, 12, 0, tzinfo=ZoneInfo('UTC'))
    customers = {'data': [
        {'id': 'cus_abandoned', 'email': 'yusuf@example.com', 'name': 'Yusuf Warsame',
         'created': int((now - timedelta(days=2)).timestamp()), 'metadata': {'enrollmentPending': 'true'}},
        {'id': 'cus_paid', 'email': 'paid@example.com', 'metadata': {'enrollmentPending': 'true'}},
        {'id': 'cus_settled', 'email': 'old@example.com', 'metadata': {}},
    ]}

    def list_subscriptions(customer_id, account_type, limit=10):
        return {'data': [{'id': 'sub_1'}] if customer_id == 'cus_paid' else []}

    with patch('billing.stripe_client.list_customers', return_value=customers) as list_customers, \
            patch('billing.stripe_client.list_subscriptions', side_effect=list_subscriptions), \
            patch('billing.stripe_client.update_customer') as update_customer:
        results = cleanup_abandoned_enrollments(now)

    assert list_customers.call_args.kwargs['created'] == {'lt': int((now - timedelta(hours=24)).timestamp())}
    assert results['checked'] == 3
    assert results['abandoned'] == 1
    assert results['cleaned'] == 1
    assert results['errors'] == 0
    assert results['details'][0]['id'] == 'cus_abandoned'

    metadata = update_customer.call_args.kwargs['metadata']
    assert metadata['enrollmentPending'] == 'false'
    assert metadata['enrollmentAbandoned'] == 'true'

    enrollment = Enrollment.objects.get(profile=mahad_student)
    assert enrollment.status == 'WITHDRAWN'
    assert enrollment.reason == ABANDONED_ENROLLMENT_REASON
    assert BillingAuditLog.objects.filter(action='ENROLLMENT_ABANDON').exists()


def test_cleanup_skips_customers_with_active_subscription(mahad_student):
    account = BillingAccount.objects.create(
        person=mahad_student.person,
        account_type='MAHAD',
        stripe_customer_id_mahad='cus_local',
    )
    Subscription.objects.create(
        billing_account=account,
        stripe_account_type='MAHAD',
        stripe_subscription_id='sub_local',
        stripe_customer_id='cus_local',
        status='active',
        amount=12000,
    )
    customers = {'data': [{'id': 'cus_local', 'metadata': {'enrollmentPending': 'true'}}]}

    with patch('billing.stripe_client.list_customers', return_value=customers), \
            patch('billing.stripe_client.list_subscriptions', return_value={'data': []}), \
            patch('billing.stripe_client.update_customer') as update_customer:
        results = cleanup_abandoned_enrollments()

    assert results['abandoned'] == 0
    update_customer.assert_not_called()
    assert ProgramProfile.objects.get(pk=mahad_student.pk).status == 'ENROLLED'


def test_cleanup_reads_stripe_list_objects(mahad_student):
    BillingAccount.objects.create(
        person=mahad_student.person,
        account_type='MAHAD',
        stripe_customer_id_mahad='cus_abandoned',
    )
    customers = stripe.ListObject.construct_from({'object': 'list', 'data': [
        {'id': 'cus_abandoned', 'object': 'customer', 'email': 'yusuf@example.com',
         'metadata': {'enrollmentPending': 'true'}},
    ]}, 'sk_test_mahad')
    no_subscriptions = stripe.ListObject.construct_from({'object': 'list', 'data': []}, 'sk_test_mahad')
    updated = stripe.Customer.construct_from({'id': 'cus_abandoned', 'object': 'customer'}, 'sk_test_mahad')

    with patch('stripe.Customer.list', return_value=customers), \
            patch('stripe.Subscription.list', return_value=no_subscriptions), \
            patch('stripe.Customer.modify', return_value=updated) as modify:
        results = cleanup_abandoned_enrollments()

    assert (results['checked'], results['cleaned'], results['errors']) == (1, 1, 0)
    assert modify.call_args.kwargs['metadata']['enrollmentAbandoned'] == 'true'

# students/services.py
"""
Business logic services for program profiles and enrollments.

Handles registration (Mahad students, Dugsi families), cohort management,
enrollment status changes and the clean-up of Mahad enrollments that were
never paid for.
"""

from django.db import transaction
from django.utils import timezone
from django.core.exceptions import ValidationError
from datetime import timedelta
import uuid
import logging

from core.utils import get_center_today
from people.models import Person
from people.services import PersonService, GuardianService
from people.utils import normalize_phone, is_valid_email
from utils.audit import log_billing_activity
from utils.forms import validate_person_name, validate_us_phone

from .models import Batch, ProgramProfile, Enrollment, open_enrollments_q
from .validation import ValidationService

logger = logging.getLogger(__name__)

MAX_CHILDREN_PER_FAMILY = 10
ABANDONED_ENROLLMENT_REASON = 'Abandoned enrollment - no payment after 24 hours'


# =============================================================================
# REGISTRATION SERVICES
# =============================================================================

class RegistrationService:
    """Creates people, program profiles and enrollments for registrations."""

    @staticmethod
    @transaction.atomic
    def create_program_profile_with_enrollment(
        person,
        program,
        batch=None,
        status='REGISTERED',
        enrollment_reason='',
        enrollment_notes='',
        **profile_fields
    ):
        """
        Create a program profile and its first enrollment atomically.

        Args:
            person (Person): Who is registering
            program (str): MAHAD_PROGRAM, DUGSI_PROGRAM, ...
            batch (Batch, optional): Mahad cohort; never allowed for Dugsi
            status (str): Initial profile/enrollment status
            enrollment_reason / enrollment_notes (str, optional)
            **profile_fields: Any ProgramProfile field (gender, grade_level,
                family_reference_id, billing_type, ...)

        Returns:
            tuple: (profile, enrollment)

        Raises:
            ValidationError: ALREADY_ENROLLED when the person already has an
            open enrollment in the program, plus validate_enrollment codes

        Example:
            profile, enrollment = RegistrationService.create_program_profile_with_enrollment(
                person=student,
                program='MAHAD_PROGRAM',
                batch=fall_cohort,
                billing_type='FULL_TIME',
            )
        """
        ValidationService.validate_enrollment(
            program=program,
            batch_id=batch.pk if batch else None
        )

        if Enrollment.objects.filter(
            open_enrollments_q(),
            profile__person=person,
            profile__program=program
        ).exists():
            raise ValidationError(
                "This person already has an active enrollment in this program",
                code='ALREADY_ENROLLED',
                params={'person_id': str(person.pk), 'program': program}
            )

        profile, created = ProgramProfile.objects.get_or_create(
            person=person,
            program=program,
            defaults=dict(status=status, **profile_fields)
        )

        if not created:
            for field, value in profile_fields.items():
                setattr(profile, field, value)
            profile.status = status
            profile.save()

        enrollment = Enrollment.objects.create(
            profile=profile,
            batch=batch,
            status=status,
            start_date=get_center_today(),
            reason=enrollment_reason or '',
            notes=enrollment_notes or ''
        )

        logger.info(
            f"Created {program} profile {profile.id} with enrollment {enrollment.id} for {person.name}"
        )

        return profile, enrollment

    @staticmethod
    def validate_family_registration(data):
        """
        Check a Dugsi family registration payload.

        Required keys: children (1-10 dicts with first_name, last_name),
        parent1_first_name, parent1_last_name, parent1_email, parent1_phone,
        family_reference_id. Parent 2 fields are all-or-nothing.
        primary_payer is 'parent1' (default) or 'parent2'.

        Returns:
            dict: Cleaned copy of data

        Raises:
            ValidationError: INVALID_REGISTRATION with every problem found
        """
        errors = []
        cleaned = dict(data)

        def check_name(key, label, required=True):
            value = (data.get(key) or '').strip()
            if not value:
                if required:
                    errors.append(f"{label} is required")
                return None
            try:
                validate_person_name(value)
            except ValidationError:
                errors.append(f"{label} cannot contain HTML tags or exceed 255 characters")
            return value

        def check_phone(key, label):
            value = (data.get(key) or '').strip()
            try:
                validate_us_phone(value)
            except ValidationError:
                errors.append(f"{label} phone must be in format XXX-XXX-XXXX")
                return value
            if not normalize_phone(value):
                errors.append(f"{label} phone is invalid - cannot be normalized")
            return value

        children = data.get('children') or []
        if not children:
            errors.append("At least one child is required")
        elif len(children) > MAX_CHILDREN_PER_FAMILY:
            errors.append(f"Maximum {MAX_CHILDREN_PER_FAMILY} children allowed")

        cleaned_children = []
        for index, child in enumerate(children[:MAX_CHILDREN_PER_FAMILY], start=1):
            child = dict(child)
            for key, label in (('first_name', 'First name'), ('last_name', 'Last name')):
                value = (child.get(key) or '').strip()
                if not value:
                    errors.append(f"Child {index}: {label} is required")
                else:
                    try:
                        validate_person_name(value)
                    except ValidationError:
                        errors.append(f"Child {index}: {label} cannot contain HTML tags")
                child[key] = value
            if child.get('date_of_birth') and child['date_of_birth'] > get_center_today():
                errors.append(f"Child {index}: Date of birth must be in the past")
            cleaned_children.append(child)
        cleaned['children'] = cleaned_children

        cleaned['parent1_first_name'] = check_name('parent1_first_name', 'Parent 1 first name')
        cleaned['parent1_last_name'] = check_name('parent1_last_name', 'Parent 1 last name')

        email = (data.get('parent1_email') or '').strip().lower()
        if not is_valid_email(email):
            errors.append("Parent 1 email must be valid")
        cleaned['parent1_email'] = email
        cleaned['parent1_phone'] = check_phone('parent1_phone', 'Parent 1')

        parent2_keys = ['parent2_first_name', 'parent2_last_name', 'parent2_email', 'parent2_phone']
        provided = [key for key in parent2_keys if (data.get(key) or '').strip()]
        cleaned['has_parent2'] = bool(provided)

        if provided and len(provided) != len(parent2_keys):
            errors.append("Parent 2 information must be complete (name, email and phone) or left empty")
        elif provided:
            cleaned['parent2_first_name'] = check_name('parent2_first_name', 'Parent 2 first name')
            cleaned['parent2_last_name'] = check_name('parent2_last_name', 'Parent 2 last name')
            email2 = data['parent2_email'].strip().lower()
            if not is_valid_email(email2):
                errors.append("Parent 2 email must be valid")
            cleaned['parent2_email'] = email2
            cleaned['parent2_phone'] = check_phone('parent2_phone', 'Parent 2')

        primary_payer = data.get('primary_payer') or 'parent1'
        if primary_payer not in ('parent1', 'parent2'):
            errors.append("Primary payer must be parent1 or parent2")
        elif primary_payer == 'parent2' and not provided:
            errors.append("Parent 2 must be provided to be the primary payer")
        cleaned['primary_payer'] = primary_payer

        family_reference_id = data.get('family_reference_id')
        try:
            cleaned['family_reference_id'] = uuid.UUID(str(family_reference_id))
        except (TypeError, ValueError):
            errors.append("Family reference ID must be a valid UUID")

        if errors:
            raise ValidationError(
                "; ".join(errors),
                code='INVALID_REGISTRATION',
                params={'errors': errors}
            )

        return cleaned

    @staticmethod
    @transaction.atomic
    def create_family_registration(data):
        """
        Register a Dugsi family: parents, billing account for the payer,
        children with DUGSI profiles and batch-less enrollments, and the
        guardian links between them.

        Parents are matched by email/phone so returning families reuse
        their records; children are matched by name and date of birth.

        Args:
            data (dict): See validate_family_registration

        Returns:
            dict: {
                'family_reference_id': UUID,
                'parents': [Person, ...],
                'payer': Person,
                'billing_account': BillingAccount,
                'profiles': [ProgramProfile, ...],
            }
        """
        from billing.services import BillingService

        cleaned = RegistrationService.validate_family_registration(data)
        family_reference_id = cleaned['family_reference_id']

        parent1, _ = PersonService.find_or_create_person(
            name=f"{cleaned['parent1_first_name']} {cleaned['parent1_last_name']}",
            email=cleaned['parent1_email'],
            phone=cleaned['parent1_phone'],
        )
        parents = [parent1]

        parent2 = None
        if cleaned['has_parent2']:
            parent2, _ = PersonService.find_or_create_person(
                name=f"{cleaned['parent2_first_name']} {cleaned['parent2_last_name']}",
                email=cleaned['parent2_email'],
                phone=cleaned['parent2_phone'],
            )
            if parent2.pk != parent1.pk:
                parents.append(parent2)

        payer = parent2 if cleaned['primary_payer'] == 'parent2' and parent2 else parent1

        billing_account = BillingService.create_or_update_billing_account(
            person=payer,
            account_type='DUGSI',
        )

        profiles = []
        for child in cleaned['children']:
            name = f"{child['first_name']} {child['last_name']}"
            date_of_birth = child.get('date_of_birth')

            person = Person.objects.filter(name__iexact=name, date_of_birth=date_of_birth).first()
            if not person:
                person = Person.objects.create(name=name, date_of_birth=date_of_birth)

            profile_fields = {
                'family_reference_id': family_reference_id,
                'gender': child.get('gender') or '',
                'grade_level': child.get('grade_level') or '',
                'school_name': child.get('school_name') or '',
                'health_info': child.get('health_info') or '',
            }

            profile = ProgramProfile.objects.filter(person=person, program='DUGSI_PROGRAM').first()
            if profile:
                for field, value in profile_fields.items():
                    setattr(profile, field, value)
                if profile.status == 'WITHDRAWN':
                    profile.status = 'REGISTERED'
                profile.save()
            else:
                profile = ProgramProfile.objects.create(
                    person=person,
                    program='DUGSI_PROGRAM',
                    status='REGISTERED',
                    **profile_fields
                )

            if not profile.get_active_enrollment():
                Enrollment.objects.create(
                    profile=profile,
                    batch=None,
                    status='REGISTERED',
                    start_date=get_center_today(),
                    reason='Dugsi family registration'
                )

            for parent in parents:
                GuardianService.link_guardian(
                    guardian=parent,
                    dependent=person,
                    role='PARENT',
                    is_primary_payer=parent.pk == payer.pk
                )

            profiles.append(profile)

        logger.info(
            f"Registered Dugsi family {family_reference_id}: "
            f"{len(parents)} parent(s), {len(profiles)} child(ren)"
        )

        return {
            'family_reference_id': family_reference_id,
            'parents': parents,
            'payer': payer,
            'billing_account': billing_account,
            'profiles': profiles,
        }


# =============================================================================
# MAHAD STUDENTS
# =============================================================================

class MahadStudentService:
    """Mahad (cohort-based, individually billed) students"""

    BILLING_FIELDS = ['graduation_status', 'payment_frequency', 'billing_type', 'payment_notes']

    @staticmethod
    @transaction.atomic
    def register_student(name, email=None, phone=None, date_of_birth=None, batch=None,
                         graduation_status='NON_GRADUATE', payment_frequency='MONTHLY',
                         billing_type='FULL_TIME', **profile_fields):
        """
        Register a Mahad student with billing details and a batch
        enrollment.

        Returns:
            tuple: (profile, enrollment)

        Raises:
            ValidationError: DUPLICATE_REGISTRATION when the email/phone
            already belongs to an actively enrolled Mahad student
        """
        from people.services import DuplicateDetectionService

        duplicate = DuplicateDetectionService.check_duplicate(email=email, phone=phone, program='MAHAD_PROGRAM')
        if duplicate['has_active_profile']:
            raise ValidationError(
                "A student with this email or phone is already registered",
                code='DUPLICATE_REGISTRATION',
                params={'duplicate_field': duplicate['duplicate_field']}
            )

        person = duplicate['existing_person']
        if person is None:
            person = PersonService.create_person_with_contact(
                name=name, email=email, phone=phone, date_of_birth=date_of_birth
            )

        return RegistrationService.create_program_profile_with_enrollment(
            person=person,
            program='MAHAD_PROGRAM',
            batch=batch,
            graduation_status=graduation_status,
            payment_frequency=payment_frequency,
            billing_type=billing_type,
            **profile_fields
        )

    @staticmethod
    def update_billing_fields(profile, **fields):
        """Update graduation status / frequency / billing type / notes"""
        changed = []
        for field in MahadStudentService.BILLING_FIELDS:
            if field in fields and getattr(profile, field) != fields[field]:
                setattr(profile, field, fields[field] or '')
                changed.append(field)

        if changed:
            profile.save()
            logger.info(f"Updated billing fields {changed} for {profile}")

        return changed

    @staticmethod
    @transaction.atomic
    def assign_to_batch(profile, batch):
        """
        Move the open enrollment to a batch (or open one in it).

        Returns:
            Enrollment
        """
        ValidationService.validate_enrollment(profile_id=profile.pk, batch_id=batch.pk if batch else None)

        enrollment = profile.get_active_enrollment()
        if enrollment:
            enrollment.batch = batch
            enrollment.save()
            return enrollment

        return Enrollment.objects.create(
            profile=profile,
            batch=batch,
            status='ENROLLED',
            start_date=get_center_today()
        )

    @staticmethod
    def withdraw(profile, reason=''):
        """Withdraw every open enrollment and the profile"""
        count = 0
        for enrollment in profile.enrollments.filter(open_enrollments_q()):
            EnrollmentService.update_enrollment_status(enrollment, 'WITHDRAWN', reason=reason)
            count += 1
        return count


# =============================================================================
# BATCHES
# =============================================================================

class BatchService:

    @staticmethod
    def create_batch(name, start_date=None, end_date=None):
        name = (name or '').strip()
        if not name:
            raise ValidationError("Batch name is required", code='INVALID_BATCH', params={})
        if Batch.objects.filter(name__iexact=name).exists():
            raise ValidationError(
                f"A batch named {name} already exists",
                code='DUPLICATE_BATCH',
                params={'name': name}
            )
        if start_date and end_date and end_date < start_date:
            raise ValidationError(
                "End date must be after start date",
                code='INVALID_BATCH_DATES',
                params={'start_date': str(start_date), 'end_date': str(end_date)}
            )
        return Batch.objects.create(name=name, start_date=start_date, end_date=end_date)

    @staticmethod
    def update_batch(batch, **fields):
        for field in ('name', 'start_date', 'end_date'):
            if field in fields:
                setattr(batch, field, fields[field])
        if batch.start_date and batch.end_date and batch.end_date < batch.start_date:
            raise ValidationError(
                "End date must be after start date",
                code='INVALID_BATCH_DATES',
                params={'start_date': str(batch.start_date), 'end_date': str(batch.end_date)}
            )
        batch.save()
        return batch

    @staticmethod
    def delete_batch(batch):
        """
        Raises:
            ValidationError: BATCH_HAS_STUDENTS
        """
        count = batch.enrollments.count()
        if count:
            raise ValidationError(
                f"Cannot delete batch with {count} enrollment(s)",
                code='BATCH_HAS_STUDENTS',
                params={'batch_id': str(batch.pk), 'count': count}
            )
        batch.delete()

    @staticmethod
    @transaction.atomic
    def assign_students(batch, profile_ids):
        """
        Returns:
            dict: {'assigned': int, 'failed': [{'profile_id', 'error'}]}
        """
        result = {'assigned': 0, 'failed': []}
        for profile in ProgramProfile.objects.filter(pk__in=profile_ids):
            try:
                MahadStudentService.assign_to_batch(profile, batch)
                result['assigned'] += 1
            except ValidationError as e:
                result['failed'].append({'profile_id': str(profile.pk), 'error': e.messages[0]})
        return result

    @staticmethod
    @transaction.atomic
    def transfer_students(from_batch, to_batch, profile_ids=None):
        """Move open enrollments between batches; returns the count moved"""
        enrollments = Enrollment.objects.filter(open_enrollments_q(), batch=from_batch)
        if profile_ids:
            enrollments = enrollments.filter(profile_id__in=profile_ids)
        moved = enrollments.update(batch=to_batch)
        logger.info(f"Transferred {moved} enrollment(s) from {from_batch} to {to_batch}")
        return moved


# =============================================================================
# ENROLLMENT STATUS
# =============================================================================

class EnrollmentService:

    @staticmethod
    @transaction.atomic
    def update_enrollment_status(enrollment, status, reason='', end_date=None):
        """
        Change an enrollment's status. Withdrawn and completed enrollments
        are closed (end_date defaults to today) and the profile follows.

        Returns:
            Enrollment
        """
        enrollment.status = status
        if reason:
            enrollment.reason = reason
        if status in ('WITHDRAWN', 'COMPLETED'):
            enrollment.end_date = end_date or get_center_today()
        elif end_date:
            enrollment.end_date = end_date
        enrollment.set_change_reason(reason)
        enrollment.save()

        profile = enrollment.profile
        if profile.status != status:
            profile.status = status
            profile.set_change_reason(reason)
            profile.save(update_fields=['status', 'updated_at', 'change_reason'])

        return enrollment


# =============================================================================
# ABANDONED ENROLLMENTS
# =============================================================================

def cleanup_abandoned_enrollments(now=None):
    """
    Withdraw Mahad registrations whose Stripe customer was created more
    than 24 hours ago and never started a subscription.

    A customer qualifies when its metadata has enrollmentPending == 'true',
    it has no Stripe subscription and no active/trialing subscription row.
    Its person's open enrollments are withdrawn and the customer metadata
    is marked abandoned.

    Returns:
        dict: {'checked', 'abandoned', 'cleaned', 'errors', 'details'}
    """
    from billing import stripe_client
    from billing.models import BillingAccount, ACTIVE_SUBSCRIPTION_STATUSES

    now = now or timezone.now()
    cutoff = int((now - timedelta(hours=24)).timestamp())

    customers = stripe_client.list_customers('MAHAD', created={'lt': cutoff}, limit=100)
    customer_list = customers['data']
    logger.info(f"Found {len(customer_list)} customers to check for abandonment")

    results = {'checked': 0, 'abandoned': 0, 'cleaned': 0, 'errors': 0, 'details': []}

    for customer in customer_list:
        results['checked'] += 1
        customer_id = customer['id']

        try:
            metadata = dict(customer.get('metadata') or {})
            if metadata.get('enrollmentPending') != 'true':
                continue

            subscriptions = stripe_client.list_subscriptions(customer_id, 'MAHAD', limit=1)
            if subscriptions['data']:
                continue

            accounts = [
                account for account in (
                    BillingAccount.find_by_customer(customer_id, 'MAHAD'),
                    BillingAccount.find_by_customer(customer_id, 'DUGSI'),
                ) if account
            ]

            if any(
                account.subscriptions.filter(status__in=ACTIVE_SUBSCRIPTION_STATUSES).exists()
                for account in accounts
            ):
                continue

            results['abandoned'] += 1
            logger.info(f"Found abandoned customer {customer_id} ({customer.get('email')})")

            if accounts:
                with transaction.atomic():
                    enrollments = Enrollment.objects.select_related('profile').filter(
                        open_enrollments_q(),
                        profile__person=accounts[0].person
                    )
                    for enrollment in enrollments:
                        EnrollmentService.update_enrollment_status(
                            enrollment,
                            'WITHDRAWN',
                            reason=ABANDONED_ENROLLMENT_REASON,
                            end_date=get_center_today()
                        )
                        log_billing_activity(
                            'ENROLLMENT_ABANDON',
                            target_object=enrollment.profile,
                            stripe_object_id=customer_id,
                            program=enrollment.profile.program,
                            notes=ABANDONED_ENROLLMENT_REASON,
                            is_automated=True,
                        )

            results['details'].append({
                'id': customer_id,
                'email': customer.get('email'),
                'name': customer.get('name'),
                'created': customer.get('created'),
                'metadata': metadata,
            })

            metadata.update({
                'enrollmentPending': 'false',
                'enrollmentAbandoned': 'true',
                'abandonedAt': now.isoformat(),
            })
            stripe_client.update_customer(customer_id, 'MAHAD', metadata=metadata)

            results['cleaned'] += 1

        except Exception as e:
            logger.error(f"Error processing customer {customer_id}: {e}", exc_info=True)
            results['errors'] += 1

    return results

# people/services.py

"""
People Operations

Person creation and lookup by contact, guardian links, duplicate
registration checks and sibling detection. Used by registration
(students.services), billing customer matching and the Dugsi family
screens.
"""

from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from django.core.exceptions import ValidationError
import logging

from people.models import Person, ContactPoint, GuardianRelationship, SiblingRelationship
from people.utils import normalize_email, normalize_phone, split_name

logger = logging.getLogger(__name__)

PHONE_CONTACT_TYPES = ['PHONE', 'WHATSAPP']


# =============================================================================
# PERSON SERVICE
# =============================================================================

class PersonService:
    """Create and find people by their contact details"""

    @staticmethod
    @transaction.atomic
    def create_person_with_contact(name, email=None, phone=None, date_of_birth=None):
        """
        Create a person with primary email/phone contact points.

        Args:
            name (str): Full name
            email (str, optional): Stored lower-case
            phone (str, optional): Any common US format; stored as E.164
            date_of_birth (date, optional)

        Returns:
            Person instance

        Raises:
            ValidationError: If the phone number cannot be normalized

        Example:
            parent = PersonService.create_person_with_contact(
                name='Hodan Ali',
                email='Hodan@Example.com',
                phone='612-555-0123',
            )
            parent.email  # 'hodan@example.com'
            parent.phone  # '+16125550123'
        """
        normalized_email = normalize_email(email)
        normalized_phone = None

        if phone:
            normalized_phone = normalize_phone(phone)
            if not normalized_phone:
                raise ValidationError(
                    f"Invalid phone number: {phone}",
                    code='INVALID_PHONE',
                    params={'phone': phone}
                )

        person = Person.objects.create(
            name=' '.join(name.split()),
            date_of_birth=date_of_birth
        )

        if normalized_email:
            ContactPoint.objects.create(
                person=person,
                contact_type='EMAIL',
                value=normalized_email,
                is_primary=True
            )

        if normalized_phone:
            ContactPoint.objects.create(
                person=person,
                contact_type='PHONE',
                value=normalized_phone,
                is_primary=True
            )

        logger.info(f"Created person {person.id} ({person.name})")

        return person

    @staticmethod
    def find_person_by_contact(email=None, phone=None):
        """
        Find a person through an active email or phone contact point.
        Email is checked first.

        Returns:
            Person instance or None
        """
        normalized_email = normalize_email(email)
        if normalized_email:
            contact = ContactPoint.objects.select_related('person').filter(
                contact_type='EMAIL',
                value=normalized_email,
                is_active=True
            ).order_by('-is_primary', 'created_at').first()
            if contact:
                return contact.person

        normalized_phone = normalize_phone(phone) if phone else None
        if normalized_phone:
            contact = ContactPoint.objects.select_related('person').filter(
                contact_type__in=PHONE_CONTACT_TYPES,
                value=normalized_phone,
                is_active=True
            ).order_by('-is_primary', 'created_at').first()
            if contact:
                return contact.person

        return None

    @staticmethod
    @transaction.atomic
    def find_or_create_person(name, email=None, phone=None, date_of_birth=None):
        """
        Reuse the person owning this email/phone, otherwise create one.
        Missing contact points are added to a reused person.

        Returns:
            tuple: (Person, created)
        """
        person = PersonService.find_person_by_contact(email=email, phone=phone)
        if not person:
            return PersonService.create_person_with_contact(
                name=name, email=email, phone=phone, date_of_birth=date_of_birth
            ), True

        if email:
            PersonService.add_contact_point(person, 'EMAIL', email)
        if phone:
            PersonService.add_contact_point(person, 'PHONE', phone)

        return person, False

    @staticmethod
    def add_contact_point(person, contact_type, value, is_primary=None):
        """
        Add (or reactivate) a contact point. The first active contact of a
        type becomes primary unless is_primary is given.

        Returns:
            ContactPoint instance
        """
        if contact_type == 'EMAIL':
            normalized = normalize_email(value)
        elif contact_type in PHONE_CONTACT_TYPES:
            normalized = normalize_phone(value)
        else:
            normalized = (value or '').strip()

        if not normalized:
            raise ValidationError(
                f"Invalid {contact_type.lower()} value: {value}",
                code='INVALID_CONTACT',
                params={'contact_type': contact_type, 'value': value}
            )

        if is_primary is None:
            is_primary = not person.contact_points.filter(
                contact_type=contact_type, is_active=True
            ).exists()

        contact, created = ContactPoint.objects.get_or_create(
            person=person,
            contact_type=contact_type,
            value=normalized,
            defaults={'is_primary': is_primary}
        )

        if not created and not contact.is_active:
            contact.is_active = True
            contact.deactivated_at = None
            contact.save(update_fields=['is_active', 'deactivated_at', 'updated_at'])

        return contact

    @staticmethod
    @transaction.atomic
    def update_contact(person, contact_type, value):
        """
        Replace a person's primary contact of a type. The previous primary
        contact is deactivated.
        """
        current = person.get_primary_contact(contact_type)
        contact = PersonService.add_contact_point(person, contact_type, value, is_primary=True)

        if current and current.pk != contact.pk:
            current.is_primary = False
            current.save(update_fields=['is_primary', 'updated_at'])
            current.deactivate()

        if not contact.is_primary:
            contact.is_primary = True
            contact.save(update_fields=['is_primary', 'updated_at'])

        return contact


# =============================================================================
# GUARDIAN SERVICE
# =============================================================================

class GuardianService:
    """Guardian <-> dependent links"""

    @staticmethod
    @transaction.atomic
    def link_guardian(guardian, dependent, role='PARENT', is_primary_payer=False, notes=''):
        """
        Link a guardian to a dependent, reactivating an existing link.

        Returns:
            GuardianRelationship instance

        Raises:
            ValidationError: SELF_GUARDIAN, GUARDIAN_NOT_FOUND, DEPENDENT_NOT_FOUND
        """
        existing = GuardianRelationship.objects.filter(
            guardian=guardian, dependent=dependent, role=role
        ).first()

        if existing:
            existing.is_active = True
            existing.end_date = None
            existing.is_primary_payer = is_primary_payer
            existing.save()
            return existing

        from students.validation import ValidationService
        ValidationService.validate_guardian_relationship(guardian.pk, dependent.pk, role)

        relationship = GuardianRelationship.objects.create(
            guardian=guardian,
            dependent=dependent,
            role=role,
            is_primary_payer=is_primary_payer,
            notes=notes
        )

        logger.info(f"Linked guardian {guardian.id} to dependent {dependent.id} as {role}")

        return relationship

    @staticmethod
    @transaction.atomic
    def set_primary_payer(guardian, dependents):
        """
        Make guardian the only primary payer for each dependent.

        Returns:
            int: Number of dependents updated
        """
        updated = 0
        for dependent in dependents:
            GuardianRelationship.objects.filter(
                dependent=dependent, is_active=True
            ).exclude(guardian=guardian).update(is_primary_payer=False)

            updated += GuardianRelationship.objects.filter(
                dependent=dependent, guardian=guardian, is_active=True
            ).update(is_primary_payer=True)

        return updated

    @staticmethod
    def end_relationship(relationship, end_date=None):
        relationship.is_active = False
        relationship.end_date = end_date or timezone.localdate()
        relationship.is_primary_payer = False
        relationship.save()
        return relationship


# =============================================================================
# DUPLICATE DETECTION
# =============================================================================

class DuplicateDetectionService:
    """Detect registrations that reuse an existing person's email/phone"""

    @staticmethod
    def check_duplicate(email=None, phone=None, program=None):
        """
        Check whether an email/phone already belongs to someone.

        Returns:
            dict:
                - is_duplicate (bool)
                - duplicate_field ('email' | 'phone' | 'both' | None)
                - existing_person (Person | None)
                - has_active_profile (bool): profile in `program` with an
                  open enrollment
                - active_profile (dict | None): id, program,
                  enrollment_count, created_at
        """
        result = {
            'is_duplicate': False,
            'duplicate_field': None,
            'existing_person': None,
            'has_active_profile': False,
            'active_profile': None,
        }

        if not email and not phone:
            return result

        logger.info(f"Checking for duplicate registration (program={program})")

        existing_person = PersonService.find_person_by_contact(email=email, phone=phone)
        if not existing_person:
            return result

        from students.models import ProgramProfile

        active_profile = None
        if program:
            active_profile = ProgramProfile.objects.filter(
                person=existing_person,
                program=program,
                enrollments__end_date__isnull=True,
            ).exclude(
                enrollments__status='WITHDRAWN'
            ).distinct().first()

        result.update({
            'is_duplicate': True,
            'duplicate_field': DuplicateDetectionService.determine_duplicate_field(
                existing_person, email, phone
            ),
            'existing_person': existing_person,
            'has_active_profile': active_profile is not None,
        })

        if active_profile:
            result['active_profile'] = {
                'id': active_profile.id,
                'program': active_profile.program,
                'enrollment_count': active_profile.enrollments.count(),
                'created_at': active_profile.created_at,
            }

        return result

    @staticmethod
    def determine_duplicate_field(person, email=None, phone=None):
        contacts = list(person.contact_points.filter(is_active=True))
        normalized_email = normalize_email(email)
        normalized_phone = normalize_phone(phone) if phone else None

        email_matches = bool(normalized_email) and any(
            c.contact_type == 'EMAIL' and c.value == normalized_email for c in contacts
        )
        phone_matches = bool(normalized_phone) and any(
            c.contact_type in PHONE_CONTACT_TYPES and c.value == normalized_phone for c in contacts
        )

        if email_matches and phone_matches:
            return 'both'
        if phone_matches:
            return 'phone'
        return 'email'

    @staticmethod
    def is_email_registered(email, program):
        result = DuplicateDetectionService.check_duplicate(email=email, program=program)
        return result['is_duplicate'] and result['has_active_profile']

    @staticmethod
    def is_phone_registered(phone, program):
        result = DuplicateDetectionService.check_duplicate(phone=phone, program=program)
        return result['is_duplicate'] and result['has_active_profile']


# =============================================================================
# SIBLING DETECTION
# =============================================================================

class SiblingDetector:
    """
    Suggest likely siblings for a person.

    Signals and confidence:
        GUARDIAN_MATCH  0.9  shares an active guardian
        CONTACT_MATCH   0.8  shares an email/phone value
        NAME_MATCH      0.5  shares a last name (0.7 if born < 5 years apart)

    Pairs that already have a SiblingRelationship are skipped. Each
    candidate appears once, with its strongest signal.
    """

    GUARDIAN_CONFIDENCE = 0.9
    CONTACT_CONFIDENCE = 0.8
    NAME_CONFIDENCE = 0.5
    NAME_AND_AGE_CONFIDENCE = 0.7
    SIMILAR_AGE_YEARS = 5

    @staticmethod
    def detect_potential_siblings(person_id):
        """
        Returns:
            list of dicts sorted by confidence (highest first):
                {'person': Person, 'method': str, 'confidence': float, 'reasons': [str]}

        Raises:
            ValidationError: PERSON_NOT_FOUND
        """
        person = Person.objects.filter(pk=person_id).first()
        if not person:
            raise ValidationError(
                f"Person not found: {person_id}",
                code='PERSON_NOT_FOUND',
                params={'person_id': str(person_id)}
            )

        related_ids = set()
        for rel in SiblingRelationship.objects.filter(Q(person1=person) | Q(person2=person)):
            related_ids.add(rel.person2_id if rel.person1_id == person.pk else rel.person1_id)

        candidates = {}

        def consider(other, method, confidence, reason):
            if other.pk == person.pk or other.pk in related_ids:
                return
            current = candidates.get(other.pk)
            if current is None:
                candidates[other.pk] = {
                    'person': other,
                    'method': method,
                    'confidence': confidence,
                    'reasons': [reason],
                }
                return
            current['reasons'].append(reason)
            if confidence > current['confidence']:
                current['method'] = method
                current['confidence'] = confidence

        # Shared guardians
        guardian_ids = list(GuardianRelationship.objects.filter(
            dependent=person, is_active=True
        ).values_list('guardian_id', flat=True))

        if guardian_ids:
            shared = GuardianRelationship.objects.select_related('dependent', 'guardian').filter(
                guardian_id__in=guardian_ids,
                is_active=True
            ).exclude(dependent=person)
            for rel in shared:
                consider(rel.dependent, 'GUARDIAN_MATCH', SiblingDetector.GUARDIAN_CONFIDENCE,
                         f"Shared guardian: {rel.guardian.name}")

        # Shared contact values
        values = list(person.contact_points.values_list('value', flat=True))
        if values:
            matches = ContactPoint.objects.select_related('person').filter(
                value__in=values
            ).exclude(person=person)
            for match in matches:
                consider(match.person, 'CONTACT_MATCH', SiblingDetector.CONTACT_CONFIDENCE,
                         f"Shared {match.contact_type.lower()}: {match.value}")

        # Shared last name
        _, last_name = split_name(person.name)
        if last_name:
            for match in Person.objects.filter(name__icontains=last_name).exclude(pk=person.pk):
                if split_name(match.name)[1].lower() != last_name.lower():
                    continue

                confidence = SiblingDetector.NAME_CONFIDENCE
                reason = f"Shared last name: {last_name}"

                if person.date_of_birth and match.date_of_birth:
                    years_apart = abs((person.date_of_birth - match.date_of_birth).days) / 365
                    if years_apart < SiblingDetector.SIMILAR_AGE_YEARS:
                        confidence = SiblingDetector.NAME_AND_AGE_CONFIDENCE
                        reason += f" (similar age, {round(years_apart)} years apart)"

                consider(match, 'NAME_MATCH', confidence, reason)

        return sorted(candidates.values(), key=lambda c: c['confidence'], reverse=True)


class SiblingRelationshipService:
    """Create, verify and remove sibling relationships"""

    @staticmethod
    @transaction.atomic
    def create_relationship(person_a_id, person_b_id, detection_method='MANUAL',
                            confidence=None, verified_by='', notes=''):
        """
        Create a sibling pair (ordered person1 < person2).

        Raises:
            ValidationError: SELF_SIBLING, PERSON_NOT_FOUND,
            DUPLICATE_SIBLING_RELATIONSHIP
        """
        from students.validation import ValidationService

        first_id, second_id = ValidationService.validate_sibling_relationship(person_a_id, person_b_id)

        relationship = SiblingRelationship.objects.create(
            person1_id=first_id,
            person2_id=second_id,
            detection_method=detection_method,
            confidence=confidence,
            verified_by=verified_by,
            verified_at=timezone.now() if verified_by else None,
            notes=notes
        )

        logger.info(f"Created sibling relationship {first_id} ↔ {second_id} ({detection_method})")

        return relationship

    @staticmethod
    def verify_relationship(relationship_id, verified_by):
        relationship = SiblingRelationship.objects.get(pk=relationship_id)
        relationship.verified_by = verified_by
        relationship.verified_at = timezone.now()
        relationship.is_active = True
        relationship.save()
        return relationship

    @staticmethod
    def remove_relationship(relationship_id):
        relationship = SiblingRelationship.objects.get(pk=relationship_id)
        relationship.is_active = False
        relationship.save()
        return relationship

    @staticmethod
    def get_siblings(person):
        """Active siblings of a person"""
        rels = SiblingRelationship.objects.filter(
            Q(person1=person) | Q(person2=person),
            is_active=True
        )
        sibling_ids = [r.person2_id if r.person1_id == person.pk else r.person1_id for r in rels]
        return Person.objects.filter(pk__in=sibling_ids)

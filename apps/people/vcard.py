# people/vcard.py

"""
vCard 3.0 contact exports

Mahad students (optionally one batch) and Dugsi parents as a single .vcf
file that phones can import in one go. Contacts without both phone and
email are skipped. Dugsi parents are de-duplicated by email across
families.
"""

from django.db.models import Prefetch
from django.utils.text import slugify
import logging
import re

from core.utils import get_center_today

logger = logging.getLogger(__name__)

ORGANIZATION = 'Irshad Center'
DUGSI_SUFFIX = 'IrshadDugsi'
CARD_SEPARATOR = '\r\n'


def escape_vcard_value(value):
    return (
        (value or '')
        .replace('\\', '\\\\')
        .replace(';', '\\;')
        .replace(',', '\\,')
        .replace('\n', '\\n')
    )


def format_phone_for_vcard(phone):
    """'612-555-0123' -> '+16125550123'; other lengths keep their digits"""
    if not phone:
        return None
    digits = re.sub(r'\D', '', phone)
    if not digits:
        return None
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


def generate_vcard(display_name, phone=None, email=None, organization=ORGANIZATION, note=None,
                   first_name=None, last_name=''):
    lines = [
        'BEGIN:VCARD',
        'VERSION:3.0',
        f"N:{escape_vcard_value(last_name)};{escape_vcard_value(first_name or display_name)};;;",
        f"FN:{escape_vcard_value(display_name)}",
    ]
    if phone:
        lines.append(f"TEL;TYPE=CELL:{phone}")
    if email:
        lines.append(f"EMAIL:{escape_vcard_value(email)}")
    if organization:
        lines.append(f"ORG:{escape_vcard_value(organization)}")
    if note:
        lines.append(f"NOTE:{escape_vcard_value(note)}")
    lines.append('END:VCARD')
    return CARD_SEPARATOR.join(lines)


def _date_string():
    return get_center_today().isoformat()


# =============================================================================
# EXPORTS
# =============================================================================

def export_mahad_contacts(batch=None):
    """
    Mahad students who have not withdrawn, named "<student> <batch>".

    Returns:
        dict: {'content', 'filename', 'exported', 'skipped'}
    """
    from students.models import Enrollment, ProgramProfile, open_enrollments_q

    profiles = ProgramProfile.objects.filter(
        program='MAHAD_PROGRAM'
    ).exclude(status='WITHDRAWN').select_related('person').prefetch_related(
        'person__contact_points',
        Prefetch(
            'enrollments',
            queryset=Enrollment.objects.filter(open_enrollments_q()).select_related('batch'),
            to_attr='open_enrollments'
        )
    ).order_by('person__name')

    if batch is not None:
        profiles = profiles.filter(
            pk__in=Enrollment.objects.filter(open_enrollments_q(), batch=batch).values('profile_id')
        )

    cards = []
    skipped = 0
    for profile in profiles:
        person = profile.person
        phone = format_phone_for_vcard(person.phone)
        email = person.email
        if not phone and not email:
            skipped += 1
            continue

        batch_name = batch.name if batch is not None else next(
            (e.batch.name for e in profile.open_enrollments if e.batch), ''
        )
        display_name = f"{person.name} {batch_name}".strip()
        cards.append(generate_vcard(display_name, phone=phone, email=email))

    if batch is not None:
        filename = f"mahad-{slugify(batch.name)}-contacts-{_date_string()}.vcf"
    else:
        filename = f"mahad-all-contacts-{_date_string()}.vcf"

    logger.info(f"Mahad vCard export: {len(cards)} contact(s), {skipped} skipped")

    return {
        'content': CARD_SEPARATOR.join(cards),
        'filename': filename,
        'exported': len(cards),
        'skipped': skipped,
    }


def export_dugsi_parent_contacts():
    """
    One card per Dugsi parent, named "<parent> IrshadDugsi" with the
    family's children in the note.

    Returns:
        dict: {'content', 'filename', 'exported', 'skipped'}
    """
    from people.models import GuardianRelationship
    from students.models import ProgramProfile

    families = {}
    for profile in ProgramProfile.objects.filter(
        program='DUGSI_PROGRAM', family_reference_id__isnull=False
    ).select_related('person').order_by('family_reference_id', 'person__name'):
        families.setdefault(profile.family_reference_id, []).append(profile.person)

    seen_emails = set()
    cards = []
    skipped = 0

    for children in families.values():
        links = GuardianRelationship.objects.filter(
            dependent__in=children, is_active=True
        ).select_related('guardian').order_by('created_at')

        parents = []
        for link in links:
            if link.guardian not in parents:
                parents.append(link.guardian)

        children_names = ', '.join(child.name for child in children)

        for parent in parents:
            email = (parent.email or '').lower() or None
            phone = format_phone_for_vcard(parent.phone)

            if (email and email in seen_emails) or (not email and not phone):
                skipped += 1
                continue
            if email:
                seen_emails.add(email)

            cards.append(generate_vcard(
                f"{parent.name or 'Parent'} {DUGSI_SUFFIX}",
                phone=phone,
                email=email,
                note=f"Children: {children_names}",
            ))

    logger.info(f"Dugsi parent vCard export: {len(cards)} contact(s), {skipped} skipped")

    return {
        'content': CARD_SEPARATOR.join(cards),
        'filename': f"dugsi-parent-contacts-{_date_string()}.vcf",
        'exported': len(cards),
        'skipped': skipped,
    }

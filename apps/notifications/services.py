# notifications/services.py

"""
WhatsApp messaging services.

Each send validates the phone, blocks the same template going to the same
number twice within an hour, calls the Cloud API and logs a
WhatsAppMessage row as 'sent' or 'failed'. Sends return a result dict
rather than raising so staff actions that trigger them carry on.
"""

from django.core.exceptions import ImproperlyConfigured
from django.db import DatabaseError, close_old_connections, transaction
from django.utils import timezone
from datetime import timedelta
import re
import threading
import time
import logging

import requests

from core.utils import format_money, from_unix_timestamp, localize_datetime

from .models import WhatsAppMessage
from .whatsapp_client import (
    WhatsAppAPIError,
    create_whatsapp_client,
    format_phone_for_whatsapp,
    is_valid_phone_number,
)

logger = logging.getLogger(__name__)

DUPLICATE_WINDOW_HOURS = 1
BULK_SEND_DELAY_SECONDS = 0.1
CHECKOUT_SESSION_RE = re.compile(r'cs_[a-zA-Z0-9_]+')

TEMPLATES = {
    'MAHAD_PAYMENT_LINK': 'mahad_payment_link',
    'DUGSI_PAYMENT_LINK': 'dugsi_payment_link',
    'MAHAD_PAYMENT_CONFIRMED': 'mahad_payment_confirmed',
    'DUGSI_PAYMENT_CONFIRMED': 'dugsi_payment_confirmed',
    'MAHAD_PAYMENT_REMINDER': 'mahad_payment_reminder',
    'DUGSI_PAYMENT_REMINDER': 'dugsi_payment_reminder',
    'DUGSI_CLASS_ANNOUNCEMENT': 'dugsi_class_announcement',
}

SEND_ERRORS = (WhatsAppAPIError, requests.RequestException, ImproperlyConfigured, ValueError)


def _template_for(kind, program):
    prefix = 'DUGSI' if program == 'DUGSI_PROGRAM' else 'MAHAD'
    return TEMPLATES[f"{prefix}_{kind}"]


def _first_name(name):
    return (name or '').split(' ')[0] or name or ''


def _format_date(value):
    if hasattr(value, 'hour'):
        value = localize_datetime(value)
    return value.strftime('%b %d, %Y').replace(' 0', ' ')


class WhatsAppService:

    @staticmethod
    def has_recent_message(phone_number, template_name, within_hours=DUPLICATE_WINDOW_HOURS):
        cutoff = timezone.now() - timedelta(hours=within_hours)
        return WhatsAppMessage.objects.filter(
            phone_number=phone_number,
            template_name=template_name,
            created_at__gte=cutoff,
            status__in=['sent', 'delivered', 'read'],
        ).exists()

    @staticmethod
    def _send_template(phone, template_name, program, recipient_type, message_type,
                       body_params=None, button_params=None, person=None, family_id='',
                       metadata=None, check_duplicate=True):
        """
        Shared send path.

        Returns:
            dict: {'success': bool, 'message_id': str | None, 'error': str | None}
        """
        if not phone or not is_valid_phone_number(phone):
            logger.warning(f"Invalid phone number for WhatsApp: {phone!r} ({template_name})")
            return {'success': False, 'message_id': None, 'error': 'Invalid phone number format'}

        formatted_phone = format_phone_for_whatsapp(phone)

        if check_duplicate and WhatsAppService.has_recent_message(formatted_phone, template_name):
            logger.warning(f"Duplicate WhatsApp message blocked: {template_name} to {formatted_phone}")
            return {'success': False, 'message_id': None, 'error': 'Message already sent within the last hour'}

        row = {
            'phone_number': formatted_phone,
            'template_name': template_name,
            'program': program,
            'recipient_type': recipient_type,
            'person': person,
            'family_id': family_id or '',
            'message_type': message_type,
            'metadata': metadata or {},
        }

        try:
            client = create_whatsapp_client()
            response = client.send_template(
                formatted_phone,
                template_name,
                'en',
                body_params or [],
                button_params
            )
        except SEND_ERRORS as e:
            logger.error(f"Failed to send WhatsApp {template_name} to {formatted_phone}: {e}", exc_info=True)
            WhatsAppMessage.objects.create(
                status='failed',
                failed_at=timezone.now(),
                failure_reason=str(e),
                **row
            )
            return {'success': False, 'message_id': None, 'error': str(e)}

        messages = response.get('messages') or []
        message_id = messages[0].get('id') if messages else None

        WhatsAppMessage.objects.create(
            wa_message_id=message_id,
            status='sent',
            sent_at=timezone.now(),
            **row
        )

        logger.info(f"WhatsApp {template_name} sent to {formatted_phone} ({message_id})")
        return {'success': True, 'message_id': message_id, 'error': None}

    # =========================================================================
    # BILLING MESSAGES
    # =========================================================================

    @staticmethod
    def send_payment_link(phone, parent_name, amount_cents, child_count, payment_url,
                          program='DUGSI_PROGRAM', person=None, family_id=''):
        """
        Send a Stripe checkout link. The checkout session id (cs_...) is the
        template button's URL suffix.

        Body params: parent first name, amount ($1,234.00), child count.
        """
        match = CHECKOUT_SESSION_RE.search(payment_url or '')
        if not match:
            logger.warning(f"Invalid Stripe checkout URL - no session ID found: {payment_url}")
            return {'success': False, 'message_id': None, 'error': 'Invalid payment URL format'}

        return WhatsAppService._send_template(
            phone,
            _template_for('PAYMENT_LINK', program),
            program,
            'PARENT',
            'TRANSACTIONAL',
            body_params=[_first_name(parent_name), format_money(amount_cents), str(child_count)],
            button_params=[match.group(0)],
            person=person,
            family_id=family_id,
            metadata={
                'parent_name': parent_name,
                'amount': amount_cents,
                'child_count': child_count,
                'payment_url': payment_url,
            },
        )

    @staticmethod
    def send_payment_confirmation(phone, parent_name, amount_cents, next_payment_date, student_names,
                                  program='DUGSI_PROGRAM', person=None, family_id=''):
        return WhatsAppService._send_template(
            phone,
            _template_for('PAYMENT_CONFIRMED', program),
            program,
            'PARENT',
            'NOTIFICATION',
            body_params=[
                _first_name(parent_name),
                format_money(amount_cents),
                _format_date(next_payment_date),
                ', '.join(student_names),
            ],
            person=person,
            family_id=family_id,
            metadata={
                'parent_name': parent_name,
                'amount': amount_cents,
                'next_payment_date': next_payment_date.isoformat(),
                'student_names': list(student_names),
            },
        )

    @staticmethod
    def send_payment_reminder(phone, parent_name, amount_cents, due_date, billing_url,
                              program='DUGSI_PROGRAM', person=None, family_id=''):
        """The last path segment of billing_url is the button URL suffix"""
        suffix = (billing_url or '').rstrip('/').split('/')[-1]

        return WhatsAppService._send_template(
            phone,
            _template_for('PAYMENT_REMINDER', program),
            program,
            'PARENT',
            'REMINDER',
            body_params=[_first_name(parent_name), format_money(amount_cents), _format_date(due_date)],
            button_params=[suffix] if suffix else None,
            person=person,
            family_id=family_id,
            metadata={
                'parent_name': parent_name,
                'amount': amount_cents,
                'due_date': due_date.isoformat(),
                'billing_url': billing_url,
            },
        )

    # =========================================================================
    # ANNOUNCEMENTS
    # =========================================================================

    @staticmethod
    def send_class_announcement(phone, message, program='DUGSI_PROGRAM', recipient_type='PARENT',
                                person=None, family_id=''):
        return WhatsAppService._send_template(
            phone,
            TEMPLATES['DUGSI_CLASS_ANNOUNCEMENT'],
            program,
            recipient_type,
            'ANNOUNCEMENT',
            body_params=[message],
            person=person,
            family_id=family_id,
            metadata={'message': message},
            check_duplicate=False,
        )

    @staticmethod
    def send_bulk_announcement(recipients, message, program='DUGSI_PROGRAM', recipient_type='PARENT',
                               delay=BULK_SEND_DELAY_SECONDS):
        """
        Args:
            recipients (list of dict): phone, and optionally person, family_id

        Returns:
            dict: total, sent, failed, skipped, results
        """
        results = []
        sent = failed = skipped = 0

        for recipient in recipients:
            phone = recipient.get('phone')
            if not phone:
                skipped += 1
                continue

            try:
                with transaction.atomic():
                    result = WhatsAppService.send_class_announcement(
                        phone,
                        message,
                        program=program,
                        recipient_type=recipient_type,
                        person=recipient.get('person'),
                        family_id=recipient.get('family_id') or '',
                    )
            except DatabaseError as e:
                logger.error(f"Could not log announcement to {phone}: {e}", exc_info=True)
                result = {'success': False, 'message_id': None, 'error': str(e)}
            results.append({'phone': phone, **result})

            if result['success']:
                sent += 1
            else:
                failed += 1

            if delay:
                time.sleep(delay)

        logger.info(
            f"Bulk announcement completed: {len(recipients)} recipients, "
            f"{sent} sent, {failed} failed, {skipped} skipped"
        )

        return {
            'total': len(recipients),
            'sent': sent,
            'failed': failed,
            'skipped': skipped,
            'results': results,
        }

    @staticmethod
    def _run_bulk_announcement(recipients, message, program, recipient_type):
        try:
            WhatsAppService.send_bulk_announcement(recipients, message, program, recipient_type)
        except Exception:
            logger.error("Background announcement run failed", exc_info=True)
        finally:
            close_old_connections()

    @staticmethod
    def queue_bulk_announcement(recipients, message, program='DUGSI_PROGRAM', recipient_type='PARENT'):
        """
        Send an announcement on a background thread once the current
        transaction commits, so the request does not wait on the per-send delay.

        Returns:
            int: Number of recipients queued
        """
        def start():
            threading.Thread(
                target=WhatsAppService._run_bulk_announcement,
                args=(list(recipients), message, program, recipient_type),
                name='whatsapp-announcement',
                daemon=True,
            ).start()

        transaction.on_commit(start)
        logger.info(f"Queued announcement for {len(recipients)} recipient(s)")
        return len(recipients)

    # =========================================================================
    # STATUS WEBHOOK
    # =========================================================================

    @staticmethod
    def update_message_status(wa_message_id, status, timestamp=None, failure_reason=''):
        """
        Apply a delivery status from the webhook.

        Returns:
            bool: whether a logged message matched
        """
        message = WhatsAppMessage.objects.filter(wa_message_id=wa_message_id).first()
        if not message:
            logger.info(f"Status {status} for unknown WhatsApp message {wa_message_id}")
            return False

        try:
            when = from_unix_timestamp(timestamp) or timezone.now()
        except (TypeError, ValueError):
            when = timezone.now()

        message.status = status
        if status == 'sent':
            message.sent_at = message.sent_at or when
        elif status == 'delivered':
            message.delivered_at = when
        elif status == 'read':
            message.read_at = when
        elif status == 'failed':
            message.failed_at = when
            message.failure_reason = failure_reason or message.failure_reason

        message.save()
        return True

    @staticmethod
    def process_status_webhook(payload):
        """
        Walk entry[].changes[].value.statuses[] of a Cloud API webhook.

        Returns:
            int: statuses applied
        """
        valid = {code for code, _ in WhatsAppMessage.STATUS_CHOICES}
        updated = 0

        for entry in payload.get('entry') or []:
            for change in entry.get('changes') or []:
                for status in (change.get('value') or {}).get('statuses') or []:
                    if status.get('status') not in valid:
                        continue
                    errors = status.get('errors') or []
                    reason = '; '.join(
                        e.get('message') or e.get('title') or str(e.get('code')) for e in errors
                    )
                    if WhatsAppService.update_message_status(
                        status.get('id'),
                        status['status'],
                        status.get('timestamp'),
                        reason
                    ):
                        updated += 1

        return updated


def get_announcement_recipients(dugsi_class=None):
    """
    Guardians of active Dugsi children, one entry per guardian.
    Limited to one class's seated children when dugsi_class is given.
    """
    from students.models import ProgramProfile

    profiles = ProgramProfile.objects.filter(
        program='DUGSI_PROGRAM',
        status__in=['REGISTERED', 'ENROLLED']
    ).select_related('person')

    if dugsi_class is not None:
        profiles = profiles.filter(
            class_enrollment__dugsi_class=dugsi_class,
            class_enrollment__is_active=True
        )

    recipients = {}
    for profile in profiles:
        for guardian in profile.person.get_active_guardians():
            if guardian.pk in recipients:
                continue
            recipients[guardian.pk] = {
                'phone': guardian.phone,
                'person': guardian,
                'family_id': str(profile.family_reference_id or ''),
            }

    return list(recipients.values())

# notifications/whatsapp_client.py

"""
WhatsApp Cloud API client.

Phone numbers go to the API as digits with the country code and no '+'.
Business-initiated messages must use approved templates; free-form text
and buttons only work inside the 24 hour customer service window.
"""

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import hashlib
import hmac
import re
import logging

import requests

logger = logging.getLogger(__name__)

NON_DIGITS = re.compile(r'\D')


class WhatsAppAPIError(Exception):
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self.payload = payload or {}
        super().__init__(f"WhatsApp API error: {status_code} - {self.payload}")


# =============================================================================
# PHONE & SIGNATURE HELPERS
# =============================================================================

def format_phone_for_whatsapp(phone):
    """
    '(612) 555-0123' -> '16125550123'

    Raises:
        ValueError: fewer than 10 or more than 15 digits
    """
    digits = NON_DIGITS.sub('', phone or '')

    if len(digits) == 10:
        return f"1{digits}"
    if 11 <= len(digits) <= 15:
        return digits

    raise ValueError(f"Invalid phone number format: {phone}")


def is_valid_phone_number(phone):
    digits = NON_DIGITS.sub('', phone or '')
    return 10 <= len(digits) <= 15


def verify_webhook_signature(payload, signature, app_secret):
    """Check X-Hub-Signature-256 ('sha256=<hex hmac>') in constant time"""
    if not signature or not app_secret:
        return False

    if isinstance(payload, str):
        payload = payload.encode('utf-8')

    expected = 'sha256=' + hmac.new(app_secret.encode('utf-8'), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


# =============================================================================
# CLIENT
# =============================================================================

class WhatsAppClient:

    def __init__(self, phone_number_id, access_token, api_version=None, base_url=None, timeout=None):
        config = getattr(settings, 'WHATSAPP', {})
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.api_version = api_version or config.get('API_VERSION', 'v21.0')
        self.base_url = base_url or config.get('API_BASE_URL', 'https://graph.facebook.com')
        self.timeout = timeout or config.get('TIMEOUT', 15)

    def _post(self, endpoint, body):
        url = f"{self.base_url}/{self.api_version}/{self.phone_number_id}{endpoint}"

        response = requests.post(
            url,
            headers={
                'Authorization': f"Bearer {self.access_token}",
                'Content-Type': 'application/json',
            },
            json=body,
            timeout=self.timeout
        )

        if not response.ok:
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            raise WhatsAppAPIError(response.status_code, payload)

        return response.json()

    def _message(self, to, message_type, content):
        body = {
            'messaging_product': 'whatsapp',
            'recipient_type': 'individual',
            'to': to,
            'type': message_type,
        }
        body[message_type] = content
        return self._post('/messages', body)

    def send_template(self, to, template_name, language_code='en', body_params=None, button_params=None):
        """
        Send an approved template.

        Args:
            to (str): Phone in WhatsApp format
            template_name (str): Approved template
            body_params (list): Values for {{1}}, {{2}}, ...
            button_params (list): URL suffix for the first button
        """
        components = []
        if body_params:
            components.append({
                'type': 'body',
                'parameters': [{'type': 'text', 'text': str(p)} for p in body_params],
            })
        if button_params:
            components.append({
                'type': 'button',
                'sub_type': 'url',
                'index': 0,
                'parameters': [{'type': 'text', 'text': str(p)} for p in button_params],
            })

        template = {'name': template_name, 'language': {'code': language_code}}
        if components:
            template['components'] = components

        return self._message(to, 'template', template)

    def send_message(self, to, text):
        return self._message(to, 'text', {'body': text})

    def send_interactive_buttons(self, to, body_text, buttons):
        return self._message(to, 'interactive', {
            'type': 'button',
            'body': {'text': body_text},
            'action': {
                'buttons': [
                    {'type': 'reply', 'reply': {'id': b['id'], 'title': b['title']}}
                    for b in buttons
                ],
            },
        })

    def react_to_message(self, to, message_id, emoji):
        """An empty emoji removes the reaction"""
        return self._message(to, 'reaction', {'message_id': message_id, 'emoji': emoji})

    def mark_as_read(self, message_id):
        return self._post('/messages', {
            'messaging_product': 'whatsapp',
            'status': 'read',
            'message_id': message_id,
        })


def create_whatsapp_client():
    config = getattr(settings, 'WHATSAPP', {})
    phone_number_id = config.get('PHONE_NUMBER_ID')
    access_token = config.get('ACCESS_TOKEN')

    if not phone_number_id or not access_token:
        raise ImproperlyConfigured(
            "Missing WhatsApp configuration: WHATSAPP_PHONE_NUMBER_ID and WHATSAPP_ACCESS_TOKEN are required"
        )

    return WhatsAppClient(phone_number_id, access_token)

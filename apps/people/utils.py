# people/utils.py

"""
Contact normalization.

Emails are compared lower-case and trimmed. Phone numbers are stored in
E.164 so the same number typed as 612-555-0123, (612) 555 0123 or
+1 612 555 0123 matches one ContactPoint.
"""

import re
import logging

logger = logging.getLogger(__name__)

NON_DIGIT_RE = re.compile(r'\D')
EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def normalize_email(email):
    """' Parent@Example.COM ' -> 'parent@example.com', blank -> None"""
    if not email:
        return None
    email = email.strip().lower()
    return email or None


def is_valid_email(email):
    return bool(email and EMAIL_RE.match(email.strip()))


def normalize_phone(phone):
    """
    Normalize a phone number to E.164.

    - 10 digits are treated as a US number: '612-555-0123' -> '+16125550123'
    - 11 digits starting with 1: '1 612 555 0123' -> '+16125550123'
    - 11-15 digits written with a leading '+' are kept as international

    Returns None when the input cannot be normalized.
    """
    if not phone:
        return None

    raw = str(phone).strip()
    digits = NON_DIGIT_RE.sub('', raw)

    if len(digits) == 10:
        return f"+1{digits}"

    if len(digits) == 11 and digits.startswith('1'):
        return f"+{digits}"

    if raw.startswith('+') and 11 <= len(digits) <= 15:
        return f"+{digits}"

    return None


def format_phone_display(phone):
    """'+16125550123' -> '612-555-0123'; other numbers returned unchanged"""
    if not phone:
        return ''
    digits = NON_DIGIT_RE.sub('', phone)
    if len(digits) == 11 and digits.startswith('1'):
        digits = digits[1:]
    if len(digits) == 10:
        return f"{digits[:3]}-{digits[3:6]}-{digits[6:]}"
    return phone


def split_name(name):
    """'Amina Yusuf Ali' -> ('Amina', 'Ali')"""
    parts = (name or '').split()
    if not parts:
        return '', ''
    if len(parts) == 1:
        return parts[0], ''
    return parts[0], parts[-1]

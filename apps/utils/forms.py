# utils/forms.py

"""
Shared form widgets, fields and mixins.

Registration inputs follow the center's rules: names may not contain
HTML and are capped at 255 characters, phone numbers are entered as
US XXX-XXX-XXXX, money is entered in dollars and stored in cents.
"""

from django import forms
from django.core.exceptions import ValidationError
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
import re
import logging

logger = logging.getLogger(__name__)

HTML_TAG_RE = re.compile(r'<[^>]*>')
US_PHONE_RE = re.compile(r'^\d{3}-\d{3}-\d{4}$')
NAME_MAX_LENGTH = 255


# =============================================================================
# CUSTOM WIDGETS
# =============================================================================

class DatePickerInput(forms.DateInput):
    """Date picker widget with HTML5 date input"""
    input_type = 'date'

    def __init__(self, attrs=None, format=None):
        default_attrs = {'class': 'form-control'}
        if attrs:
            default_attrs.update(attrs)
        super().__init__(attrs=default_attrs, format=format or '%Y-%m-%d')


class PhoneInput(forms.TextInput):
    """US phone number input (XXX-XXX-XXXX)"""

    def __init__(self, attrs=None):
        default_attrs = {
            'class': 'form-control phone-input',
            'placeholder': '612-555-0123',
            'pattern': r'^\d{3}-\d{3}-\d{4}$',
            'inputmode': 'tel',
        }
        if attrs:
            default_attrs.update(attrs)
        super().__init__(attrs=default_attrs)


class SearchInput(forms.TextInput):
    """Search input widget"""

    def __init__(self, attrs=None):
        default_attrs = {
            'class': 'form-control search-input',
            'placeholder': 'Search...',
            'type': 'search',
            'autocomplete': 'off'
        }
        if attrs:
            default_attrs.update(attrs)
        super().__init__(attrs=default_attrs)


# =============================================================================
# CUSTOM FORM FIELDS
# =============================================================================

def validate_person_name(value):
    """Names may not contain HTML tags and are at most 255 characters."""
    if value and HTML_TAG_RE.search(value):
        raise ValidationError('Name cannot contain HTML tags.', code='invalid_name')
    if value and len(value) > NAME_MAX_LENGTH:
        raise ValidationError(
            f'Name must be at most {NAME_MAX_LENGTH} characters.',
            code='name_too_long'
        )


def validate_us_phone(value):
    if value and not US_PHONE_RE.match(value):
        raise ValidationError('Phone number must be in the format XXX-XXX-XXXX.', code='invalid_phone')


class PersonNameField(forms.CharField):
    """Person name with HTML and length checks"""

    default_validators = [validate_person_name]

    def __init__(self, *args, **kwargs):
        kwargs.setdefault('max_length', NAME_MAX_LENGTH)
        super().__init__(*args, **kwargs)

    def to_python(self, value):
        value = super().to_python(value)
        return ' '.join(value.split()) if value else value


class USPhoneField(forms.CharField):
    """Phone number in XXX-XXX-XXXX form"""

    default_validators = [validate_us_phone]

    def __init__(self, *args, **kwargs):
        kwargs.setdefault('max_length', 12)
        kwargs.setdefault('widget', PhoneInput())
        super().__init__(*args, **kwargs)


class CentsField(forms.DecimalField):
    """Dollar amount entered by staff, cleaned to integer cents"""

    def __init__(self, *args, **kwargs):
        kwargs.setdefault('max_digits', 9)
        kwargs.setdefault('decimal_places', 2)
        kwargs.setdefault('min_value', Decimal('0.01'))
        kwargs.setdefault('widget', forms.NumberInput(attrs={'step': '0.01', 'min': '0'}))
        super().__init__(*args, **kwargs)

    def to_python(self, value):
        if isinstance(value, str):
            value = re.sub(r'[^\d.-]', '', value)
        return super().to_python(value)

    def clean(self, value):
        value = super().clean(value)
        if value is None:
            return None
        try:
            return int((value * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
        except InvalidOperation:
            raise ValidationError('Enter a valid amount.')


# =============================================================================
# FORM MIXINS
# =============================================================================

class BootstrapFormMixin:
    """Mixin to add Bootstrap classes to form fields"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.apply_bootstrap_classes()

    def apply_bootstrap_classes(self):
        for field in self.fields.values():
            widget = field.widget
            existing_classes = widget.attrs.get('class', '')

            if isinstance(widget, (forms.CheckboxInput, forms.RadioSelect, forms.CheckboxSelectMultiple)):
                css_class = 'form-check-input'
            elif isinstance(widget, forms.Select):
                css_class = 'form-select'
            else:
                css_class = 'form-control'

            if css_class not in existing_classes:
                widget.attrs['class'] = f"{existing_classes} {css_class}".strip()


class HTMXFilterFormMixin:
    """
    Mixin for HTMX-powered filter/search forms.

    Usage:
        class StudentFilterForm(HTMXFilterFormMixin, BootstrapFormMixin, forms.Form):
            htmx_get = '/mahad/students/search/'
            htmx_target = '#student-results'
    """

    htmx_get = None
    htmx_target = '#results'
    htmx_swap = 'innerHTML'
    htmx_indicator = '.htmx-indicator'
    search_delay = 400  # ms

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.configure_htmx_filters()

    def configure_htmx_filters(self):
        for field in self.fields.values():
            widget_attrs = field.widget.attrs

            if self.htmx_get:
                widget_attrs['hx-get'] = self.htmx_get
            widget_attrs['hx-target'] = self.htmx_target
            widget_attrs['hx-swap'] = self.htmx_swap
            widget_attrs['hx-indicator'] = self.htmx_indicator
            widget_attrs['hx-include'] = '[name]'

            if isinstance(field.widget, (forms.TextInput, SearchInput)):
                widget_attrs['hx-trigger'] = f'keyup changed delay:{self.search_delay}ms, search'
            else:
                widget_attrs['hx-trigger'] = 'change'


class DateRangeFormMixin:
    """Mixin for forms with start_date/end_date fields"""

    def clean(self):
        cleaned_data = super().clean()

        start_date = cleaned_data.get('start_date') or cleaned_data.get('date_from')
        end_date = cleaned_data.get('end_date') or cleaned_data.get('date_to')

        if start_date and end_date and start_date > end_date:
            raise ValidationError({'end_date': 'End date must be after start date.'})

        return cleaned_data

# students/forms.py

"""
Mahad student, batch and enrollment forms.
Uses utils/forms for the shared name, phone and filter behavior.
"""

from django import forms
from django.core.exceptions import ValidationError
import logging

from utils.forms import (
    BootstrapFormMixin,
    HTMXFilterFormMixin,
    DateRangeFormMixin,
    DatePickerInput,
    SearchInput,
    PersonNameField,
    USPhoneField,
)

from .models import Batch, ProgramProfile, ENROLLMENT_STATUS_CHOICES

logger = logging.getLogger(__name__)


# =============================================================================
# FILTER FORMS (HTMX SEARCH)
# =============================================================================

class StudentFilterForm(HTMXFilterFormMixin, BootstrapFormMixin, forms.Form):
    """
    HTMX-powered Mahad student filter form.

    Usage:
        form = StudentFilterForm(request.GET)
    """

    htmx_get = 'search/'
    htmx_target = '#student-list'
    search_delay = 300

    q = forms.CharField(
        label='Search',
        required=False,
        widget=SearchInput(attrs={'placeholder': 'Search by name, email or phone...'})
    )
    status = forms.ChoiceField(
        label='Status',
        choices=[('', 'All Statuses')] + ENROLLMENT_STATUS_CHOICES,
        required=False
    )
    batch = forms.ModelChoiceField(
        label='Batch',
        queryset=Batch.objects.none(),
        required=False,
        empty_label='All Batches'
    )
    billing_type = forms.ChoiceField(
        label='Billing Type',
        choices=[('', 'All')] + ProgramProfile.BILLING_TYPE_CHOICES,
        required=False
    )
    gender = forms.ChoiceField(
        label='Gender',
        choices=[('', 'All')] + ProgramProfile.GENDER_CHOICES,
        required=False
    )

    def __init__(self, *args, **kwargs):
        search_url = kwargs.pop('search_url', None)
        if search_url:
            self.htmx_get = search_url

        super().__init__(*args, **kwargs)
        self.fields['batch'].queryset = Batch.objects.order_by('-start_date', 'name')


# =============================================================================
# REGISTRATION
# =============================================================================

class MahadRegistrationForm(BootstrapFormMixin, forms.Form):
    """Mahad student registration with billing details"""

    first_name = PersonNameField(label='First Name')
    last_name = PersonNameField(label='Last Name')
    email = forms.EmailField(label='Email')
    phone = USPhoneField(label='Phone')
    date_of_birth = forms.DateField(label='Date of Birth', required=False, widget=DatePickerInput())
    gender = forms.ChoiceField(label='Gender', choices=ProgramProfile.GENDER_CHOICES)

    education_level = forms.ChoiceField(
        label='Education Level',
        choices=[('', '---------')] + ProgramProfile.EDUCATION_LEVEL_CHOICES,
        required=False
    )
    school_name = forms.CharField(label='School', max_length=255, required=False)
    high_school_grad_year = forms.IntegerField(label='High School Graduation Year', required=False)
    college_grad_year = forms.IntegerField(label='College Graduation Year', required=False)

    batch = forms.ModelChoiceField(label='Batch', queryset=Batch.objects.none(), required=False)

    graduation_status = forms.ChoiceField(
        label='Graduation Status',
        choices=ProgramProfile.GRADUATION_STATUS_CHOICES,
        initial='NON_GRADUATE'
    )
    payment_frequency = forms.ChoiceField(
        label='Payment Frequency',
        choices=ProgramProfile.PAYMENT_FREQUENCY_CHOICES,
        initial='MONTHLY'
    )
    billing_type = forms.ChoiceField(
        label='Billing Type',
        choices=ProgramProfile.BILLING_TYPE_CHOICES,
        initial='FULL_TIME'
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['batch'].queryset = Batch.objects.order_by('-start_date', 'name')

    def clean_email(self):
        return self.cleaned_data['email'].strip().lower()

    @property
    def full_name(self):
        return f"{self.cleaned_data['first_name']} {self.cleaned_data['last_name']}"

    def profile_fields(self):
        """ProgramProfile fields from the cleaned data"""
        data = self.cleaned_data
        return {
            'gender': data['gender'],
            'education_level': data.get('education_level') or '',
            'school_name': data.get('school_name') or '',
            'high_school_grad_year': data.get('high_school_grad_year'),
            'college_grad_year': data.get('college_grad_year'),
        }


class BillingFieldsForm(BootstrapFormMixin, forms.ModelForm):
    """Mahad billing fields on a profile"""

    class Meta:
        model = ProgramProfile
        fields = ['graduation_status', 'payment_frequency', 'billing_type', 'payment_notes']
        widgets = {
            'payment_notes': forms.Textarea(attrs={'rows': 3}),
        }


# =============================================================================
# BATCHES & ENROLLMENTS
# =============================================================================

class BatchForm(DateRangeFormMixin, BootstrapFormMixin, forms.ModelForm):

    class Meta:
        model = Batch
        fields = ['name', 'start_date', 'end_date']
        widgets = {
            'start_date': DatePickerInput(),
            'end_date': DatePickerInput(),
        }

    def clean_name(self):
        name = ' '.join(self.cleaned_data['name'].split())
        duplicates = Batch.objects.filter(name__iexact=name)
        if self.instance.pk:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise ValidationError(f"A batch named {name} already exists.")
        return name


class BatchAssignForm(BootstrapFormMixin, forms.Form):
    """Assign or transfer a set of students to a batch"""

    batch = forms.ModelChoiceField(label='Batch', queryset=Batch.objects.none())
    profile_ids = forms.CharField(widget=forms.HiddenInput())

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['batch'].queryset = Batch.objects.order_by('-start_date', 'name')

    def clean_profile_ids(self):
        ids = [value.strip() for value in self.cleaned_data['profile_ids'].split(',') if value.strip()]
        if not ids:
            raise ValidationError("Select at least one student.")
        return ids


class EnrollmentStatusForm(BootstrapFormMixin, forms.Form):
    status = forms.ChoiceField(label='Status', choices=ENROLLMENT_STATUS_CHOICES)
    reason = forms.CharField(label='Reason', max_length=255, required=False)
    end_date = forms.DateField(label='End Date', required=False, widget=DatePickerInput())

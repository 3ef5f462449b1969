# dugsi/forms.py

"""
Dugsi forms: the family registration wizard steps, classes, attendance,
teacher check-in, and withdrawal / billing adjustment choices.
"""

from django import forms
from django.core.exceptions import ValidationError
import uuid
import logging

from utils.forms import (
    BootstrapFormMixin,
    HTMXFilterFormMixin,
    DateRangeFormMixin,
    DatePickerInput,
    SearchInput,
    PersonNameField,
    USPhoneField,
    CentsField,
)
from billing.billing_dates import get_billing_day_options
from students.models import ProgramProfile
from students.services import MAX_CHILDREN_PER_FAMILY

from .models import SHIFT_CHOICES, AttendanceRecord, DugsiClass, Teacher
from .services import WITHDRAWAL_REASON_LABELS

logger = logging.getLogger(__name__)

WITHDRAWAL_REASON_CHOICES = list(WITHDRAWAL_REASON_LABELS.items())

BILLING_ADJUSTMENT_CHOICES = [
    ('auto_recalculate', 'Recalculate from remaining children'),
    ('keep_current', 'Keep current amount'),
    ('custom', 'Set a custom amount'),
    ('cancel_subscription', 'Cancel subscription'),
]


# =============================================================================
# FAMILY REGISTRATION WIZARD
# =============================================================================

class ParentsForm(BootstrapFormMixin, forms.Form):
    """Step 1: parents and who pays"""

    parent1_first_name = PersonNameField(label='First Name')
    parent1_last_name = PersonNameField(label='Last Name')
    parent1_email = forms.EmailField(label='Email')
    parent1_phone = USPhoneField(label='Phone')

    parent2_first_name = PersonNameField(label='First Name', required=False)
    parent2_last_name = PersonNameField(label='Last Name', required=False)
    parent2_email = forms.EmailField(label='Email', required=False)
    parent2_phone = USPhoneField(label='Phone', required=False)

    primary_payer = forms.ChoiceField(
        label='Primary Payer',
        choices=[('parent1', 'Parent 1'), ('parent2', 'Parent 2')],
        initial='parent1',
        widget=forms.RadioSelect
    )

    PARENT2_FIELDS = ['parent2_first_name', 'parent2_last_name', 'parent2_email', 'parent2_phone']

    def clean(self):
        cleaned_data = super().clean()

        provided = [name for name in self.PARENT2_FIELDS if cleaned_data.get(name)]
        if provided and len(provided) != len(self.PARENT2_FIELDS):
            raise ValidationError("Parent 2 information must be complete (name, email and phone) or left empty.")

        if cleaned_data.get('primary_payer') == 'parent2' and not provided:
            raise ValidationError({'primary_payer': 'Parent 2 must be provided to be the primary payer.'})

        return cleaned_data


class ChildForm(BootstrapFormMixin, forms.Form):
    first_name = PersonNameField(label='First Name')
    last_name = PersonNameField(label='Last Name')
    date_of_birth = forms.DateField(label='Date of Birth', required=False, widget=DatePickerInput())
    gender = forms.ChoiceField(label='Gender', choices=ProgramProfile.GENDER_CHOICES)
    grade_level = forms.ChoiceField(
        label='Grade',
        choices=[('', '---------')] + ProgramProfile.GRADE_LEVEL_CHOICES,
        required=False
    )
    school_name = forms.CharField(label='School', max_length=255, required=False)
    health_info = forms.CharField(
        label='Health Information',
        required=False,
        widget=forms.Textarea(attrs={'rows': 2})
    )


ChildFormSet = forms.formset_factory(
    ChildForm,
    extra=1,
    min_num=1,
    max_num=MAX_CHILDREN_PER_FAMILY,
    validate_min=True,
    validate_max=True,
)


class ReviewForm(BootstrapFormMixin, forms.Form):
    """Step 3: confirm"""

    confirm = forms.BooleanField(label='The information above is correct', required=True)


FAMILY_WIZARD_FORMS = [
    ('parents', ParentsForm),
    ('children', ChildFormSet),
    ('review', ReviewForm),
]

FAMILY_WIZARD_STEP_NAMES = {
    'parents': 'Parents',
    'children': 'Children',
    'review': 'Review',
}


def build_family_registration_data(parents, children):
    """Wizard cleaned data -> RegistrationService.create_family_registration payload"""
    data = {
        'family_reference_id': str(uuid.uuid4()),
        'children': [child for child in children if child],
    }
    for key, value in parents.items():
        data[key] = value or ''
    return data


# =============================================================================
# FAMILIES
# =============================================================================

class FamilyFilterForm(HTMXFilterFormMixin, BootstrapFormMixin, forms.Form):

    htmx_target = '#family-list'
    search_delay = 300

    q = forms.CharField(
        label='Search',
        required=False,
        widget=SearchInput(attrs={'placeholder': 'Search by child or parent name...'})
    )

    def __init__(self, *args, **kwargs):
        search_url = kwargs.pop('search_url', None)
        if search_url:
            self.htmx_get = search_url
        super().__init__(*args, **kwargs)


class CheckoutLinkForm(BootstrapFormMixin, forms.Form):
    """Payment link for a family; blank amount uses the calculated rate"""

    override_amount = CentsField(label='Monthly Amount ($)', required=False)
    billing_day = forms.ChoiceField(label='Billing Day', required=False)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['billing_day'].choices = [('', 'Start immediately')] + [
            (option['value'], option['label']) for option in get_billing_day_options()
        ]


class BillingAdjustmentFormMixin:
    """billing_adjustment / custom_amount -> the dict WithdrawalService takes"""

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('billing_adjustment') == 'custom' and not cleaned_data.get('custom_amount'):
            raise ValidationError({'custom_amount': 'Enter the new monthly amount.'})
        return cleaned_data

    def get_billing_adjustment(self):
        adjustment = {'type': self.cleaned_data['billing_adjustment']}
        if adjustment['type'] == 'custom':
            adjustment['amount'] = self.cleaned_data['custom_amount']
        return adjustment


class WithdrawForm(BillingAdjustmentFormMixin, BootstrapFormMixin, forms.Form):
    reason = forms.ChoiceField(label='Reason', choices=WITHDRAWAL_REASON_CHOICES)
    reason_note = forms.CharField(label='Note', max_length=500, required=False)
    billing_adjustment = forms.ChoiceField(
        label='Billing',
        choices=BILLING_ADJUSTMENT_CHOICES,
        initial='auto_recalculate'
    )
    custom_amount = CentsField(label='New Monthly Amount ($)', required=False)


class ReEnrollForm(BillingAdjustmentFormMixin, BootstrapFormMixin, forms.Form):
    billing_adjustment = forms.ChoiceField(
        label='Billing',
        choices=[choice for choice in BILLING_ADJUSTMENT_CHOICES if choice[0] != 'cancel_subscription'],
        initial='auto_recalculate'
    )
    custom_amount = CentsField(label='New Monthly Amount ($)', required=False)


# =============================================================================
# FAMILY EDITS
# =============================================================================

class ParentInfoForm(BootstrapFormMixin, forms.Form):
    """Name and phone of parent 1 or 2; email is not editable"""

    parent_number = forms.TypedChoiceField(
        choices=[(1, 'Parent 1'), (2, 'Parent 2')],
        coerce=int,
        widget=forms.HiddenInput()
    )
    first_name = PersonNameField(label='First Name')
    last_name = PersonNameField(label='Last Name')
    phone = USPhoneField(label='Phone')


class SecondParentForm(BootstrapFormMixin, forms.Form):
    first_name = PersonNameField(label='First Name')
    last_name = PersonNameField(label='Last Name')
    email = forms.EmailField(label='Email')
    phone = USPhoneField(label='Phone')


class ChildInfoForm(BootstrapFormMixin, forms.Form):
    """Child edit; only changed fields are saved"""

    first_name = PersonNameField(label='First Name', required=False)
    last_name = PersonNameField(label='Last Name', required=False)
    date_of_birth = forms.DateField(label='Date of Birth', required=False, widget=DatePickerInput())
    gender = forms.ChoiceField(
        label='Gender',
        choices=[('', '---------')] + ProgramProfile.GENDER_CHOICES,
        required=False
    )
    education_level = forms.ChoiceField(
        label='Education Level',
        choices=[('', '---------')] + ProgramProfile.EDUCATION_LEVEL_CHOICES,
        required=False
    )
    grade_level = forms.ChoiceField(
        label='Grade',
        choices=[('', '---------')] + ProgramProfile.GRADE_LEVEL_CHOICES,
        required=False
    )
    school_name = forms.CharField(label='School', max_length=255, required=False)
    health_info = forms.CharField(
        label='Health Information',
        required=False,
        widget=forms.Textarea(attrs={'rows': 2})
    )

    @classmethod
    def for_profile(cls, profile):
        person = profile.person
        return cls(initial={
            'first_name': person.first_name,
            'last_name': ' '.join(person.name.split()[1:]),
            'date_of_birth': person.date_of_birth,
            'gender': profile.gender,
            'education_level': profile.education_level,
            'grade_level': profile.grade_level,
            'school_name': profile.school_name,
            'health_info': profile.health_info,
        })

    def get_changes(self):
        return {name: self.cleaned_data[name] for name in self.changed_data}


# =============================================================================
# CLASSES
# =============================================================================

class DugsiClassForm(BootstrapFormMixin, forms.ModelForm):

    class Meta:
        model = DugsiClass
        fields = ['name', 'shift', 'description', 'is_active']
        widgets = {
            'description': forms.Textarea(attrs={'rows': 3}),
        }


class ClassTeacherForm(BootstrapFormMixin, forms.Form):
    teacher = forms.ModelChoiceField(label='Teacher', queryset=Teacher.objects.none())

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['teacher'].queryset = Teacher.objects.filter(
            programs__program='DUGSI_PROGRAM',
            programs__is_active=True
        ).select_related('person')


class ClassStudentsForm(BootstrapFormMixin, forms.Form):
    profile_ids = forms.MultipleChoiceField(label='Students', choices=[])

    def __init__(self, *args, choices=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['profile_ids'].choices = choices or []


class TeacherForm(BootstrapFormMixin, forms.Form):
    """New Dugsi teacher"""

    name = PersonNameField(label='Full Name')
    email = forms.EmailField(label='Email', required=False)
    phone = USPhoneField(label='Phone', required=False)
    shifts = forms.MultipleChoiceField(
        label='Shifts',
        choices=SHIFT_CHOICES,
        widget=forms.CheckboxSelectMultiple
    )


# =============================================================================
# ATTENDANCE
# =============================================================================

class AttendanceSessionForm(BootstrapFormMixin, forms.Form):
    dugsi_class = forms.ModelChoiceField(label='Class', queryset=DugsiClass.objects.none())
    date = forms.DateField(label='Date', widget=DatePickerInput())
    notes = forms.CharField(label='Notes', required=False, widget=forms.Textarea(attrs={'rows': 2}))

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['dugsi_class'].queryset = DugsiClass.objects.filter(is_active=True)


class AttendanceReportForm(DateRangeFormMixin, BootstrapFormMixin, forms.Form):
    dugsi_class = forms.ModelChoiceField(
        label='Class',
        queryset=DugsiClass.objects.none(),
        required=False,
        empty_label='All Classes'
    )
    date_from = forms.DateField(label='From', required=False, widget=DatePickerInput())
    date_to = forms.DateField(label='To', required=False, widget=DatePickerInput())

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['dugsi_class'].queryset = DugsiClass.objects.all()


def parse_attendance_post(post, profiles):
    """
    Attendance grid POST -> records for AttendanceService.mark_records.
    Fields per child are suffixed with the profile id, e.g. status_<id>.
    Children without a status are skipped.
    """
    valid_statuses = {code for code, _ in AttendanceRecord.STATUS_CHOICES}
    records = []

    for profile in profiles:
        key = str(profile.pk)
        status = post.get(f'status_{key}')
        if status not in valid_statuses:
            continue

        def int_or_none(name):
            value = (post.get(f'{name}_{key}') or '').strip()
            return int(value) if value.isdigit() and int(value) > 0 else None

        records.append({
            'profile_id': profile.pk,
            'status': status,
            'lesson_completed': post.get(f'lesson_completed_{key}') in ('on', 'true', '1'),
            'surah_name': (post.get(f'surah_name_{key}') or '').strip(),
            'ayat_from': int_or_none('ayat_from'),
            'ayat_to': int_or_none('ayat_to'),
            'lesson_notes': (post.get(f'lesson_notes_{key}') or '').strip(),
            'notes': (post.get(f'notes_{key}') or '').strip(),
        })

    return records


# =============================================================================
# CHECK-IN
# =============================================================================

class AdminCheckInForm(BootstrapFormMixin, forms.Form):
    teacher = forms.ModelChoiceField(label='Teacher', queryset=Teacher.objects.none())
    shift = forms.ChoiceField(label='Shift', choices=SHIFT_CHOICES)
    reason = forms.CharField(label='Reason', min_length=3, max_length=255)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['teacher'].queryset = Teacher.objects.filter(
            programs__program='DUGSI_PROGRAM',
            programs__is_active=True
        ).select_related('person')


class LateReportForm(DateRangeFormMixin, BootstrapFormMixin, forms.Form):
    date_from = forms.DateField(label='From', widget=DatePickerInput())
    date_to = forms.DateField(label='To', widget=DatePickerInput())
    shift = forms.ChoiceField(label='Shift', choices=[('', 'All Shifts')] + SHIFT_CHOICES, required=False)

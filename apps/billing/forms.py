# billing/forms.py

from django import forms
from django.core.exceptions import ValidationError
from decimal import Decimal

from utils.forms import BootstrapFormMixin, HTMXFilterFormMixin, SearchInput

from .models import STRIPE_ACCOUNT_TYPE_CHOICES, SUBSCRIPTION_STATUS_CHOICES


class SubscriptionFilterForm(HTMXFilterFormMixin, BootstrapFormMixin, forms.Form):

    htmx_target = '#subscription-list'
    search_delay = 300

    q = forms.CharField(
        label='Search',
        required=False,
        widget=SearchInput(attrs={'placeholder': 'Search by payer, email or sub_ id...'})
    )
    account_type = forms.ChoiceField(
        label='Account',
        choices=[('', 'All Accounts')] + STRIPE_ACCOUNT_TYPE_CHOICES,
        required=False
    )
    status = forms.ChoiceField(
        label='Status',
        choices=[('', 'All Statuses')] + SUBSCRIPTION_STATUS_CHOICES,
        required=False
    )

    def __init__(self, *args, **kwargs):
        search_url = kwargs.pop('search_url', None)
        if search_url:
            self.htmx_get = search_url
        super().__init__(*args, **kwargs)


class LinkSubscriptionForm(BootstrapFormMixin, forms.Form):
    """Attach an existing Stripe subscription to a payer and profiles"""

    subscription_id = forms.CharField(label='Stripe Subscription ID', max_length=255)
    account_type = forms.ChoiceField(
        label='Account',
        choices=[('MAHAD', 'Mahad'), ('DUGSI', 'Dugsi')]
    )
    payer_email = forms.EmailField(label='Payer Email')
    profile_ids = forms.CharField(
        label='Students',
        help_text='Comma separated profile ids',
        widget=forms.HiddenInput()
    )
    notes = forms.CharField(label='Notes', required=False, widget=forms.Textarea(attrs={'rows': 2}))

    def clean_subscription_id(self):
        value = self.cleaned_data['subscription_id'].strip()
        if not value.startswith('sub_'):
            raise ValidationError("Subscription ids start with sub_")
        return value

    def clean_profile_ids(self):
        ids = [value.strip() for value in self.cleaned_data['profile_ids'].split(',') if value.strip()]
        if not ids:
            raise ValidationError("Select at least one student.")
        return ids


ACCOUNT_CHOICES = [('MAHAD', 'Mahad'), ('DUGSI', 'Dugsi')]


class InvoiceActionForm(BootstrapFormMixin, forms.Form):
    """A Stripe invoice on one of the two accounts"""

    invoice_id = forms.CharField(label='Stripe Invoice ID', max_length=255)
    account_type = forms.ChoiceField(label='Account', choices=ACCOUNT_CHOICES)

    def clean_invoice_id(self):
        value = self.cleaned_data['invoice_id'].strip()
        if not value.startswith('in_'):
            raise ValidationError("Invoice ids start with in_")
        return value


class MarkInvoicePaidForm(BootstrapFormMixin, forms.Form):
    """Cash or check payment for a student's billing month"""

    profile_id = forms.UUIDField(label='Student Profile ID')
    year = forms.IntegerField(label='Year', min_value=2000, max_value=2100)
    month = forms.IntegerField(label='Month', min_value=1, max_value=12)
    amount = forms.DecimalField(label='Amount ($)', min_value=Decimal('0.01'), max_digits=8, decimal_places=2)
    stripe_invoice_id = forms.CharField(
        label='Stripe Invoice ID',
        required=False,
        help_text='Leave blank for cash or check'
    )

    def clean_stripe_invoice_id(self):
        value = self.cleaned_data.get('stripe_invoice_id', '').strip()
        if value and not value.startswith('in_'):
            raise ValidationError("Invoice ids start with in_")
        return value or None

    def amount_cents(self):
        return int(self.cleaned_data['amount'] * 100)

# notifications/forms.py

from django import forms

from utils.forms import BootstrapFormMixin, HTMXFilterFormMixin, SearchInput
from dugsi.models import DugsiClass

from .models import WhatsAppMessage


class MessageFilterForm(HTMXFilterFormMixin, BootstrapFormMixin, forms.Form):

    htmx_target = '#message-list'
    search_delay = 300

    q = forms.CharField(
        label='Search',
        required=False,
        widget=SearchInput(attrs={'placeholder': 'Search by phone, name or template...'})
    )
    status = forms.ChoiceField(
        label='Status',
        choices=[('', 'All Statuses')] + WhatsAppMessage.STATUS_CHOICES,
        required=False
    )
    message_type = forms.ChoiceField(
        label='Type',
        choices=[('', 'All Types')] + WhatsAppMessage.MESSAGE_TYPE_CHOICES,
        required=False
    )

    def __init__(self, *args, **kwargs):
        search_url = kwargs.pop('search_url', None)
        if search_url:
            self.htmx_get = search_url
        super().__init__(*args, **kwargs)


class AnnouncementForm(BootstrapFormMixin, forms.Form):
    """Class announcement to Dugsi parents"""

    dugsi_class = forms.ModelChoiceField(
        label='Class',
        queryset=DugsiClass.objects.none(),
        required=False,
        empty_label='All Dugsi Families'
    )
    message = forms.CharField(
        label='Message',
        max_length=1000,
        widget=forms.Textarea(attrs={'rows': 4})
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['dugsi_class'].queryset = DugsiClass.objects.filter(is_active=True)

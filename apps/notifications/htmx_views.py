# notifications/htmx_views.py

from django.shortcuts import render
from django.db.models import Q
import logging

from .models import WhatsAppMessage
from utils.utils import parse_filters, paginate_queryset

logger = logging.getLogger(__name__)


def message_search(request):
    """HTMX-compatible WhatsApp message log search with pagination"""

    filters = parse_filters(request, ['q', 'status', 'message_type'])

    whatsapp_messages = WhatsAppMessage.objects.select_related('person').order_by('-created_at')

    if filters['q']:
        query = filters['q']
        whatsapp_messages = whatsapp_messages.filter(
            Q(phone_number__icontains=query) |
            Q(template_name__icontains=query) |
            Q(person__name__icontains=query)
        )

    if filters['status']:
        whatsapp_messages = whatsapp_messages.filter(status=filters['status'])

    if filters['message_type']:
        whatsapp_messages = whatsapp_messages.filter(message_type=filters['message_type'])

    messages_page, paginator = paginate_queryset(request, whatsapp_messages, per_page=25)

    return render(request, 'notifications/_message_results.html', {
        'messages_page': messages_page,
        'paginator': paginator,
        'total': paginator.count,
    })

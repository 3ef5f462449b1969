# notifications/views.py

"""
Notification Views

- WhatsApp Cloud API webhook (verification handshake and delivery statuses)
- Message log and class announcements
"""

from django.shortcuts import render, redirect
from django.contrib.auth.decorators import login_required
from django.contrib import messages
from django.conf import settings
from django.http import HttpResponse, JsonResponse
from django.urls import reverse
from django.utils.crypto import constant_time_compare
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
import json
import logging

from .forms import MessageFilterForm, AnnouncementForm
from .models import WhatsAppMessage
from .services import WhatsAppService, get_announcement_recipients
from .whatsapp_client import verify_webhook_signature

logger = logging.getLogger(__name__)


# =============================================================================
# WEBHOOK
# =============================================================================

def _verify_subscription(request):
    mode = request.GET.get('hub.mode')
    token = request.GET.get('hub.verify_token') or ''
    challenge = request.GET.get('hub.challenge') or ''
    expected = settings.WHATSAPP.get('VERIFY_TOKEN') or ''

    if mode == 'subscribe' and expected and constant_time_compare(token, expected):
        logger.info("WhatsApp webhook verified")
        return HttpResponse(challenge, content_type='text/plain')

    logger.warning("WhatsApp webhook verification failed")
    return HttpResponse('Forbidden', status=403)


@csrf_exempt
@require_http_methods(['GET', 'POST'])
def whatsapp_webhook(request):
    if request.method == 'GET':
        return _verify_subscription(request)

    signature = request.headers.get('X-Hub-Signature-256')
    if not verify_webhook_signature(request.body, signature, settings.WHATSAPP.get('APP_SECRET')):
        logger.warning("Invalid WhatsApp webhook signature")
        return JsonResponse({'error': 'Invalid signature'}, status=401)

    try:
        payload = json.loads(request.body)
    except ValueError:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    updated = WhatsAppService.process_status_webhook(payload)
    logger.info(f"WhatsApp webhook processed: {updated} status update(s)")

    return JsonResponse({'received': True, 'updated': updated})


# =============================================================================
# MESSAGE LOG
# =============================================================================

@login_required
def message_list(request):
    return render(request, 'notifications/message_list.html', {
        'filter_form': MessageFilterForm(search_url=reverse('notifications:message_search')),
        'failed_count': WhatsAppMessage.objects.filter(status='failed').count(),
    })


@login_required
def send_announcement(request):
    if request.method == 'POST':
        form = AnnouncementForm(request.POST)
        if form.is_valid():
            recipients = get_announcement_recipients(form.cleaned_data['dugsi_class'])
            if not recipients:
                messages.warning(request, "No parents to message")
            else:
                queued = WhatsAppService.queue_bulk_announcement(recipients, form.cleaned_data['message'])
                messages.success(
                    request,
                    f"Announcement queued for {queued} parent(s). Delivery shows in the message log."
                )
                return redirect('notifications:message_list')
    else:
        form = AnnouncementForm()

    return render(request, 'notifications/announcement.html', {'form': form, 'title': 'Class Announcement'})

# notifications/admin.py

from django.contrib import admin

from .models import WhatsAppMessage


@admin.register(WhatsAppMessage)
class WhatsAppMessageAdmin(admin.ModelAdmin):
    list_display = ['phone_number', 'template_name', 'program', 'message_type', 'status', 'sent_at']
    list_filter = ['program', 'message_type', 'status', 'template_name']
    search_fields = ['phone_number', 'wa_message_id', 'person__name', 'family_id']
    raw_id_fields = ['person']
    readonly_fields = ['wa_message_id', 'sent_at', 'delivered_at', 'read_at', 'failed_at']

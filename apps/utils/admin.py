# utils/admin.py

from django.contrib import admin
from .models import AuditLog, BillingAuditLog


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['timestamp', 'action', 'content_type', 'object_repr', 'user_email', 'program']
    list_filter = ['action', 'program', 'content_type']
    search_fields = ['object_repr', 'user_email', 'object_id']
    readonly_fields = [
        'id', 'content_type', 'object_id', 'object_repr', 'action',
        'changes', 'user_id', 'user_email', 'timestamp', 'ip_address',
        'user_agent', 'change_reason', 'program', 'request_path', 'changes_display'
    ]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return request.user.is_superuser

    @admin.display(description='Changes')
    def changes_display(self, obj):
        return obj.get_changes_display()


@admin.register(BillingAuditLog)
class BillingAuditLogAdmin(admin.ModelAdmin):
    list_display = ['timestamp', 'action', 'program', 'amount_cents', 'stripe_object_id', 'risk_level', 'is_automated']
    list_filter = ['action', 'program', 'risk_level', 'is_automated']
    search_fields = ['stripe_object_id', 'object_description', 'notes']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

# billing/admin.py

from django.contrib import admin

from .models import (
    BillingAccount,
    Subscription,
    BillingAssignment,
    SubscriptionHistory,
    WebhookEvent,
    StudentPayment,
)


class BillingAssignmentInline(admin.TabularInline):
    model = BillingAssignment
    extra = 0
    fields = ['profile', 'amount', 'percentage', 'is_active', 'start_date', 'end_date']
    raw_id_fields = ['profile']


@admin.register(BillingAccount)
class BillingAccountAdmin(admin.ModelAdmin):
    list_display = ['person', 'account_type', 'stripe_customer_id_mahad', 'stripe_customer_id_dugsi', 'payment_method_captured']
    list_filter = ['account_type', 'payment_method_captured']
    search_fields = ['person__name', 'stripe_customer_id_mahad', 'stripe_customer_id_dugsi']


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ['stripe_subscription_id', 'billing_account', 'stripe_account_type', 'status', 'amount', 'paid_until']
    list_filter = ['stripe_account_type', 'status']
    search_fields = ['stripe_subscription_id', 'stripe_customer_id', 'billing_account__person__name']
    inlines = [BillingAssignmentInline]


@admin.register(SubscriptionHistory)
class SubscriptionHistoryAdmin(admin.ModelAdmin):
    list_display = ['subscription', 'event_type', 'status', 'amount', 'processed_at']
    list_filter = ['event_type', 'status']


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ['event_id', 'event_type', 'source', 'processed_at']
    list_filter = ['source', 'event_type']
    search_fields = ['event_id']


@admin.register(StudentPayment)
class StudentPaymentAdmin(admin.ModelAdmin):
    list_display = ['profile', 'year', 'month', 'amount_paid', 'paid_at', 'stripe_invoice_id']
    list_filter = ['year', 'month']

# billing/urls.py

from django.urls import path
from . import views, htmx_views

app_name = 'billing'

urlpatterns = [
    # =============================================================================
    # WEBHOOKS & CRON
    # =============================================================================
    path('webhooks/stripe/mahad/', views.stripe_webhook_mahad, name='stripe_webhook_mahad'),
    path('webhooks/stripe/dugsi/', views.stripe_webhook_dugsi, name='stripe_webhook_dugsi'),
    path(
        'cron/cleanup-abandoned-enrollments/',
        views.cron_cleanup_abandoned_enrollments,
        name='cron_cleanup_abandoned_enrollments'
    ),

    # =============================================================================
    # DASHBOARD & SUBSCRIPTIONS
    # =============================================================================
    path('', views.billing_dashboard, name='dashboard'),
    path('subscriptions/', views.subscription_list, name='subscription_list'),
    path('subscriptions/search/', htmx_views.subscription_search, name='subscription_search'),
    path('subscriptions/link/', views.link_subscription, name='link_subscription'),
    path('subscriptions/export/excel/', views.export_subscriptions_excel, name='export_subscriptions_excel'),
    path('subscriptions/<uuid:pk>/', views.subscription_detail, name='subscription_detail'),
    path('subscriptions/<uuid:pk>/sync/', views.subscription_sync, name='subscription_sync'),

    # =============================================================================
    # INVOICES
    # =============================================================================
    path('invoices/', views.invoice_list, name='invoice_list'),
    path('invoices/sync/', views.invoice_sync, name='invoice_sync'),
    path('invoices/resend/', views.invoice_resend, name='invoice_resend'),
    path('invoices/detail/', views.invoice_detail, name='invoice_detail'),
    path('invoices/mark-paid/', views.mark_invoice_paid, name='mark_invoice_paid'),
]

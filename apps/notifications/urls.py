# notifications/urls.py

from django.urls import path
from . import views, htmx_views

app_name = 'notifications'

urlpatterns = [
    path('webhooks/whatsapp/', views.whatsapp_webhook, name='whatsapp_webhook'),

    path('messages/', views.message_list, name='message_list'),
    path('messages/search/', htmx_views.message_search, name='message_search'),
    path('announcements/new/', views.send_announcement, name='send_announcement'),
]

"""
URL configuration for irshad project.

Program areas are mounted under their own prefixes so that
ProgramContextMiddleware can tell which program a request belongs to.
"""
from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static

urlpatterns = [
    # Django admin
    path('admin/', admin.site.urls),

    # Login / logout
    path('accounts/', include('django.contrib.auth.urls')),

    # People - persons, contacts, guardians, siblings
    path('people/', include(('people.urls', 'people'), namespace='people')),

    # Mahad program - students and cohorts
    path('mahad/', include(('students.urls', 'students'), namespace='students')),

    # Dugsi program - families, classes, attendance, teachers
    path('dugsi/', include(('dugsi.urls', 'dugsi'), namespace='dugsi')),

    # Billing - subscriptions, Stripe webhooks, cron endpoints
    path('billing/', include(('billing.urls', 'billing'), namespace='billing')),

    # Notifications - WhatsApp messaging
    path('notifications/', include(('notifications.urls', 'notifications'), namespace='notifications')),
]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)

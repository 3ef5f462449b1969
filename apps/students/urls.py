# students/urls.py

"""
URL Configuration for the Mahad students module (mounted under /mahad/).
1. Regular Views (views.py) - Full page loads, redirects and exports
2. HTMX Views (htmx_views.py) - Dynamic search and filtering
"""

from django.urls import path
from . import views, htmx_views

app_name = 'students'

urlpatterns = [
    # =============================================================================
    # DASHBOARD
    # =============================================================================
    path('', views.students_dashboard, name='dashboard'),

    # =============================================================================
    # STUDENTS
    # =============================================================================
    path('students/', views.student_list, name='student_list'),
    path('students/search/', htmx_views.student_search, name='student_search'),
    path('students/register/', views.student_register, name='student_register'),
    path('students/export/excel/', views.export_students_excel, name='export_students_excel'),
    path('students/export/vcard/', views.export_contacts_vcard, name='export_contacts_vcard'),
    path('students/<uuid:pk>/', views.student_detail, name='student_detail'),
    path('students/<uuid:pk>/billing/', views.student_billing_edit, name='student_billing_edit'),
    path('students/<uuid:pk>/checkout/', views.student_checkout, name='student_checkout'),
    path('students/<uuid:pk>/withdraw/', views.student_withdraw, name='student_withdraw'),

    # =============================================================================
    # ENROLLMENTS
    # =============================================================================
    path('enrollments/<uuid:pk>/status/', views.enrollment_status_update, name='enrollment_status_update'),

    # =============================================================================
    # BATCHES
    # =============================================================================
    path('batches/', views.batch_list, name='batch_list'),
    path('batches/create/', views.batch_create, name='batch_create'),
    path('batches/assign/', views.batch_assign, name='batch_assign'),
    path('batches/<uuid:pk>/edit/', views.batch_edit, name='batch_edit'),
    path('batches/<uuid:pk>/delete/', views.batch_delete, name='batch_delete'),
    path('batches/<uuid:pk>/transfer/', views.batch_transfer, name='batch_transfer'),
]

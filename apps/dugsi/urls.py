# dugsi/urls.py

"""
URL Configuration for the Dugsi module (mounted under /dugsi/).
1. Regular Views (views.py) - Full page loads, redirects and exports
2. HTMX Views (htmx_views.py) - Family search
3. JSON endpoints - Teacher clock-in / clock-out
"""

from django.urls import path
from . import views, htmx_views

app_name = 'dugsi'

urlpatterns = [
    # =============================================================================
    # DASHBOARD
    # =============================================================================
    path('', views.dugsi_dashboard, name='dashboard'),

    # =============================================================================
    # FAMILIES
    # =============================================================================
    path('families/', views.family_list, name='family_list'),
    path('families/search/', htmx_views.family_search, name='family_search'),
    path('families/register/', views.family_register, name='family_register'),
    path('families/export/vcard/', views.export_parent_contacts_vcard, name='export_parent_contacts_vcard'),
    path('families/<uuid:family_id>/', views.family_detail, name='family_detail'),
    path('families/<uuid:family_id>/checkout/', views.family_checkout_link, name='family_checkout_link'),
    path('families/<uuid:family_id>/withdraw/', views.family_withdraw_all, name='family_withdraw_all'),
    path('families/<uuid:family_id>/pause/', views.family_pause_billing, name='family_pause_billing'),
    path('families/<uuid:family_id>/resume/', views.family_resume_billing, name='family_resume_billing'),
    path('families/<uuid:family_id>/parents/update/', views.family_update_parent, name='family_update_parent'),
    path('families/<uuid:family_id>/parents/add/', views.family_add_parent, name='family_add_parent'),
    path('families/<uuid:family_id>/children/add/', views.family_add_child, name='family_add_child'),

    # =============================================================================
    # CHILDREN
    # =============================================================================
    path('children/<uuid:pk>/', views.child_detail, name='child_detail'),
    path('children/<uuid:pk>/edit/', views.child_edit, name='child_edit'),
    path('children/<uuid:pk>/withdraw/', views.child_withdraw, name='child_withdraw'),
    path('children/<uuid:pk>/re-enroll/', views.child_re_enroll, name='child_re_enroll'),

    # =============================================================================
    # CLASSES & TEACHERS
    # =============================================================================
    path('classes/', views.class_list, name='class_list'),
    path('classes/create/', views.class_create, name='class_create'),
    path('classes/<uuid:pk>/', views.class_detail, name='class_detail'),
    path('classes/<uuid:pk>/edit/', views.class_edit, name='class_edit'),
    path('classes/<uuid:pk>/delete/', views.class_delete, name='class_delete'),
    path('classes/<uuid:pk>/teachers/', views.class_assign_teacher, name='class_assign_teacher'),
    path('classes/<uuid:pk>/teachers/<uuid:teacher_id>/remove/', views.class_remove_teacher, name='class_remove_teacher'),
    path('classes/<uuid:pk>/students/', views.class_assign_students, name='class_assign_students'),
    path('class-enrollments/<uuid:enrollment_id>/remove/', views.class_remove_student, name='class_remove_student'),
    path('teachers/', views.teacher_list, name='teacher_list'),
    path('teachers/create/', views.teacher_create, name='teacher_create'),

    # =============================================================================
    # ATTENDANCE
    # =============================================================================
    path('attendance/', views.session_list, name='session_list'),
    path('attendance/create/', views.session_create, name='session_create'),
    path('attendance/export/excel/', views.export_attendance_excel, name='export_attendance_excel'),
    path('attendance/<uuid:pk>/', views.session_detail, name='session_detail'),
    path('attendance/<uuid:pk>/close/', views.session_close, name='session_close'),
    path('attendance/<uuid:pk>/delete/', views.session_delete, name='session_delete'),
    path('attendance/<uuid:pk>/pdf/', views.session_pdf, name='session_pdf'),

    # =============================================================================
    # TEACHER CHECK-IN
    # =============================================================================
    path('checkins/', views.checkin_dashboard, name='checkin_dashboard'),
    path('checkins/manual/', views.admin_checkin, name='admin_checkin'),
    path('checkins/<uuid:pk>/clock-out/', views.admin_checkout, name='admin_checkout'),
    path('checkins/late/', views.late_report, name='late_report'),
    path('checkins/report/pdf/', views.checkin_report_pdf, name='checkin_report_pdf'),

    path('api/checkins/<uuid:teacher_id>/status/', views.api_checkin_status, name='api_checkin_status'),
    path('api/checkins/clock-in/', views.api_clock_in, name='api_clock_in'),
    path('api/checkins/<uuid:checkin_id>/clock-out/', views.api_clock_out, name='api_clock_out'),
]
